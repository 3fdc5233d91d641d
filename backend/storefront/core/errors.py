# storefront/core/errors.py
"""
Error taxonomy for the auth core.

Every expected outcome is an `AppError` tagged with an `ErrorKind`; the
boundary layer maps kinds to HTTP responses with a table lookup instead of
matching exception subclasses. Anything that is not an `AppError` is an
unexpected fault and is reported generically as `Internal`.
"""
from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    EMAIL_NOT_VERIFIED = "EMAIL_NOT_VERIFIED"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    DUPLICATE_RESOURCE = "DUPLICATE_RESOURCE"
    INVALID_OTP = "INVALID_OTP"
    OTP_EXPIRED = "OTP_EXPIRED"
    MAX_OTP_ATTEMPTS_EXCEEDED = "MAX_OTP_ATTEMPTS_EXCEEDED"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    INVALID_TOKEN = "INVALID_TOKEN"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    NOT_FOUND = "NOT_FOUND"
    BAD_REQUEST = "BAD_REQUEST"
    INTERNAL = "INTERNAL"


HTTP_STATUS: dict[ErrorKind, int] = {
    ErrorKind.INVALID_CREDENTIALS: 401,
    ErrorKind.EMAIL_NOT_VERIFIED: 403,
    ErrorKind.ACCOUNT_LOCKED: 423,
    ErrorKind.DUPLICATE_RESOURCE: 409,
    ErrorKind.INVALID_OTP: 400,
    ErrorKind.OTP_EXPIRED: 400,
    ErrorKind.MAX_OTP_ATTEMPTS_EXCEEDED: 429,
    ErrorKind.RATE_LIMIT_EXCEEDED: 429,
    ErrorKind.INVALID_TOKEN: 401,
    ErrorKind.TOKEN_EXPIRED: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.BAD_REQUEST: 400,
    ErrorKind.INTERNAL: 500,
}

# Client-facing messages
MSG_INVALID_CREDENTIALS = "Invalid email or password"
MSG_EMAIL_EXISTS = "Email already exists"
MSG_DUPLICATE_ACCOUNT = "An account with these details already exists"
MSG_USERNAME_TAKEN = "Username already taken"
MSG_USERNAME_COOLDOWN = "You can change your username again in %d days"
MSG_USERNAME_RESERVED = "This username is reserved and cannot be used"
MSG_USERNAME_INAPPROPRIATE = "Username contains inappropriate content"
MSG_ACCOUNT_PENDING_DELETION = (
    "This account is scheduled for deletion and its email cannot be reused yet."
)
MSG_USER_NOT_FOUND = "User not found"
MSG_EMAIL_NOT_VERIFIED = "Email not verified"
MSG_EMAIL_ALREADY_VERIFIED = "Email is already verified"
MSG_INVALID_OTP = "Invalid or expired OTP"
MSG_OTP_EXPIRED = "OTP has expired"
MSG_MAX_OTP_ATTEMPTS = "Maximum OTP attempts exceeded"
MSG_OTP_RATE_LIMIT = "Too many OTP requests. Please try again later"
MSG_OTP_RESEND_LIMIT = "Maximum OTP resend attempts exceeded. Please try again in 1 hour"
MSG_ACCOUNT_LOCKED = "Account is temporarily locked due to multiple failed attempts"
MSG_INVALID_TOKEN = "Invalid or expired token"
MSG_TOKEN_EXPIRED = "Token has expired"
MSG_INVALID_TEMPORARY_TOKEN = "Invalid or expired temporary token"
MSG_INVALID_ADMIN_SECRET = "Invalid admin secret key"
MSG_ACCOUNT_ALREADY_DELETED = "Account is already deleted"
MSG_STORE_UNAVAILABLE = "Service temporarily unavailable"
MSG_INTERNAL = "An unexpected error occurred"


class AppError(Exception):
    """
    Expected, typed failure of a workflow.

    Args:
        kind: Error kind from the taxonomy
        message: Human readable message (safe to show to clients)
        retry_after: Seconds the client should wait before retrying (rate limits, locks)
        details: Extra structured context for the response body
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        retry_after: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.retry_after = retry_after
        self.details = details or {}

    @property
    def status_code(self) -> int:
        return HTTP_STATUS[self.kind]

    def to_dict(self) -> dict[str, Any]:
        """Convert the error to the response envelope's `error` object."""
        body: dict[str, Any] = {"code": self.kind.value, "message": self.message}
        if self.retry_after is not None:
            body["retryAfter"] = self.retry_after
        if self.details:
            body["details"] = self.details
        return body

    def __repr__(self) -> str:
        return f"AppError({self.kind.value}, {self.message!r})"
