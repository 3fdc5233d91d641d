# storefront/core/security.py
"""
Security module for authentication and authorization.
Handles password hashing, JWT minting/verification, refresh-token digests,
and one-time code hashing.
"""
import datetime as dt
import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import jwt  # PyJWT
from passlib.context import CryptContext

from storefront.config import Settings, settings
from storefront.core import clock
from storefront.core.errors import (
    AppError,
    ErrorKind,
    MSG_INVALID_TOKEN,
    MSG_TOKEN_EXPIRED,
)

logger = logging.getLogger("uvicorn.error")

# Password hashing context
# Argon2 is a modern, secure password hashing algorithm
pwd_context = CryptContext(
    schemes=["argon2"],  # Use Argon2 for password hashing
    deprecated="auto",   # Automatically handle deprecated schemes
)

# Claim names on the wire
CLAIM_USER_ID = "userId"
CLAIM_EMAIL = "email"
CLAIM_ROLE = "role"
CLAIM_TYPE = "type"


def hash_password(plain: str) -> str:
    """
    Hash a plain text password using Argon2.

    Args:
        plain: Plain text password to hash

    Returns:
        Hashed password string (safe to store in database)
    """
    return pwd_context.hash(plain)


def verify_password(plain: str, hashed: str) -> bool:
    """
    Verify a plain text password against a hashed password.

    Returns:
        True if password matches, False otherwise
    """
    return pwd_context.verify(plain, hashed)


def hash_token(token: str) -> str:
    """
    One-way, deterministic digest of a refresh token (sha256 hex).
    Used only for refresh-token storage and lookup.
    """
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def generate_numeric_code(length: int) -> str:
    """Cryptographically random, zero-padded numeric code."""
    return f"{secrets.randbelow(10 ** length):0{length}d}"


def hash_otp(code: str, pepper: str) -> str:
    """Keyed digest of a one-time code; the plaintext is never stored."""
    return hmac.new(pepper.encode("utf-8"), code.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_otp(code: str, otp_hash: str, pepper: str) -> bool:
    """Timing-safe comparison of a candidate code against its stored digest."""
    return hmac.compare_digest(hash_otp(code, pepper), otp_hash)


class TokenType(str, Enum):
    ACCESS = "ACCESS"
    REFRESH = "REFRESH"
    TEMPORARY = "TEMPORARY"


@dataclass(frozen=True)
class TokenClaims:
    """Verified claims of a signed token."""
    user_id: int
    type: TokenType
    issued_at: dt.datetime
    expires_at: dt.datetime
    email: Optional[str] = None
    role: Optional[str] = None


class TokenIssuer:
    """
    Mints and verifies HS256-signed tokens.

    Minting and verification are pure functions of the key, the claims and
    the clock, so one instance is shared by every request. Expiry is checked
    against `clock.utc_now()` rather than PyJWT's wall clock.
    """

    def __init__(self, config: Settings = settings):
        self._secret = config.jwt_secret
        self._algorithm = config.jwt_algorithm
        self.access_ttl = dt.timedelta(minutes=config.access_token_expire_minutes)
        self.refresh_ttl = dt.timedelta(days=config.refresh_token_expire_days)
        self.temporary_ttl = dt.timedelta(seconds=config.temporary_token_expire_seconds)

    def mint_access(self, user_id: int, email: str, role: str) -> str:
        return self._mint(
            {CLAIM_USER_ID: user_id, CLAIM_EMAIL: email, CLAIM_ROLE: role},
            TokenType.ACCESS,
            self.access_ttl,
        )

    def mint_refresh(self, user_id: int) -> str:
        return self._mint({CLAIM_USER_ID: user_id}, TokenType.REFRESH, self.refresh_ttl)

    def mint_temporary(self, user_id: int, email: str) -> str:
        """Short-lived token bridging reset-OTP verification and the password change."""
        return self._mint(
            {CLAIM_USER_ID: user_id, CLAIM_EMAIL: email},
            TokenType.TEMPORARY,
            self.temporary_ttl,
        )

    def _mint(self, claims: dict, token_type: TokenType, ttl: dt.timedelta) -> str:
        now = clock.utc_now()
        payload = {
            **claims,
            CLAIM_TYPE: token_type.value,
            "iat": int(now.timestamp()),
            "exp": int((now + ttl).timestamp()),
            # Distinguishes tokens minted for the same user within one second
            "jti": secrets.token_hex(8),
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def verify(self, token: str, expected_type: Optional[TokenType] = None) -> TokenClaims:
        """
        Verify signature, structure, type and expiry of a token.

        Raises:
            AppError(INVALID_TOKEN): bad signature, malformed token, or a type
                other than `expected_type`
            AppError(TOKEN_EXPIRED): the `exp` claim is not in the future
        """
        if not token:
            raise _invalid("MALFORMED")
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "require": ["exp", "iat", CLAIM_TYPE, CLAIM_USER_ID],
                },
            )
        except jwt.InvalidSignatureError as exc:
            logger.warning("[jwt] invalid signature")
            raise _invalid("INVALID_SIGNATURE") from exc
        except jwt.InvalidTokenError as exc:
            logger.warning("[jwt] malformed token: %s", exc)
            raise _invalid("MALFORMED") from exc

        user_id = payload.get(CLAIM_USER_ID)
        if not isinstance(user_id, int) or isinstance(user_id, bool):
            raise _invalid("MALFORMED")
        try:
            issued_at = dt.datetime.fromtimestamp(int(payload["iat"]), tz=dt.timezone.utc)
            expires_at = dt.datetime.fromtimestamp(int(payload["exp"]), tz=dt.timezone.utc)
        except (TypeError, ValueError) as exc:
            raise _invalid("MALFORMED") from exc
        try:
            token_type = TokenType(payload.get(CLAIM_TYPE))
        except ValueError as exc:
            raise _invalid("UNSUPPORTED_TYPE") from exc
        if expected_type is not None and token_type is not expected_type:
            logger.warning("[jwt] %s token presented where %s is expected", token_type.value, expected_type.value)
            raise _invalid("UNSUPPORTED_TYPE")

        if clock.utc_now() >= expires_at:
            raise AppError(ErrorKind.TOKEN_EXPIRED, MSG_TOKEN_EXPIRED)

        return TokenClaims(
            user_id=user_id,
            type=token_type,
            issued_at=issued_at,
            expires_at=expires_at,
            email=payload.get(CLAIM_EMAIL),
            role=payload.get(CLAIM_ROLE),
        )


def _invalid(reason: str) -> AppError:
    return AppError(ErrorKind.INVALID_TOKEN, MSG_INVALID_TOKEN, details={"reason": reason})
