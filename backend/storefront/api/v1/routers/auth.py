# storefront/api/v1/routers/auth.py
import hmac
import logging

from fastapi import APIRouter, Depends, Header, status

from storefront.api.v1.deps import auth_service, bearer_token, get_current_claims
from storefront.core.errors import AppError, ErrorKind, MSG_INVALID_ADMIN_SECRET
from storefront.core.security import TokenClaims
from storefront.models.user import Role
from storefront.schemas.auth import (
    ForgotPasswordRequest,
    LoginRequest,
    ResendOtpRequest,
    ResetPasswordRequest,
    SignupRequest,
    VerifyOtpRequest,
    VerifyResetOtpRequest,
)
from storefront.services.auth import AuthService

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger("uvicorn.error")


def _ok(data=None, message: str | None = None) -> dict:
    body: dict = {"success": True}
    if message is not None:
        body["message"] = message
    if data is not None:
        body["data"] = data
    return body


@router.post("/signup", status_code=status.HTTP_201_CREATED)
async def signup(body: SignupRequest, service: AuthService = Depends(auth_service)):
    """
    Register a new user account.

    Creates an unverified USER and emails a verification code. The client
    then calls /auth/verify-email with that code to receive session tokens.

    Returns:
        dict: success envelope with data = {userId (public id), email, message}

    Error codes:
        - DUPLICATE_RESOURCE: Email already registered (or pending deletion)
        - RATE_LIMIT_EXCEEDED: Too many verification codes for this email
    """
    result = await service.signup(body)
    return _ok(result.model_dump(), message=result.message)


@router.post("/admin/signup", status_code=status.HTTP_201_CREATED)
async def admin_signup(
    body: SignupRequest,
    admin_secret_key: str | None = Header(default=None, alias="Admin-Secret-Key"),
    service: AuthService = Depends(auth_service),
):
    """
    Register an ADMIN account. Requires the `Admin-Secret-Key` header to
    match the configured ADMIN_SECRET_KEY; otherwise behaves like /signup.
    """
    expected = service.config.admin_secret_key
    if not expected or not admin_secret_key or not hmac.compare_digest(admin_secret_key, expected):
        logger.warning("[auth] admin signup rejected for email=%s", body.email)
        raise AppError(ErrorKind.INVALID_CREDENTIALS, MSG_INVALID_ADMIN_SECRET)
    result = await service.signup(body, role=Role.ADMIN)
    return _ok(result.model_dump(), message=result.message)


@router.post("/login")
async def login(body: LoginRequest, service: AuthService = Depends(auth_service)):
    """
    Authenticate with email and password.

    Returns:
        dict: success envelope with data = {accessToken, refreshToken,
        tokenType, expiresIn, user}

    Error codes:
        - INVALID_CREDENTIALS: Unknown email or wrong password
        - ACCOUNT_LOCKED: Too many failed OTP attempts (see retryAfter)
        - EMAIL_NOT_VERIFIED: Correct password but email not yet verified
    """
    session = await service.login(body.email, body.password)
    return _ok(session.model_dump(), message="Login successful")


@router.post("/verify-email")
async def verify_email(body: VerifyOtpRequest, service: AuthService = Depends(auth_service)):
    """Verify the signup email with its code; signs the user in on success."""
    session = await service.verify_email(body.email, body.otp)
    return _ok(session.model_dump(), message="Email verified successfully")


@router.post("/resend-otp")
async def resend_otp(body: ResendOtpRequest, service: AuthService = Depends(auth_service)):
    message = await service.resend_otp(body.email)
    return _ok(message=message)


@router.post("/forgot-password")
async def forgot_password(body: ForgotPasswordRequest, service: AuthService = Depends(auth_service)):
    message = await service.forgot_password(body.email)
    return _ok(message=message)


@router.post("/verify-reset-otp")
async def verify_reset_otp(body: VerifyResetOtpRequest, service: AuthService = Depends(auth_service)):
    """
    Exchange a password-reset code for a temporary token.

    The temporary token is only accepted by /auth/reset-password and expires
    after TEMPORARY_TOKEN_EXPIRE_SECONDS.
    """
    result = await service.verify_reset_otp(body.email, body.otp)
    return _ok(result.model_dump(), message=result.message)


@router.post("/reset-password")
async def reset_password(body: ResetPasswordRequest, service: AuthService = Depends(auth_service)):
    """
    Set a new password using the temporary token from /auth/verify-reset-otp.
    Every refresh token of the user is invalidated.
    """
    message = await service.reset_password(body.temporaryToken, body.newPassword)
    return _ok(message=message)


@router.post("/refresh")
async def refresh(
    refresh_token: str = Depends(bearer_token),
    service: AuthService = Depends(auth_service),
):
    """
    Mint a new access token. The refresh token is sent as
    `Authorization: Bearer <refreshToken>` and returned unchanged.
    """
    session = await service.refresh_access_token(refresh_token)
    return _ok(session.model_dump(), message="Token refreshed successfully")


@router.post("/logout")
async def logout(
    claims: TokenClaims = Depends(get_current_claims),
    service: AuthService = Depends(auth_service),
):
    """
    Log out everywhere: deletes every refresh token of the caller.
    Access tokens already issued stay valid until they expire.
    """
    await service.logout(claims.user_id)
    return _ok(message="Logged out successfully")
