"""
Auth Orchestrator

Composes the credential store, OTP engine, token issuer, refresh-token store
and account lock state machine into the public workflows. Each workflow
fails fast with an AppError; none is re-entered after it returns.
"""
import logging
from functools import lru_cache
from typing import Any, Optional

from tortoise.exceptions import IntegrityError
from tortoise.transactions import in_transaction

from storefront.config import Settings, settings
from storefront.core import clock
from storefront.core.db import bounded
from storefront.core.errors import (
    AppError,
    ErrorKind,
    MSG_ACCOUNT_LOCKED,
    MSG_ACCOUNT_PENDING_DELETION,
    MSG_DUPLICATE_ACCOUNT,
    MSG_EMAIL_ALREADY_VERIFIED,
    MSG_EMAIL_EXISTS,
    MSG_EMAIL_NOT_VERIFIED,
    MSG_INVALID_CREDENTIALS,
    MSG_INVALID_OTP,
    MSG_INVALID_TOKEN,
    MSG_TOKEN_EXPIRED,
    MSG_USER_NOT_FOUND,
)
from storefront.core.ids import generate_public_id
from storefront.core.security import TokenIssuer, TokenType, hash_password, verify_password
from storefront.models.otp import OtpPurpose
from storefront.models.user import Role, User
from storefront.schemas.auth import (
    JwtResponse,
    SignupRequest,
    SignupResponse,
    TemporaryTokenResponse,
    UserOut,
)
from storefront.services.lockout import AccountLockService, LockPolicy, ensure_unlocked
from storefront.services.notifier import Notifier, TemplateKind, build_notifier
from storefront.services.otp import OtpPolicy, OtpService
from storefront.services.refresh_tokens import RefreshTokenStore
from storefront.services.users import derive_username, find_active_by_email, find_active_by_id

logger = logging.getLogger("uvicorn.error")

MSG_SIGNUP = "Account created successfully. Please verify your email"
MSG_OTP_SENT = "OTP sent to your email"
MSG_PASSWORD_RESET = "Password reset successfully"
MSG_RESET_OTP_VERIFIED = "OTP verified. Use this token to reset your password."


class AuthService:
    """
    Public auth workflows: signup, login, verify-email, resend-otp,
    forgot-password, verify-reset-otp, reset-password, refresh, logout.
    """

    def __init__(
        self,
        config: Settings = settings,
        otp: Optional[OtpService] = None,
        tokens: Optional[TokenIssuer] = None,
        refresh_tokens: Optional[RefreshTokenStore] = None,
        locks: Optional[AccountLockService] = None,
        notifier: Optional[Notifier] = None,
    ):
        self.config = config
        self.otp = otp or OtpService(OtpPolicy.from_settings(config))
        self.tokens = tokens or TokenIssuer(config)
        self.refresh_tokens = refresh_tokens or RefreshTokenStore()
        self.locks = locks or AccountLockService(LockPolicy.from_settings(config))
        self.notifier = notifier or build_notifier(config)

    # ------------------------------------------------------------------
    # Signup / verification
    # ------------------------------------------------------------------
    async def signup(self, request: SignupRequest, role: Role = Role.USER) -> SignupResponse:
        """Create an unverified account and email it a verification code."""
        logger.info("[auth] signup request for email=%s role=%s", request.email, role.value)
        email = request.email

        existing = await bounded(User.get_or_none(email=email))
        if existing is not None:
            message = MSG_ACCOUNT_PENDING_DELETION if existing.is_deleted else MSG_EMAIL_EXISTS
            raise AppError(ErrorKind.DUPLICATE_RESOURCE, message)

        try:
            user = await bounded(self._create_user(request, role))
        except IntegrityError as exc:
            # Lost a race with a concurrent signup: same email, or same derived username
            if await bounded(User.filter(email=email).exists()):
                raise AppError(ErrorKind.DUPLICATE_RESOURCE, MSG_EMAIL_EXISTS) from exc
            logger.warning("[auth] username collision on signup for email=%s, retrying once", email)
            try:
                user = await bounded(self._create_user(request, role))
            except IntegrityError as retry_exc:
                raise AppError(ErrorKind.DUPLICATE_RESOURCE, MSG_DUPLICATE_ACCOUNT) from retry_exc
        logger.info("[auth] user created id=%s publicId=%s", user.id, user.public_id)

        code = await self.otp.generate(user.email, OtpPurpose.EMAIL_VERIFICATION, user_id=user.id)
        await self._notify(user, TemplateKind.VERIFICATION_OTP, otp=code)

        return SignupResponse(userId=user.public_id, email=user.email, message=MSG_SIGNUP)

    async def verify_email(self, email: str, code: str) -> JwtResponse:
        """Validate the verification code, mark the email verified and sign the user in."""
        logger.info("[auth] verify-email request for email=%s", email)
        user = await self._require_user(email)

        await self._validate_otp(user, OtpPurpose.EMAIL_VERIFICATION, code, email_verified=True)
        user = await self._reload(user.id)
        logger.info("[auth] email verified for user id=%s", user.id)

        await self._notify(user, TemplateKind.WELCOME)
        return await self._issue_session(user)

    async def resend_otp(self, email: str) -> str:
        logger.info("[auth] resend-otp request for email=%s", email)
        user = await self._require_user(email)
        if user.email_verified:
            raise AppError(ErrorKind.BAD_REQUEST, MSG_EMAIL_ALREADY_VERIFIED)

        code = await self.otp.generate(user.email, OtpPurpose.EMAIL_VERIFICATION, user_id=user.id)
        await self._notify(user, TemplateKind.VERIFICATION_OTP, otp=code)
        return MSG_OTP_SENT

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------
    async def login(self, email: str, password: str) -> JwtResponse:
        logger.info("[auth] login request for email=%s", email)
        user = await bounded(find_active_by_email(email))
        if user is None:
            raise AppError(ErrorKind.INVALID_CREDENTIALS, MSG_INVALID_CREDENTIALS)

        # Lock state is checked before the password comparison
        ensure_unlocked(user)
        if not verify_password(password, user.password_hash):
            logger.warning("[auth] wrong password for email=%s", email)
            raise AppError(ErrorKind.INVALID_CREDENTIALS, MSG_INVALID_CREDENTIALS)
        if not user.email_verified:
            raise AppError(ErrorKind.EMAIL_NOT_VERIFIED, MSG_EMAIL_NOT_VERIFIED)

        # Re-checked under the row lock: a lock set since the read above wins
        await self.locks.reset(user.id, if_unlocked=True)
        return await self._issue_session(user)

    async def refresh_access_token(self, refresh_token: str) -> JwtResponse:
        """
        Mint a new access token for a stored, unexpired refresh token.
        The refresh token itself is returned unchanged (no rotation on refresh).
        """
        claims = self.tokens.verify(refresh_token, expected_type=TokenType.REFRESH)

        record = await self.refresh_tokens.find(refresh_token)
        if record is None or record.user_id != claims.user_id:
            logger.warning("[auth] refresh token not recognised for user id=%s", claims.user_id)
            raise AppError(ErrorKind.INVALID_TOKEN, MSG_INVALID_TOKEN)
        if self.refresh_tokens.is_expired(record):
            await self.refresh_tokens.delete(record)
            raise AppError(ErrorKind.TOKEN_EXPIRED, MSG_TOKEN_EXPIRED)

        user = await bounded(find_active_by_id(record.user_id))
        if user is None:
            raise AppError(ErrorKind.NOT_FOUND, MSG_USER_NOT_FOUND)

        access_token = self.tokens.mint_access(user.id, user.email, Role(user.role).value)
        return JwtResponse(
            accessToken=access_token,
            refreshToken=refresh_token,
            expiresIn=int(self.tokens.access_ttl.total_seconds()),
            user=UserOut.from_user(user),
        )

    async def logout(self, user_id: int) -> None:
        """Delete every refresh token of the user. Idempotent."""
        logger.info("[auth] logout for user id=%s", user_id)
        await self.refresh_tokens.delete_all_for_user(user_id)

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------
    async def forgot_password(self, email: str) -> str:
        logger.info("[auth] forgot-password request for email=%s", email)
        user = await self._require_user(email)
        ensure_unlocked(user)

        code = await self.otp.generate(user.email, OtpPurpose.PASSWORD_RESET, user_id=user.id)
        await self._notify(user, TemplateKind.PASSWORD_RESET_OTP, otp=code)
        return MSG_OTP_SENT

    async def verify_reset_otp(self, email: str, code: str) -> TemporaryTokenResponse:
        """Exchange a valid reset code for a short-lived TEMPORARY token."""
        logger.info("[auth] verify-reset-otp request for email=%s", email)
        user = await self._require_user(email)

        await self._validate_otp(user, OtpPurpose.PASSWORD_RESET, code)

        return TemporaryTokenResponse(
            temporaryToken=self.tokens.mint_temporary(user.id, user.email),
            expiresIn=int(self.tokens.temporary_ttl.total_seconds()),
            message=MSG_RESET_OTP_VERIFIED,
        )

    async def reset_password(self, temporary_token: str, new_password: str) -> str:
        logger.info("[auth] reset-password request")
        claims = self.tokens.verify(temporary_token, expected_type=TokenType.TEMPORARY)

        user = await bounded(find_active_by_id(claims.user_id))
        if user is None:
            raise AppError(ErrorKind.NOT_FOUND, MSG_USER_NOT_FOUND)

        await self.locks.reset(user.id, password_hash=hash_password(new_password))
        await self.refresh_tokens.delete_all_for_user(user.id)
        logger.info("[auth] password reset for user id=%s", user.id)

        await self._notify(user, TemplateKind.PASSWORD_RESET_CONFIRMATION)
        return MSG_PASSWORD_RESET

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    async def _create_user(self, request: SignupRequest, role: Role) -> User:
        return await User.create(
            public_id=generate_public_id(),
            first_name=request.firstName,
            last_name=request.lastName,
            username=await derive_username(request.email),
            email=request.email,
            password_hash=hash_password(request.password),
            role=role,
            email_verified=False,
            failed_otp_attempts=0,
            is_deleted=False,
        )

    async def _require_user(self, email: str) -> User:
        user = await bounded(find_active_by_email(email))
        if user is None:
            raise AppError(ErrorKind.NOT_FOUND, MSG_USER_NOT_FOUND)
        return user

    async def _reload(self, user_id: int) -> User:
        user = await bounded(find_active_by_id(user_id))
        if user is None:
            raise AppError(ErrorKind.NOT_FOUND, MSG_USER_NOT_FOUND)
        return user

    async def _validate_otp(self, user: User, purpose: OtpPurpose, code: str, **on_success: Any) -> None:
        """
        Validate a code under the user row lock. The lock check, the code
        comparison and the resulting lock transition commit together, so a
        lock set by a concurrent failure is never cleared by a later success.

        A match clears the lock and applies `on_success` field updates; a
        mismatch counts toward the account lock and the attempt that reaches
        the ceiling is answered with AccountLocked.
        """
        async with in_transaction():
            await self.locks.hold_unlocked(user.id)
            matched = await self.otp.validate(user.email, purpose, code, user_id=user.id)
            if matched:
                await self.locks.reset(user.id, **on_success)
            else:
                state = await self.locks.register_failed_otp(user.id)
        if matched:
            return

        now = clock.utc_now()
        if state.is_locked(now):
            raise AppError(
                ErrorKind.ACCOUNT_LOCKED,
                MSG_ACCOUNT_LOCKED,
                retry_after=state.seconds_remaining(now),
            )
        raise AppError(ErrorKind.INVALID_OTP, MSG_INVALID_OTP)

    async def _issue_session(self, user: User) -> JwtResponse:
        role = Role(user.role).value
        access_token = self.tokens.mint_access(user.id, user.email, role)
        refresh_token = self.tokens.mint_refresh(user.id)
        await self.refresh_tokens.save(
            user.id,
            refresh_token,
            expires_at=clock.utc_now() + self.tokens.refresh_ttl,
        )
        return JwtResponse(
            accessToken=access_token,
            refreshToken=refresh_token,
            expiresIn=int(self.tokens.access_ttl.total_seconds()),
            user=UserOut.from_user(user),
        )

    async def _notify(self, user: User, kind: TemplateKind, **params: str) -> None:
        params.setdefault("first_name", user.first_name)
        params.setdefault("expires_minutes", str(self.config.otp_expire_minutes))
        try:
            await self.notifier.send(user.email, kind, params)
        except Exception:
            # Delivery is best effort; the workflow result stands
            logger.exception("[auth] notifier failed for %s -> %s", kind.value, user.email)


@lru_cache
def get_auth_service() -> AuthService:
    """Process-wide AuthService (overridden in tests via FastAPI dependency overrides)."""
    return AuthService()
