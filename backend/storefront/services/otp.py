"""
OTP Engine

Generates, hashes, stores, rate-limits and validates one-time codes per
(identity, purpose). Each public operation is one transaction: the
"check cooldown then recreate" and "read attempts then increment" sequences
run against a single locked snapshot of the identity's latest record.
"""
import datetime as dt
import logging
import math
from dataclasses import dataclass
from typing import Callable, Optional

from tortoise.expressions import F
from tortoise.transactions import in_transaction

from storefront.config import Settings, settings
from storefront.core import clock
from storefront.core.db import store_bound
from storefront.core.errors import (
    AppError,
    ErrorKind,
    MSG_INVALID_OTP,
    MSG_MAX_OTP_ATTEMPTS,
    MSG_OTP_EXPIRED,
    MSG_OTP_RATE_LIMIT,
    MSG_OTP_RESEND_LIMIT,
)
from storefront.core.security import generate_numeric_code, hash_otp, verify_otp
from storefront.models.otp import OtpPurpose, OtpRequestLog, OtpVerification
from storefront.models.user import User

logger = logging.getLogger("uvicorn.error")


@dataclass(frozen=True)
class OtpPolicy:
    length: int
    ttl: dt.timedelta
    max_attempts: int
    rate_limit_max_requests: int
    rate_limit_window: dt.timedelta
    resend_cooldown: dt.timedelta
    max_resends: int
    resend_window: dt.timedelta
    pepper: str

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "OtpPolicy":
        return cls(
            length=config.otp_length,
            ttl=dt.timedelta(minutes=config.otp_expire_minutes),
            max_attempts=config.otp_max_attempts,
            rate_limit_max_requests=config.otp_rate_limit_max_requests,
            rate_limit_window=dt.timedelta(hours=config.otp_rate_limit_window_hours),
            resend_cooldown=dt.timedelta(seconds=config.otp_resend_cooldown_seconds),
            max_resends=config.otp_max_resends,
            resend_window=dt.timedelta(hours=1),
            pepper=config.otp_pepper,
        )


class OtpService:
    """
    Args:
        policy: Limits and lifetimes; defaults to the process settings
        code_factory: Produces a plaintext code of the given length
    """

    def __init__(
        self,
        policy: Optional[OtpPolicy] = None,
        code_factory: Callable[[int], str] = generate_numeric_code,
    ):
        self.policy = policy or OtpPolicy.from_settings()
        self._code_factory = code_factory

    @store_bound
    async def generate(self, email: str, purpose: OtpPurpose, user_id: Optional[int] = None) -> str:
        """
        Create a fresh code for (user_id or email, purpose) and return it in plain text.

        Checks, in order: rolling-window generation count, resend cooldown,
        hourly resend ceiling. Any prior record for the identity is replaced.

        Raises:
            AppError(RATE_LIMIT_EXCEEDED) with retry_after when a limit applies
        """
        now = clock.utc_now()
        async with in_transaction():
            await self._lock_identity(email, user_id)
            await self._check_rate_limit(email, purpose, now)
            latest = await self._latest(purpose, email=email, for_update=True)
            resend_count = self._check_cooldown_and_resends(latest, email, now)

            if user_id is not None:
                await OtpVerification.filter(user_id=user_id, purpose=purpose).delete()
            await OtpVerification.filter(email=email, purpose=purpose).delete()

            code = self._code_factory(self.policy.length)
            await OtpVerification.create(
                user_id=user_id,
                email=email,
                otp_hash=hash_otp(code, self.policy.pepper),
                purpose=purpose,
                attempts=0,
                max_attempts=self.policy.max_attempts,
                expires_at=now + self.policy.ttl,
                last_sent_at=now,
                resend_count=resend_count,
                created_at=now,
            )
            await OtpRequestLog.create(email=email, purpose=purpose, created_at=now)

        logger.info("[otp] generated %s code for email=%s", purpose.value, email)
        return code

    @store_bound
    async def validate(
        self,
        email: str,
        purpose: OtpPurpose,
        code: str,
        user_id: Optional[int] = None,
    ) -> bool:
        """
        Check a candidate code. Returns True on match (the record is consumed)
        and False on mismatch (the incremented attempt counter persists).

        Raises:
            AppError(INVALID_OTP): no live record
            AppError(OTP_EXPIRED): record past its expiry
            AppError(MAX_OTP_ATTEMPTS_EXCEEDED): attempt ceiling already reached
        """
        now = clock.utc_now()
        async with in_transaction():
            if user_id is not None:
                record = await self._latest(purpose, user_id=user_id, for_update=True)
            else:
                record = await self._latest(purpose, email=email, for_update=True)
            if record is None:
                raise AppError(ErrorKind.INVALID_OTP, MSG_INVALID_OTP)
            if record.is_expired(now):
                raise AppError(ErrorKind.OTP_EXPIRED, MSG_OTP_EXPIRED)
            if record.is_max_attempts_exceeded():
                raise AppError(ErrorKind.MAX_OTP_ATTEMPTS_EXCEEDED, MSG_MAX_OTP_ATTEMPTS)

            # Counted before comparing, so a match costs an attempt too
            await OtpVerification.filter(id=record.id).update(attempts=F("attempts") + 1)
            attempts = record.attempts + 1

            matched = verify_otp(code or "", record.otp_hash, self.policy.pepper)
            if matched:
                await OtpVerification.filter(id=record.id).delete()

        if matched:
            logger.info("[otp] %s code validated for email=%s", purpose.value, email)
        else:
            logger.warning("[otp] invalid %s code for email=%s. Attempts: %d/%d",
                           purpose.value, email, attempts, record.max_attempts)
        return matched

    @store_bound
    async def sweep_expired(self) -> int:
        """Delete expired codes and ledger rows older than the rate-limit window. Idempotent."""
        now = clock.utc_now()
        removed = await OtpVerification.filter(expires_at__lt=now).delete()
        await OtpRequestLog.filter(created_at__lte=now - self.policy.rate_limit_window).delete()
        if removed:
            logger.info("[otp] swept %d expired codes", removed)
        return removed

    # ------------------------------------------------------------------
    # helpers (called inside the caller's transaction)
    # ------------------------------------------------------------------
    @staticmethod
    async def _lock_identity(email: str, user_id: Optional[int]) -> None:
        # The user row serializes concurrent generations for one identity,
        # including the case where no OTP row exists yet.
        if user_id is not None:
            await User.select_for_update().filter(id=user_id).first()
        else:
            await User.select_for_update().filter(email=email, is_deleted=False).first()

    @staticmethod
    async def _latest(
        purpose: OtpPurpose,
        *,
        email: Optional[str] = None,
        user_id: Optional[int] = None,
        for_update: bool = False,
    ) -> Optional[OtpVerification]:
        qs = OtpVerification.filter(purpose=purpose)
        qs = qs.filter(user_id=user_id) if user_id is not None else qs.filter(email=email)
        if for_update:
            qs = qs.select_for_update()
        return await qs.order_by("-created_at", "-id").first()

    async def _check_rate_limit(self, email: str, purpose: OtpPurpose, now: dt.datetime) -> None:
        window_start = now - self.policy.rate_limit_window
        recent = OtpRequestLog.filter(email=email, purpose=purpose, created_at__gt=window_start)
        count = await recent.count()
        if count < self.policy.rate_limit_max_requests:
            return
        oldest = await recent.order_by("created_at").first()
        retry_after = None
        if oldest is not None:
            reopens_at = clock.as_utc(oldest.created_at) + self.policy.rate_limit_window
            retry_after = max(1, math.ceil((reopens_at - now).total_seconds()))
        logger.warning("[otp] rate limit exceeded for email=%s purpose=%s (%d in window)",
                       email, purpose.value, count)
        raise AppError(ErrorKind.RATE_LIMIT_EXCEEDED, MSG_OTP_RATE_LIMIT, retry_after=retry_after)

    def _check_cooldown_and_resends(
        self,
        latest: Optional[OtpVerification],
        email: str,
        now: dt.datetime,
    ) -> int:
        """Return the resend counter for the replacement record."""
        if latest is None or latest.last_sent_at is None:
            return 0
        elapsed = now - clock.as_utc(latest.last_sent_at)

        if elapsed < self.policy.resend_cooldown:
            remaining = math.ceil((self.policy.resend_cooldown - elapsed).total_seconds())
            logger.warning("[otp] cooldown active for email=%s. Remaining: %d seconds", email, remaining)
            raise AppError(
                ErrorKind.RATE_LIMIT_EXCEEDED,
                f"Please wait {remaining} seconds before requesting a new OTP",
                retry_after=remaining,
            )

        # Counter resets once the hour has elapsed since the last send
        if elapsed >= self.policy.resend_window:
            return 0
        if latest.resend_count >= self.policy.max_resends:
            remaining = math.ceil((self.policy.resend_window - elapsed).total_seconds())
            logger.warning("[otp] resend limit exceeded for email=%s. Resends: %d",
                           email, latest.resend_count)
            raise AppError(ErrorKind.RATE_LIMIT_EXCEEDED, MSG_OTP_RESEND_LIMIT, retry_after=remaining)
        return latest.resend_count + 1
