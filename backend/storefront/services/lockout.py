"""
Account Lock State Machine

States: UNLOCKED, LOCKED(until). Transitions are pure functions over an
immutable `LockState`; `AccountLockService` applies the resulting change-set
to the user row inside a transaction holding that row's lock.

- UNLOCKED -> LOCKED: the cumulative failed-OTP counter reaches the ceiling
- LOCKED -> UNLOCKED: implicitly once `until` is in the past, or explicitly
  on successful OTP validation / login / password reset
- Soft delete forces a lock far in the future that nothing clears
"""
import datetime as dt
import logging
import math
from dataclasses import dataclass, replace
from typing import Any, Optional

from tortoise.transactions import in_transaction

from storefront.config import Settings, settings
from storefront.core import clock
from storefront.core.db import store_bound
from storefront.core.errors import AppError, ErrorKind, MSG_ACCOUNT_LOCKED, MSG_USER_NOT_FOUND
from storefront.models.user import User

logger = logging.getLogger("uvicorn.error")


@dataclass(frozen=True)
class LockPolicy:
    max_failed_attempts: int
    lock_duration: dt.timedelta
    deleted_lock_duration: dt.timedelta

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "LockPolicy":
        return cls(
            max_failed_attempts=config.max_failed_otp_attempts,
            lock_duration=dt.timedelta(minutes=config.account_lock_minutes),
            deleted_lock_duration=dt.timedelta(days=365 * config.deleted_account_lock_years),
        )


@dataclass(frozen=True)
class LockState:
    failed_otp_attempts: int = 0
    locked_until: Optional[dt.datetime] = None
    deleted: bool = False

    @classmethod
    def of(cls, user: User) -> "LockState":
        return cls(
            failed_otp_attempts=user.failed_otp_attempts,
            locked_until=clock.as_utc(user.account_locked_until),
            deleted=user.is_deleted,
        )

    def is_locked(self, now: dt.datetime) -> bool:
        return self.locked_until is not None and self.locked_until > now

    def seconds_remaining(self, now: dt.datetime) -> int:
        if not self.is_locked(now):
            return 0
        return math.ceil((self.locked_until - now).total_seconds())


def record_failure(state: LockState, policy: LockPolicy, now: dt.datetime) -> LockState:
    """Count one failed OTP validation; lock once the ceiling is reached."""
    failed = state.failed_otp_attempts + 1
    locked_until = state.locked_until
    if failed >= policy.max_failed_attempts and not state.is_locked(now):
        locked_until = now + policy.lock_duration
    return replace(state, failed_otp_attempts=failed, locked_until=locked_until)


def clear(state: LockState) -> LockState:
    """Explicit UNLOCKED transition. A deleted account keeps its lock."""
    if state.deleted:
        return replace(state, failed_otp_attempts=0)
    return replace(state, failed_otp_attempts=0, locked_until=None)


def soft_delete(state: LockState, policy: LockPolicy, now: dt.datetime) -> LockState:
    return replace(state, deleted=True, locked_until=now + policy.deleted_lock_duration)


def change_set(old: LockState, new: LockState) -> dict[str, Any]:
    """User-row field updates that move `old` to `new`."""
    changes: dict[str, Any] = {}
    if new.failed_otp_attempts != old.failed_otp_attempts:
        changes["failed_otp_attempts"] = new.failed_otp_attempts
    if new.locked_until != old.locked_until:
        changes["account_locked_until"] = new.locked_until
    if new.deleted != old.deleted:
        changes["is_deleted"] = new.deleted
    return changes


def ensure_unlocked(user: User, now: Optional[dt.datetime] = None) -> None:
    """Raise AccountLocked if the user is currently locked."""
    _raise_if_locked(LockState.of(user), now or clock.utc_now())


def _raise_if_locked(state: LockState, now: dt.datetime) -> None:
    if state.is_locked(now):
        raise AppError(
            ErrorKind.ACCOUNT_LOCKED,
            MSG_ACCOUNT_LOCKED,
            retry_after=state.seconds_remaining(now),
        )


class AccountLockService:
    """Applies lock transitions to stored users atomically."""

    def __init__(self, policy: Optional[LockPolicy] = None):
        self.policy = policy or LockPolicy.from_settings()

    @store_bound
    async def register_failed_otp(self, user_id: int) -> LockState:
        now = clock.utc_now()
        async with in_transaction():
            user = await _locked_user(user_id)
            old = LockState.of(user)
            new = record_failure(old, self.policy, now)
            await _apply(user_id, old, new)
        if new.is_locked(now) and not old.is_locked(now):
            logger.warning("[lock] user id=%s locked until %s after %d failed OTP attempts",
                           user_id, new.locked_until.isoformat(), new.failed_otp_attempts)
        else:
            logger.warning("[lock] failed OTP attempt for user id=%s (%d/%d)",
                           user_id, new.failed_otp_attempts, self.policy.max_failed_attempts)
        return new

    @store_bound
    async def hold_unlocked(self, user_id: int) -> LockState:
        """
        Take the user row lock for the caller's transaction and raise
        AccountLocked if the account is locked. Everything the caller does
        before its transaction ends sees the same lock state.
        """
        state = LockState.of(await _locked_user(user_id))
        _raise_if_locked(state, clock.utc_now())
        return state

    @store_bound
    async def reset(self, user_id: int, *, if_unlocked: bool = False, **extra: Any) -> LockState:
        """
        Reset the failed counter and clear the lock, together with any extra
        user-field updates (e.g. email_verified, password_hash) in the same write.

        With `if_unlocked`, an account that is locked when the row is read
        raises AccountLocked and nothing is written.
        """
        async with in_transaction():
            user = await _locked_user(user_id)
            old = LockState.of(user)
            if if_unlocked:
                _raise_if_locked(old, clock.utc_now())
            new = clear(old)
            await _apply(user_id, old, new, **extra)
        return new

    @store_bound
    async def soft_delete(self, user_id: int) -> LockState:
        now = clock.utc_now()
        async with in_transaction():
            user = await _locked_user(user_id)
            old = LockState.of(user)
            if old.deleted:
                return old
            new = soft_delete(old, self.policy, now)
            await _apply(user_id, old, new, deleted_at=now)
        logger.info("[lock] user id=%s soft-deleted", user_id)
        return new


async def _locked_user(user_id: int) -> User:
    user = await User.select_for_update().get_or_none(id=user_id)
    if user is None:
        raise AppError(ErrorKind.NOT_FOUND, MSG_USER_NOT_FOUND)
    return user


async def _apply(user_id: int, old: LockState, new: LockState, **extra: Any) -> None:
    changes = {**change_set(old, new), **extra}
    if changes:
        changes["updated_at"] = clock.utc_now()
        await User.filter(id=user_id).update(**changes)
