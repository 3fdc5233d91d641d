"""
Account helpers: username derivation, profile lookup and updates, soft delete.
"""
import datetime as dt
import logging
from functools import lru_cache
from typing import Optional

from tortoise.exceptions import IntegrityError
from tortoise.transactions import in_transaction

from storefront.config import settings
from storefront.core import clock
from storefront.core.db import bounded, store_bound
from storefront.core.errors import (
    AppError,
    ErrorKind,
    MSG_ACCOUNT_ALREADY_DELETED,
    MSG_USERNAME_COOLDOWN,
    MSG_USERNAME_TAKEN,
    MSG_USER_NOT_FOUND,
)
from storefront.models.user import User
from storefront.services.lockout import AccountLockService
from storefront.services.refresh_tokens import RefreshTokenStore

logger = logging.getLogger("uvicorn.error")

USERNAME_MAX_LENGTH = 50


async def derive_username(email: str) -> str:
    """
    Username from the email's local part; on collision append 1, 2, 3...
    Uniqueness is checked across all users, deleted ones included.
    """
    base = email.split("@", 1)[0][: USERNAME_MAX_LENGTH - 6] or "user"
    username = base
    suffix = 1
    while await User.filter(username=username).exists():
        username = f"{base}{suffix}"
        suffix += 1
    return username


async def find_active_by_email(email: str) -> Optional[User]:
    return await User.get_or_none(email=email, is_deleted=False)


async def find_active_by_id(user_id: int) -> Optional[User]:
    return await User.get_or_none(id=user_id, is_deleted=False)


class AccountService:
    """Profile reads, profile and username updates, and account deletion for the signed-in user."""

    def __init__(
        self,
        lock_service: Optional[AccountLockService] = None,
        refresh_tokens: Optional[RefreshTokenStore] = None,
        username_cooldown: Optional[dt.timedelta] = None,
    ):
        self.locks = lock_service or AccountLockService()
        self.refresh_tokens = refresh_tokens or RefreshTokenStore()
        if username_cooldown is None:
            username_cooldown = dt.timedelta(days=settings.username_change_cooldown_days)
        self.username_cooldown = username_cooldown

    @store_bound
    async def get_profile(self, user_id: int) -> User:
        user = await find_active_by_id(user_id)
        if user is None:
            raise AppError(ErrorKind.NOT_FOUND, MSG_USER_NOT_FOUND)
        return user

    @store_bound
    async def update_profile(
        self,
        user_id: int,
        first_name: str,
        last_name: str,
        phone_number: Optional[str] = None,
    ) -> User:
        """Replace both names; the phone number only changes when a non-empty one is given."""
        changes = {"first_name": first_name, "last_name": last_name, "updated_at": clock.utc_now()}
        if phone_number:
            changes["phone_number"] = phone_number
        updated = await User.filter(id=user_id, is_deleted=False).update(**changes)
        if not updated:
            raise AppError(ErrorKind.NOT_FOUND, MSG_USER_NOT_FOUND)
        logger.info("[account] profile updated for user id=%s", user_id)
        return await User.get(id=user_id)

    @store_bound
    async def update_username(self, user_id: int, username: str) -> User:
        """
        Change the username at most once per cooldown period.

        Raises:
            AppError(BAD_REQUEST): the previous change is too recent
            AppError(DUPLICATE_RESOURCE): another user (deleted ones included) holds the name
        """
        now = clock.utc_now()
        try:
            async with in_transaction():
                user = await User.select_for_update().get_or_none(id=user_id, is_deleted=False)
                if user is None:
                    raise AppError(ErrorKind.NOT_FOUND, MSG_USER_NOT_FOUND)
                self._check_username_cooldown(user, now)
                if await User.filter(username=username).exclude(id=user_id).exists():
                    raise AppError(ErrorKind.DUPLICATE_RESOURCE, MSG_USERNAME_TAKEN)
                await User.filter(id=user_id).update(
                    username=username,
                    last_username_changed_at=now,
                    updated_at=now,
                )
        except IntegrityError as exc:
            # Another user claimed the name between the check and the write
            raise AppError(ErrorKind.DUPLICATE_RESOURCE, MSG_USERNAME_TAKEN) from exc
        logger.info("[account] username updated for user id=%s to %s", user_id, username)
        return await User.get(id=user_id)

    def _check_username_cooldown(self, user: User, now: dt.datetime) -> None:
        last = clock.as_utc(user.last_username_changed_at)
        if last is None:
            return
        days_since = (now - last).days
        cooldown_days = self.username_cooldown.days
        if days_since < cooldown_days:
            raise AppError(ErrorKind.BAD_REQUEST, MSG_USERNAME_COOLDOWN % (cooldown_days - days_since))

    async def delete_account(self, user_id: int) -> None:
        """
        Soft delete: keep the row, flag it deleted and lock it far into the
        future so it cannot sign in. Outstanding refresh tokens are dropped.
        """
        user = await bounded(User.get_or_none(id=user_id))
        if user is None:
            raise AppError(ErrorKind.NOT_FOUND, MSG_USER_NOT_FOUND)
        if user.is_deleted:
            raise AppError(ErrorKind.BAD_REQUEST, MSG_ACCOUNT_ALREADY_DELETED)
        await self.locks.soft_delete(user_id)
        await self.refresh_tokens.delete_all_for_user(user_id)
        logger.info("[account] deleted account for user id=%s", user_id)


@lru_cache
def get_account_service() -> AccountService:
    return AccountService()
