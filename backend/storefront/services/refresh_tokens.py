"""
Refresh Token Store

Persists sha256 digests of refresh tokens (never the token itself) and
supports lookup, per-record deletion, per-user bulk invalidation and an
expiry sweep. Every delete is a single statement.
"""
import datetime as dt
import logging
from typing import Optional

from storefront.core import clock
from storefront.core.db import store_bound
from storefront.core.security import hash_token
from storefront.models.refresh_token import RefreshToken

logger = logging.getLogger("uvicorn.error")


class RefreshTokenStore:

    @store_bound
    async def save(self, user_id: int, token: str, expires_at: dt.datetime) -> RefreshToken:
        return await RefreshToken.create(
            user_id=user_id,
            token_hash=hash_token(token),
            expires_at=expires_at,
            created_at=clock.utc_now(),
        )

    @store_bound
    async def find(self, token: str) -> Optional[RefreshToken]:
        return await RefreshToken.get_or_none(token_hash=hash_token(token))

    @store_bound
    async def delete(self, record: RefreshToken) -> None:
        await RefreshToken.filter(id=record.id).delete()

    @store_bound
    async def delete_all_for_user(self, user_id: int) -> int:
        """Invalidate every refresh token of a user. No-op when there are none."""
        removed = await RefreshToken.filter(user_id=user_id).delete()
        logger.info("[refresh] invalidated %d refresh tokens for user id=%s", removed, user_id)
        return removed

    @store_bound
    async def sweep_expired(self) -> int:
        removed = await RefreshToken.filter(expires_at__lt=clock.utc_now()).delete()
        if removed:
            logger.info("[refresh] swept %d expired refresh tokens", removed)
        return removed

    @staticmethod
    def is_expired(record: RefreshToken, now: Optional[dt.datetime] = None) -> bool:
        return (now or clock.utc_now()) > clock.as_utc(record.expires_at)
