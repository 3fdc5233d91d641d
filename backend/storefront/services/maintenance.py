"""
Periodic housekeeping: sweeps expired OTP records and expired refresh tokens.
Started and stopped with the application lifecycle.
"""
import asyncio
import logging
from typing import Optional

from storefront.services.otp import OtpService
from storefront.services.refresh_tokens import RefreshTokenStore

logger = logging.getLogger("uvicorn.error")


class MaintenanceTask:
    def __init__(self, otp: OtpService, refresh_tokens: RefreshTokenStore, interval: float):
        self.otp = otp
        self.refresh_tokens = refresh_tokens
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="storefront-maintenance")
        logger.info("[maintenance] started (interval=%ss)", self.interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("[maintenance] stopped")

    async def run_once(self) -> tuple[int, int]:
        """Run both sweeps; a failing sweep is logged and does not stop the other."""
        otps = tokens = 0
        try:
            otps = await self.otp.sweep_expired()
        except Exception:
            logger.exception("[maintenance] OTP sweep failed")
        try:
            tokens = await self.refresh_tokens.sweep_expired()
        except Exception:
            logger.exception("[maintenance] refresh-token sweep failed")
        return otps, tokens

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self.run_once()
