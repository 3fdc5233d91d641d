"""
Notifier

Best-effort outbound email. `send` never raises and never blocks the
workflow on delivery: failures are logged and dropped.

- Notifier: abstract interface consumed by the auth workflows
- ResendEmailNotifier: delivers through the Resend HTTP API with httpx
- LoggingNotifier: development fallback when no API key is configured
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Optional, Set

import httpx

from storefront.config import Settings, settings

logger = logging.getLogger("uvicorn.error")


class TemplateKind(str, Enum):
    VERIFICATION_OTP = "VERIFICATION_OTP"
    PASSWORD_RESET_OTP = "PASSWORD_RESET_OTP"
    WELCOME = "WELCOME"
    PASSWORD_RESET_CONFIRMATION = "PASSWORD_RESET_CONFIRMATION"


# kind -> (subject, html body); rendered with str.format(**params)
TEMPLATES: dict[TemplateKind, tuple[str, str]] = {
    TemplateKind.VERIFICATION_OTP: (
        "Verify your account",
        "<p>Hi {first_name},</p><p>Your verification code is:</p>"
        "<p style=\"font-size:24px;font-weight:700;letter-spacing:6px\">{otp}</p>"
        "<p>This code expires in {expires_minutes} minutes.</p>",
    ),
    TemplateKind.PASSWORD_RESET_OTP: (
        "Reset your password",
        "<p>Hi {first_name},</p><p>Use this code to reset your password:</p>"
        "<p style=\"font-size:24px;font-weight:700;letter-spacing:6px\">{otp}</p>"
        "<p>This code expires in {expires_minutes} minutes. "
        "If you didn't request this, you can ignore this email.</p>",
    ),
    TemplateKind.WELCOME: (
        "Welcome!",
        "<p>Hi {first_name},</p><p>Your email is verified and your account is ready.</p>",
    ),
    TemplateKind.PASSWORD_RESET_CONFIRMATION: (
        "Password reset successful",
        "<p>Hi {first_name},</p><p>Your password was changed. "
        "If this wasn't you, contact support immediately.</p>",
    ),
}


def render(kind: TemplateKind, params: dict[str, Any]) -> tuple[str, str]:
    subject, body = TEMPLATES[kind]
    return subject, body.format(**params)


class Notifier(ABC):
    """Notifier Abstract Base Class"""

    @abstractmethod
    async def send(self, to_email: str, kind: TemplateKind, params: dict[str, Any]) -> None:
        """Queue an email. Must not raise."""
        pass

    async def aclose(self) -> None:
        """Release resources / wait for in-flight deliveries."""
        pass


class LoggingNotifier(Notifier):
    """Logs the delivery instead of sending it (params are not logged: they may hold codes)."""

    async def send(self, to_email: str, kind: TemplateKind, params: dict[str, Any]) -> None:
        logger.info("[mail] (not sent, no RESEND_API_KEY) %s -> %s", kind.value, to_email)


class ResendEmailNotifier(Notifier):
    """Fire-and-forget delivery: each email is posted from its own background task."""

    def __init__(self, config: Settings = settings, client: Optional[httpx.AsyncClient] = None):
        self._url = config.resend_api_url
        self._sender = f"{config.mail_from_name} <{config.mail_from_email}>"
        self._client = client or httpx.AsyncClient(
            timeout=10.0,
            headers={"Authorization": f"Bearer {config.resend_api_key}"},
        )
        self._pending: Set[asyncio.Task] = set()

    async def send(self, to_email: str, kind: TemplateKind, params: dict[str, Any]) -> None:
        try:
            subject, html = render(kind, params)
            task = asyncio.create_task(self._deliver(to_email, kind, subject, html))
        except Exception:
            logger.exception("[mail] failed to queue %s email to %s", kind.value, to_email)
            return
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, to_email: str, kind: TemplateKind, subject: str, html: str) -> None:
        payload = {"from": self._sender, "to": [to_email], "subject": subject, "html": html}
        try:
            resp = await self._client.post(self._url, json=payload)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("[mail] failed to send %s email to %s: %s", kind.value, to_email, exc)
            return
        logger.info("[mail] %s email sent to %s", kind.value, to_email)

    async def aclose(self) -> None:
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        await self._client.aclose()


def build_notifier(config: Settings = settings) -> Notifier:
    if config.resend_api_key:
        return ResendEmailNotifier(config)
    logger.warning("[mail] RESEND_API_KEY not set -> emails are logged, not sent")
    return LoggingNotifier()
