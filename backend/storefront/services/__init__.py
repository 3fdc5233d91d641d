"""
Services Module

Domain services behind the auth API:
- OTP engine: generation, rate limiting and validation of one-time codes
- Account lock: failed-OTP counter and timed lock state machine
- Refresh tokens: hashed storage, invalidation and expiry sweep
- Notifier: best-effort transactional email
- Auth: the public workflows composed from the above
"""

from .auth import AuthService, get_auth_service
from .lockout import AccountLockService, LockPolicy, LockState
from .maintenance import MaintenanceTask
from .notifier import Notifier, TemplateKind, build_notifier
from .otp import OtpPolicy, OtpService
from .refresh_tokens import RefreshTokenStore
from .users import AccountService, get_account_service

__all__ = [
    "AuthService",
    "get_auth_service",
    "AccountLockService",
    "LockPolicy",
    "LockState",
    "MaintenanceTask",
    "Notifier",
    "TemplateKind",
    "build_notifier",
    "OtpPolicy",
    "OtpService",
    "RefreshTokenStore",
    "AccountService",
    "get_account_service",
]
