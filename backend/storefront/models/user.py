# storefront/models/user.py
"""
Database model for users.
Holds identity, credentials, verification state and the account lock state
(failed OTP counter + lock expiry).
"""
import datetime as dt
from enum import Enum
from typing import Optional

from tortoise import fields, models

from storefront.core import clock


class Role(str, Enum):
    USER = "USER"
    ADMIN = "ADMIN"


class User(models.Model):
    """
    User database model.

    Relationships:
    - Has many OtpVerifications (via related_name="otp_verifications")
    - Has many RefreshTokens (via related_name="refresh_tokens")

    Security:
    - Password is stored as an Argon2 hash
    - Clients only ever see `public_id`; `id` stays internal
    - "Locked" means account_locked_until is set and in the future
    """
    id = fields.IntField(pk=True)  # Internal surrogate key (never exposed)
    public_id = fields.CharField(max_length=50, unique=True, index=True)  # e.g. USR-1733707200-A7X9F2
    first_name = fields.CharField(max_length=50)
    last_name = fields.CharField(max_length=50)
    username = fields.CharField(max_length=50, unique=True, index=True)
    last_username_changed_at = fields.DatetimeField(null=True)
    email = fields.CharField(max_length=100, unique=True, index=True)
    password_hash = fields.CharField(max_length=255)
    phone_number = fields.CharField(max_length=20, null=True)
    role = fields.CharEnumField(Role, max_length=16, default=Role.USER)
    email_verified = fields.BooleanField(default=False)

    failed_otp_attempts = fields.IntField(default=0)  # Cumulative across OTP regenerations
    account_locked_until = fields.DatetimeField(null=True)

    is_deleted = fields.BooleanField(default=False, index=True)
    deleted_at = fields.DatetimeField(null=True)

    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        """Tortoise ORM metadata configuration."""
        table = "users"

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def is_locked(self, now: Optional[dt.datetime] = None) -> bool:
        locked_until = clock.as_utc(self.account_locked_until)
        return locked_until is not None and locked_until > (now or clock.utc_now())
