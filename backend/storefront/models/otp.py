# storefront/models/otp.py
"""
Database models for one-time codes.
- OtpVerification: the single live code per (identity, purpose); only its hash is stored
- OtpRequestLog: append-only ledger of generations, backing the rolling-window rate limit
"""
import datetime as dt
from enum import Enum
from typing import Optional

from tortoise import fields, models

from storefront.core.clock import as_utc


class OtpPurpose(str, Enum):
    EMAIL_VERIFICATION = "EMAIL_VERIFICATION"
    PASSWORD_RESET = "PASSWORD_RESET"


class OtpVerification(models.Model):
    """
    One live OTP per (user or email, purpose).

    - otp_hash: keyed sha256 of the code (plain text never stored)
    - attempts / max_attempts: per-code validation counter and its ceiling
    - last_sent_at / resend_count: cooldown and hourly resend ceiling, carried
      forward from the record this one replaced
    - created_at: set from the service clock, not by the database
    """
    id = fields.IntField(pk=True)
    user: Optional[fields.ForeignKeyNullableRelation["User"]] = fields.ForeignKeyField(
        "models.User", related_name="otp_verifications", null=True, on_delete=fields.CASCADE
    )
    email = fields.CharField(max_length=100, index=True)
    otp_hash = fields.CharField(max_length=128)
    purpose = fields.CharEnumField(OtpPurpose, max_length=32)
    attempts = fields.IntField(default=0)
    max_attempts = fields.IntField(default=5)
    expires_at = fields.DatetimeField(index=True)
    last_sent_at = fields.DatetimeField(null=True)
    resend_count = fields.IntField(default=0)
    created_at = fields.DatetimeField()

    class Meta:
        table = "otp_verifications"
        indexes = (("email", "purpose"),)

    def is_expired(self, now: dt.datetime) -> bool:
        return now > as_utc(self.expires_at)

    def is_max_attempts_exceeded(self) -> bool:
        return self.attempts >= self.max_attempts


class OtpRequestLog(models.Model):
    """One row per OTP generation; pruned once older than the rate-limit window."""
    id = fields.IntField(pk=True)
    email = fields.CharField(max_length=100)
    purpose = fields.CharEnumField(OtpPurpose, max_length=32)
    created_at = fields.DatetimeField(index=True)

    class Meta:
        table = "otp_request_log"
        indexes = (("email", "purpose", "created_at"),)
