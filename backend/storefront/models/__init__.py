# storefront/models/__init__.py
"""
Database models module initialization.
Exports all Tortoise ORM models for convenient imports.

Models exported:
- User: Account, credentials and lock state
- OtpVerification / OtpRequestLog: One-time codes and their generation ledger
- RefreshToken: Stored refresh-token hashes
"""
from .user import User, Role
from .otp import OtpVerification, OtpRequestLog, OtpPurpose
from .refresh_token import RefreshToken
