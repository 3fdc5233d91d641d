# storefront/core/__init__.py
"""
Core application modules.
Contains essential infrastructure components:
- bootstrap: Application initialization and default admin creation
- clock: The single UTC time source used by every policy decision
- db: Database configuration, connection management and bounded store access
- errors: AppError and the error-kind -> HTTP status table
- ids: Public user id generation
- security: Password/OTP hashing and the JWT token issuer
"""
