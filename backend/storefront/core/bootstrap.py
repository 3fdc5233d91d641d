# storefront/core/bootstrap.py
"""
Bootstrap module for application initialization.
Handles initial setup tasks such as creating default admin user on first startup.
"""
import os
import logging

from storefront.core.ids import generate_public_id
from storefront.core.security import hash_password
from storefront.models.user import Role, User
from storefront.services.users import derive_username

logger = logging.getLogger("uvicorn.error")


async def ensure_default_admin() -> User | None:
    """
    If no admin exists in the database, create a default admin based on environment variables.
    Only takes effect under the following conditions:
      - Currently no user with role=ADMIN
      - And ADMIN_PASSWORD is set (to avoid using default weak password)
      - And ADMIN_EMAIL is not already taken by another account
    Environment variables:
      ADMIN_EMAIL    (default: "admin@storefront.local")
      ADMIN_PASSWORD (required, otherwise won't create)

    The admin is created already verified; its username is derived from the
    email with a numeric suffix if the local part is taken.
    """
    # Check if any admin user already exists
    if await User.filter(role=Role.ADMIN).exists():
        return None

    admin_password = os.getenv("ADMIN_PASSWORD")
    if not admin_password:
        logger.warning("[bootstrap] No admin present, but ADMIN_PASSWORD not set -> skip creating default admin.")
        return None

    admin_email = os.getenv("ADMIN_EMAIL", "admin@storefront.local")
    if await User.filter(email=admin_email).exists():
        logger.warning("[bootstrap] ADMIN_EMAIL=%s belongs to an existing account -> skip.", admin_email)
        return None

    u = await User.create(
        public_id=generate_public_id(),
        first_name="Admin",
        last_name="User",
        username=await derive_username(admin_email),
        email=admin_email,
        password_hash=hash_password(admin_password),
        role=Role.ADMIN,
        email_verified=True,
    )
    logger.warning("[bootstrap] Created default admin -> username=%s email=%s publicId=%s",
                   u.username, u.email, u.public_id)
    return u
