# storefront/schemas/users.py
"""
Request models for the signed-in user's profile endpoints.
"""
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from storefront.core.errors import MSG_USERNAME_INAPPROPRIATE, MSG_USERNAME_RESERVED

USERNAME_PATTERN = r"^[a-zA-Z0-9_-]+$"

# System and brand names nobody may claim
RESERVED_USERNAMES = frozenset({
    "admin", "administrator", "root", "system", "moderator", "mod",
    "support", "help", "api", "null", "undefined", "test", "demo",
    "guest", "user", "default", "www", "ftp", "mail", "smtp", "pop",
    "imap", "http", "https", "ssh", "blog", "forum", "shop", "store",
    "app", "application", "service", "server", "database", "db",
    "storefront", "payment", "checkout", "cart", "order", "invoice",
})

# Substrings rejected anywhere in a username
BLOCKED_WORDS = (
    "fuck", "shit", "ass", "bitch", "damn", "hell", "crap",
    "nazi", "hitler", "terrorist", "rape", "drug", "cocaine",
    "porn", "xxx", "sex", "pussy", "dick", "cock", "penis",
)


def check_username(value: str) -> str:
    """Reject reserved names and names containing blocked words (case-insensitive)."""
    lowered = value.lower()
    if lowered in RESERVED_USERNAMES:
        raise ValueError(MSG_USERNAME_RESERVED)
    if any(word in lowered for word in BLOCKED_WORDS):
        raise ValueError(MSG_USERNAME_INAPPROPRIATE)
    return value


class UpdateProfileRequest(BaseModel):
    """Names are replaced; a missing or empty phoneNumber keeps the stored one."""
    firstName: str = Field(min_length=2, max_length=50)
    lastName: str = Field(min_length=2, max_length=50)
    phoneNumber: Optional[str] = Field(default=None, max_length=20)


class UpdateUsernameRequest(BaseModel):
    username: str = Field(min_length=3, max_length=50, pattern=USERNAME_PATTERN)

    @field_validator("username")
    def validate_username(cls, v):
        return check_username(v)
