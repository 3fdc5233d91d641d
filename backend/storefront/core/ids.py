# storefront/core/ids.py
"""Public identifiers exposed to clients instead of internal primary keys."""
import secrets
import string

from storefront.core import clock

_ALPHABET = string.ascii_uppercase + string.digits
_RANDOM_LENGTH = 6

USER_PREFIX = "USR"


def generate_public_id(prefix: str = USER_PREFIX) -> str:
    """
    Build an unguessable public id: PREFIX-<epochSeconds>-<6 chars [A-Z0-9]>.
    Example: USR-1733707200-A7X9F2
    """
    timestamp = int(clock.utc_now().timestamp())
    random_part = "".join(secrets.choice(_ALPHABET) for _ in range(_RANDOM_LENGTH))
    return f"{prefix}-{timestamp}-{random_part}"
