# storefront/core/clock.py
"""
Single source of "now" for every time-based policy (OTP expiry, cooldowns,
lockouts, token expiry). Tests replace `utc_now` to move time.
"""
import datetime as dt


def utc_now() -> dt.datetime:
    """Current UTC datetime with timezone information."""
    return dt.datetime.now(dt.timezone.utc)


def as_utc(value: dt.datetime | None) -> dt.datetime | None:
    """Normalize a datetime read back from the store to aware UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)
