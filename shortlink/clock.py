"""Timezone helpers shared by the store, the cache projection and validation."""

import datetime

__all__ = ["utcnow", "ensure_utc"]


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def ensure_utc(value: datetime.datetime) -> datetime.datetime:
    """Treat naive timestamps as UTC.

    SQLite hands back naive datetimes even for ``DateTime(timezone=True)``
    columns, so every expiry comparison goes through here.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc)
