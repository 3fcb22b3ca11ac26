from datetime import datetime, timezone


def utcnow():
    return datetime.now(timezone.utc)


def as_utc(value):
    """Normalize a datetime read back from the database.

    SQLite returns naive datetimes; Postgres returns aware ones.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def from_timestamp(ts):
    """Convert a Stripe unix timestamp to an aware datetime (or None)."""
    if not ts:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc)
