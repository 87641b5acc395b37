"""Time utilities."""
from datetime import UTC, datetime, timedelta


def utcnow() -> datetime:
    """Return current UTC time with timezone awareness."""

    return datetime.now(tz=UTC)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops the offset on read)."""

    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def minutes_ago(minutes: int, *, now: datetime | None = None) -> datetime:
    return (now or utcnow()) - timedelta(minutes=minutes)


__all__ = ["utcnow", "ensure_utc", "minutes_ago"]
