"""Wall-clock helpers. All timestamps are stored as naive UTC."""
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current time as naive UTC, matching what DateTime columns return."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value):
    """Normalize an aware datetime to naive UTC; naive values are assumed UTC."""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value
