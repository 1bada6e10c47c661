"""
Time helpers.

All timestamps are stored as naive UTC datetimes.
"""
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize an aware datetime to naive UTC; naive values are assumed UTC."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def parse_timestamp(value) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp as sent in Shopify payloads."""
    if not value:
        return None
    if isinstance(value, datetime):
        return to_naive_utc(value)
    text = str(value).strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    try:
        return to_naive_utc(datetime.fromisoformat(text))
    except ValueError:
        return None


def isoformat(value: Optional[datetime]) -> Optional[str]:
    """Serialize a naive UTC datetime with an explicit Z suffix."""
    if value is None:
        return None
    return to_naive_utc(value).isoformat() + 'Z'
