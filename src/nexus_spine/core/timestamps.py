"""
UTC timestamp utilities.

Every record the pipeline produces carries a ``fetchedAt`` stamp and every
content row a ``refreshed_at``. They all come from here so the format
(ISO-8601, ``Z`` suffix, millisecond precision) is the same everywhere.
"""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def to_iso8601(dt: datetime) -> str:
    """Serialize a datetime as ISO-8601 with a ``Z`` suffix.

    Naive datetimes are assumed to already be UTC.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def from_iso8601(value: str) -> datetime:
    """Parse an ISO-8601 string (``Z`` or offset suffix) to an aware datetime."""
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt
