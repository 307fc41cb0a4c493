"""
UTC timestamp utilities for keyspace-migrator.

All timestamps written to the migration log and the lease table are UTC with
explicit timezone markers. Naive datetimes are rejected at the boundary so
that lease expiry comparisons never mix local and UTC clocks.

This module provides:
- utc_now(): Current time as timezone-aware datetime
- utc_timestamp(): ISO 8601 timestamp string with 'Z' suffix
- format_timestamp(): Render an aware datetime in the stored format
- parse_timestamp(): Parse a stored timestamp back into a datetime

Examples:
    >>> from keyspace_migrator.utils.time import utc_now, format_timestamp
    >>> format_timestamp(utc_now())
    '2025-11-02T08:30:45.123456Z'
"""

from datetime import UTC, datetime

# Microsecond precision keeps lexicographic order equal to chronological order
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_now() -> datetime:
    """
    Return current time in UTC with timezone info.

    This is the canonical clock for the code base; tests freeze it with
    freezegun.

    Returns:
        datetime: Current UTC time with tzinfo=UTC
    """
    return datetime.now(UTC)


def utc_timestamp() -> str:
    """
    Return the current time as an ISO 8601 string with 'Z' suffix.

    Example:
        >>> utc_timestamp()
        '2025-11-02T08:30:45.000000Z'
    """
    return format_timestamp(utc_now())


def format_timestamp(dt: datetime) -> str:
    """
    Format a timezone-aware datetime as a stored timestamp string.

    Args:
        dt: Timezone-aware datetime (any zone, converted to UTC)

    Returns:
        str: Timestamp in TIMESTAMP_FORMAT

    Raises:
        ValueError: If dt is naive
    """
    if dt.tzinfo is None:
        raise ValueError(
            "Datetime must be timezone-aware (use UTC). "
            "Got naive datetime. Use utc_now() or ensure dt has tzinfo set."
        )
    return dt.astimezone(UTC).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(timestamp_str: str) -> datetime:
    """
    Parse a stored ISO 8601 timestamp string to a timezone-aware datetime.

    Accepts both second and microsecond precision, as long as the string
    carries the 'Z' suffix.

    Args:
        timestamp_str: ISO 8601 timestamp string ending with 'Z'

    Returns:
        datetime: Timezone-aware datetime in UTC

    Raises:
        ValueError: If timestamp doesn't end with 'Z' or has invalid format

    Examples:
        >>> parse_timestamp('2025-11-02T08:30:45Z').year
        2025
        >>> parse_timestamp('2025-11-02T08:30:45')
        Traceback (most recent call last):
        ...
        ValueError: Timestamp must end with 'Z' (UTC): 2025-11-02T08:30:45
    """
    if not timestamp_str.endswith("Z"):
        raise ValueError(f"Timestamp must end with 'Z' (UTC): {timestamp_str}")

    try:
        return datetime.fromisoformat(timestamp_str.replace("Z", "+00:00"))
    except ValueError as e:
        raise ValueError(f"Invalid ISO 8601 timestamp format: {timestamp_str}") from e


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to a naive datetime returned by a driver, or convert to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)
