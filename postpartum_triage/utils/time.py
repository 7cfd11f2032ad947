"""Time and datetime utilities."""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Get current UTC datetime.

    Returns:
        Current datetime in UTC timezone
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_datetime(dt_str: str) -> datetime:
    """Parse ISO datetime string.

    Args:
        dt_str: ISO format datetime string

    Returns:
        Parsed datetime object in UTC

    Raises:
        ValueError: If the string is not a recognised ISO 8601 timestamp
    """
    formats = [
        "%Y-%m-%dT%H:%M:%SZ",
        "%Y-%m-%dT%H:%M:%S.%fZ",
        "%Y-%m-%dT%H:%M:%S%z",
        "%Y-%m-%dT%H:%M:%S.%f%z",
    ]

    value = dt_str.strip()
    for fmt in formats:
        try:
            return ensure_utc(datetime.strptime(value, fmt))
        except ValueError:
            continue

    # Dates, minute precision and other ISO variants
    try:
        return ensure_utc(datetime.fromisoformat(value))
    except ValueError:
        pass

    raise ValueError(f"Could not parse datetime: {dt_str}")
