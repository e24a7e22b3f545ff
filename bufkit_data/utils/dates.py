"""
Date/time helpers.

The index stores naive UTC timestamps; everything entering the archive is
normalized here first.
"""

from __future__ import annotations

from datetime import datetime, timezone

# Accepted by parse_datetime, tried in order.
DATETIME_FORMATS = (
    "%Y-%m-%dT%H:%M:%S",
    "%Y-%m-%dT%H:%M",
    "%Y-%m-%dT%H",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d %H",
    "%Y-%m-%d",
    "%Y%m%d%HZ",
    "%Y%m%d%H",
)


def to_naive_utc(dt: datetime) -> datetime:
    """Convert a datetime to naive UTC.

    Naive values are assumed to already be UTC.
    """
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def parse_datetime(value: str) -> datetime:
    """Parse a user supplied UTC date/time string.

    Args:
        value: e.g. "2017-04-01 18", "2017040118Z" or ISO format

    Returns:
        Naive UTC datetime

    Raises:
        ValueError: If no known format matches
    """
    text = value.strip()
    for fmt in DATETIME_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    try:
        return to_naive_utc(datetime.fromisoformat(text))
    except ValueError:
        raise ValueError(f"Unrecognized date/time: {value!r}") from None


def bufkit_time(value: str) -> datetime:
    """Parse a bufkit ``YYMMDD/HHMM`` time stamp."""
    return datetime.strptime(value, "%y%m%d/%H%M")
