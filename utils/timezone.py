"""UTC-everywhere time handling. Eliminates timezone bugs at the source."""

from datetime import datetime, timezone


def now_utc() -> datetime:
    """
    Current time in UTC.

    Use this instead of datetime.now() everywhere.
    """
    return datetime.now(timezone.utc)


def to_utc(dt: datetime, field: str = "datetime") -> datetime:
    """
    Convert a datetime to UTC.

    Raises ValueError naming `field` if the datetime is naive (no timezone).
    A mechanic's "tomorrow at 9" only means something with an offset.
    """
    if dt.tzinfo is None:
        raise ValueError(
            f"{field} is naive; it must carry a timezone offset"
        )
    return dt.astimezone(timezone.utc)


def parse_iso(iso_string: str) -> datetime:
    """
    Parse ISO 8601 datetime string to UTC datetime.

    Raises ValueError if string has no timezone info.
    """
    dt = datetime.fromisoformat(iso_string)
    if dt.tzinfo is None:
        raise ValueError(
            "Cannot parse naive datetime string. "
            "Include timezone offset (e.g., 'Z' or '+00:00')."
        )
    return to_utc(dt)


def day_stamp(dt: datetime | None = None) -> str:
    """UTC calendar day as YYYYMMDD, used in invoice numbers."""
    return to_utc(dt or now_utc()).strftime("%Y%m%d")


def second_stamp(dt: datetime | None = None) -> str:
    """UTC time to the second as YYYYMMDDHHMMSS, used in transaction ids."""
    return to_utc(dt or now_utc()).strftime("%Y%m%d%H%M%S")
