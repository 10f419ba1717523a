from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_date(value: Optional[str]) -> Optional[date]:
    """
    Parse "YYYY-MM-DD" (or a full ISO datetime, whose date part is used).

    - None / "" -> None
    - Raises ValueError on malformed input
    """
    if value is None:
        return None
    s = value.strip()
    if not s:
        return None
    if len(s) == 10:
        return date.fromisoformat(s)
    return datetime.fromisoformat(s.replace("Z", "+00:00")).date()


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def get_zone(timezone_name: Optional[str]) -> ZoneInfo:
    """Resolve an IANA zone name, falling back to UTC for blank or unknown names."""
    if not timezone_name:
        return ZoneInfo("UTC")
    try:
        return ZoneInfo(timezone_name)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


def business_date(value: date | datetime | None, timezone_name: Optional[str]) -> date:
    """
    Normalize a request date to the branch's calendar day.

    - None -> today in the branch timezone
    - date -> unchanged
    - naive datetime -> treated as UTC, then projected into the branch timezone
    """
    zone = get_zone(timezone_name)
    if value is None:
        return datetime.now(zone).date()
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(zone).date()
    return value


def day_bounds(day: date, timezone_name: Optional[str]) -> tuple[datetime, datetime]:
    """
    Local midnight to local 23:59:59.999999 of `day`, as UTC-naive datetimes.

    Both bounds are inclusive.
    """
    zone = get_zone(timezone_name)
    start_local = datetime.combine(day, time.min, tzinfo=zone)
    end_local = datetime.combine(day, time.max, tzinfo=zone)
    return (
        start_local.astimezone(timezone.utc).replace(tzinfo=None),
        end_local.astimezone(timezone.utc).replace(tzinfo=None),
    )
