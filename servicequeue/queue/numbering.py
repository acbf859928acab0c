from __future__ import annotations

from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo


def format_display_no(code: str, number: int, *, width: int = 3) -> str:
    """Human-facing ticket label, e.g. ``A007``."""

    return f"{code}{number:0{width}d}"


def local_day_window(now: datetime, tz_name: str) -> tuple[datetime, datetime, date]:
    """Return the UTC bounds of the local day containing ``now`` and that local date.

    The window runs from local midnight to 23:59:59.999 inclusive.
    """

    zone = ZoneInfo(tz_name)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local_now = now.astimezone(zone)
    local_day = local_now.date()
    start = datetime.combine(local_day, time.min, tzinfo=zone)
    end = datetime.combine(local_day, time(23, 59, 59, 999000), tzinfo=zone)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc), local_day


def as_aware(value: datetime, tz_name: str) -> datetime:
    """Interpret a naive ``value`` as local time in ``tz_name``."""

    if value.tzinfo is None:
        return value.replace(tzinfo=ZoneInfo(tz_name))
    return value
