from __future__ import annotations

from datetime import datetime, time, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

DEFAULT_REFERENCE_TIMEZONE = "Asia/Kolkata"


def resolve_timezone(name: str | None) -> tzinfo:
    try:
        return ZoneInfo((name or DEFAULT_REFERENCE_TIMEZONE).strip())
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo(DEFAULT_REFERENCE_TIMEZONE)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def reference_now(tz: tzinfo, now: datetime | None = None) -> datetime:
    current = now or utc_now()
    if current.tzinfo is None:
        current = current.replace(tzinfo=timezone.utc)
    return current.astimezone(tz)


def at_clock(day: datetime, hour: int, minute: int = 0, *, day_offset: int = 0) -> datetime:
    """Return ``day`` moved by ``day_offset`` days with the wall clock set to hour:minute."""
    target_date = day.date() + timedelta(days=day_offset)
    return datetime.combine(target_date, time(hour, minute), tzinfo=day.tzinfo)


def to_iso(value: datetime) -> str:
    return value.isoformat(timespec="seconds")


def parse_iso(value: str | None) -> datetime | None:
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
