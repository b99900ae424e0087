"""Small date/time helpers used by the scheduling views."""
from __future__ import annotations
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from . import config
from .normalize import parse_instant

VIEWS = ("day", "week", "month", "agenda")


def clinic_tz() -> ZoneInfo:
    return ZoneInfo(config.TIMEZONE)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_local(value, tz: ZoneInfo | None = None) -> datetime:
    return parse_instant(value).astimezone(tz or clinic_tz())


def format_time(value, tz: ZoneInfo | None = None) -> str:
    """``09:30``"""
    return to_local(value, tz).strftime("%H:%M")


def format_date(value, tz: ZoneInfo | None = None) -> str:
    """``Mon, Mar 03``"""
    return to_local(value, tz).strftime("%a, %b %d")


def format_range(start, end, tz: ZoneInfo | None = None) -> str:
    return f"{format_date(start, tz)} {format_time(start, tz)}-{format_time(end, tz)}"


def is_past(value, now: datetime | None = None) -> bool:
    return parse_instant(value) < (now or utcnow())


def same_instant(a, b) -> bool:
    """Equal to the second; sub-second noise from the wire is ignored."""
    return parse_instant(a).replace(microsecond=0) == parse_instant(b).replace(microsecond=0)


def calculate_end_time(start, minutes: int) -> datetime:
    return parse_instant(start) + timedelta(minutes=minutes)


def within_business_hours(start, end, tz: ZoneInfo | None = None) -> bool:
    """Both ends fall on the same local day between the configured opening and closing hours."""
    local_start, local_end = to_local(start, tz), to_local(end, tz)
    opening = time(config.BUSINESS_HOURS_START)
    if local_start.time() < opening:
        return False
    closing = local_start.replace(hour=config.BUSINESS_HOURS_END, minute=0, second=0, microsecond=0)
    return local_end <= closing


def start_of_day(day: date | datetime, tz: ZoneInfo | None = None) -> datetime:
    tz = tz or clinic_tz()
    if isinstance(day, datetime):
        day = to_local(day, tz).date()
    return datetime.combine(day, time.min, tzinfo=tz)


def date_range_for_view(anchor: date | datetime, view: str, tz: ZoneInfo | None = None, now: datetime | None = None):
    """Return the ``(start, end)`` instants a calendar view covers.

    Weeks start on Sunday. The agenda view spans the next 30 days from now.
    """
    if view not in VIEWS:
        raise ValueError(f"unknown calendar view {view!r}")
    tz = tz or clinic_tz()
    if view == "agenda":
        start = now or utcnow()
        return start, start + timedelta(days=30)

    day = start_of_day(anchor, tz)
    if view == "day":
        start, days = day, 1
    elif view == "week":
        # isoweekday: Monday=1 .. Sunday=7
        start, days = day - timedelta(days=day.isoweekday() % 7), 7
    else:
        start = day.replace(day=1)
        nxt = (start + timedelta(days=32)).replace(day=1)
        days = (nxt - start).days
    end = start + timedelta(days=days) - timedelta(milliseconds=1)
    return start, end
