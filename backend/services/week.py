"""
Field Reporting - Week kernel (IST)

All weeks are Monday-anchored and computed against the Asia/Kolkata calendar.
A week descriptor is a plain dict:

    {
        "key": "2026-02-09",            # Monday date key
        "start_date": "2026-02-09",
        "end_date": "2026-02-15",
        "week_start_date_utc": datetime(2026, 2, 9, tzinfo=UTC),
        "week_end_date_utc": datetime(2026, 2, 15, tzinfo=UTC),
        "iso_week": "2026-W07",
        "timezone": "Asia/Kolkata",
    }
"""

import re
from datetime import date, datetime, timedelta, timezone
from typing import Optional, Dict, Any, List, Union

import pytz

IST_TIME_ZONE = "Asia/Kolkata"
IST_TZ = pytz.timezone(IST_TIME_ZONE)

DATE_KEY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
ISO_WEEK_RE = re.compile(r"^(\d{4})-W(\d{2})$")


def _as_date(value: Union[date, datetime]) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def format_date_key(value: Union[date, datetime]) -> str:
    """YYYY-MM-DD of a date (datetimes use their own calendar fields)"""
    return _as_date(value).strftime("%Y-%m-%d")


def parse_date_key(date_key: str) -> Optional[date]:
    """Strict YYYY-MM-DD parse; rejects impossible dates like 2026-02-30"""
    if not isinstance(date_key, str) or not DATE_KEY_RE.match(date_key):
        return None
    try:
        return datetime.strptime(date_key, "%Y-%m-%d").date()
    except ValueError:
        return None


def get_iso_week_string(value: Union[date, datetime]) -> str:
    """
    ISO-8601 week label (YYYY-Www).

    The date is shifted to the Thursday of its ISO week; that Thursday's year
    owns the week, and the week number counts 7-day blocks from January 1st.
    """
    day = _as_date(value)
    thursday = day + timedelta(days=3 - day.weekday())
    week_number = (thursday - date(thursday.year, 1, 1)).days // 7 + 1
    return f"{thursday.year}-W{week_number:02d}"


def get_iso_week_number(value: Union[date, datetime]) -> int:
    return int(get_iso_week_string(value).split("-W")[1])


def _utc_midnight(day: date) -> datetime:
    return datetime(day.year, day.month, day.day, tzinfo=timezone.utc)


def week_from_monday(monday: date) -> Dict[str, Any]:
    sunday = monday + timedelta(days=6)
    return {
        "key": format_date_key(monday),
        "start_date": format_date_key(monday),
        "end_date": format_date_key(sunday),
        "week_start_date_utc": _utc_midnight(monday),
        "week_end_date_utc": _utc_midnight(sunday),
        "iso_week": get_iso_week_string(monday),
        "timezone": IST_TIME_ZONE,
    }


def ist_today(instant: Optional[datetime] = None) -> date:
    """IST calendar date of an instant (naive datetimes are taken as UTC)"""
    if instant is None:
        instant = datetime.now(timezone.utc)
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(IST_TZ).date()


def get_week_parts(instant: Optional[datetime] = None) -> Dict[str, Any]:
    """Week descriptor of the IST week containing the instant (default: now)"""
    local_day = ist_today(instant)
    # weekday(): Monday=0 .. Sunday=6, so Sunday steps back 6 days
    monday = local_day - timedelta(days=local_day.weekday())
    return week_from_monday(monday)


def get_week_from_key(date_key: str) -> Optional[Dict[str, Any]]:
    """
    Week descriptor from a YYYY-MM-DD key.
    A non-Monday key resolves to the week that contains it.
    """
    day = parse_date_key(date_key or "")
    if day is None:
        return None
    return week_from_monday(day - timedelta(days=day.weekday()))


def get_week_from_iso_week(iso_week: str) -> Optional[Dict[str, Any]]:
    """Week descriptor from YYYY-Www; week 53 only exists for long ISO years"""
    match = ISO_WEEK_RE.match(iso_week or "")
    if not match:
        return None

    year, week_number = int(match.group(1)), int(match.group(2))
    if week_number < 1 or week_number > 53:
        return None

    jan4 = date(year, 1, 4)
    week1_monday = jan4 - timedelta(days=jan4.weekday())
    monday = week1_monday + timedelta(weeks=week_number - 1)

    if get_iso_week_string(monday) != iso_week:
        return None

    return week_from_monday(monday)


def resolve_week_from_query(raw: Optional[str], now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
    """
    ISO week first, then date key; blank input means the current IST week.
    Returns None when the input cannot be parsed.
    """
    if not isinstance(raw, str) or not raw.strip():
        return get_week_parts(now)

    trimmed = raw.strip()
    return get_week_from_iso_week(trimmed) or get_week_from_key(trimmed)


def build_week_dates(week: Dict[str, Any]) -> List[str]:
    """The 7 date keys of a week, Monday first"""
    monday = parse_date_key(week["start_date"])
    return [format_date_key(monday + timedelta(days=offset)) for offset in range(7)]


def shift_week(week: Dict[str, Any], weeks: int) -> Dict[str, Any]:
    monday = parse_date_key(week["start_date"])
    return week_from_monday(monday + timedelta(weeks=weeks))
