"""
Field Reporting - Range resolvers

Translate an analytics query ({week, month, from, to}) into a closed interval.
Precedence: week > month > from/to > default lookback.

Two shapes:
- date ranges (stages 1 and 3): {from_date, to_date, mode, label, timezone}
- week ranges (insights, stages 4 and 5): {from_week, to_week, weeks, timezone}

Invalid input returns {"error": msg}; nothing here raises.
"""

import re
from datetime import date, datetime, timedelta
from typing import Any, Dict, Optional

from services.week import (
    IST_TIME_ZONE,
    format_date_key,
    get_week_from_key,
    get_week_parts,
    parse_date_key,
    resolve_week_from_query,
    shift_week,
)

MAX_RANGE_DAYS = 370
DEFAULT_LOOKBACK_DAYS = 83
MAX_RANGE_WEEKS = 52
DEFAULT_LOOKBACK_WEEKS = 12

MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")

WEEK_QUERY_ERROR = "Invalid week query. Use YYYY-Www (example: 2026-W07) or YYYY-MM-DD"
MONTH_QUERY_ERROR = "Invalid month query. Use YYYY-MM (example: 2026-02)"
FROM_QUERY_ERROR = "Invalid from query. Use YYYY-Www (example: 2026-W07) or YYYY-MM-DD"
TO_QUERY_ERROR = "Invalid to query. Use YYYY-Www (example: 2026-W07) or YYYY-MM-DD"
ORDER_ERROR = "Invalid range: from must be less than or equal to to"


def _raw(query: Optional[Dict[str, Any]], key: str) -> str:
    value = (query or {}).get(key)
    return "" if value is None else str(value).strip()


def resolve_month(raw_month: str) -> Optional[Dict[str, str]]:
    """First and last day of a YYYY-MM month (leap Februaries included)"""
    match = MONTH_RE.match(raw_month or "")
    if not match:
        return None
    year, month = int(match.group(1)), int(match.group(2))
    if month < 1 or month > 12:
        return None

    first_day = date(year, month, 1)
    next_month = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
    return {
        "from_date": format_date_key(first_day),
        "to_date": format_date_key(next_month - timedelta(days=1)),
    }


# ════════════════════════════════════════════════════════════════════════════
# DATE RANGES (stages 1, 3)
# ════════════════════════════════════════════════════════════════════════════

def _bound(raw: str, edge: str) -> Optional[str]:
    """A date key is used as-is; an ISO week gives its Monday (from) or Sunday (to)"""
    if parse_date_key(raw) is not None:
        return raw
    week = resolve_week_from_query(raw)
    return week[edge] if week else None


def resolve_date_range(
    query: Optional[Dict[str, Any]],
    max_days: int = MAX_RANGE_DAYS,
    lookback_days: int = DEFAULT_LOOKBACK_DAYS,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    raw_week = _raw(query, "week")
    if raw_week:
        week = resolve_week_from_query(raw_week)
        if not week:
            return {"error": WEEK_QUERY_ERROR}
        return {
            "from_date": week["start_date"],
            "to_date": week["end_date"],
            "mode": "week",
            "label": week["iso_week"],
            "timezone": IST_TIME_ZONE,
        }

    raw_month = _raw(query, "month")
    if raw_month:
        month = resolve_month(raw_month)
        if not month:
            return {"error": MONTH_QUERY_ERROR}
        return {**month, "mode": "month", "label": raw_month, "timezone": IST_TIME_ZONE}

    raw_from = _raw(query, "from")
    raw_to = _raw(query, "to")

    to_date = _bound(raw_to, "end_date") if raw_to else get_week_parts(now)["end_date"]
    if not to_date:
        return {"error": TO_QUERY_ERROR}

    if raw_from:
        from_date = _bound(raw_from, "start_date")
    else:
        from_date = format_date_key(parse_date_key(to_date) - timedelta(days=lookback_days))
    if not from_date:
        return {"error": FROM_QUERY_ERROR}

    if from_date > to_date:
        return {"error": ORDER_ERROR}

    span_days = (parse_date_key(to_date) - parse_date_key(from_date)).days + 1
    if span_days > max_days:
        return {"error": f"Invalid range: maximum supported range is {max_days} days"}

    return {
        "from_date": from_date,
        "to_date": to_date,
        "mode": "range",
        "label": f"{from_date}..{to_date}",
        "timezone": IST_TIME_ZONE,
    }


def resolve_stage1_range(query: Optional[Dict[str, Any]], now: Optional[datetime] = None) -> Dict[str, Any]:
    return resolve_date_range(query, now=now)


def resolve_stage3_range(query: Optional[Dict[str, Any]], now: Optional[datetime] = None) -> Dict[str, Any]:
    return resolve_date_range(query, now=now)


# ════════════════════════════════════════════════════════════════════════════
# WEEK RANGES (insights, stages 4, 5)
# ════════════════════════════════════════════════════════════════════════════

def resolve_week_range(
    query: Optional[Dict[str, Any]],
    max_weeks: int = MAX_RANGE_WEEKS,
    lookback_weeks: int = DEFAULT_LOOKBACK_WEEKS,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    raw_week = _raw(query, "week")
    raw_month = _raw(query, "month")

    if raw_week:
        from_week = to_week = resolve_week_from_query(raw_week)
        if not from_week:
            return {"error": WEEK_QUERY_ERROR}
    elif raw_month:
        month = resolve_month(raw_month)
        if not month:
            return {"error": MONTH_QUERY_ERROR}
        from_week = get_week_from_key(month["from_date"])
        to_week = get_week_from_key(month["to_date"])
    else:
        raw_from = _raw(query, "from")
        raw_to = _raw(query, "to")

        to_week = resolve_week_from_query(raw_to) if raw_to else get_week_parts(now)
        if not to_week:
            return {"error": TO_QUERY_ERROR}

        if raw_from:
            from_week = resolve_week_from_query(raw_from)
            if not from_week:
                return {"error": FROM_QUERY_ERROR}
        else:
            from_week = shift_week(to_week, -(lookback_weeks - 1))

    if from_week["key"] > to_week["key"]:
        return {"error": ORDER_ERROR}

    weeks = []
    cursor = from_week
    while cursor["key"] <= to_week["key"]:
        weeks.append(cursor["key"])
        cursor = shift_week(cursor, 1)

    if len(weeks) > max_weeks:
        return {"error": f"Invalid range: maximum supported range is {max_weeks} weeks"}

    return {
        "from_week": from_week,
        "to_week": to_week,
        "weeks": weeks,
        "timezone": IST_TIME_ZONE,
    }


def resolve_insights_range(query: Optional[Dict[str, Any]], now: Optional[datetime] = None) -> Dict[str, Any]:
    return resolve_week_range(query, now=now)


def resolve_stage4_range(query: Optional[Dict[str, Any]], now: Optional[datetime] = None) -> Dict[str, Any]:
    return resolve_week_range(query, now=now)


def resolve_stage5_range(query: Optional[Dict[str, Any]], now: Optional[datetime] = None) -> Dict[str, Any]:
    return resolve_week_range(query, now=now)


def week_range_bounds(range_: Dict[str, Any]) -> Dict[str, str]:
    """Date bounds of a week range: from Monday of the first week to Sunday of the last"""
    return {
        "from_date": range_["from_week"]["start_date"],
        "to_date": range_["to_week"]["end_date"],
    }


# ════════════════════════════════════════════════════════════════════════════
# STAGE 2 (single week)
# ════════════════════════════════════════════════════════════════════════════

def resolve_stage2_range(query: Optional[Dict[str, Any]], now: Optional[datetime] = None) -> Dict[str, Any]:
    week = resolve_week_from_query(_raw(query, "week"), now=now)
    if not week:
        return {"error": WEEK_QUERY_ERROR}
    return week
