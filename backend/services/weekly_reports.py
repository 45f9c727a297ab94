"""
Field Reporting - Weekly report persistence

Reads and writes db.weekly_reports / db.users for the HTTP layer.
Every row written goes through services/weekly_report_rows.py first.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from config import db, now_iso
from models.user import UserRole
from models.weekly_report import WeeklyReportDocument, WorkflowStatus
from services.analytics_common import get_user_id
from services.event_logger import log_event
from services.week import get_week_from_key, get_week_parts
from services.weekly_report_rows import (
    build_default_actual_output_rows,
    build_default_planning_rows,
    ensure_week_rows,
    normalize_actual_output_rows,
    normalize_planning_rows,
)

logger = logging.getLogger("weekly_reports")

WORKFLOW_STATUS_VALUES = [s.value for s in WorkflowStatus]
STATUS_NOTE_MAX_LENGTH = 1000


class WeeklyReportValidationError(ValueError):
    """Rows or status rejected before any write"""
    pass


class WeekNotEditableError(ValueError):
    """Only the current IST week can be edited"""
    pass


def _check_editable_week(week_key: Optional[str], current_week: Dict[str, Any]):
    if week_key and week_key != current_week["key"]:
        raise WeekNotEditableError(
            f"Editing is only allowed for current IST week ({current_week['key']})"
        )


# ==================== READ ====================

async def fetch_users(salesman_ids: Optional[List[str]] = None) -> List[Dict[str, Any]]:
    """Users (salesmen + admins) sorted by name then email"""
    query = {"role": {"$in": [r.value for r in UserRole]}}
    if salesman_ids:
        query["id"] = {"$in": list(salesman_ids)}
    return await db.users.find(query, {"_id": 0}).sort([("name", 1), ("email", 1)]).to_list(10000)


async def fetch_admin_ids() -> List[str]:
    admins = await db.users.find({"role": UserRole.ADMIN.value}, {"_id": 0, "id": 1}).to_list(10000)
    return [get_user_id(a) for a in admins if get_user_id(a)]


async def fetch_reports_between(
    from_date: str,
    to_date: str,
    salesman_ids: Optional[List[str]] = None,
) -> List[Dict[str, Any]]:
    """
    Reports whose week overlaps [from_date, to_date].

    week_key is a Monday YYYY-MM-DD key, so the overlap is a plain string
    range from the Monday of from_date up to to_date.
    """
    first_week = get_week_from_key(from_date)
    query: Dict[str, Any] = {
        "week_key": {"$gte": first_week["key"] if first_week else from_date, "$lte": to_date}
    }
    if salesman_ids is not None:
        query["salesman_id"] = {"$in": list(salesman_ids)}
    return await db.weekly_reports.find(query, {"_id": 0}).to_list(100000)


async def fetch_all_reports(salesman_ids: Optional[List[str]] = None) -> List[Dict[str, Any]]:
    query = {} if salesman_ids is None else {"salesman_id": {"$in": list(salesman_ids)}}
    return await db.weekly_reports.find(query, {"_id": 0}).to_list(100000)


# ==================== CURRENT WEEK ====================

async def get_or_create_week_report(salesman_id: str, week: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Load the salesman's report for the week, creating it with 7 blank rows per grid"""
    week = week or get_week_parts()
    report = await db.weekly_reports.find_one(
        {"salesman_id": salesman_id, "week_key": week["key"]}, {"_id": 0}
    )

    if not report:
        now = now_iso()
        report = WeeklyReportDocument(
            id=str(uuid.uuid4()),
            salesman_id=salesman_id,
            week_key=week["key"],
            iso_week=week["iso_week"],
            week_start_date_utc=week["week_start_date_utc"].isoformat(),
            week_end_date_utc=week["week_end_date_utc"].isoformat(),
            planning_rows=build_default_planning_rows(week),
            actual_output_rows=build_default_actual_output_rows(week),
            current_status=WorkflowStatus.NOT_STARTED.value,
            created_at=now,
            updated_at=now,
        ).model_dump()
        await db.weekly_reports.insert_one(dict(report))
        logger.info(f"[REPORTS] Created week {week['key']} for salesman {salesman_id}")
        return report

    # Anciens documents sans id: on en pose un, les écritures suivantes filtrent dessus
    if not report.get("id"):
        report["id"] = str(uuid.uuid4())
        await db.weekly_reports.update_one(
            {"salesman_id": salesman_id, "week_key": week["key"]},
            {"$set": {"id": report["id"]}}
        )
        logger.warning(f"[REPORTS] Report {week['key']} of salesman {salesman_id} had no id, assigned {report['id']}")

    if ensure_week_rows(report, week):
        await db.weekly_reports.update_one(
            {"id": report["id"]},
            {"$set": {
                "planning_rows": report["planning_rows"],
                "actual_output_rows": report["actual_output_rows"],
                "updated_at": now_iso(),
            }}
        )
        logger.info(f"[REPORTS] Repaired rows of report {report['id']}")

    return report


def build_salesman_week_response(report: Dict[str, Any], week: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "week": {
            "key": week["key"],
            "start_date": week["start_date"],
            "end_date": week["end_date"],
            "iso_week": week["iso_week"],
            "timezone": week["timezone"],
            "is_editable": True,
        },
        "planning": {
            "rows": report.get("planning_rows") or [],
            "submitted_at": report.get("planning_submitted_at"),
        },
        "actual_output": {
            "rows": report.get("actual_output_rows") or [],
            "updated_at": report.get("actual_output_updated_at"),
        },
        "status": {
            "value": report.get("current_status") or WorkflowStatus.NOT_STARTED.value,
            "note": report.get("status_note") or "",
            "updated_at": report.get("status_updated_at"),
        },
    }


# ==================== WRITES ====================

async def save_planning_rows(
    salesman_id: str,
    rows: Any,
    week_key: Optional[str] = None,
    submitted: bool = False,
) -> Dict[str, Any]:
    """
    Validate then store the planning grid of the current IST week.

    Raises:
        WeekNotEditableError if week_key is not the current week
        WeeklyReportValidationError if the rows are rejected
    """
    week = get_week_parts()
    _check_editable_week(week_key, week)

    report = await get_or_create_week_report(salesman_id, week)
    existing = {row["date"]: row for row in report.get("planning_rows") or [] if isinstance(row, dict)}

    result = normalize_planning_rows(
        rows,
        week,
        allowed_admin_ids=await fetch_admin_ids(),
        existing_rows_by_date=existing,
        allow_legacy_unchanged=True,
    )
    if "error" in result:
        raise WeeklyReportValidationError(result["error"])

    now = now_iso()
    update_data = {"planning_rows": result["rows"], "updated_at": now}
    if submitted is True:
        update_data["planning_submitted_at"] = now

    await db.weekly_reports.update_one({"id": report["id"]}, {"$set": update_data})
    await log_event(
        action="planning_saved",
        entity_type="weekly_report",
        entity_id=report["id"],
        user=salesman_id,
        details={"week_key": week["key"], "submitted": submitted is True},
    )

    return {
        "planning": {
            "rows": result["rows"],
            "submitted_at": update_data.get("planning_submitted_at", report.get("planning_submitted_at")),
        }
    }


async def save_actual_output_rows(
    salesman_id: str,
    rows: Any,
    week_key: Optional[str] = None,
) -> Dict[str, Any]:
    week = get_week_parts()
    _check_editable_week(week_key, week)

    report = await get_or_create_week_report(salesman_id, week)
    existing = {row["date"]: row for row in report.get("actual_output_rows") or [] if isinstance(row, dict)}

    result = normalize_actual_output_rows(
        rows,
        week,
        existing_rows_by_date=existing,
        allow_legacy_unchanged=True,
    )
    if "error" in result:
        raise WeeklyReportValidationError(result["error"])

    now = now_iso()
    await db.weekly_reports.update_one(
        {"id": report["id"]},
        {"$set": {"actual_output_rows": result["rows"], "actual_output_updated_at": now, "updated_at": now}}
    )
    await log_event(
        action="actual_output_saved",
        entity_type="weekly_report",
        entity_id=report["id"],
        user=salesman_id,
        details={"week_key": week["key"]},
    )

    return {"actual_output": {"rows": result["rows"], "updated_at": now}}


async def save_current_status(
    salesman_id: str,
    status: Any,
    note: Any = "",
    week_key: Optional[str] = None,
) -> Dict[str, Any]:
    """Self-reported workflow status of the current week (not read by analytics)"""
    week = get_week_parts()
    _check_editable_week(week_key, week)

    if status not in WORKFLOW_STATUS_VALUES:
        raise WeeklyReportValidationError(
            f"Invalid status. Allowed values: {', '.join(WORKFLOW_STATUS_VALUES)}"
        )
    status_note = str(note or "").strip()[:STATUS_NOTE_MAX_LENGTH]

    report = await get_or_create_week_report(salesman_id, week)
    now = now_iso()
    await db.weekly_reports.update_one(
        {"id": report["id"]},
        {"$set": {
            "current_status": status,
            "status_note": status_note,
            "status_updated_at": now,
            "updated_at": now,
        }}
    )
    await log_event(
        action="status_updated",
        entity_type="weekly_report",
        entity_id=report["id"],
        user=salesman_id,
        details={"week_key": week["key"], "status": status},
    )

    return {"status": {"value": status, "note": status_note, "updated_at": now}}
