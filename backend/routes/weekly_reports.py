"""
Field Reporting - Routes Weekly Reports (salesman grids, current IST week only)
"""

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel
from typing import Optional

from models.weekly_report import ActualOutputRowsUpdate, PlanningRowsUpdate
from services.week import get_week_parts
from services.weekly_reports import (
    WeekNotEditableError,
    WeeklyReportValidationError,
    build_salesman_week_response,
    get_or_create_week_report,
    save_actual_output_rows,
    save_current_status,
    save_planning_rows,
)

router = APIRouter(prefix="/weekly-reports", tags=["WeeklyReports"])


class CurrentStatusUpdate(BaseModel):
    week_key: Optional[str] = None
    status: str
    note: str = ""


def _to_http(e: ValueError) -> HTTPException:
    if isinstance(e, WeekNotEditableError):
        return HTTPException(status_code=403, detail=str(e))
    return HTTPException(status_code=400, detail=str(e))


@router.get("/{salesman_id}/current")
async def get_current_week(salesman_id: str):
    """Rapport de la semaine IST en cours (créé si absent)"""
    week = get_week_parts()
    report = await get_or_create_week_report(salesman_id, week)
    return build_salesman_week_response(report, week)


@router.put("/{salesman_id}/planning")
async def update_planning(salesman_id: str, data: PlanningRowsUpdate):
    try:
        return await save_planning_rows(salesman_id, data.rows, data.week_key, data.submitted)
    except (WeekNotEditableError, WeeklyReportValidationError) as e:
        raise _to_http(e)


@router.put("/{salesman_id}/actual-output")
async def update_actual_output(salesman_id: str, data: ActualOutputRowsUpdate):
    try:
        return await save_actual_output_rows(salesman_id, data.rows, data.week_key)
    except (WeekNotEditableError, WeeklyReportValidationError) as e:
        raise _to_http(e)


@router.put("/{salesman_id}/current-status")
async def update_current_status(salesman_id: str, data: CurrentStatusUpdate):
    try:
        return await save_current_status(salesman_id, data.status, data.note, data.week_key)
    except (WeekNotEditableError, WeeklyReportValidationError) as e:
        raise _to_http(e)
