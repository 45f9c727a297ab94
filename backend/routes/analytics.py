"""
Field Reporting - Routes Analytics (admin dashboards)

Each route: resolve range -> load users/reports -> pure builder -> payload.
A resolver {"error"} becomes a 400.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Query

import config
from models.exception_case import StatusTransitionRequest
from services.analytics_common import add_days, build_user_directory, parse_id_list
from services.exception_cases import (
    ExceptionCaseNotFoundError,
    ExceptionTransitionError,
    list_exception_cases,
    sync_exception_candidates,
    transition_exception_status,
)
from services.jsv_repeat_alerts import build_inactive_alert, build_jsv_repeat_alerts_by_salesman
from services.ranges import (
    resolve_insights_range,
    resolve_stage1_range,
    resolve_stage2_range,
    resolve_stage3_range,
    resolve_stage4_range,
    resolve_stage5_range,
    week_range_bounds,
)
from services.admin_insights import build_insights_payload
from services.stage1_plan_actual import build_stage1_payload
from services.stage2_activity_compliance import ActivityTargets, build_stage2_payload
from services.stage3_planned_not_visited import RECURRENCE_WINDOW_WEEKS, build_stage3_payload
from services.stage4_enquiry_effectiveness import build_stage4_payload
from services.stage5_exception_quality import (
    build_stage5_candidates,
    build_stage5_filter_options,
    build_stage5_payload,
)
from services.weekly_reports import fetch_all_reports, fetch_reports_between, fetch_users

logger = logging.getLogger("routes.analytics")

router = APIRouter(prefix="/admin", tags=["Analytics"])


def _range_or_400(range_: Dict[str, Any]) -> Dict[str, Any]:
    if "error" in range_:
        raise HTTPException(status_code=400, detail=range_["error"])
    return range_


def _range_query(week, month, from_, to) -> Dict[str, Any]:
    return {"week": week, "month": month, "from": from_, "to": to}


# ==================== STAGE 1 ====================

@router.get("/stage1")
async def stage1_plan_actual(
    week: Optional[str] = None,
    month: Optional[str] = None,
    from_: Optional[str] = Query(None, alias="from"),
    to: Optional[str] = None,
    salesmen: Optional[str] = None,
    call_type: Optional[str] = None,
    customer_type: Optional[str] = None,
    main_team: Optional[str] = None,
    team: Optional[str] = None,
    sub_team: Optional[str] = None,
):
    """Plan vs actual sur une plage de dates"""
    range_ = _range_or_400(resolve_stage1_range(_range_query(week, month, from_, to)))

    users = await fetch_users()
    reports = await fetch_reports_between(range_["from_date"], range_["to_date"])

    return build_stage1_payload(users, reports, range_, {
        "salesmen": salesmen,
        "call_type": call_type,
        "customer_type": customer_type,
        "main_team": main_team,
        "team": team,
        "sub_team": sub_team,
    })


# ==================== STAGE 2 ====================

@router.get("/stage2")
async def stage2_activity_compliance(
    week: Optional[str] = None,
    salesmen: Optional[str] = None,
    main_team: Optional[str] = None,
    team: Optional[str] = None,
    sub_team: Optional[str] = None,
):
    """Conformité d'activité d'une semaine (commerciaux + admins JSV)"""
    week_ = _range_or_400(resolve_stage2_range({"week": week}))

    users = await fetch_users()
    reports = await fetch_reports_between(week_["start_date"], week_["end_date"])

    return build_stage2_payload(
        users,
        reports,
        week_,
        {"salesmen": salesmen, "main_team": main_team, "team": team, "sub_team": sub_team},
        targets=ActivityTargets(admin_jsv_count=config.ADMIN_JSV_WEEKLY_TARGET),
    )


# ==================== STAGE 3 ====================

@router.get("/stage3")
async def stage3_planned_not_visited(
    week: Optional[str] = None,
    month: Optional[str] = None,
    from_: Optional[str] = Query(None, alias="from"),
    to: Optional[str] = None,
    salesmen: Optional[str] = None,
    reason_category: Optional[str] = None,
    customer: Optional[str] = None,
    main_team: Optional[str] = None,
    team: Optional[str] = None,
    sub_team: Optional[str] = None,
):
    """Planifié mais non visité, avec récurrence sur 8 semaines"""
    range_ = _range_or_400(resolve_stage3_range(_range_query(week, month, from_, to)))

    users = await fetch_users()
    # La fenêtre de récurrence remonte avant from_date
    recurrence_from = add_days(range_["from_date"], -RECURRENCE_WINDOW_WEEKS * 7)
    reports = await fetch_reports_between(recurrence_from, range_["to_date"])

    return build_stage3_payload(users, reports, range_, {
        "salesmen": salesmen,
        "reason_category": reason_category,
        "customer": customer,
        "main_team": main_team,
        "team": team,
        "sub_team": sub_team,
    })


# ==================== STAGE 4 ====================

@router.get("/stage4")
async def stage4_enquiry_effectiveness(
    week: Optional[str] = None,
    month: Optional[str] = None,
    from_: Optional[str] = Query(None, alias="from"),
    to: Optional[str] = None,
    salesmen: Optional[str] = None,
    team: Optional[str] = None,
    visit_type: Optional[str] = None,
    customer_type: Optional[str] = None,
    location: Optional[str] = None,
    admin: Optional[str] = None,
):
    """Efficacité visite -> enquiry -> shipment"""
    range_ = _range_or_400(resolve_stage4_range(_range_query(week, month, from_, to)))
    bounds = week_range_bounds(range_)

    users = await fetch_users()
    reports = await fetch_reports_between(bounds["from_date"], bounds["to_date"])

    return build_stage4_payload(
        users,
        reports,
        range_,
        {
            "salesmen": salesmen,
            "team": team,
            "visit_type": visit_type,
            "customer_type": customer_type,
            "location": location,
            "admin": admin,
        },
        thresholds=config.STAGE4_THRESHOLD_OVERRIDES,
    )


# ==================== STAGE 5 ====================

@router.get("/stage5")
async def stage5_exception_quality(
    week: Optional[str] = None,
    month: Optional[str] = None,
    from_: Optional[str] = Query(None, alias="from"),
    to: Optional[str] = None,
    salesmen: Optional[str] = None,
    team: Optional[str] = None,
    admin: Optional[str] = None,
    rule: Optional[str] = None,
    status: Optional[str] = None,
    customer: Optional[str] = None,
    ageing_bucket: Optional[str] = None,
):
    """Worklist des exceptions persistées"""
    range_ = _range_or_400(resolve_stage5_range(_range_query(week, month, from_, to)))
    bounds = week_range_bounds(range_)

    users = await fetch_users()
    cases = await list_exception_cases({"first_seen_date": {"$lte": bounds["to_date"]}})
    filter_options = build_stage5_filter_options(build_user_directory(users))

    return build_stage5_payload(
        cases,
        range_,
        {
            "salesmen": salesmen,
            "team": team,
            "admin": admin,
            "rule": rule,
            "status": status,
            "customer": customer,
            "ageing_bucket": ageing_bucket,
        },
        filter_options=filter_options,
    )


@router.post("/stage5/refresh")
async def stage5_refresh(
    week: Optional[str] = None,
    month: Optional[str] = None,
    from_: Optional[str] = Query(None, alias="from"),
    to: Optional[str] = None,
    computed_by: str = "system",
):
    """Recalcule les candidats et les upsert (statuts existants conservés)"""
    range_ = _range_or_400(resolve_stage5_range(_range_query(week, month, from_, to)))
    bounds = week_range_bounds(range_)

    users = await fetch_users()
    reports = await fetch_reports_between(bounds["from_date"], bounds["to_date"])
    detected = build_stage5_candidates(users, reports, range_)

    logger.info(f"Stage 5 refresh {bounds['from_date']}..{bounds['to_date']}: {len(detected['candidates'])} candidates")

    counts = await sync_exception_candidates(detected["candidates"], computed_by)
    return {"candidates": len(detected["candidates"]), **counts}


@router.patch("/exceptions/{case_id}/status")
async def update_exception_status(case_id: str, data: StatusTransitionRequest):
    """Transition de statut validée avant écriture"""
    try:
        case = await transition_exception_status(case_id, data.status, data.changed_by, data.note)
    except ExceptionCaseNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ExceptionTransitionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "case": case}


# ==================== INSIGHTS ====================

@router.get("/insights")
async def admin_insights(
    week: Optional[str] = None,
    month: Optional[str] = None,
    from_: Optional[str] = Query(None, alias="from"),
    to: Optional[str] = None,
    salesmen: Optional[str] = None,
):
    """KPIs globaux sur une plage de semaines"""
    range_ = _range_or_400(resolve_insights_range(_range_query(week, month, from_, to)))
    bounds = week_range_bounds(range_)

    salesman_ids = parse_id_list(salesmen) or None
    users = await fetch_users(salesman_ids)
    reports = await fetch_reports_between(bounds["from_date"], bounds["to_date"], salesman_ids)

    return build_insights_payload(users, reports, range_)


# ==================== JSV ALERTS ====================

@router.get("/jsv-alerts")
async def jsv_repeat_alerts(salesman_id: Optional[str] = None):
    """Alertes JSV répétées, toutes semaines confondues"""
    threshold = config.JSV_REPEAT_ALERT_THRESHOLD
    salesman_ids = [salesman_id] if salesman_id else None
    reports = await fetch_all_reports(salesman_ids)
    alerts = build_jsv_repeat_alerts_by_salesman(reports, threshold=threshold)

    if salesman_id:
        return {"salesman_id": salesman_id, "alert": alerts.get(salesman_id, build_inactive_alert(threshold))}
    return {"threshold": threshold, "alerts": alerts}
