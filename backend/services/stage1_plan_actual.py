"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Field Reporting - Stage 1: Plan vs Actual                                   ║
║                                                                              ║
║  Une ligne planning significative = 1 visite planifiée                       ║
║  Visitée ssi la ligne actual output DU MÊME JOUR a visited = yes             ║
║                                                                              ║
║  Buckets (une seule passe): total, jour, semaine ISO, mois, commercial,      ║
║  main team, team, sub team, call type, customer type                         ║
║                                                                              ║
║  Classement: planned_visits >= 3, top 5 au-dessus / en dessous de l'objectif ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
from typing import Any, Dict, List

from models.weekly_report import CONTACT_TYPE_VALUES, CUSTOMER_TYPE_VALUES
from services.analytics_common import (
    Accumulator,
    VisitMetrics,
    build_actual_rows_by_date,
    build_user_directory,
    build_user_filter_options,
    has_meaningful_planning_row,
    in_range,
    is_visited,
    lower_text,
    normalize_date_key,
    parse_id_list,
    salesman_summary,
    text,
    user_matches_filters,
)
from services.week import IST_TIME_ZONE, get_iso_week_string, parse_date_key

logger = logging.getLogger("stage1_plan_actual")

UNKNOWN = "unknown"
CALL_TYPE_BUCKETS = ["nc", "fc", "jsv", "sc", UNKNOWN]
CUSTOMER_TYPE_BUCKETS = CUSTOMER_TYPE_VALUES + [UNKNOWN]

MIN_PLANNED_FOR_RANKING = 3
TOP_PERFORMERS_LIMIT = 5


def call_type_bucket(value: Any) -> str:
    normalized = lower_text(value)
    return normalized if normalized in CONTACT_TYPE_VALUES else UNKNOWN


def customer_type_bucket(value: Any) -> str:
    normalized = lower_text(value)
    return normalized if normalized in CUSTOMER_TYPE_VALUES else UNKNOWN


def _labelled(field: str):
    def finalize(key, metrics: VisitMetrics) -> Dict[str, Any]:
        return {field: key, **metrics.to_dict()}
    return finalize


def _by_actual_desc(rows: List[Dict[str, Any]], label_field: str) -> List[Dict[str, Any]]:
    return sorted(rows, key=lambda row: (-row["actual_visits"], str(row[label_field]).lower()))


def build_stage1_payload(
    users: List[Dict[str, Any]],
    reports: List[Dict[str, Any]],
    range_: Dict[str, Any],
    filters: Dict[str, Any],
) -> Dict[str, Any]:
    filters = filters or {}
    from_date = normalize_date_key(range_.get("from_date"))
    to_date = normalize_date_key(range_.get("to_date"))
    filter_call_type = lower_text(filters.get("call_type"))
    filter_customer_type = lower_text(filters.get("customer_type"))

    directory = build_user_directory(users)
    logger.debug(f"Stage 1: {len(directory)} users, {len(reports or [])} reports, {from_date}..{to_date}")

    totals = VisitMetrics()
    daily = Accumulator(VisitMetrics)
    weekly = Accumulator(VisitMetrics)
    monthly = Accumulator(VisitMetrics)
    call_types = Accumulator(VisitMetrics, CALL_TYPE_BUCKETS)
    customer_types = Accumulator(VisitMetrics, CUSTOMER_TYPE_BUCKETS)
    salespeople = Accumulator(VisitMetrics)
    main_teams = Accumulator(VisitMetrics)
    teams = Accumulator(VisitMetrics)
    sub_teams = Accumulator(VisitMetrics)
    drilldown_rows = []

    for report in reports or []:
        user = directory.get(str(report.get("salesman_id")))
        if not user or not user_matches_filters(user, filters):
            continue

        actual_by_date = build_actual_rows_by_date(report.get("actual_output_rows"))

        for planning_row in report.get("planning_rows") or []:
            if not has_meaningful_planning_row(planning_row):
                continue
            date_key = normalize_date_key(planning_row.get("date"))
            if not in_range(date_key, from_date, to_date):
                continue

            call_type = call_type_bucket(planning_row.get("contact_type"))
            customer_type = customer_type_bucket(planning_row.get("customer_type"))
            if filter_call_type and call_type != filter_call_type:
                continue
            if filter_customer_type and customer_type != filter_customer_type:
                continue

            visited = is_visited(actual_by_date.get(date_key))
            iso_week = get_iso_week_string(parse_date_key(date_key))
            month = date_key[:7]

            for metrics in (
                totals,
                daily.bucket(date_key),
                weekly.bucket(iso_week),
                monthly.bucket(month),
                call_types.bucket(call_type),
                customer_types.bucket(customer_type),
                salespeople.bucket(user["id"]),
                main_teams.bucket(user["main_team"]),
                teams.bucket(user["team"]),
                sub_teams.bucket(user["sub_team"]),
            ):
                metrics.add(visited)

            drilldown_rows.append({
                "date": date_key,
                "iso_week": iso_week,
                "month": month,
                "call_type": call_type,
                "customer_type": customer_type,
                "visited": visited,
                "customer_name": text(planning_row.get("customer_name")),
                "location_area": text(planning_row.get("location_area")),
                "salesman": salesman_summary(user),
            })

    salesperson_rows = salespeople.finalize(
        lambda user_id, metrics: {**salesman_summary(directory[user_id]), **metrics.to_dict()}
    )
    eligible = [row for row in salesperson_rows if row["planned_visits"] >= MIN_PLANNED_FOR_RANKING]

    # Egalité de taux: le plus de visites planifiées d'abord, puis le nom
    over_achievers = sorted(
        eligible, key=lambda row: (-row["achievement_rate"], -row["planned_visits"], row["name"].lower(), row["id"])
    )
    under_achievers = sorted(
        eligible, key=lambda row: (row["achievement_rate"], -row["planned_visits"], row["name"].lower(), row["id"])
    )

    drilldown_rows.sort(key=lambda row: (row["date"], row["salesman"]["name"].lower(), row["salesman"]["id"]))

    filter_options = build_user_filter_options(directory)
    filter_options["call_type"] = list(CALL_TYPE_BUCKETS)
    filter_options["customer_type"] = list(CUSTOMER_TYPE_VALUES)

    return {
        "range": {
            "from": from_date,
            "to": to_date,
            "mode": range_.get("mode"),
            "label": range_.get("label"),
            "timezone": range_.get("timezone") or IST_TIME_ZONE,
        },
        "filters_applied": {
            "salesmen": parse_id_list(filters.get("salesmen")),
            "call_type": filter_call_type or None,
            "customer_type": filter_customer_type or None,
            "main_team": text(filters.get("main_team")) or None,
            "team": text(filters.get("team")) or None,
            "sub_team": text(filters.get("sub_team")) or None,
        },
        "totals": totals.to_dict(),
        "daily_trend": sorted(daily.finalize(_labelled("date")), key=lambda row: row["date"]),
        "weekly_summary": sorted(weekly.finalize(_labelled("iso_week")), key=lambda row: row["iso_week"]),
        "monthly_rollup": sorted(monthly.finalize(_labelled("month")), key=lambda row: row["month"]),
        "hierarchy_rollups": {
            "salesperson": sorted(
                salesperson_rows, key=lambda row: (-row["actual_visits"], row["name"].lower(), row["id"])
            ),
            "main_team": _by_actual_desc(main_teams.finalize(_labelled("label")), "label"),
            "team": _by_actual_desc(teams.finalize(_labelled("label")), "label"),
            "sub_team": _by_actual_desc(sub_teams.finalize(_labelled("label")), "label"),
        },
        "breakdowns": {
            "call_type": call_types.finalize(_labelled("call_type")),
            "customer_type": customer_types.finalize(_labelled("customer_type")),
        },
        "top_performers": {
            "over_achievers": over_achievers[:TOP_PERFORMERS_LIMIT],
            "under_achievers": under_achievers[:TOP_PERFORMERS_LIMIT],
            "minimum_planned_visits": MIN_PLANNED_FOR_RANKING,
        },
        "drilldown_rows": drilldown_rows,
        "filter_options": filter_options,
    }
