"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Field Reporting - Stage 4: Enquiry Effectiveness                            ║
║                                                                              ║
║  Périmètres: commercial, HOD (= team), semaine ISO                           ║
║                                                                              ║
║  Flags (par commercial ET par HOD):                                          ║
║  - high_visits_low_enquiry (warning):                                        ║
║      actual_visits >= 12 ET enquiries / actual_visits < 0.25                 ║
║  - low_conversion (critical):                                                ║
║      enquiries >= 6 ET shipments / enquiries < 0.20                          ║
║                                                                              ║
║  Seuils surchargeables (valeur invalide / négative → défaut)                 ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
import math
from typing import Any, Dict, List, Optional

from models.weekly_report import CONTACT_TYPE_VALUES, CUSTOMER_TYPE_VALUES, ContactType
from services.analytics_common import (
    Accumulator,
    ConversionMetrics,
    build_actual_rows_by_date,
    build_user_directory,
    has_meaningful_planning_row,
    in_range,
    is_visited,
    lower_text,
    normalize_date_key,
    parse_id_list,
    rate,
    round_rate,
    safe_divide,
    text,
    to_non_negative_int,
)
from services.ranges import week_range_bounds
from services.week import get_iso_week_string, parse_date_key

logger = logging.getLogger("stage4_enquiry_effectiveness")

DEFAULT_THRESHOLDS = {
    "min_visits_for_low_enquiry": 12,
    "min_enquiry_per_visit": 0.25,
    "min_enquiries_for_low_conversion": 6,
    "min_shipment_conversion": 0.2,
}

HIGH_VISITS_LOW_ENQUIRY = "high_visits_low_enquiry"
LOW_CONVERSION = "low_conversion"


def _threshold_value(value: Any, fallback: float) -> float:
    if value is None or isinstance(value, bool):
        return fallback
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(parsed) or parsed < 0:
        return fallback
    return int(parsed) if parsed.is_integer() else parsed


def build_thresholds(overrides: Optional[Dict[str, Any]] = None) -> Dict[str, float]:
    overrides = overrides or {}
    return {
        key: _threshold_value(overrides.get(key), default)
        for key, default in DEFAULT_THRESHOLDS.items()
    }


def evaluate_flags(metrics: ConversionMetrics, thresholds: Dict[str, float]) -> List[Dict[str, Any]]:
    visit_ratio = safe_divide(metrics.enquiries, metrics.actual_visits)
    conversion = safe_divide(metrics.shipments, metrics.enquiries)
    flags = []

    if (
        metrics.actual_visits >= thresholds["min_visits_for_low_enquiry"]
        and visit_ratio < thresholds["min_enquiry_per_visit"]
    ):
        flags.append({
            "type": HIGH_VISITS_LOW_ENQUIRY,
            "severity": "warning",
            "label": "High Visits, Low Enquiry",
            "reason": (
                f"Actual visits {metrics.actual_visits} with visit-to-enquiry ratio "
                f"{round_rate(visit_ratio)} below {thresholds['min_enquiry_per_visit']}."
            ),
            "metrics": {
                "actual_visits": metrics.actual_visits,
                "enquiries": metrics.enquiries,
                "ratio": round_rate(visit_ratio),
            },
            "thresholds": {
                "min_visits_for_low_enquiry": thresholds["min_visits_for_low_enquiry"],
                "min_enquiry_per_visit": thresholds["min_enquiry_per_visit"],
            },
        })

    if (
        metrics.enquiries >= thresholds["min_enquiries_for_low_conversion"]
        and conversion < thresholds["min_shipment_conversion"]
    ):
        flags.append({
            "type": LOW_CONVERSION,
            "severity": "critical",
            "label": "Low Conversion",
            "reason": (
                f"Enquiries {metrics.enquiries} with enquiry-to-shipment conversion "
                f"{round_rate(conversion)} below {thresholds['min_shipment_conversion']}."
            ),
            "metrics": {
                "enquiries": metrics.enquiries,
                "shipments": metrics.shipments,
                "ratio": round_rate(conversion),
            },
            "thresholds": {
                "min_enquiries_for_low_conversion": thresholds["min_enquiries_for_low_conversion"],
                "min_shipment_conversion": thresholds["min_shipment_conversion"],
            },
        })

    return flags


class TeamConversion(ConversionMetrics):
    def __init__(self):
        super().__init__()
        self.salespeople = set()


def _by_volume(row: Dict[str, Any], label_field: str):
    return (-row["enquiries"], -row["actual_visits"], str(row[label_field]).lower())


def build_stage4_payload(
    users: List[Dict[str, Any]],
    reports: List[Dict[str, Any]],
    range_: Dict[str, Any],
    filters: Dict[str, Any],
    thresholds: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    filters = filters or {}
    applied_thresholds = build_thresholds(thresholds)
    bounds = week_range_bounds(range_)

    filter_salesmen = parse_id_list(filters.get("salesmen"))
    filter_team = text(filters.get("team"))
    filter_visit_type = lower_text(filters.get("visit_type"))
    if filter_visit_type not in CONTACT_TYPE_VALUES:
        filter_visit_type = ""
    filter_customer_type = lower_text(filters.get("customer_type"))
    if filter_customer_type not in CUSTOMER_TYPE_VALUES:
        filter_customer_type = ""
    filter_location = lower_text(filters.get("location"))
    filter_admin = text(filters.get("admin"))

    directory = build_user_directory(users)
    logger.debug(f"Stage 4: {len(directory)} users, {len(reports or [])} reports, {bounds}")

    totals = ConversionMetrics()
    salespeople = Accumulator(ConversionMetrics)
    hods = Accumulator(TeamConversion)
    weekly = Accumulator(ConversionMetrics)
    locations = set()

    for report in reports or []:
        user = directory.get(str(report.get("salesman_id")))
        if not user:
            continue
        if filter_salesmen and user["id"] not in filter_salesmen:
            continue
        if filter_team and user["team"] != filter_team:
            continue

        actual_by_date = build_actual_rows_by_date(report.get("actual_output_rows"))

        for planning_row in report.get("planning_rows") or []:
            if not has_meaningful_planning_row(planning_row):
                continue
            date_key = normalize_date_key(planning_row.get("date"))
            if not in_range(date_key, bounds["from_date"], bounds["to_date"]):
                continue

            contact_type = lower_text(planning_row.get("contact_type"))
            customer_type = lower_text(planning_row.get("customer_type"))
            location = text(planning_row.get("location_area"))

            if filter_visit_type and contact_type != filter_visit_type:
                continue
            if filter_customer_type and customer_type != filter_customer_type:
                continue
            if filter_location and location.lower() != filter_location:
                continue
            # Le filtre admin ne concerne que les lignes JSV
            if (
                filter_admin
                and contact_type == ContactType.JSV.value
                and text(planning_row.get("jsv_with_whom")) != filter_admin
            ):
                continue

            if location:
                locations.add(location)

            actual_row = actual_by_date.get(date_key) or {}
            visited = is_visited(actual_row)
            enquiries = to_non_negative_int(actual_row.get("enquiries_received"))
            shipments = to_non_negative_int(actual_row.get("shipments_converted"))
            iso_week = get_iso_week_string(parse_date_key(date_key))

            for metrics in (totals, salespeople.bucket(user["id"]), hods.bucket(user["team"]), weekly.bucket(iso_week)):
                metrics.add(visited, enquiries, shipments)
            hods.bucket(user["team"]).salespeople.add(user["id"])

    flag_rows = []

    def salesperson_row(user_id: str, metrics: ConversionMetrics) -> Dict[str, Any]:
        user = directory[user_id]
        flags = evaluate_flags(metrics, applied_thresholds)
        for flag in flags:
            flag_rows.append({"scope": "salesperson", "id": user_id, "name": user["name"], "team": user["team"], **flag})
        return {
            "salesperson_id": user_id,
            "salesperson_name": user["name"],
            "team": user["team"],
            **metrics.to_dict(),
            "flags": flags,
        }

    def hod_row(team: str, metrics: TeamConversion) -> Dict[str, Any]:
        flags = evaluate_flags(metrics, applied_thresholds)
        for flag in flags:
            flag_rows.append({"scope": "hod", "id": team, "name": team, "team": team, **flag})
        return {"hod": team, "salespeople_count": len(metrics.salespeople), **metrics.to_dict(), "flags": flags}

    salesperson_rows = sorted(
        salespeople.finalize(salesperson_row), key=lambda row: _by_volume(row, "salesperson_name")
    )
    hod_rows = sorted(hods.finalize(hod_row), key=lambda row: _by_volume(row, "hod"))
    weekly_rows = sorted(
        weekly.finalize(lambda iso_week, metrics: {"week": iso_week, **metrics.to_dict()}),
        key=lambda row: row["week"],
    )

    admin_options = sorted(
        ({"id": u["id"], "name": u["name"]} for u in directory.values() if u["role"] == "admin"),
        key=lambda option: (option["name"].lower(), option["id"]),
    )

    return {
        "range": {
            "from": bounds["from_date"],
            "to": bounds["to_date"],
            "from_week": range_["from_week"]["iso_week"],
            "to_week": range_["to_week"]["iso_week"],
            "timezone": range_.get("timezone"),
            "weeks": list(range_.get("weeks") or []),
        },
        "applied_filters": {
            "salesmen": filter_salesmen,
            "team": filter_team or None,
            "visit_type": filter_visit_type or None,
            "customer_type": filter_customer_type or None,
            "location": filter_location or None,
            "admin": filter_admin or None,
            "thresholds": applied_thresholds,
        },
        "totals": {
            "planned_visits": totals.planned_visits,
            "actual_visits": totals.actual_visits,
            "enquiries": totals.enquiries,
            "shipments": totals.shipments,
        },
        "kpis": {
            "visit_to_enquiry_ratio": {
                "value": rate(totals.enquiries, totals.actual_visits),
                "numerator": totals.enquiries,
                "denominator": totals.actual_visits,
            },
            "enquiry_to_shipment_conversion": {
                "value": rate(totals.shipments, totals.enquiries),
                "numerator": totals.shipments,
                "denominator": totals.enquiries,
            },
        },
        "trends": {"weekly": weekly_rows},
        "tables": {"salesperson": salesperson_rows, "hod": hod_rows},
        "flags": {
            "summary": {
                "total": len(flag_rows),
                "by_type": {
                    HIGH_VISITS_LOW_ENQUIRY: sum(1 for f in flag_rows if f["type"] == HIGH_VISITS_LOW_ENQUIRY),
                    LOW_CONVERSION: sum(1 for f in flag_rows if f["type"] == LOW_CONVERSION),
                },
                "by_severity": {
                    "warning": sum(1 for f in flag_rows if f["severity"] == "warning"),
                    "critical": sum(1 for f in flag_rows if f["severity"] == "critical"),
                },
            },
            "rows": flag_rows,
        },
        "filter_options": {
            "salesmen": sorted(
                ({"id": u["id"], "name": u["name"]} for u in directory.values()),
                key=lambda option: (option["name"].lower(), option["id"]),
            ),
            "team": sorted({u["team"] for u in directory.values()}),
            "visit_type": list(CONTACT_TYPE_VALUES),
            "customer_type": list(CUSTOMER_TYPE_VALUES),
            "location": sorted(locations, key=lambda value: (value.lower(), value)),
            "admin": admin_options,
        },
    }
