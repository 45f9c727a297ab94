"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Field Reporting - Admin Insights (KPI dashboard)                            ║
║                                                                              ║
║  KPIs: visit completion, enquiry → shipment conversion, visites / semaine,   ║
║  enquiries & shipments par visite, jour le plus productif, délai moyen       ║
║  enquiry → shipment                                                          ║
║                                                                              ║
║  Délai: par (commercial, client), première ligne avec enquiries > 0 puis     ║
║  première ligne STRICTEMENT postérieure avec shipments > 0                   ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
from typing import Any, Dict, List, Optional

from models.user import UserRole
from models.weekly_report import CONTACT_TYPE_VALUES
from services.analytics_common import (
    Accumulator,
    ConversionMetrics,
    build_actual_rows_by_date,
    build_user_directory,
    days_between,
    has_meaningful_planning_row,
    in_range,
    is_visited,
    lower_text,
    normalize_customer_name,
    normalize_date_key,
    rate,
    round_rate,
    text,
    to_non_negative_int,
)
from services.ranges import week_range_bounds
from services.week import get_week_from_key, parse_date_key

logger = logging.getLogger("admin_insights")

WEEKDAY_ORDER = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
CUSTOMER_SEGMENTS = ["new", "existing"]
SEGMENT_LABELS = {"new": "New", "existing": "Existing"}
# Anciennes orthographes du type "nouveau client"
NEW_SEGMENT_TYPES = ["targeted_budgeted", "target_budgeted", "new_customer_non_budgeted"]
UNSPECIFIED = "Unspecified"

LAG_PROXY_NOTE = (
    "Average enquiry-to-shipment time uses row-date proxy (first enquiry row to first later "
    "shipment row per salesperson + customer)."
)
NO_LAG_NOTE = (
    "Average enquiry-to-shipment time is null because no matched enquiry-then-shipment "
    "customer journeys were found."
)


def customer_segment(customer_type: Any) -> str:
    normalized = lower_text(customer_type)
    if normalized in NEW_SEGMENT_TYPES:
        return "new"
    if normalized == "existing":
        return "existing"
    return ""


def weekday_name(date_key: str) -> str:
    day = parse_date_key(date_key)
    # weekday(): lundi = 0, dimanche = 6
    return WEEKDAY_ORDER[day.weekday()] if day else "Unknown"


def enquiry_to_shipment_lag(entries: List[Dict[str, Any]]) -> Optional[int]:
    """Jours entre la première ligne avec enquiry et la première ligne shipment strictement postérieure"""
    ordered = sorted(entries, key=lambda entry: entry["date"])
    first_enquiry = next((entry for entry in ordered if entry["enquiries"] > 0), None)
    if not first_enquiry:
        return None
    later_shipment = next(
        (entry for entry in ordered if entry["shipments"] > 0 and entry["date"] > first_enquiry["date"]),
        None,
    )
    if not later_shipment:
        return None
    return days_between(first_enquiry["date"], later_shipment["date"])


class ProductivityRow(ConversionMetrics):
    def to_dict(self) -> Dict[str, Any]:
        return {
            "planned_visits": self.planned_visits,
            "actual_visits": self.actual_visits,
            "enquiries": self.enquiries,
            "shipments": self.shipments,
            "completion_rate": rate(self.actual_visits, self.planned_visits),
            "conversion_rate": rate(self.shipments, self.enquiries),
        }


def _by_activity(row: Dict[str, Any], label_field: str):
    return (-row["actual_visits"], -row["shipments"], str(row[label_field]).lower())


def build_insights_payload(
    users: List[Dict[str, Any]],
    reports: List[Dict[str, Any]],
    range_: Dict[str, Any],
) -> Dict[str, Any]:
    """
    KPIs et graphiques à l'échelle de l'entreprise.

    Tous les users non admin. Seules les lignes planning significatives
    datées dans la période comptent.
    """
    bounds = week_range_bounds(range_)
    directory = build_user_directory(users)
    salespeople = sorted(
        (u for u in directory.values() if u["role"] != UserRole.ADMIN.value),
        key=lambda u: (u["name"].lower(), u["id"]),
    )
    logger.debug(f"Insights: {len(salespeople)} salespeople, {len(reports or [])} reports, {bounds}")

    reports_by_salesman: Dict[str, List[Dict[str, Any]]] = {}
    for report in reports or []:
        reports_by_salesman.setdefault(str(report.get("salesman_id")), []).append(report)

    totals = ConversionMetrics()
    contact_distribution = Accumulator(lambda: {"count": 0}, CONTACT_TYPE_VALUES)
    segment_conversion = Accumulator(ConversionMetrics, CUSTOMER_SEGMENTS)
    visit_type_conversion = Accumulator(ConversionMetrics, CONTACT_TYPE_VALUES)
    weekday_productivity = Accumulator(ConversionMetrics, WEEKDAY_ORDER)
    locations = Accumulator(ProductivityRow)
    customers = Accumulator(ProductivityRow)
    lag_samples: List[int] = []
    salesperson_rows = []

    for salesperson in salespeople:
        person = ConversionMetrics()
        active_weeks = set()
        journeys = Accumulator(list)

        for report in reports_by_salesman.get(salesperson["id"], []):
            actual_by_date = build_actual_rows_by_date(report.get("actual_output_rows"))

            for planning_row in report.get("planning_rows") or []:
                if not has_meaningful_planning_row(planning_row):
                    continue
                date_key = normalize_date_key(planning_row.get("date"))
                if not in_range(date_key, bounds["from_date"], bounds["to_date"]):
                    continue

                week_key = text(report.get("week_key")) or get_week_from_key(date_key)["key"]
                active_weeks.add(week_key)

                actual_row = actual_by_date.get(date_key) or {}
                visited = is_visited(actual_row)
                enquiries = to_non_negative_int(actual_row.get("enquiries_received"))
                shipments = to_non_negative_int(actual_row.get("shipments_converted"))

                buckets = [
                    totals,
                    person,
                    weekday_productivity.bucket(weekday_name(date_key)),
                    locations.bucket(text(planning_row.get("location_area")) or UNSPECIFIED),
                    customers.bucket(text(planning_row.get("customer_name")) or UNSPECIFIED),
                ]
                contact_type = lower_text(planning_row.get("contact_type"))
                if contact_type in CONTACT_TYPE_VALUES:
                    contact_distribution.bucket(contact_type)["count"] += 1
                    buckets.append(visit_type_conversion.bucket(contact_type))
                segment = customer_segment(planning_row.get("customer_type"))
                if segment:
                    buckets.append(segment_conversion.bucket(segment))

                for metrics in buckets:
                    metrics.add(visited, enquiries, shipments)

                customer_key = normalize_customer_name(planning_row.get("customer_name"))
                if customer_key:
                    journeys.bucket(customer_key).append(
                        {"date": date_key, "enquiries": enquiries, "shipments": shipments}
                    )

        for _, entries in journeys.items():
            lag = enquiry_to_shipment_lag(entries)
            if lag is not None and lag >= 0:
                lag_samples.append(lag)

        salesperson_rows.append({
            "id": salesperson["id"],
            "name": salesperson["name"],
            "email": salesperson["email"],
            "planned_visits": person.planned_visits,
            "actual_visits": person.actual_visits,
            "active_weeks": len(active_weeks),
            "average_visits_per_week": rate(person.actual_visits, len(active_weeks)),
            "enquiries": person.enquiries,
            "shipments": person.shipments,
            "completion_rate": rate(person.actual_visits, person.planned_visits),
            "conversion_rate": rate(person.shipments, person.enquiries),
        })

    notes = [LAG_PROXY_NOTE]
    average_lag = round_rate(sum(lag_samples) / len(lag_samples)) if lag_samples else None
    if average_lag is None:
        notes.append(NO_LAG_NOTE)

    weekday_rows = weekday_productivity.finalize(
        lambda day, metrics: {"day": day, "enquiries": metrics.enquiries, "shipments": metrics.shipments}
    )
    # Égalité: enquiries, puis ordre de la semaine
    most_productive_day = sorted(
        weekday_rows,
        key=lambda row: (-row["shipments"], -row["enquiries"], WEEKDAY_ORDER.index(row["day"])),
    )[0]

    with_activity = sum(1 for row in salesperson_rows if row["active_weeks"] > 0)
    contact_total = sum(bucket["count"] for _, bucket in contact_distribution.items())

    return {
        "range": {
            "from": bounds["from_date"],
            "to": bounds["to_date"],
            "from_week": range_["from_week"]["iso_week"],
            "to_week": range_["to_week"]["iso_week"],
            "timezone": range_.get("timezone"),
            "weeks": list(range_.get("weeks") or []),
        },
        "totals": {
            "salespeople": len(salespeople),
            "planned_visits": totals.planned_visits,
            "actual_visits": totals.actual_visits,
            "enquiries": totals.enquiries,
            "shipments": totals.shipments,
        },
        "kpis": {
            "visit_completion_rate": {
                "value": rate(totals.actual_visits, totals.planned_visits),
                "numerator": totals.actual_visits,
                "denominator": totals.planned_visits,
            },
            "enquiry_to_shipment_conversion_rate": {
                "value": rate(totals.shipments, totals.enquiries),
                "numerator": totals.shipments,
                "denominator": totals.enquiries,
            },
            "average_visits_per_week_per_salesperson": {
                "value": rate(
                    sum(row["average_visits_per_week"] for row in salesperson_rows),
                    with_activity or len(salesperson_rows),
                ),
                "salespeople_with_activity": with_activity,
            },
            "enquiries_per_visit": {
                "value": rate(totals.enquiries, totals.actual_visits),
                "numerator": totals.enquiries,
                "denominator": totals.actual_visits,
            },
            "shipments_per_visit": {
                "value": rate(totals.shipments, totals.actual_visits),
                "numerator": totals.shipments,
                "denominator": totals.actual_visits,
            },
            "most_productive_day": most_productive_day,
            "average_days_enquiry_to_shipment": average_lag,
            "average_days_enquiry_to_shipment_samples": len(lag_samples),
        },
        "charts": {
            "actual_vs_planned_by_salesperson": sorted(
                (
                    {
                        "salesperson": row["name"],
                        "planned_visits": row["planned_visits"],
                        "actual_visits": row["actual_visits"],
                        "average_visits_per_week": row["average_visits_per_week"],
                    }
                    for row in salesperson_rows
                ),
                key=lambda row: (-row["actual_visits"], row["salesperson"].lower()),
            ),
            "contact_type_distribution": contact_distribution.finalize(lambda contact_type, bucket: {
                "type": contact_type.upper(),
                "count": bucket["count"],
                "percentage": rate(bucket["count"], contact_total),
            }),
            "conversion_by_customer_type": segment_conversion.finalize(lambda segment, metrics: {
                "customer_type": SEGMENT_LABELS[segment],
                "enquiries": metrics.enquiries,
                "shipments": metrics.shipments,
                "conversion_rate": metrics.enquiry_to_shipment_conversion,
            }),
            "conversion_by_visit_type": visit_type_conversion.finalize(lambda contact_type, metrics: {
                "visit_type": contact_type.upper(),
                "enquiries": metrics.enquiries,
                "shipments": metrics.shipments,
                "conversion_rate": metrics.enquiry_to_shipment_conversion,
            }),
            "productivity_by_weekday": weekday_rows,
        },
        "tables": {
            "salesperson_productivity": sorted(salesperson_rows, key=lambda row: _by_activity(row, "name")),
            "location_productivity": sorted(
                locations.finalize(lambda location, metrics: {"location": location, **metrics.to_dict()}),
                key=lambda row: _by_activity(row, "location"),
            ),
            "customer_productivity": sorted(
                customers.finalize(lambda customer, metrics: {"customer": customer, **metrics.to_dict()}),
                key=lambda row: _by_activity(row, "customer"),
            ),
        },
        "notes": notes,
    }
