"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Field Reporting - Stage 3: Planned But Not Visited                          ║
║                                                                              ║
║  Dans la période:                                                            ║
║  - tendance hebdo, répartition des raisons, taux par commercial              ║
║  - drilldown: 100 lignes max, date décroissante                              ║
║                                                                              ║
║  Récurrence (fenêtre = période + 8 semaines précédentes):                    ║
║  - clé: salesman_id | nom client normalisé                                   ║
║  - "répété" si non-visites sur >= 2 week_key distincts                       ║
║  - ignore les filtres de ligne (raison, client), garde les filtres user      ║
║  - top 50: occurrences desc, dernière non-visite desc                        ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
from typing import Any, Dict, List

from models.weekly_report import REASON_CATEGORY_VALUES, VisitedValue
from services.analytics_common import (
    Accumulator,
    add_days,
    build_actual_rows_by_date,
    build_user_directory,
    build_user_filter_options,
    has_meaningful_planning_row,
    in_range,
    lower_text,
    normalize_customer_name,
    normalize_date_key,
    parse_id_list,
    rate,
    text,
    user_matches_filters,
)
from services.week import IST_TIME_ZONE, get_iso_week_string, parse_date_key

logger = logging.getLogger("stage3_planned_not_visited")

UNCATEGORIZED = "uncategorized"
RECURRENCE_WINDOW_WEEKS = 8
MIN_DISTINCT_WEEKS = 2
TOP_REPEATED_LIMIT = 50
DRILLDOWN_LIMIT = 100
NO_ENTRY = "no_entry"


class NonVisitHistory:
    """Non-visites d'un couple (commercial, client) dans la fenêtre de récurrence"""

    def __init__(self):
        self.salesman_id = ""
        self.salesman_name = ""
        self.customer_name = ""
        self.week_keys = set()
        self.reason_counts: Dict[str, int] = {}
        self.total_hits = 0
        self.last_date = ""

    def add(self, week_key: str, category: str, date_key: str):
        self.total_hits += 1
        self.week_keys.add(week_key)
        self.reason_counts[category] = self.reason_counts.get(category, 0) + 1
        if date_key > self.last_date:
            self.last_date = date_key

    @property
    def dominant_reason_category(self) -> str:
        if not self.reason_counts:
            return UNCATEGORIZED
        # Egalité: ordre alphabétique de la catégorie
        return min(self.reason_counts.items(), key=lambda item: (-item[1], item[0]))[0]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "salesman_id": self.salesman_id,
            "salesman_name": self.salesman_name,
            "customer_name": self.customer_name,
            "occurrences8w": len(self.week_keys),
            "total_hits": self.total_hits,
            "last_non_visit_date": self.last_date,
            "dominant_reason_category": self.dominant_reason_category,
        }


class NonVisitRate:
    def __init__(self):
        self.planned = 0
        self.not_visited = 0

    def add(self, not_visited: bool):
        self.planned += 1
        if not_visited:
            self.not_visited += 1

    @property
    def non_visit_rate(self) -> float:
        return rate(self.not_visited, self.planned)


def build_stage3_payload(
    users: List[Dict[str, Any]],
    reports: List[Dict[str, Any]],
    range_: Dict[str, Any],
    filters: Dict[str, Any],
) -> Dict[str, Any]:
    """
    Analyse des non-visites sur une période.

    Les totaux comptent toutes les lignes planifiées des users filtrés.
    Les filtres raison et client ne réduisent que la tendance, la
    répartition, les taux par commercial et le drilldown.
    """
    filters = filters or {}
    from_date = normalize_date_key(range_.get("from_date"))
    to_date = normalize_date_key(range_.get("to_date"))
    window_start = add_days(from_date, -RECURRENCE_WINDOW_WEEKS * 7) if from_date else ""
    filter_category = lower_text(filters.get("reason_category"))
    filter_customer = normalize_customer_name(filters.get("customer"))

    directory = build_user_directory(users)
    logger.debug(f"Stage 3: {len(directory)} users, {len(reports or [])} reports, {from_date}..{to_date}")

    totals = NonVisitRate()
    weekly = Accumulator(NonVisitRate)
    reasons = Accumulator(lambda: {"count": 0})
    salespeople = Accumulator(NonVisitRate)
    history = Accumulator(NonVisitHistory)
    drilldown_rows = []

    for report in reports or []:
        user = directory.get(str(report.get("salesman_id")))
        if not user or not user_matches_filters(user, filters):
            continue

        actual_by_date = build_actual_rows_by_date(report.get("actual_output_rows"))
        report_week_key = text(report.get("week_key"))

        for planning_row in report.get("planning_rows") or []:
            if not has_meaningful_planning_row(planning_row):
                continue
            date_key = normalize_date_key(planning_row.get("date"))
            if not in_range(date_key, window_start, to_date):
                continue

            actual_row = actual_by_date.get(date_key) or {}
            visited = lower_text(actual_row.get("visited"))
            not_visited = visited == VisitedValue.NO.value
            category = lower_text(actual_row.get("not_visited_reason_category")) or UNCATEGORIZED
            customer = normalize_customer_name(planning_row.get("customer_name"))
            iso_week = get_iso_week_string(parse_date_key(date_key))

            if not_visited and customer:
                entry = history.bucket((user["id"], customer))
                if not entry.salesman_id:
                    entry.salesman_id = user["id"]
                    entry.salesman_name = user["name"]
                    entry.customer_name = text(planning_row.get("customer_name"))
                entry.add(report_week_key or iso_week, category, date_key)

            if not in_range(date_key, from_date, to_date):
                continue

            totals.add(not_visited)

            if filter_category and category != filter_category:
                continue
            if filter_customer and filter_customer not in customer:
                continue

            weekly.bucket(iso_week).add(not_visited)
            salespeople.bucket(user["id"]).add(not_visited)
            if not_visited:
                reasons.bucket(category)["count"] += 1

            drilldown_rows.append({
                "date": date_key,
                "iso_week": iso_week,
                "salesman_id": user["id"],
                "salesman_name": user["name"],
                "customer_name": text(planning_row.get("customer_name")),
                "location_area": text(planning_row.get("location_area")),
                "category": category,
                "reason": text(actual_row.get("not_visited_reason")) or "-",
                "visited": visited or NO_ENTRY,
            })

    repeated = [
        entry.to_dict()
        for _, entry in history.items()
        if len(entry.week_keys) >= MIN_DISTINCT_WEEKS
    ]
    repeated.sort(key=lambda row: (row["salesman_name"].lower(), row["customer_name"].lower()))
    repeated.sort(key=lambda row: row["last_non_visit_date"], reverse=True)
    repeated.sort(key=lambda row: row["occurrences8w"], reverse=True)

    drilldown_rows.sort(key=lambda row: (row["salesman_name"].lower(), row["customer_name"].lower()))
    drilldown_rows.sort(key=lambda row: row["date"], reverse=True)

    salesperson_rates = salespeople.finalize(lambda user_id, bucket: {
        "id": user_id,
        "name": directory[user_id]["name"],
        "planned_visits": bucket.planned,
        "non_visited_count": bucket.not_visited,
        "non_visit_rate": bucket.non_visit_rate,
    })
    salesperson_rates.sort(
        key=lambda row: (-row["non_visit_rate"], -row["non_visited_count"], row["name"].lower(), row["id"])
    )

    filter_options = build_user_filter_options(directory)
    filter_options["reason_categories"] = REASON_CATEGORY_VALUES + [UNCATEGORIZED]

    return {
        "range": {
            "from": from_date,
            "to": to_date,
            "mode": range_.get("mode"),
            "label": range_.get("label"),
            "timezone": range_.get("timezone") or IST_TIME_ZONE,
            "recurrence_from": window_start,
        },
        "filters_applied": {
            "salesmen": parse_id_list(filters.get("salesmen")),
            "reason_category": filter_category or None,
            "customer": text(filters.get("customer")) or None,
            "main_team": text(filters.get("main_team")) or None,
            "team": text(filters.get("team")) or None,
            "sub_team": text(filters.get("sub_team")) or None,
        },
        "totals": {
            "planned_visits": totals.planned,
            "planned_but_not_visited_count": totals.not_visited,
            "non_visit_rate": totals.non_visit_rate,
        },
        "weekly_trend": sorted(
            weekly.finalize(lambda iso_week, bucket: {
                "iso_week": iso_week,
                "planned_visits": bucket.planned,
                "planned_but_not_visited_count": bucket.not_visited,
                "non_visit_rate": bucket.non_visit_rate,
            }),
            key=lambda row: row["iso_week"],
        ),
        "reason_distribution": sorted(
            reasons.finalize(lambda category, bucket: {"reason_category": category, "count": bucket["count"]}),
            key=lambda row: (-row["count"], row["reason_category"]),
        ),
        "salesperson_rates": salesperson_rates,
        "top_repeated_customers": repeated[:TOP_REPEATED_LIMIT],
        "drilldown_rows": drilldown_rows[:DRILLDOWN_LIMIT],
        "filter_options": filter_options,
    }
