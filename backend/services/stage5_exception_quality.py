"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Field Reporting - Stage 5: Exception & Quality                              ║
║                                                                              ║
║  Journey = lignes planning VISITÉES d'un couple (commercial, client)         ║
║                                                                              ║
║  RÈGLES (indépendantes, cumulables):                                         ║
║  - EX-01 Single Visit No Follow-up: visited == 1                             ║
║  - EX-02 Repeat Visit No Enquiry:   visited > 1 ET enquiries == 0            ║
║  - EX-03 Repeat Visit No JSV:       visited > 1 ET jsv == 0                  ║
║  - EX-04 Follow-up Stagnation:      fc + sc >= 3 ET shipments == 0           ║
║                                                                              ║
║  case_key = rule_id|salesman_id|client normalisé (upsert côté persistance)   ║
║                                                                              ║
║  STATUTS: open ⇄ in_review, → resolved / ignored, réouverture vers open      ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from models.exception_case import (
    RULE_LABELS,
    OPEN_STATUSES,
    VALID_EXCEPTION_STATUSES,
    ExceptionRule,
    ExceptionStatus,
)
from models.user import UNASSIGNED, UserRole
from models.weekly_report import ContactType
from services.analytics_common import (
    Accumulator,
    build_actual_rows_by_date,
    build_user_directory,
    days_between,
    has_meaningful_planning_row,
    in_range,
    is_visited,
    lower_text,
    normalize_customer_name,
    normalize_date_key,
    parse_id_list,
    text,
    to_non_negative_int,
)
from services.ranges import week_range_bounds
from services.week import IST_TZ, get_iso_week_string, get_week_from_key, parse_date_key

logger = logging.getLogger("stage5_exception_quality")

AGEING_BUCKETS = ["0-7", "8-14", "15+"]
FOLLOWUP_CONTACT_TYPES = [ContactType.FC.value, ContactType.SC.value]
MIN_FOLLOWUPS_FOR_STAGNATION = 3


# ════════════════════════════════════════════════════════════════════════════
# VALID STATE TRANSITIONS
# ════════════════════════════════════════════════════════════════════════════

VALID_EXCEPTION_TRANSITIONS = {
    "open": ["in_review", "resolved", "ignored"],
    "in_review": ["open", "resolved", "ignored"],
    "resolved": ["open"],
    "ignored": ["open"],
}


def to_status_value(value: Any) -> str:
    normalized = lower_text(value)
    return normalized if normalized in VALID_EXCEPTION_STATUSES else ""


def to_rule_value(value: Any) -> str:
    normalized = text(value).upper()
    return normalized if normalized in RULE_LABELS else ""


def validate_status_transition(from_status: Any, to_status: Any) -> Dict[str, Any]:
    """
    Valide une transition de statut AVANT toute écriture.

    Transition vers le même statut toujours autorisée.
    Returns {"ok": True} ou {"ok": False, "message": ...}
    """
    current = to_status_value(from_status)
    target = to_status_value(to_status)

    if not current or not target:
        return {"ok": False, "message": "Invalid status value"}
    if current == target:
        return {"ok": True}
    if target not in VALID_EXCEPTION_TRANSITIONS.get(current, []):
        return {"ok": False, "message": f"Invalid status transition from {current} to {target}"}
    return {"ok": True}


def build_case_key(rule_id: str, salesman_id: str, normalized_customer: str) -> str:
    return f"{rule_id}|{salesman_id}|{normalized_customer}"


def to_ageing_bucket(ageing_days: int) -> str:
    if ageing_days <= 7:
        return "0-7"
    if ageing_days <= 14:
        return "8-14"
    return "15+"


# ════════════════════════════════════════════════════════════════════════════
# CANDIDATE DETECTION
# ════════════════════════════════════════════════════════════════════════════

class Journey:
    """Historique des visites d'un couple (commercial, client)"""

    def __init__(self):
        self.salesman_id = ""
        self.salesman_name = ""
        self.team = UNASSIGNED
        self.customer_name = ""
        self.normalized_customer = ""
        self.total_visited = 0
        self.total_enquiries = 0
        self.total_shipments = 0
        self.jsv_count = 0
        self.followup_visit_count = 0
        self.first_seen_date = ""
        self.latest_seen_date = ""
        self.admin_owner_id = ""
        self.timeline: List[Dict[str, Any]] = []

    def add_visit(self, date_key: str, contact_type: str, jsv_with_whom: str, enquiries: int, shipments: int):
        self.total_visited += 1
        self.total_enquiries += enquiries
        self.total_shipments += shipments

        if contact_type == ContactType.JSV.value:
            self.jsv_count += 1
            if not self.admin_owner_id and jsv_with_whom:
                self.admin_owner_id = jsv_with_whom
        if contact_type in FOLLOWUP_CONTACT_TYPES:
            self.followup_visit_count += 1

        if not self.first_seen_date or date_key < self.first_seen_date:
            self.first_seen_date = date_key
        if date_key > self.latest_seen_date:
            self.latest_seen_date = date_key

        self.timeline.append({
            "date": date_key,
            "contact_type": contact_type,
            "visited": True,
            "enquiries_received": enquiries,
            "shipments_converted": shipments,
        })

    def matched_rules(self) -> List[str]:
        rules = []
        if self.total_visited == 1:
            rules.append(ExceptionRule.EX_01.value)
        if self.total_visited > 1 and self.total_enquiries == 0:
            rules.append(ExceptionRule.EX_02.value)
        if self.total_visited > 1 and self.jsv_count == 0:
            rules.append(ExceptionRule.EX_03.value)
        if self.followup_visit_count >= MIN_FOLLOWUPS_FOR_STAGNATION and self.total_shipments == 0:
            rules.append(ExceptionRule.EX_04.value)
        return rules

    def metrics(self) -> Dict[str, int]:
        return {
            "visited_count": self.total_visited,
            "enquiry_count": self.total_enquiries,
            "shipment_count": self.total_shipments,
            "jsv_count": self.jsv_count,
            "followup_visit_count": self.followup_visit_count,
        }


def build_stage5_filter_options(directory: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    users = sorted(directory.values(), key=lambda u: (u["name"].lower(), u["id"]))
    return {
        "salesmen": [{"id": u["id"], "name": u["name"]} for u in users],
        "team": sorted({u["team"] for u in users}),
        "admin": [{"id": u["id"], "name": u["name"]} for u in users if u["role"] == UserRole.ADMIN.value],
        "rule": list(RULE_LABELS.keys()),
        "status": list(VALID_EXCEPTION_STATUSES),
        "ageing_bucket": list(AGEING_BUCKETS),
    }


def build_stage5_candidates(
    users: List[Dict[str, Any]],
    reports: List[Dict[str, Any]],
    range_: Dict[str, Any],
) -> Dict[str, Any]:
    """Rejoue les lignes visitées de la période en journeys, un candidat par règle déclenchée"""
    bounds = week_range_bounds(range_)
    directory = build_user_directory(users)
    journeys = Accumulator(Journey)

    for report in reports or []:
        user = directory.get(str(report.get("salesman_id")))
        if not user:
            continue

        actual_by_date = build_actual_rows_by_date(report.get("actual_output_rows"))

        for planning_row in report.get("planning_rows") or []:
            if not has_meaningful_planning_row(planning_row):
                continue
            date_key = normalize_date_key(planning_row.get("date"))
            if not in_range(date_key, bounds["from_date"], bounds["to_date"]):
                continue

            customer_name = text(planning_row.get("customer_name"))
            normalized_customer = normalize_customer_name(customer_name)
            if not normalized_customer:
                continue

            actual_row = actual_by_date.get(date_key)
            if not is_visited(actual_row):
                continue

            journey = journeys.bucket((user["id"], normalized_customer))
            if not journey.salesman_id:
                journey.salesman_id = user["id"]
                journey.salesman_name = user["name"]
                journey.team = user["team"]
                journey.customer_name = customer_name
                journey.normalized_customer = normalized_customer

            journey.add_visit(
                date_key,
                lower_text(planning_row.get("contact_type")),
                text(planning_row.get("jsv_with_whom")),
                to_non_negative_int(actual_row.get("enquiries_received")),
                to_non_negative_int(actual_row.get("shipments_converted")),
            )

    candidates = []
    for _, journey in journeys.items():
        timeline = sorted(journey.timeline, key=lambda entry: entry["date"])
        for rule_id in journey.matched_rules():
            candidates.append({
                "case_key": build_case_key(rule_id, journey.salesman_id, journey.normalized_customer),
                "rule_id": rule_id,
                "rule_label": RULE_LABELS[rule_id],
                "customer_name": journey.customer_name,
                "normalized_customer": journey.normalized_customer,
                "salesman_id": journey.salesman_id,
                "salesman_name": journey.salesman_name,
                "team": journey.team,
                "admin_owner_id": journey.admin_owner_id,
                "first_seen_date": journey.first_seen_date,
                "latest_seen_date": journey.latest_seen_date,
                "metrics": journey.metrics(),
                "timeline": [dict(entry) for entry in timeline],
            })

    candidates.sort(key=lambda c: c["case_key"])
    logger.debug(f"Stage 5: {len(journeys)} journeys, {len(candidates)} candidates")

    return {"candidates": candidates, "filter_options": build_stage5_filter_options(directory)}


# ════════════════════════════════════════════════════════════════════════════
# PAYLOAD (persisted cases)
# ════════════════════════════════════════════════════════════════════════════

def _resolved_date_key(resolved_at: Any) -> str:
    """Date IST d'un resolved_at (chaîne ISO ou datetime)"""
    if isinstance(resolved_at, datetime):
        instant = resolved_at
    elif isinstance(resolved_at, str) and resolved_at.strip():
        try:
            instant = datetime.fromisoformat(resolved_at.strip().replace("Z", "+00:00"))
        except ValueError:
            return ""
    else:
        return ""
    if instant.tzinfo is None:
        instant = instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(IST_TZ).strftime("%Y-%m-%d")


def _case_row(item: Dict[str, Any], to_date: str) -> Dict[str, Any]:
    first_seen = normalize_date_key(item.get("first_seen_date"))
    ageing_days = max(0, days_between(first_seen, to_date)) if first_seen and to_date else 0
    rule_id = text(item.get("rule_id"))
    raw_id = item.get("id", item.get("_id"))
    return {
        "id": "" if raw_id is None else str(raw_id),
        "case_key": text(item.get("case_key")),
        "rule_id": rule_id,
        "rule_label": RULE_LABELS.get(rule_id, rule_id),
        "customer_name": text(item.get("customer_name")),
        "normalized_customer": normalize_customer_name(item.get("normalized_customer") or item.get("customer_name")),
        "salesman_id": text(item.get("salesman_id")),
        "salesman_name": text(item.get("salesman_name")),
        "team": text(item.get("team")) or UNASSIGNED,
        "admin_owner_id": text(item.get("admin_owner_id")),
        "first_seen_date": first_seen,
        "latest_seen_date": normalize_date_key(item.get("latest_seen_date")),
        "ageing_days": ageing_days,
        "ageing_bucket": to_ageing_bucket(ageing_days),
        "status": to_status_value(item.get("status")) or ExceptionStatus.OPEN.value,
        "active": item.get("active") is True,
        "resolved_at": item.get("resolved_at") or None,
        "metrics": item.get("metrics") or {
            "visited_count": 0,
            "enquiry_count": 0,
            "shipment_count": 0,
            "jsv_count": 0,
            "followup_visit_count": 0,
        },
        "timeline": item.get("timeline") if isinstance(item.get("timeline"), list) else [],
        "status_history": item.get("status_history") if isinstance(item.get("status_history"), list) else [],
    }


def build_stage5_payload(
    cases: List[Dict[str, Any]],
    range_: Dict[str, Any],
    filters: Dict[str, Any],
    filter_options: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Worklist + synthèses sur les cas persistés.

    Backlog ouvert = open + in_review. La tendance compte un cas ouvert dans
    la semaine ISO de first_seen_date et résolu dans la semaine ISO de
    resolved_at (IST), limitée aux semaines de la période.
    """
    filters = filters or {}
    bounds = week_range_bounds(range_)
    to_date = bounds["to_date"]

    filter_salesmen = parse_id_list(filters.get("salesmen"))
    filter_team = text(filters.get("team"))
    filter_admin = text(filters.get("admin"))
    filter_rule = to_rule_value(filters.get("rule"))
    filter_status = to_status_value(filters.get("status"))
    filter_customer = normalize_customer_name(filters.get("customer"))
    filter_ageing = text(filters.get("ageing_bucket"))

    rows = []
    for item in cases or []:
        if not isinstance(item, dict):
            continue
        row = _case_row(item, to_date)
        if filter_salesmen and row["salesman_id"] not in filter_salesmen:
            continue
        if filter_team and row["team"] != filter_team:
            continue
        if filter_admin and row["admin_owner_id"] != filter_admin:
            continue
        if filter_rule and row["rule_id"] != filter_rule:
            continue
        if filter_status and row["status"] != filter_status:
            continue
        if filter_customer and filter_customer not in row["normalized_customer"]:
            continue
        if filter_ageing and row["ageing_bucket"] != filter_ageing:
            continue
        rows.append(row)

    rows.sort(key=lambda row: (-row["ageing_days"], row["rule_id"], row["customer_name"].lower(), row["case_key"]))
    open_rows = [row for row in rows if row["status"] in OPEN_STATUSES]

    open_by_rule = {rule: 0 for rule in RULE_LABELS}
    ageing_buckets = {bucket: 0 for bucket in AGEING_BUCKETS}
    owner_backlog = Accumulator(lambda: {"owner_id": "", "owner_name": "", "team": "", "open": 0})
    for row in open_rows:
        if row["rule_id"] in open_by_rule:
            open_by_rule[row["rule_id"]] += 1
        ageing_buckets[row["ageing_bucket"]] += 1
        owner = owner_backlog.bucket(row["salesman_id"])
        owner.update(owner_id=row["salesman_id"], owner_name=row["salesman_name"], team=row["team"])
        owner["open"] += 1

    trend = Accumulator(lambda: {"opened": 0, "resolved": 0})
    for week_key in range_.get("weeks") or []:
        week = get_week_from_key(week_key)
        if week:
            trend.bucket(week["iso_week"])

    for row in rows:
        if row["first_seen_date"]:
            opened = trend.get(get_iso_week_string(parse_date_key(row["first_seen_date"])))
            if opened is not None:
                opened["opened"] += 1
        resolved_key = _resolved_date_key(row["resolved_at"])
        if resolved_key:
            resolved = trend.get(get_iso_week_string(parse_date_key(resolved_key)))
            if resolved is not None:
                resolved["resolved"] += 1

    return {
        "range": {
            "from": bounds["from_date"],
            "to": to_date,
            "from_week": range_["from_week"]["iso_week"],
            "to_week": range_["to_week"]["iso_week"],
            "timezone": range_.get("timezone"),
            "weeks": list(range_.get("weeks") or []),
        },
        "applied_filters": {
            "salesmen": filter_salesmen,
            "team": filter_team or None,
            "admin": filter_admin or None,
            "rule": filter_rule or None,
            "status": filter_status or None,
            "customer": filter_customer or None,
            "ageing_bucket": filter_ageing or None,
        },
        "summary": {
            "total_rows": len(rows),
            "open_rows": len(open_rows),
            "open_by_rule": open_by_rule,
            "ageing_buckets": ageing_buckets,
            "owner_backlog": sorted(
                owner_backlog.finalize(lambda _, bucket: dict(bucket)),
                key=lambda row: (-row["open"], row["owner_name"].lower(), row["owner_id"]),
            ),
            "resolved_vs_open_trend": sorted(
                trend.finalize(lambda iso_week, bucket: {"week": iso_week, **bucket}),
                key=lambda row: row["week"],
            ),
        },
        "exceptions": {"rows": rows},
        "filter_options": filter_options or {},
    }
