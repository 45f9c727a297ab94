"""
Field Reporting - JSV repeat alerts

Warns a salesman when the same customer keeps coming back on JSV rows.
Counts every JSV planning row of every report (no date filter), keyed by
the normalised customer name; a customer triggers when its count is
STRICTLY greater than the threshold.
"""

import logging
from typing import Any, Dict, List

from models.weekly_report import ContactType
from services.analytics_common import lower_text, normalize_customer_name, text

logger = logging.getLogger("jsv_repeat_alerts")

DEFAULT_THRESHOLD = 3


def build_inactive_alert(threshold: int) -> Dict[str, Any]:
    return {"active": False, "threshold": threshold, "customers": [], "message": ""}


def build_alert_message(customers: List[Dict[str, Any]], threshold: int) -> str:
    if not customers:
        return ""
    summary = ", ".join(f"{c['customer_name']} ({c['count']})" for c in customers)
    return f"JSV alert: same customer appears more than {threshold} times. Triggered customers: {summary}"


def build_jsv_repeat_alerts_by_salesman(
    reports: List[Dict[str, Any]],
    threshold: int = DEFAULT_THRESHOLD,
) -> Dict[str, Dict[str, Any]]:
    """salesman_id -> alert, for every salesman that owns at least one report"""
    counts_by_salesman: Dict[str, Dict[str, Dict[str, Any]]] = {}

    for report in reports or []:
        salesman_id = text(report.get("salesman_id"))
        if not salesman_id:
            continue
        customer_counts = counts_by_salesman.setdefault(salesman_id, {})

        for row in report.get("planning_rows") or []:
            if not isinstance(row, dict) or lower_text(row.get("contact_type")) != ContactType.JSV.value:
                continue
            key = normalize_customer_name(row.get("customer_name"))
            if not key:
                continue
            entry = customer_counts.setdefault(key, {"customer_name": text(row.get("customer_name")), "count": 0})
            entry["count"] += 1

    alerts = {}
    for salesman_id, customer_counts in counts_by_salesman.items():
        customers = sorted(
            (dict(entry) for entry in customer_counts.values() if entry["count"] > threshold),
            key=lambda entry: (-entry["count"], entry["customer_name"].lower(), entry["customer_name"]),
        )
        if not customers:
            alerts[salesman_id] = build_inactive_alert(threshold)
            continue
        alerts[salesman_id] = {
            "active": True,
            "threshold": threshold,
            "customers": customers,
            "message": build_alert_message(customers, threshold),
        }

    active = sum(1 for alert in alerts.values() if alert["active"])
    logger.debug(f"JSV alerts: {active}/{len(alerts)} salesmen above threshold {threshold}")
    return alerts
