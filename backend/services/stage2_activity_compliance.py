"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Field Reporting - Stage 2: Activity Compliance (une semaine IST)            ║
║                                                                              ║
║  Commerciaux (lignes planning significatives ET visitées):                   ║
║  - total_calls 20 / nc_count 5 / jsv_count 5 par semaine                     ║
║  - semaine passée  → critical par objectif manqué                            ║
║  - semaine en cours → warning si sous le rythme ceil(target * jours / 7)     ║
║  - service heavy: sc > 50% des appels ET nc sous le rythme                   ║
║                                                                              ║
║  Admins (membres subteam, co-visiteurs JSV):                                 ║
║  - conforme ssi jsv_count >= 6 ("plus de 5 par semaine")                     ║
║  - sinon UNE alerte critical, shortfall = max(0, 6 - jsv_count)              ║
║  - uneven participation: top contributeur > 60% avec >= 5 JSV                ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional

from models.user import UserRole
from models.weekly_report import ContactType
from services.analytics_common import (
    Accumulator,
    build_actual_rows_by_date,
    build_user_directory,
    has_meaningful_planning_row,
    is_visited,
    lower_text,
    normalize_date_key,
    rate,
    safe_divide,
    text,
    user_matches_filters,
)
from services.week import IST_TIME_ZONE, build_week_dates, get_week_parts, ist_today, parse_date_key

logger = logging.getLogger("stage2_activity_compliance")

CRITICAL = "critical"
WARNING = "warning"


class ActivityTargets:
    """Objectifs hebdo, chaque valeur surchargeable à l'appel"""

    def __init__(
        self,
        total_calls: int = 20,
        nc_count: int = 5,
        jsv_count: int = 5,
        admin_jsv_count: int = 6,
        service_heavy_ratio: float = 0.5,
        uneven_share: float = 0.6,
        uneven_min_jsv: int = 5,
    ):
        self.total_calls = total_calls
        self.nc_count = nc_count
        self.jsv_count = jsv_count
        self.admin_jsv_count = admin_jsv_count
        self.service_heavy_ratio = service_heavy_ratio
        self.uneven_share = uneven_share
        self.uneven_min_jsv = uneven_min_jsv

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_calls": self.total_calls,
            "nc_count": self.nc_count,
            "jsv_count": self.jsv_count,
            "admin_jsv_count": self.admin_jsv_count,
        }


SALESMAN_RULES = [
    ("total_calls", "Total Calls"),
    ("nc_count", "New Calls"),
    ("jsv_count", "Joint Sales Visits"),
]


def _new_stats() -> Dict[str, int]:
    return {"total_calls": 0, "nc_count": 0, "jsv_count": 0, "fc_count": 0, "sc_count": 0}


def _new_admin_tally() -> Dict[str, Any]:
    return {"jsv_count": 0, "contributors": Accumulator(lambda: {"count": 0})}


def _week_timing(week: Dict[str, Any], now: Optional[datetime]) -> Dict[str, Any]:
    current_week = get_week_parts(now)
    is_current = week["key"] == current_week["key"]
    elapsed_days = 7
    if is_current:
        elapsed_days = (ist_today(now) - parse_date_key(week["start_date"])).days + 1
        elapsed_days = max(1, min(7, elapsed_days))
    return {
        "is_past": week["key"] < current_week["key"],
        "is_current": is_current,
        "elapsed_days": elapsed_days,
    }


def expected_pace(target: int, elapsed_days: int) -> int:
    return math.ceil(target * elapsed_days / 7)


def evaluate_salesman_alerts(stats: Dict[str, int], targets: ActivityTargets, timing: Dict[str, Any]) -> List[Dict[str, Any]]:
    alerts = []
    for rule_key, label in SALESMAN_RULES:
        current = stats[rule_key]
        weekly_target = getattr(targets, rule_key)
        pace = expected_pace(weekly_target, timing["elapsed_days"])

        if timing["is_past"] and current < weekly_target:
            alerts.append({
                "rule_key": rule_key,
                "severity": CRITICAL,
                "status": "open",
                "current": current,
                "target": weekly_target,
                "shortfall": weekly_target - current,
                "message": f"{label} target missed ({current}/{weekly_target})",
                "recommendation": f"Increase {label} activity to meet weekly target.",
            })
        elif timing["is_current"] and current < pace:
            alerts.append({
                "rule_key": rule_key,
                "severity": WARNING,
                "status": "open",
                "current": current,
                "target": pace,
                "shortfall": pace - current,
                "message": f"{label} below pace ({current}/{pace})",
                "recommendation": f"Increase {label} activity to meet daily target.",
            })

    is_service_heavy = safe_divide(stats["sc_count"], stats["total_calls"]) > targets.service_heavy_ratio
    nc_pace = expected_pace(targets.nc_count, timing["elapsed_days"])
    if is_service_heavy and stats["nc_count"] < nc_pace and (timing["is_past"] or timing["is_current"]):
        alerts.append({
            "rule_key": "service_heavy",
            "severity": CRITICAL if timing["is_past"] else WARNING,
            "status": "open",
            "current": stats["sc_count"],
            "target": nc_pace,
            "shortfall": nc_pace - stats["nc_count"],
            "message": "High Service Call ratio with low New Call pace",
            "recommendation": "Balance service calls with more new business acquisition.",
        })
    return alerts


def _build_admin_card(admin: Dict[str, Any], tally: Dict[str, Any], targets: ActivityTargets) -> Dict[str, Any]:
    jsv_count = tally["jsv_count"]
    target = targets.admin_jsv_count
    contributors = sorted(
        tally["contributors"].finalize(lambda user, bucket: {
            "salesperson_id": user[0],
            "name": user[1],
            "jsv_count_with_admin": bucket["count"],
            "share_pct": rate(bucket["count"], jsv_count),
        }),
        key=lambda row: (-row["jsv_count_with_admin"], row["name"].lower(), row["salesperson_id"]),
    )

    # Conforme = plus de 5 JSV dans la semaine
    is_compliant = jsv_count >= target
    alerts = []
    if not is_compliant:
        alerts.append({
            "rule_key": "admin_jsv",
            "severity": CRITICAL,
            "status": "open",
            "current": jsv_count,
            "target": target,
            "shortfall": max(0, target - jsv_count),
            "message": f"Weekly JSV target missed ({jsv_count}/{target}): admins must join more than {target - 1} JSVs per week",
        })

    top = contributors[0] if contributors else None
    uneven = bool(top) and top["share_pct"] > targets.uneven_share and jsv_count >= targets.uneven_min_jsv
    if uneven:
        alerts.append({
            "rule_key": "uneven_participation",
            "severity": WARNING,
            "status": "open",
            "current": top["jsv_count_with_admin"],
            "message": f"Uneven participation detected: {top['name']} has {round(top['share_pct'] * 100)}% share.",
        })

    return {
        "admin": {"id": admin["id"], "name": admin["name"], "team": admin["team"]},
        "jsv_count": jsv_count,
        "target": target,
        "shortfall": max(0, target - jsv_count),
        "is_compliant": is_compliant,
        "contributors": contributors,
        "uneven_participation": uneven,
        "alerts": alerts,
    }


def build_stage2_payload(
    users: List[Dict[str, Any]],
    reports: List[Dict[str, Any]],
    week: Dict[str, Any],
    filters: Dict[str, Any],
    targets: Optional[ActivityTargets] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Cartes de conformité d'une semaine.

    Une carte par commercial non admin passant les filtres (même sans ligne).
    Une carte par admin: son jsv_count vient des lignes des commerciaux
    filtrés dont jsv_with_whom est son id.
    """
    filters = filters or {}
    targets = targets or ActivityTargets()
    timing = _week_timing(week, now)
    week_dates = set(build_week_dates(week))

    directory = build_user_directory(users)
    admins = sorted(
        (u for u in directory.values() if u["role"] == UserRole.ADMIN.value),
        key=lambda u: (u["name"].lower(), u["id"]),
    )
    salesmen = sorted(
        (u for u in directory.values() if u["role"] != UserRole.ADMIN.value and user_matches_filters(u, filters)),
        key=lambda u: (u["name"].lower(), u["id"]),
    )
    logger.debug(f"Stage 2: {len(salesmen)} salesmen, {len(admins)} admins, week {week['key']}")

    admin_tallies = {admin["id"]: _new_admin_tally() for admin in admins}
    reports_by_salesman: Dict[str, List[Dict[str, Any]]] = {}
    for report in reports or []:
        reports_by_salesman.setdefault(str(report.get("salesman_id")), []).append(report)

    salesman_cards = []
    drilldown = []
    rule_breakdown: Dict[str, int] = {}
    severity_breakdown = {CRITICAL: 0, WARNING: 0}

    for user in salesmen:
        stats = _new_stats()
        for report in reports_by_salesman.get(user["id"], []):
            actual_by_date = build_actual_rows_by_date(report.get("actual_output_rows"))
            for planning_row in report.get("planning_rows") or []:
                if not has_meaningful_planning_row(planning_row):
                    continue
                date_key = normalize_date_key(planning_row.get("date"))
                if date_key not in week_dates or not is_visited(actual_by_date.get(date_key)):
                    continue

                contact_type = lower_text(planning_row.get("contact_type"))
                stats["total_calls"] += 1
                if f"{contact_type}_count" in stats:
                    stats[f"{contact_type}_count"] += 1

                admin_id = text(planning_row.get("jsv_with_whom"))
                if contact_type == ContactType.JSV.value and admin_id in admin_tallies:
                    tally = admin_tallies[admin_id]
                    tally["jsv_count"] += 1
                    tally["contributors"].bucket((user["id"], user["name"]))["count"] += 1

                drilldown.append({
                    "salesperson": {"id": user["id"], "name": user["name"]},
                    "date": date_key,
                    "type": contact_type,
                    "customer_name": text(planning_row.get("customer_name")),
                    "jsv_with_whom": admin_id if contact_type == ContactType.JSV.value else "",
                })

        alerts = evaluate_salesman_alerts(stats, targets, timing)
        for alert in alerts:
            rule_breakdown[alert["rule_key"]] = rule_breakdown.get(alert["rule_key"], 0) + 1
            severity_breakdown[alert["severity"]] += 1

        salesman_cards.append({
            "salesman": {
                "id": user["id"],
                "name": user["name"],
                "main_team": user["main_team"],
                "team": user["team"],
                "sub_team": user["sub_team"],
            },
            "stats": stats,
            "alerts": alerts,
            "is_compliant": not alerts,
        })

    admin_cards = [_build_admin_card(admin, admin_tallies[admin["id"]], targets) for admin in admins]
    for card in admin_cards:
        for alert in card["alerts"]:
            rule_breakdown[alert["rule_key"]] = rule_breakdown.get(alert["rule_key"], 0) + 1
            severity_breakdown[alert["severity"]] += 1

    drilldown.sort(key=lambda row: (row["date"], row["salesperson"]["name"].lower(), row["salesperson"]["id"]))
    compliant_salesmen = sum(1 for card in salesman_cards if card["is_compliant"])
    compliant_admins = sum(1 for card in admin_cards if card["is_compliant"])

    return {
        "week": {
            "key": week["key"],
            "start": week["start_date"],
            "end": week["end_date"],
            "iso_week": week["iso_week"],
            "timezone": week.get("timezone") or IST_TIME_ZONE,
            "is_past_week": timing["is_past"],
            "is_current_week": timing["is_current"],
            "elapsed_days": timing["elapsed_days"],
        },
        "targets": targets.to_dict(),
        "summary": {
            "total_salesmen": len(salesman_cards),
            "compliant_count": compliant_salesmen,
            "non_compliant_count": len(salesman_cards) - compliant_salesmen,
            "total_admins": len(admin_cards),
            "compliant_admin_count": compliant_admins,
            "non_compliant_admin_count": len(admin_cards) - compliant_admins,
            "alert_breakdown": {
                "type": dict(sorted(rule_breakdown.items())),
                "severity": severity_breakdown,
            },
        },
        "salesman_cards": salesman_cards,
        "admin_cards": admin_cards,
        "drilldown": drilldown,
    }
