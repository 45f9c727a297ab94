"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Field Reporting - Weekly report row normalizer                              ║
║                                                                              ║
║  SEUL POINT D'ENTRÉE des lignes planning / actual output en base.            ║
║                                                                              ║
║  Ordre de validation:                                                        ║
║  1. enveloppe: liste de EXACTEMENT 7 lignes                                  ║
║  2. date dans la semaine, sans doublon                                       ║
║  3. enums (customer_type, contact_type, visited, reason category)            ║
║  4. champs conditionnels (jsv_with_whom, raison si visited = no)             ║
║  5. compteurs entiers >= 0                                                   ║
║                                                                              ║
║  Résultat: {"rows": [7 lignes, ordre de la semaine]} ou {"error": msg}       ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
from typing import Any, Dict, List, Optional, Set

from models.weekly_report import (
    CONTACT_TYPE_VALUES,
    CUSTOMER_TYPE_VALUES,
    VISITED_VALUES,
    REASON_CATEGORY_VALUES,
    TEXT_MAX_LENGTH,
    REASON_MAX_LENGTH,
    ContactType,
    VisitedValue,
)
from services.week import build_week_dates, get_iso_week_number, parse_date_key

logger = logging.getLogger("weekly_report_rows")

ROWS_PER_WEEK = 7


# ════════════════════════════════════════════════════════════════════════════
# DEFAULT ROWS
# ════════════════════════════════════════════════════════════════════════════

def _iso_week_of(date_key: str) -> int:
    return get_iso_week_number(parse_date_key(date_key))


def build_default_planning_row(date_key: str) -> Dict[str, Any]:
    return {
        "date": date_key,
        "iso_week": _iso_week_of(date_key),
        "customer_name": "",
        "location_area": "",
        "customer_type": "",
        "contact_type": "",
        "jsv_with_whom": "",
    }


def build_default_actual_output_row(date_key: str) -> Dict[str, Any]:
    return {
        "date": date_key,
        "iso_week": _iso_week_of(date_key),
        "visited": "",
        "not_visited_reason": "",
        "not_visited_reason_category": "",
        "enquiries_received": 0,
        "shipments_converted": 0,
    }


def build_default_planning_rows(week: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [build_default_planning_row(d) for d in build_week_dates(week)]


def build_default_actual_output_rows(week: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [build_default_actual_output_row(d) for d in build_week_dates(week)]


# ════════════════════════════════════════════════════════════════════════════
# HELPERS
# ════════════════════════════════════════════════════════════════════════════

def _text(value: Any, max_length: int) -> str:
    if value is None:
        return ""
    return str(value).strip()[:max_length]


def _token(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip().lower()


def _validate_envelope(rows: Any, label: str) -> Optional[str]:
    if not isinstance(rows, list):
        return f"{label} must be an array of exactly {ROWS_PER_WEEK} rows"
    if len(rows) != ROWS_PER_WEEK:
        return f"{label} must contain exactly {ROWS_PER_WEEK} rows"
    return None


def _parse_non_negative_int(raw: Any) -> Optional[int]:
    """None si invalide, vide = 0"""
    if raw is None or raw == "":
        return 0
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw if raw >= 0 else None
    if isinstance(raw, float):
        return int(raw) if raw.is_integer() and raw >= 0 else None
    try:
        value = float(str(raw).strip())
    except ValueError:
        return None
    if not value.is_integer() or value < 0:
        return None
    return int(value)


def _existing_row(existing_rows_by_date: Optional[Dict[str, Any]], date_key: str) -> Dict[str, Any]:
    if not existing_rows_by_date:
        return {}
    row = existing_rows_by_date.get(date_key)
    return row if isinstance(row, dict) else {}


# ════════════════════════════════════════════════════════════════════════════
# PLANNING ROWS
# ════════════════════════════════════════════════════════════════════════════

def normalize_planning_rows(
    rows: Any,
    week: Dict[str, Any],
    allowed_admin_ids: Optional[Set[str]] = None,
    existing_rows_by_date: Optional[Dict[str, Any]] = None,
    allow_legacy_unchanged: bool = False,
) -> Dict[str, Any]:
    """
    Valide et canonise les 7 lignes planning d'une semaine.

    jsv_with_whom doit désigner un admin de allowed_admin_ids. Avec
    allow_legacy_unchanged, la valeur déjà en base pour cette date est
    acceptée telle quelle (admin supprimé depuis).
    """
    label = "planning.rows"
    envelope_error = _validate_envelope(rows, label)
    if envelope_error:
        return {"error": envelope_error}

    defaults = build_default_planning_rows(week)
    week_dates = {row["date"] for row in defaults}
    normalized_by_date: Dict[str, Dict[str, Any]] = {}
    allowed_admin_ids = set(allowed_admin_ids or ())

    for index, row in enumerate(rows):
        if not isinstance(row, dict):
            return {"error": f"{label}[{index}] must be an object"}

        date_key = str(row.get("date") or "")
        if date_key not in week_dates:
            return {"error": f"{label}[{index}].date must be a valid current-week date"}
        if date_key in normalized_by_date:
            return {"error": f"{label} has duplicate date {date_key}"}

        customer_type = _token(row.get("customer_type"))
        if customer_type and customer_type not in CUSTOMER_TYPE_VALUES:
            return {"error": f"{label} customer_type must be one of: {', '.join(CUSTOMER_TYPE_VALUES)}, or blank"}

        contact_type = _token(row.get("contact_type"))
        if contact_type and contact_type not in CONTACT_TYPE_VALUES:
            return {"error": f"{label} contact_type must be one of: {', '.join(CONTACT_TYPE_VALUES)}, or blank"}

        jsv_with_whom = _text(row.get("jsv_with_whom"), TEXT_MAX_LENGTH)
        if contact_type != ContactType.JSV.value:
            jsv_with_whom = ""
        elif jsv_with_whom and jsv_with_whom not in allowed_admin_ids:
            stored = _text(_existing_row(existing_rows_by_date, date_key).get("jsv_with_whom"), TEXT_MAX_LENGTH)
            if not (allow_legacy_unchanged and stored and stored == jsv_with_whom):
                return {"error": f"{label}[{index}].jsv_with_whom must reference an admin user"}

        normalized_by_date[date_key] = {
            "date": date_key,
            "iso_week": _iso_week_of(date_key),
            "customer_name": _text(row.get("customer_name"), TEXT_MAX_LENGTH),
            "location_area": _text(row.get("location_area"), TEXT_MAX_LENGTH),
            "customer_type": customer_type,
            "contact_type": contact_type,
            "jsv_with_whom": jsv_with_whom,
        }

    return {"rows": [normalized_by_date.get(d["date"], d) for d in defaults]}


# ════════════════════════════════════════════════════════════════════════════
# ACTUAL OUTPUT ROWS
# ════════════════════════════════════════════════════════════════════════════

def normalize_actual_output_rows(
    rows: Any,
    week: Dict[str, Any],
    existing_rows_by_date: Optional[Dict[str, Any]] = None,
    allow_legacy_unchanged: bool = False,
) -> Dict[str, Any]:
    """
    Valide et canonise les 7 lignes actual output d'une semaine.

    visited = no exige une raison et une catégorie. Catégorie vide tolérée
    uniquement pour une ligne legacy renvoyée inchangée (visited = no,
    catégorie vide, même raison) avec allow_legacy_unchanged.
    """
    label = "actual_output.rows"
    envelope_error = _validate_envelope(rows, label)
    if envelope_error:
        return {"error": envelope_error}

    defaults = build_default_actual_output_rows(week)
    week_dates = {row["date"] for row in defaults}
    normalized_by_date: Dict[str, Dict[str, Any]] = {}

    for index, row in enumerate(rows):
        if not isinstance(row, dict):
            return {"error": f"{label}[{index}] must be an object"}

        date_key = str(row.get("date") or "")
        if date_key not in week_dates:
            return {"error": f"{label}[{index}].date must be a valid current-week date"}
        if date_key in normalized_by_date:
            return {"error": f"{label} has duplicate date {date_key}"}

        visited = _token(row.get("visited"))
        if visited and visited not in VISITED_VALUES:
            return {"error": f"{label} visited must be one of: {', '.join(VISITED_VALUES)}, or blank"}

        reason = _text(row.get("not_visited_reason"), REASON_MAX_LENGTH)
        category = _token(row.get("not_visited_reason_category"))

        if visited == VisitedValue.NO.value:
            if not reason:
                return {"error": f"{label}[{index}].not_visited_reason is required when visited is no"}
            if category and category not in REASON_CATEGORY_VALUES:
                return {"error": f"{label}[{index}].not_visited_reason_category is invalid"}
            if not category:
                stored = _existing_row(existing_rows_by_date, date_key)
                is_unchanged_legacy = (
                    allow_legacy_unchanged
                    and _token(stored.get("visited")) == VisitedValue.NO.value
                    and not _token(stored.get("not_visited_reason_category"))
                    and _text(stored.get("not_visited_reason"), REASON_MAX_LENGTH) == reason
                )
                if not is_unchanged_legacy:
                    return {"error": f"{label}[{index}].not_visited_reason_category is required when visited is no"}

        counts = {}
        for field in ("enquiries_received", "shipments_converted"):
            value = _parse_non_negative_int(row.get(field))
            if value is None:
                return {"error": f"{label}[{index}].{field} must be a non-negative integer"}
            counts[field] = value

        not_visited = visited == VisitedValue.NO.value
        normalized_by_date[date_key] = {
            "date": date_key,
            "iso_week": _iso_week_of(date_key),
            "visited": visited,
            "not_visited_reason": reason if not_visited else "",
            "not_visited_reason_category": category if not_visited else "",
            "enquiries_received": counts["enquiries_received"],
            "shipments_converted": counts["shipments_converted"],
        }

    return {"rows": [normalized_by_date.get(d["date"], d) for d in defaults]}


# ════════════════════════════════════════════════════════════════════════════
# REPAIR
# ════════════════════════════════════════════════════════════════════════════

def _rows_by_date(rows: Any) -> Dict[str, Any]:
    return {
        str(row.get("date")): row
        for row in (rows if isinstance(rows, list) else [])
        if isinstance(row, dict)
    }


def ensure_week_rows(report: Dict[str, Any], week: Dict[str, Any]) -> bool:
    """
    Ramène un rapport stocké à 7 lignes canoniques par grille.

    Les valeurs en base sont ré-acceptées en legacy inchangé. Une grille
    toujours invalide repart des lignes vides. Modifie le rapport, retourne
    True si quelque chose a changé.
    """
    planning_input = report.get("planning_rows")
    actual_input = report.get("actual_output_rows")

    planning_result = normalize_planning_rows(
        planning_input if isinstance(planning_input, list) else build_default_planning_rows(week),
        week,
        existing_rows_by_date=_rows_by_date(planning_input),
        allow_legacy_unchanged=True,
    )
    actual_result = normalize_actual_output_rows(
        actual_input if isinstance(actual_input, list) else build_default_actual_output_rows(week),
        week,
        existing_rows_by_date=_rows_by_date(actual_input),
        allow_legacy_unchanged=True,
    )

    if "error" in planning_result:
        logger.warning(f"Report {report.get('id')} planning rows reset: {planning_result['error']}")
    if "error" in actual_result:
        logger.warning(f"Report {report.get('id')} actual output rows reset: {actual_result['error']}")

    planning_rows = planning_result.get("rows") or build_default_planning_rows(week)
    actual_rows = actual_result.get("rows") or build_default_actual_output_rows(week)

    changed = False
    if planning_input != planning_rows:
        report["planning_rows"] = planning_rows
        changed = True
    if actual_input != actual_rows:
        report["actual_output_rows"] = actual_rows
        changed = True
    return changed
