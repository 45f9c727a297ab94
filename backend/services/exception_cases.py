"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Field Reporting - Exception Case persistence                                ║
║                                                                              ║
║  SEUL CE MODULE écrit dans db.exception_cases                                ║
║                                                                              ║
║  - sync: upsert par case_key, le statut d'un cas existant n'est JAMAIS       ║
║    modifié par un recalcul                                                   ║
║  - transition: validation AVANT écriture, historique append-only             ║
║  - resolved_at posé sur "resolved", effacé sur réouverture                   ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from config import db, now_iso
from models.exception_case import ExceptionCaseDocument, ExceptionStatus, StatusHistoryEntry
from services.event_logger import log_event
from services.stage5_exception_quality import to_status_value, validate_status_transition

logger = logging.getLogger("exception_cases")


class ExceptionTransitionError(ValueError):
    """Transition de statut refusée"""
    pass


class ExceptionCaseNotFoundError(LookupError):
    """Aucun cas pour cet id"""
    pass


# ════════════════════════════════════════════════════════════════════════════
# SYNC (Stage 5 refresh)
# ════════════════════════════════════════════════════════════════════════════

async def sync_exception_candidates(candidates: List[Dict[str, Any]], computed_by: str = "system") -> Dict[str, int]:
    """
    Upsert des candidats détectés.

    Existant: metrics, timeline, latest_seen_date rafraîchis, active=True.
    Nouveau: status=open, status_history vide.

    Returns:
        {"inserted": n, "updated": n}
    """
    now = now_iso()
    inserted = 0
    updated = 0

    for candidate in candidates or []:
        case_key = candidate["case_key"]
        existing = await db.exception_cases.find_one({"case_key": case_key}, {"_id": 0})

        if existing:
            await db.exception_cases.update_one(
                {"case_key": case_key},
                {"$set": {
                    "customer_name": candidate["customer_name"],
                    "salesman_name": candidate["salesman_name"],
                    "team": candidate["team"],
                    "admin_owner_id": candidate["admin_owner_id"] or existing.get("admin_owner_id", ""),
                    "first_seen_date": min(
                        existing.get("first_seen_date") or candidate["first_seen_date"],
                        candidate["first_seen_date"],
                    ),
                    "latest_seen_date": candidate["latest_seen_date"],
                    "metrics": candidate["metrics"],
                    "timeline": candidate["timeline"],
                    "active": True,
                    "last_computed_at": now,
                    "updated_at": now,
                }}
            )
            updated += 1
            continue

        case = ExceptionCaseDocument(
            id=str(uuid.uuid4()),
            case_key=case_key,
            rule_id=candidate["rule_id"],
            customer_name=candidate["customer_name"],
            normalized_customer=candidate["normalized_customer"],
            salesman_id=candidate["salesman_id"],
            salesman_name=candidate["salesman_name"],
            team=candidate["team"],
            admin_owner_id=candidate["admin_owner_id"],
            first_seen_date=candidate["first_seen_date"],
            latest_seen_date=candidate["latest_seen_date"],
            status=ExceptionStatus.OPEN.value,
            last_computed_at=now,
            metrics=candidate["metrics"],
            timeline=candidate["timeline"],
            created_at=now,
            updated_at=now,
        )
        await db.exception_cases.insert_one(case.model_dump())
        inserted += 1

    logger.info(
        f"[EXCEPTIONS] Sync by {computed_by}: {inserted} inserted, {updated} updated "
        f"({len(candidates or [])} candidates)"
    )
    return {"inserted": inserted, "updated": updated}


# ════════════════════════════════════════════════════════════════════════════
# STATUS TRANSITION
# ════════════════════════════════════════════════════════════════════════════

async def transition_exception_status(
    case_id: str,
    to_status: str,
    changed_by: str = "",
    note: str = "",
) -> Dict[str, Any]:
    """
    🔒 SEULE FONCTION AUTORISÉE pour changer le statut d'un cas

    1. Charge le cas
    2. Valide la transition (aucune écriture si refusée)
    3. Écrit statut + entrée status_history + resolved_at
    4. Journalise l'événement

    Raises:
        ExceptionCaseNotFoundError si cas inconnu
        ExceptionTransitionError si transition refusée
    """
    case = await db.exception_cases.find_one({"id": case_id}, {"_id": 0})
    if not case:
        raise ExceptionCaseNotFoundError(f"Exception case {case_id} not found")

    from_status = to_status_value(case.get("status")) or ExceptionStatus.OPEN.value
    check = validate_status_transition(from_status, to_status)
    if not check["ok"]:
        logger.warning(f"[EXCEPTIONS] Rejected {case_id}: {from_status} -> {to_status} ({check['message']})")
        raise ExceptionTransitionError(check["message"])

    target = to_status_value(to_status)
    now = now_iso()
    update_data = {"status": target, "updated_at": now}
    if target == ExceptionStatus.RESOLVED.value:
        update_data["resolved_at"] = now
    elif target == ExceptionStatus.OPEN.value:
        update_data["resolved_at"] = None

    history_entry = StatusHistoryEntry(
        from_status=from_status,
        to_status=target,
        changed_by=(changed_by or "").strip()[:200],
        changed_at=now,
        note=(note or "").strip()[:1000],
    ).model_dump()

    await db.exception_cases.update_one(
        {"id": case_id},
        {"$set": update_data, "$push": {"status_history": history_entry}}
    )

    await log_event(
        action="exception_status_change",
        entity_type="exception_case",
        entity_id=case_id,
        user=history_entry["changed_by"] or "system",
        details={"from_status": from_status, "to_status": target, "case_key": case.get("case_key")},
    )

    logger.info(f"[EXCEPTIONS] Case {case_id} {from_status} -> {target}")

    case.update(update_data)
    case["status_history"] = list(case.get("status_history") or []) + [history_entry]
    return case


# ════════════════════════════════════════════════════════════════════════════
# READ
# ════════════════════════════════════════════════════════════════════════════

async def list_exception_cases(query: Optional[Dict[str, Any]] = None, limit: int = 10000) -> List[Dict[str, Any]]:
    return await db.exception_cases.find(query or {}, {"_id": 0}).to_list(limit)
