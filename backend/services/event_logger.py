"""
Field Reporting - Event Logger

Audit trail for weekly report saves and exception status changes.
Called by the persistence services, never by the pure analytics builders.
"""

import logging
import uuid
from typing import Any, Dict, Optional

from config import db, now_iso

logger = logging.getLogger("event_logger")


async def log_event(
    action: str,
    entity_type: str,
    entity_id: str,
    user: str = "system",
    details: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Append one record to db.event_log and return its id.

    Args:
        action: planning_saved | actual_output_saved | status_updated | exception_status_change
        entity_type: weekly_report | exception_case
        entity_id: report id or case id
        user: salesman id, admin email, or "system"
        details: week_key, from_status / to_status, case_key...
    """
    event_id = str(uuid.uuid4())
    await db.event_log.insert_one({
        "id": event_id,
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "user": user,
        "details": details or {},
        "created_at": now_iso(),
    })
    logger.debug(f"[EVENTS] {action} {entity_type}/{entity_id} by {user}")
    return event_id
