"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Field Reporting - Modèle Exception Case (worklist Stage 5)                  ║
║                                                                              ║
║  case_key = rule_id|salesman_id|normalized_customer  (UNIQUE)                ║
║  - Une re-détection met à jour le cas existant, jamais de doublon            ║
║  - Un cas n'est jamais supprimé, seulement passé resolved / ignored          ║
║  - Chaque changement de statut est ajouté à status_history                   ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from enum import Enum
from typing import Optional, List
from pydantic import BaseModel, ConfigDict


class ExceptionRule(str, Enum):
    EX_01 = "EX-01"
    EX_02 = "EX-02"
    EX_03 = "EX-03"
    EX_04 = "EX-04"


RULE_LABELS = {
    ExceptionRule.EX_01.value: "Single Visit No Follow-up",
    ExceptionRule.EX_02.value: "Repeat Visit No Enquiry",
    ExceptionRule.EX_03.value: "Repeat Visit No JSV",
    ExceptionRule.EX_04.value: "Follow-up Stagnation",
}


class ExceptionStatus(str, Enum):
    OPEN = "open"
    IN_REVIEW = "in_review"
    RESOLVED = "resolved"
    IGNORED = "ignored"


VALID_EXCEPTION_STATUSES = [s.value for s in ExceptionStatus]

# Statuts comptés comme backlog
OPEN_STATUSES = [ExceptionStatus.OPEN.value, ExceptionStatus.IN_REVIEW.value]


class ExceptionMetrics(BaseModel):
    visited_count: int = 0
    enquiry_count: int = 0
    shipment_count: int = 0
    jsv_count: int = 0
    followup_visit_count: int = 0


class TimelineEntry(BaseModel):
    date: str
    contact_type: str = ""
    visited: bool = False
    enquiries_received: int = 0
    shipments_converted: int = 0


class StatusHistoryEntry(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    from_status: ExceptionStatus
    to_status: ExceptionStatus
    changed_by: str = ""
    changed_at: str
    note: str = ""


class ExceptionCaseDocument(BaseModel):
    """
    Structure complète d'un cas d'exception en base
    Les nouveaux cas sont construits ici puis model_dump()
    """
    model_config = ConfigDict(extra="ignore", use_enum_values=True)

    id: str
    case_key: str
    rule_id: ExceptionRule
    customer_name: str
    normalized_customer: str
    salesman_id: str
    salesman_name: str
    team: str = "Unassigned"
    admin_owner_id: str = ""
    first_seen_date: str
    latest_seen_date: str
    status: ExceptionStatus = ExceptionStatus.OPEN
    active: bool = True
    resolved_at: Optional[str] = None
    last_computed_at: Optional[str] = None
    metrics: ExceptionMetrics = ExceptionMetrics()
    timeline: List[TimelineEntry] = []
    status_history: List[StatusHistoryEntry] = []
    created_at: str = ""
    updated_at: str = ""


class StatusTransitionRequest(BaseModel):
    status: str
    changed_by: str = ""
    note: str = ""
