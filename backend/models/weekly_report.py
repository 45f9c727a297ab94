"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Field Reporting - Modèle Weekly Report                                      ║
║                                                                              ║
║  Un rapport par commercial et par semaine IST (week_key = lundi)             ║
║  - planning_rows: EXACTEMENT 7 lignes, une par jour, alignées sur les dates  ║
║  - actual_output_rows: EXACTEMENT 7 lignes, une par jour                     ║
║                                                                              ║
║  Valeur vide = "", jamais un membre d'enum.                                  ║
║  Les lignes n'entrent en base que via services/weekly_report_rows.py         ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from enum import Enum
from typing import Optional, List, Any, Literal, Union
from pydantic import BaseModel, ConfigDict, Field


class ContactType(str, Enum):
    """Type d'appel planifié pour un client"""
    NC = "nc"     # Nouveau client
    FC = "fc"     # Suivi
    SC = "sc"     # Service
    JSV = "jsv"   # Visite conjointe (jsv_with_whom = id admin obligatoire)


class CustomerType(str, Enum):
    TARGETED_BUDGETED = "targeted_budgeted"
    EXISTING = "existing"


class VisitedValue(str, Enum):
    YES = "yes"
    NO = "no"


class NotVisitedReasonCategory(str, Enum):
    CLIENT_UNAVAILABLE = "client_unavailable"
    NO_RESPONSE = "no_response"
    INTERNAL_ENGAGEMENT = "internal_engagement"
    TRAVEL_LOGISTICS_ISSUE = "travel_logistics_issue"


class WorkflowStatus(str, Enum):
    """Avancement déclaré par le commercial (non lu par les analytics)"""
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    COMPLETED = "completed"


# Pour validation ("" = blank)
CONTACT_TYPE_VALUES = [c.value for c in ContactType]
CUSTOMER_TYPE_VALUES = [c.value for c in CustomerType]
VISITED_VALUES = [v.value for v in VisitedValue]
REASON_CATEGORY_VALUES = [r.value for r in NotVisitedReasonCategory]

TEXT_MAX_LENGTH = 200
REASON_MAX_LENGTH = 1000


class PlanningRow(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    date: str
    iso_week: int = Field(ge=1, le=53)
    customer_name: str = ""
    location_area: str = ""
    customer_type: Union[CustomerType, Literal[""]] = ""
    contact_type: Union[ContactType, Literal[""]] = ""
    jsv_with_whom: str = ""


class ActualOutputRow(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    date: str
    iso_week: int = Field(ge=1, le=53)
    visited: Union[VisitedValue, Literal[""]] = ""
    not_visited_reason: str = ""
    not_visited_reason_category: Union[NotVisitedReasonCategory, Literal[""]] = ""
    enquiries_received: int = Field(default=0, ge=0)
    shipments_converted: int = Field(default=0, ge=0)


class WeeklyReportDocument(BaseModel):
    """
    Structure complète d'un rapport hebdomadaire en base
    Les documents neufs sont construits ici puis model_dump()
    """
    model_config = ConfigDict(extra="ignore", use_enum_values=True)

    id: str
    salesman_id: str
    week_key: str
    iso_week: str = ""
    week_start_date_utc: str
    week_end_date_utc: str
    planning_rows: List[PlanningRow] = []
    actual_output_rows: List[ActualOutputRow] = []
    planning_submitted_at: Optional[str] = None
    actual_output_updated_at: Optional[str] = None
    current_status: WorkflowStatus = WorkflowStatus.NOT_STARTED
    status_note: str = ""
    status_updated_at: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""


class PlanningRowsUpdate(BaseModel):
    """Body PUT de la grille planning"""
    week_key: Optional[str] = None
    rows: Any = None
    submitted: bool = False


class ActualOutputRowsUpdate(BaseModel):
    """Body PUT de la grille actual output"""
    week_key: Optional[str] = None
    rows: Any = None
