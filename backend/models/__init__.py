"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  Field Reporting - Models Package                                            ║
║                                                                              ║
║  Exports tous les modèles pour import facile                                 ║
║  from models import ContactType, ExceptionStatus, WeeklyReportDocument       ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

# User
from .user import (
    UNASSIGNED,
    UserRole,
)

# Weekly report (planning + actual output)
from .weekly_report import (
    ContactType,
    CustomerType,
    VisitedValue,
    NotVisitedReasonCategory,
    WorkflowStatus,
    CONTACT_TYPE_VALUES,
    CUSTOMER_TYPE_VALUES,
    VISITED_VALUES,
    REASON_CATEGORY_VALUES,
    PlanningRow,
    ActualOutputRow,
    WeeklyReportDocument,
    PlanningRowsUpdate,
    ActualOutputRowsUpdate,
)

# Exception cases (Stage 5)
from .exception_case import (
    ExceptionRule,
    RULE_LABELS,
    ExceptionStatus,
    VALID_EXCEPTION_STATUSES,
    OPEN_STATUSES,
    ExceptionMetrics,
    TimelineEntry,
    StatusHistoryEntry,
    ExceptionCaseDocument,
    StatusTransitionRequest,
)

__all__ = [
    # User
    "UNASSIGNED",
    "UserRole",
    # Weekly report
    "ContactType",
    "CustomerType",
    "VisitedValue",
    "NotVisitedReasonCategory",
    "WorkflowStatus",
    "CONTACT_TYPE_VALUES",
    "CUSTOMER_TYPE_VALUES",
    "VISITED_VALUES",
    "REASON_CATEGORY_VALUES",
    "PlanningRow",
    "ActualOutputRow",
    "WeeklyReportDocument",
    "PlanningRowsUpdate",
    "ActualOutputRowsUpdate",
    # Exception cases
    "ExceptionRule",
    "RULE_LABELS",
    "ExceptionStatus",
    "VALID_EXCEPTION_STATUSES",
    "OPEN_STATUSES",
    "ExceptionMetrics",
    "TimelineEntry",
    "StatusHistoryEntry",
    "ExceptionCaseDocument",
    "StatusTransitionRequest",
]
