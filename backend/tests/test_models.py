"""
Field Reporting - Models tests
Row fields take the enum value or the blank string, nothing else
"""

import pytest
from pydantic import ValidationError

from models import ActualOutputRow, PlanningRow, StatusHistoryEntry


class TestRowModels:
    """PlanningRow / ActualOutputRow"""

    def test_planning_enum_values(self):
        """nc / existing stored as plain strings"""
        row = PlanningRow(date="2026-02-16", iso_week=8, contact_type="nc", customer_type="existing")
        dumped = row.model_dump()
        assert dumped["contact_type"] == "nc"
        assert dumped["customer_type"] == "existing"
        assert type(dumped["contact_type"]) is str

    def test_planning_blank_allowed(self):
        """Blank is not an enum member but is accepted"""
        row = PlanningRow(date="2026-02-16", iso_week=8)
        assert row.contact_type == ""
        assert row.customer_type == ""

    def test_planning_unknown_contact_type(self):
        """visit is not a contact type"""
        with pytest.raises(ValidationError):
            PlanningRow(date="2026-02-16", iso_week=8, contact_type="visit")

    def test_actual_output_values(self):
        """visited / category closed vocabularies, counts >= 0"""
        row = ActualOutputRow(
            date="2026-02-16", iso_week=8, visited="no",
            not_visited_reason="Closed", not_visited_reason_category="client_unavailable",
        )
        assert row.model_dump()["not_visited_reason_category"] == "client_unavailable"
        with pytest.raises(ValidationError):
            ActualOutputRow(date="2026-02-16", iso_week=8, visited="maybe")
        with pytest.raises(ValidationError):
            ActualOutputRow(date="2026-02-16", iso_week=8, enquiries_received=-1)


class TestStatusHistoryEntry:
    """Exception status history"""

    def test_unknown_status_rejected(self):
        """closed is not an exception status"""
        with pytest.raises(ValidationError):
            StatusHistoryEntry(from_status="open", to_status="closed", changed_at="2026-02-16T00:00:00+00:00")
