"""
Field Reporting - Exception case persistence tests
Sync upsert by case_key + validated status transitions
"""

import pytest

import services.event_logger
import services.exception_cases
from models.exception_case import ExceptionCaseDocument
from services.exception_cases import (
    ExceptionCaseNotFoundError,
    ExceptionTransitionError,
    list_exception_cases,
    sync_exception_candidates,
    transition_exception_status,
)
from tests.fake_db import FakeDatabase


@pytest.fixture
def fake_db(monkeypatch):
    db = FakeDatabase()
    monkeypatch.setattr(services.exception_cases, "db", db)
    monkeypatch.setattr(services.event_logger, "db", db)
    return db


def candidate(rule_id="EX-02", customer="acme", **overrides):
    data = {
        "case_key": f"{rule_id}|s1|{customer}",
        "rule_id": rule_id,
        "rule_label": "Repeat Visit No Enquiry",
        "customer_name": customer.title(),
        "normalized_customer": customer,
        "salesman_id": "s1",
        "salesman_name": "Sales One",
        "team": "Team A",
        "admin_owner_id": "",
        "first_seen_date": "2026-02-10",
        "latest_seen_date": "2026-02-11",
        "metrics": {"visited_count": 2, "enquiry_count": 0, "shipment_count": 0,
                    "jsv_count": 0, "followup_visit_count": 1},
        "timeline": [],
    }
    data.update(overrides)
    return data


# ═══════════════════════════════════════════════════════════════
# 1. SYNC
# ═══════════════════════════════════════════════════════════════

class TestSyncCandidates:
    """Upsert by case_key"""

    @pytest.mark.asyncio
    async def test_insert_new_cases(self, fake_db):
        """New candidates open with an empty history"""
        counts = await sync_exception_candidates([candidate(), candidate("EX-03")])
        assert counts == {"inserted": 2, "updated": 0}
        case = fake_db.exception_cases.docs[0]
        assert case["status"] == "open"
        assert case["active"] is True
        assert case["status_history"] == []
        assert case["resolved_at"] is None
        assert case["id"]

    @pytest.mark.asyncio
    async def test_new_case_document_shape(self, fake_db):
        """Inserted case round-trips through ExceptionCaseDocument"""
        timeline = [{"date": "2026-02-10", "contact_type": "fc", "visited": True,
                     "enquiries_received": 0, "shipments_converted": 0}]
        await sync_exception_candidates([candidate(timeline=timeline)])
        case = fake_db.exception_cases.docs[0]
        assert ExceptionCaseDocument(**case).model_dump() == case
        assert type(case["rule_id"]) is str
        assert type(case["status"]) is str
        assert case["metrics"]["visited_count"] == 2
        assert case["timeline"] == timeline
        assert "rule_label" not in case

    @pytest.mark.asyncio
    async def test_redetection_updates_in_place(self, fake_db):
        """Same case_key -> one document, refreshed metrics"""
        await sync_exception_candidates([candidate()])
        refreshed = candidate(
            first_seen_date="2026-02-12",
            latest_seen_date="2026-02-20",
            metrics={"visited_count": 3, "enquiry_count": 0, "shipment_count": 0,
                     "jsv_count": 0, "followup_visit_count": 2},
        )
        counts = await sync_exception_candidates([refreshed])
        assert counts == {"inserted": 0, "updated": 1}
        assert len(fake_db.exception_cases.docs) == 1
        case = fake_db.exception_cases.docs[0]
        assert case["metrics"]["visited_count"] == 3
        assert case["latest_seen_date"] == "2026-02-20"
        # first_seen_date ne recule jamais
        assert case["first_seen_date"] == "2026-02-10"

    @pytest.mark.asyncio
    async def test_status_kept_on_redetection(self, fake_db):
        """A resolved case stays resolved after a refresh"""
        await sync_exception_candidates([candidate()])
        fake_db.exception_cases.docs[0].update(status="resolved", active=False)
        await sync_exception_candidates([candidate()])
        case = fake_db.exception_cases.docs[0]
        assert case["status"] == "resolved"
        assert case["active"] is True

    @pytest.mark.asyncio
    async def test_admin_owner_kept(self, fake_db):
        """A blank owner does not erase the stored one"""
        await sync_exception_candidates([candidate(admin_owner_id="a1")])
        await sync_exception_candidates([candidate(admin_owner_id="")])
        assert fake_db.exception_cases.docs[0]["admin_owner_id"] == "a1"

    @pytest.mark.asyncio
    async def test_empty_sync(self, fake_db):
        """No candidates, no writes"""
        assert await sync_exception_candidates([]) == {"inserted": 0, "updated": 0}
        assert fake_db.exception_cases.docs == []


# ═══════════════════════════════════════════════════════════════
# 2. TRANSITIONS
# ═══════════════════════════════════════════════════════════════

class TestTransitions:
    """transition_exception_status"""

    async def _case_id(self, fake_db):
        await sync_exception_candidates([candidate()])
        return fake_db.exception_cases.docs[0]["id"]

    @pytest.mark.asyncio
    async def test_resolve(self, fake_db):
        """open -> resolved sets resolved_at and appends history"""
        case_id = await self._case_id(fake_db)
        case = await transition_exception_status(case_id, "resolved", "admin@example.com", "  done  ")
        assert case["status"] == "resolved"
        assert case["resolved_at"]
        stored = fake_db.exception_cases.docs[0]
        assert stored["status"] == "resolved"
        assert len(stored["status_history"]) == 1
        entry = stored["status_history"][0]
        assert entry["from_status"] == "open"
        assert entry["to_status"] == "resolved"
        assert entry["changed_by"] == "admin@example.com"
        assert entry["note"] == "done"
        assert type(entry["from_status"]) is str
        assert type(entry["to_status"]) is str

    @pytest.mark.asyncio
    async def test_reopen_clears_resolved_at(self, fake_db):
        """resolved -> open"""
        case_id = await self._case_id(fake_db)
        await transition_exception_status(case_id, "resolved")
        case = await transition_exception_status(case_id, "open")
        assert case["resolved_at"] is None
        assert [h["to_status"] for h in fake_db.exception_cases.docs[0]["status_history"]] == ["resolved", "open"]

    @pytest.mark.asyncio
    async def test_rejected_transition_writes_nothing(self, fake_db):
        """resolved -> ignored is refused before any write"""
        case_id = await self._case_id(fake_db)
        await transition_exception_status(case_id, "resolved")
        with pytest.raises(ExceptionTransitionError, match="Invalid status transition from resolved to ignored"):
            await transition_exception_status(case_id, "ignored")
        stored = fake_db.exception_cases.docs[0]
        assert stored["status"] == "resolved"
        assert len(stored["status_history"]) == 1

    @pytest.mark.asyncio
    async def test_unknown_case(self, fake_db):
        """Missing id -> dedicated error, not a refused transition"""
        with pytest.raises(ExceptionCaseNotFoundError, match="not found"):
            await transition_exception_status("nope", "resolved")

    @pytest.mark.asyncio
    async def test_long_fields_truncated(self, fake_db):
        """changed_by 200 chars, note 1000 chars"""
        case_id = await self._case_id(fake_db)
        await transition_exception_status(case_id, "in_review", "x" * 500, "y" * 5000)
        entry = fake_db.exception_cases.docs[0]["status_history"][0]
        assert len(entry["changed_by"]) == 200
        assert len(entry["note"]) == 1000

    @pytest.mark.asyncio
    async def test_event_logged(self, fake_db):
        """Each accepted transition lands in event_log"""
        case_id = await self._case_id(fake_db)
        await transition_exception_status(case_id, "ignored", "admin")
        events = fake_db.event_log.docs
        assert len(events) == 1
        assert events[0]["action"] == "exception_status_change"
        assert events[0]["entity_id"] == case_id
        assert events[0]["details"]["to_status"] == "ignored"


class TestListCases:
    """list_exception_cases"""

    @pytest.mark.asyncio
    async def test_query_filter(self, fake_db):
        """first_seen_date upper bound"""
        await sync_exception_candidates([
            candidate(),
            candidate("EX-03", "bravo", first_seen_date="2026-03-01"),
        ])
        cases = await list_exception_cases({"first_seen_date": {"$lte": "2026-02-22"}})
        assert [c["case_key"] for c in cases] == ["EX-02|s1|acme"]
