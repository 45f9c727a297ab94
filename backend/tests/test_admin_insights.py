"""
Field Reporting - Admin insights tests
"""

from services.admin_insights import (
    LAG_PROXY_NOTE,
    NO_LAG_NOTE,
    build_insights_payload,
    customer_segment,
    enquiry_to_shipment_lag,
)
from services.ranges import resolve_insights_range
from tests.report_factory import actual_row, make_report, make_user, planning_row

RANGE = resolve_insights_range({"from": "2026-W05", "to": "2026-W07"})


def fixture():
    users = [make_user("u1", "Alice"), make_user("u2", "Bob"), make_user("a1", "Admin", role="admin")]
    reports = [
        make_report("u1", "2026-01-26", planning=[
            planning_row("2026-01-26", "Acme", "nc", "targeted_budgeted", "North"),
            planning_row("2026-01-27", "Acme", "fc", "targeted_budgeted", "North"),
        ], actual=[
            actual_row("2026-01-26", "yes", enquiries=2),
            actual_row("2026-01-27", "yes", shipments=1),
        ]),
        make_report("u2", "2026-01-26", planning=[
            planning_row("2026-01-28", "Bravo", "jsv", "existing", "South"),
        ], actual=[actual_row("2026-01-28", "no", enquiries=1)]),
    ]
    return users, reports


# ═══════════════════════════════════════════════════════════════
# 1. KPIs
# ═══════════════════════════════════════════════════════════════

class TestInsightsKpis:
    """Core KPIs"""

    def test_totals(self):
        """3 planned, 2 visited, 3 enquiries, 1 shipment"""
        payload = build_insights_payload(*fixture(), RANGE)
        assert payload["totals"] == {
            "salespeople": 2,
            "planned_visits": 3,
            "actual_visits": 2,
            "enquiries": 3,
            "shipments": 1,
        }

    def test_rates(self):
        """Numerator and denominator exposed"""
        kpis = build_insights_payload(*fixture(), RANGE)["kpis"]
        assert kpis["visit_completion_rate"] == {"value": 0.6667, "numerator": 2, "denominator": 3}
        assert kpis["enquiry_to_shipment_conversion_rate"] == {"value": 0.3333, "numerator": 1, "denominator": 3}
        assert kpis["enquiries_per_visit"]["value"] == 1.5
        assert kpis["shipments_per_visit"]["value"] == 0.5

    def test_lag(self):
        """Acme: enquiry on Monday, shipment on Tuesday"""
        payload = build_insights_payload(*fixture(), RANGE)
        assert payload["kpis"]["average_days_enquiry_to_shipment"] == 1
        assert payload["kpis"]["average_days_enquiry_to_shipment_samples"] == 1
        assert payload["notes"] == [LAG_PROXY_NOTE]

    def test_most_productive_day(self):
        """Most shipments wins"""
        day = build_insights_payload(*fixture(), RANGE)["kpis"]["most_productive_day"]
        assert day == {"day": "Tuesday", "enquiries": 0, "shipments": 1}

    def test_average_visits_per_week(self):
        """Average over salespeople with activity"""
        kpi = build_insights_payload(*fixture(), RANGE)["kpis"]["average_visits_per_week_per_salesperson"]
        assert kpi["value"] == 1
        assert kpi["salespeople_with_activity"] == 2


# ═══════════════════════════════════════════════════════════════
# 2. CHARTS & TABLES
# ═══════════════════════════════════════════════════════════════

class TestInsightsCharts:
    """Charts and productivity tables"""

    def test_conversion_by_customer_type(self):
        """New vs Existing"""
        rows = build_insights_payload(*fixture(), RANGE)["charts"]["conversion_by_customer_type"]
        by_type = {row["customer_type"]: row for row in rows}
        assert (by_type["New"]["enquiries"], by_type["New"]["shipments"]) == (2, 1)
        assert (by_type["Existing"]["enquiries"], by_type["Existing"]["shipments"]) == (1, 0)

    def test_conversion_by_visit_type(self):
        """One row per contact type, upper-cased"""
        rows = build_insights_payload(*fixture(), RANGE)["charts"]["conversion_by_visit_type"]
        by_type = {row["visit_type"]: row for row in rows}
        assert list(by_type) == ["NC", "FC", "SC", "JSV"]
        assert by_type["NC"]["enquiries"] == 2
        assert by_type["FC"]["shipments"] == 1
        assert by_type["JSV"]["enquiries"] == 1

    def test_contact_type_distribution(self):
        """Shares of planned rows"""
        rows = build_insights_payload(*fixture(), RANGE)["charts"]["contact_type_distribution"]
        assert [(row["type"], row["count"]) for row in rows] == [("NC", 1), ("FC", 1), ("SC", 0), ("JSV", 1)]
        assert rows[0]["percentage"] == 0.3333

    def test_customer_table(self):
        """Acme and Bravo rows"""
        tables = build_insights_payload(*fixture(), RANGE)["tables"]
        assert len(tables["location_productivity"]) == 2
        assert len(tables["salesperson_productivity"]) == 2
        assert tables["customer_productivity"] == [
            {
                "customer": "Acme",
                "planned_visits": 2,
                "actual_visits": 2,
                "enquiries": 2,
                "shipments": 1,
                "completion_rate": 1,
                "conversion_rate": 0.5,
            },
            {
                "customer": "Bravo",
                "planned_visits": 1,
                "actual_visits": 0,
                "enquiries": 1,
                "shipments": 0,
                "completion_rate": 0,
                "conversion_rate": 0,
            },
        ]

    def test_admins_excluded(self):
        """Admin rows never reach the salesperson table"""
        tables = build_insights_payload(*fixture(), RANGE)["tables"]
        assert [row["id"] for row in tables["salesperson_productivity"]] == ["u1", "u2"]


# ═══════════════════════════════════════════════════════════════
# 3. EDGE CASES
# ═══════════════════════════════════════════════════════════════

class TestInsightsEdgeCases:
    """Zero denominators and missing lag"""

    def test_zero_denominators(self):
        """Nothing visited -> rates at 0, lag null"""
        users = [make_user("u1", "Alice")]
        reports = [make_report("u1", "2026-01-26", planning=[
            planning_row("2026-01-26", "Acme", "nc", location_area="North"),
        ], actual=[actual_row("2026-01-26", "no")])]
        payload = build_insights_payload(users, reports, RANGE)
        assert payload["kpis"]["enquiry_to_shipment_conversion_rate"]["value"] == 0
        assert payload["kpis"]["enquiries_per_visit"]["value"] == 0
        assert payload["kpis"]["shipments_per_visit"]["value"] == 0
        assert payload["kpis"]["average_days_enquiry_to_shipment"] is None
        assert payload["notes"] == [LAG_PROXY_NOTE, NO_LAG_NOTE]
        assert payload["tables"]["customer_productivity"][0]["conversion_rate"] == 0

    def test_out_of_range_rows(self):
        """Rows outside the weeks are not counted"""
        users = [make_user("u1", "Alice")]
        reports = [make_report("u1", "2026-01-19", planning=[planning_row("2026-01-19", "Old", "nc")],
                               actual=[actual_row("2026-01-19", "yes")])]
        payload = build_insights_payload(users, reports, RANGE)
        assert payload["totals"]["planned_visits"] == 0
        assert payload["kpis"]["most_productive_day"]["day"] == "Monday"

    def test_lag_needs_strictly_later_shipment(self):
        """Same-day shipment is not a sample"""
        entries = [{"date": "2026-01-26", "enquiries": 1, "shipments": 1}]
        assert enquiry_to_shipment_lag(entries) is None
        entries.append({"date": "2026-01-30", "enquiries": 0, "shipments": 2})
        assert enquiry_to_shipment_lag(entries) == 4

    def test_customer_segment(self):
        """Legacy spellings map to new"""
        assert customer_segment("target_budgeted") == "new"
        assert customer_segment("New_Customer_Non_Budgeted") == "new"
        assert customer_segment("existing") == "existing"
        assert customer_segment("") == ""
