"""
Field Reporting - Stage 1 (Plan vs Actual) tests
"""

from services.stage1_plan_actual import build_stage1_payload, call_type_bucket
from tests.report_factory import actual_row, make_report, make_user, planning_row

WEEK_RANGE = {
    "from_date": "2026-02-09",
    "to_date": "2026-02-15",
    "mode": "week",
    "label": "2026-W07",
    "timezone": "Asia/Kolkata",
}


def two_salesmen():
    users = [
        make_user("u1", "Alpha", main_team="Main A", team="Team 1", sub_team="Sub 1"),
        make_user("u2", "Beta", main_team="Main A", team="Team 1", sub_team="Sub 2"),
    ]
    reports = [
        make_report("u1", "2026-02-09", planning=[
            planning_row("2026-02-09", "A", "nc", "targeted_budgeted"),
            planning_row("2026-02-10", "B", "", "existing"),
            planning_row("2026-02-11", "C", "jsv", "existing"),
        ], actual=[
            actual_row("2026-02-09", "yes"),
            actual_row("2026-02-10", "no"),
            actual_row("2026-02-11", "yes"),
        ]),
        make_report("u2", "2026-02-09", planning=[
            planning_row("2026-02-12", "D", "fc", "existing"),
            planning_row("2026-02-13", "E", "fc", "existing"),
            planning_row("2026-02-14", "F", "fc", "existing"),
        ], actual=[
            actual_row("2026-02-12", "yes"),
            actual_row("2026-02-13", "yes"),
            actual_row("2026-02-14", "no"),
        ]),
    ]
    return users, reports


class TestStage1Totals:
    """Totals, trends and hierarchy"""

    def test_totals(self):
        """planned 6 / actual 4"""
        users, reports = two_salesmen()
        payload = build_stage1_payload(users, reports, WEEK_RANGE, {})
        assert payload["totals"] == {
            "planned_visits": 6,
            "actual_visits": 4,
            "variance": 2,
            "achievement_rate": 0.6667,
        }

    def test_trends_and_hierarchy(self):
        """One bucket per day / week / month and per team level"""
        users, reports = two_salesmen()
        payload = build_stage1_payload(users, reports, WEEK_RANGE, {})
        assert len(payload["daily_trend"]) == 6
        assert len(payload["weekly_summary"]) == 1
        assert payload["weekly_summary"][0]["iso_week"] == "2026-W07"
        assert len(payload["monthly_rollup"]) == 1
        assert len(payload["hierarchy_rollups"]["salesperson"]) == 2
        assert len(payload["hierarchy_rollups"]["main_team"]) == 1
        assert len(payload["hierarchy_rollups"]["team"]) == 1
        assert len(payload["hierarchy_rollups"]["sub_team"]) == 2

    def test_unknown_call_type(self):
        """Blank contact type lands in the unknown bucket"""
        users, reports = two_salesmen()
        payload = build_stage1_payload(users, reports, WEEK_RANGE, {})
        unknown = next(row for row in payload["breakdowns"]["call_type"] if row["call_type"] == "unknown")
        assert unknown["planned_visits"] == 1
        assert unknown["actual_visits"] == 0

    def test_call_type_order(self):
        """Fixed breakdown order, unknown last"""
        users, reports = two_salesmen()
        payload = build_stage1_payload(users, reports, WEEK_RANGE, {})
        assert [row["call_type"] for row in payload["breakdowns"]["call_type"]] == ["nc", "fc", "jsv", "sc", "unknown"]

    def test_out_of_range_rows_ignored(self):
        """Rows outside the range are not counted"""
        users, reports = two_salesmen()
        narrow = dict(WEEK_RANGE, from_date="2026-02-12", to_date="2026-02-12")
        payload = build_stage1_payload(users, reports, narrow, {})
        assert payload["totals"]["planned_visits"] == 1

    def test_placeholder_rows_ignored(self):
        """Blank planning rows are not visits"""
        users = [make_user("u1", "Alpha")]
        reports = [make_report("u1", "2026-02-09", planning=[planning_row("2026-02-09")],
                               actual=[actual_row("2026-02-09", "yes")])]
        payload = build_stage1_payload(users, reports, WEEK_RANGE, {})
        assert payload["totals"]["planned_visits"] == 0
        assert payload["totals"]["achievement_rate"] == 0

    def test_missing_actual_rows(self):
        """A report without actual output counts as not visited"""
        users = [make_user("u1", "Alpha")]
        report = make_report("u1", "2026-02-09", planning=[planning_row("2026-02-09", "A", "nc")])
        report["actual_output_rows"] = None
        payload = build_stage1_payload(users, [report], WEEK_RANGE, {})
        assert payload["totals"]["planned_visits"] == 1
        assert payload["totals"]["actual_visits"] == 0


class TestStage1Filters:
    """Salesman / call type / team filters"""

    def test_call_type_filter(self):
        """Only fc rows"""
        users, reports = two_salesmen()
        payload = build_stage1_payload(users, reports, WEEK_RANGE, {"call_type": "FC"})
        assert payload["totals"]["planned_visits"] == 3
        assert payload["filters_applied"]["call_type"] == "fc"

    def test_salesmen_filter(self):
        """Comma separated ids"""
        users, reports = two_salesmen()
        payload = build_stage1_payload(users, reports, WEEK_RANGE, {"salesmen": "u1"})
        assert payload["totals"]["planned_visits"] == 3
        assert payload["filters_applied"]["salesmen"] == ["u1"]

    def test_sub_team_filter(self):
        """Exact team label"""
        users, reports = two_salesmen()
        payload = build_stage1_payload(users, reports, WEEK_RANGE, {"sub_team": "Sub 2"})
        assert payload["totals"]["actual_visits"] == 2

    def test_filter_options(self):
        """Options come from the user directory"""
        users, reports = two_salesmen()
        options = build_stage1_payload(users, reports, WEEK_RANGE, {})["filter_options"]
        assert [o["id"] for o in options["salesmen"]] == ["u1", "u2"]
        assert options["sub_team"] == ["Sub 1", "Sub 2"]


class TestStage1Ranking:
    """Top performers"""

    def test_ranking_requires_minimum_planned(self):
        """u3 has a single planned visit and is not ranked"""
        users = [make_user("u1", "A"), make_user("u2", "B"), make_user("u3", "C")]
        reports = [
            make_report("u1", "2026-02-09", planning=[
                planning_row("2026-02-09", "c1", "nc"),
                planning_row("2026-02-10", "c2", "nc"),
                planning_row("2026-02-11", "c3", "nc"),
            ], actual=[actual_row(d, "yes") for d in ["2026-02-09", "2026-02-10", "2026-02-11"]]),
            make_report("u2", "2026-02-09", planning=[
                planning_row("2026-02-09", "d1", "fc"),
                planning_row("2026-02-10", "d2", "fc"),
                planning_row("2026-02-11", "d3", "fc"),
            ], actual=[
                actual_row("2026-02-09", "yes"),
                actual_row("2026-02-10", "no"),
                actual_row("2026-02-11", "no"),
            ]),
            make_report("u3", "2026-02-09", planning=[planning_row("2026-02-09", "e1", "jsv")],
                        actual=[actual_row("2026-02-09", "yes")]),
        ]
        top = build_stage1_payload(users, reports, WEEK_RANGE, {})["top_performers"]
        assert top["minimum_planned_visits"] == 3
        assert top["over_achievers"][0]["id"] == "u1"
        assert top["under_achievers"][0]["id"] == "u2"
        assert all(row["id"] != "u3" for row in top["over_achievers"])

    def test_call_type_bucket(self):
        """Unknown values fall back"""
        assert call_type_bucket(" JSV ") == "jsv"
        assert call_type_bucket("visit") == "unknown"
