"""
Field Reporting - Analytics primitives tests
"""

import math

from services.analytics_common import (
    Accumulator,
    ConversionMetrics,
    VisitMetrics,
    build_actual_rows_by_date,
    build_user_directory,
    days_between,
    has_meaningful_planning_row,
    normalize_customer_name,
    normalize_date_key,
    parse_id_list,
    round_rate,
    safe_divide,
    to_non_negative_int,
    user_matches_filters,
)


class TestRatios:
    """safe_divide / round_rate"""

    def test_divide_by_zero_is_zero(self):
        """Never NaN or Infinity"""
        assert safe_divide(5, 0) == 0
        assert safe_divide(0, 0) == 0

    def test_plain_division(self):
        """5 / 2"""
        assert safe_divide(5, 2) == 2.5

    def test_round_rate_four_places(self):
        """4 / 6 -> 0.6667"""
        assert round_rate(4 / 6) == 0.6667

    def test_round_rate_non_finite(self):
        """NaN / inf collapse to 0"""
        assert round_rate(math.nan) == 0
        assert round_rate(math.inf) == 0


class TestAccumulator:
    """Group-by buckets"""

    def test_preseeded_keys_keep_order(self):
        """Seeded keys come first, in order, even when empty"""
        acc = Accumulator(VisitMetrics, ["nc", "fc"])
        acc.bucket("zz").add(True)
        rows = acc.finalize(lambda key, metrics: {"key": key, **metrics.to_dict()})
        assert [row["key"] for row in rows] == ["nc", "fc", "zz"]
        assert rows[0]["planned_visits"] == 0
        assert rows[2]["actual_visits"] == 1

    def test_bucket_get_or_create(self):
        """Same key -> same bucket"""
        acc = Accumulator(list)
        acc.bucket("a").append(1)
        acc.bucket("a").append(2)
        assert acc.get("a") == [1, 2]
        assert "b" not in acc
        assert len(acc) == 1


class TestMetrics:
    """VisitMetrics / ConversionMetrics"""

    def test_visit_metrics(self):
        """6 planned, 4 actual"""
        metrics = VisitMetrics()
        for visited in [True, True, True, True, False, False]:
            metrics.add(visited)
        assert metrics.to_dict() == {
            "planned_visits": 6,
            "actual_visits": 4,
            "variance": 2,
            "achievement_rate": 0.6667,
        }

    def test_conversion_metrics(self):
        """Ratios on zero denominators are 0"""
        metrics = ConversionMetrics()
        metrics.add(False, 0, 0)
        assert metrics.visit_to_enquiry_ratio == 0
        metrics.add(True, 4, 1)
        assert metrics.visit_to_enquiry_ratio == 4
        assert metrics.enquiry_to_shipment_conversion == 0.25


class TestRowGuards:
    """Readers for stored rows"""

    def test_customer_name_normalization(self):
        """Trim, lowercase, collapse whitespace"""
        assert normalize_customer_name("  Acme   Corp ") == "acme corp"
        assert normalize_customer_name(None) == ""

    def test_meaningful_row(self):
        """Any of the five identifying fields counts"""
        assert not has_meaningful_planning_row({"date": "2026-02-09"})
        assert not has_meaningful_planning_row({"customer_name": "   "})
        assert has_meaningful_planning_row({"location_area": "North"})
        assert has_meaningful_planning_row({"jsv_with_whom": "admin-1"})
        assert not has_meaningful_planning_row("row")

    def test_non_negative_int(self):
        """Invalid and negative counts read as 0"""
        assert to_non_negative_int(3) == 3
        assert to_non_negative_int("2") == 2
        assert to_non_negative_int(-1) == 0
        assert to_non_negative_int("x") == 0
        assert to_non_negative_int(None) == 0
        assert to_non_negative_int(True) == 0

    def test_normalize_date_key(self):
        """Trimmed valid key, else blank"""
        assert normalize_date_key(" 2026-02-09 ") == "2026-02-09"
        assert normalize_date_key("2026-02-30") == ""
        assert normalize_date_key(20260209) == ""

    def test_days_between(self):
        """Across a month boundary"""
        assert days_between("2026-01-30", "2026-02-02") == 3

    def test_actual_rows_by_date(self):
        """Rows without a valid date are ignored"""
        by_date = build_actual_rows_by_date([
            {"date": "2026-02-09", "visited": "yes"},
            {"date": "bad"},
            "junk",
        ])
        assert list(by_date.keys()) == ["2026-02-09"]
        assert build_actual_rows_by_date(None) == {}


class TestUserDirectory:
    """Normalised users and filters"""

    def test_defaults(self):
        """Name falls back to email, teams to Unassigned, _id accepted"""
        directory = build_user_directory([
            {"_id": "u1", "email": "a@x.com", "role": "salesman"},
            {"name": "No id"},
        ])
        assert list(directory.keys()) == ["u1"]
        user = directory["u1"]
        assert user["name"] == "a@x.com"
        assert user["team"] == "Unassigned"
        assert user["main_team"] == "Unassigned"

    def test_parse_id_list(self):
        """Comma strings and lists, de-duplicated"""
        assert parse_id_list("a, b,,a") == ["a", "b"]
        assert parse_id_list(["a", "b,c"]) == ["a", "b", "c"]
        assert parse_id_list(None) == []

    def test_user_matches_filters(self):
        """Ids and team labels must all match"""
        user = build_user_directory([{"id": "u1", "name": "A", "team": "North"}])["u1"]
        assert user_matches_filters(user, {})
        assert user_matches_filters(user, {"salesmen": "u1,u2", "team": "North"})
        assert not user_matches_filters(user, {"salesmen": "u2"})
        assert not user_matches_filters(user, {"team": "South"})
