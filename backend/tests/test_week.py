"""
Field Reporting - Week kernel tests
Run: cd backend && pytest tests/test_week.py -v
"""

from datetime import date, datetime, timezone

from services.week import (
    build_week_dates,
    format_date_key,
    get_iso_week_string,
    get_week_from_iso_week,
    get_week_from_key,
    get_week_parts,
    parse_date_key,
    resolve_week_from_query,
    shift_week,
)


# ═══════════════════════════════════════════════════════════════
# 1. DATE KEYS
# ═══════════════════════════════════════════════════════════════

class TestDateKeys:
    """YYYY-MM-DD parsing and formatting"""

    def test_format_date(self):
        """date -> YYYY-MM-DD"""
        assert format_date_key(date(2026, 2, 9)) == "2026-02-09"

    def test_parse_valid_key(self):
        """Valid key parses to a date"""
        assert parse_date_key("2026-02-28") == date(2026, 2, 28)

    def test_parse_rejects_impossible_date(self):
        """2026-02-30 does not exist"""
        assert parse_date_key("2026-02-30") is None

    def test_parse_rejects_bad_shape(self):
        """Only zero-padded YYYY-MM-DD is accepted"""
        assert parse_date_key("2026-2-9") is None
        assert parse_date_key("") is None
        assert parse_date_key(None) is None


# ═══════════════════════════════════════════════════════════════
# 2. ISO WEEKS
# ═══════════════════════════════════════════════════════════════

class TestIsoWeek:
    """ISO-8601 week labels"""

    def test_mid_year(self):
        """Monday 2026-02-09 is in 2026-W07"""
        assert get_iso_week_string(date(2026, 2, 9)) == "2026-W07"

    def test_sunday_belongs_to_previous_monday(self):
        """Sunday 2026-02-15 still in 2026-W07"""
        assert get_iso_week_string(date(2026, 2, 15)) == "2026-W07"

    def test_year_boundary_backwards(self):
        """2027-01-01 (Friday) belongs to 2026-W53"""
        assert get_iso_week_string(date(2027, 1, 1)) == "2026-W53"

    def test_year_boundary_forwards(self):
        """2025-12-29 (Monday) belongs to 2026-W01"""
        assert get_iso_week_string(date(2025, 12, 29)) == "2026-W01"

    def test_matches_isocalendar(self):
        """Agrees with date.isocalendar over a full year"""
        day = date(2024, 1, 1)
        for offset in range(0, 366, 5):
            current = date.fromordinal(day.toordinal() + offset)
            year, week, _ = current.isocalendar()
            assert get_iso_week_string(current) == f"{year}-W{week:02d}"


# ═══════════════════════════════════════════════════════════════
# 3. WEEK DESCRIPTORS
# ═══════════════════════════════════════════════════════════════

class TestWeekDescriptors:
    """get_week_from_key / get_week_from_iso_week / get_week_parts"""

    def test_week_from_monday_key(self):
        """Monday key gives a Monday..Sunday week"""
        week = get_week_from_key("2026-02-09")
        assert week["key"] == "2026-02-09"
        assert week["start_date"] == "2026-02-09"
        assert week["end_date"] == "2026-02-15"
        assert week["iso_week"] == "2026-W07"
        assert week["timezone"] == "Asia/Kolkata"

    def test_round_trip(self):
        """format_date_key(week_start_date_utc) == key for Monday keys"""
        for key in ["2026-01-05", "2026-02-09", "2024-12-30", "2027-03-01"]:
            week = get_week_from_key(key)
            assert format_date_key(week["week_start_date_utc"]) == key
            assert week["week_start_date_utc"].tzinfo is not None

    def test_non_monday_snaps_to_monday(self):
        """Wednesday resolves to the week that contains it"""
        assert get_week_from_key("2026-02-11")["key"] == "2026-02-09"

    def test_invalid_key(self):
        """Garbage keys give None"""
        assert get_week_from_key("2026-13-01") is None
        assert get_week_from_key("nope") is None

    def test_iso_week(self):
        """2026-W07 -> Monday 2026-02-09"""
        assert get_week_from_iso_week("2026-W07")["key"] == "2026-02-09"

    def test_iso_week_53_exists_for_long_years(self):
        """2026 has 53 ISO weeks"""
        assert get_week_from_iso_week("2026-W53")["key"] == "2026-12-28"

    def test_iso_week_53_rejected_for_short_years(self):
        """2025 has only 52 ISO weeks"""
        assert get_week_from_iso_week("2025-W53") is None

    def test_iso_week_out_of_bounds(self):
        """W00 and W54 never exist"""
        assert get_week_from_iso_week("2026-W00") is None
        assert get_week_from_iso_week("2026-W54") is None

    def test_week_parts_uses_ist_calendar(self):
        """Sunday 20:00 UTC is already Monday in IST"""
        instant = datetime(2026, 2, 15, 20, 0, tzinfo=timezone.utc)
        assert get_week_parts(instant)["key"] == "2026-02-16"

    def test_week_parts_sunday_ist(self):
        """Sunday 11:30 IST stays in the week started the Monday before"""
        instant = datetime(2026, 2, 15, 6, 0, tzinfo=timezone.utc)
        assert get_week_parts(instant)["key"] == "2026-02-09"

    def test_build_week_dates(self):
        """7 dates, Monday first"""
        dates = build_week_dates(get_week_from_key("2026-02-09"))
        assert dates == [
            "2026-02-09", "2026-02-10", "2026-02-11", "2026-02-12",
            "2026-02-13", "2026-02-14", "2026-02-15",
        ]

    def test_shift_week(self):
        """Shift by -1 week"""
        assert shift_week(get_week_from_key("2026-02-09"), -1)["key"] == "2026-02-02"


class TestResolveWeekFromQuery:
    """Query parsing: ISO week first, then date key, blank = current week"""

    NOW = datetime(2026, 2, 11, 6, 0, tzinfo=timezone.utc)

    def test_blank_is_current_week(self):
        """Blank -> current IST week"""
        assert resolve_week_from_query("", now=self.NOW)["key"] == "2026-02-09"
        assert resolve_week_from_query(None, now=self.NOW)["key"] == "2026-02-09"

    def test_iso_week_input(self):
        """Trimmed ISO week"""
        assert resolve_week_from_query(" 2026-W06 ")["key"] == "2026-02-02"

    def test_date_key_input(self):
        """Date key"""
        assert resolve_week_from_query("2026-02-04")["key"] == "2026-02-02"

    def test_unparseable(self):
        """Unparseable input -> None"""
        assert resolve_week_from_query("week 7") is None
