from datetime import date, datetime, timezone

import pytest

from veritas.services.trends.timeframe import month_window, parse_timeframe

NOW = datetime(2025, 7, 14, 10, 0, tzinfo=timezone.utc)


class TestParseTimeframe:

    def test_quarter(self):
        window = parse_timeframe("2024-Q1", now=NOW)
        assert window.first_day == date(2024, 1, 1)
        assert window.last_day == date(2024, 3, 31)
        assert window.label == "2024-Q1"

    def test_quarter_is_case_insensitive(self):
        assert parse_timeframe("2024-q4", now=NOW).last_day == date(2024, 12, 31)

    def test_month(self):
        window = parse_timeframe("2024-02", now=NOW)
        assert window.first_day == date(2024, 2, 1)
        assert window.last_day == date(2024, 2, 29)

    def test_december_rolls_into_next_year(self):
        window = parse_timeframe("2023-12", now=NOW)
        assert window.end == datetime(2024, 1, 1, tzinfo=timezone.utc)

    def test_year(self):
        window = parse_timeframe("2023", now=NOW)
        assert (window.first_day, window.last_day) == (date(2023, 1, 1), date(2023, 12, 31))

    @pytest.mark.parametrize("label", ["2024-13", "2024-00", "2024-Q5", "last week", "", None, "9999"])
    def test_invalid_falls_back_to_current_month(self, label):
        window = parse_timeframe(label, now=NOW)
        assert window == month_window(2025, 7)

    def test_window_is_half_open(self):
        window = parse_timeframe("2024-Q1", now=NOW)
        assert window.contains(datetime(2024, 3, 31, 23, 59, tzinfo=timezone.utc))
        assert not window.contains(datetime(2024, 4, 1, tzinfo=timezone.utc))
        assert window.contains(datetime(2024, 1, 1))
