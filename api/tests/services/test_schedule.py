"""
Unit tests for due-date arithmetic: pure functions, no stores.

Run with:
    pytest api/tests/services/test_schedule.py -v
"""
from datetime import datetime, timedelta, timezone

import pytest

from fintrack.services.schedule import Frequency, advance, period_for, retreat


def _d(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


# ── advance ──────────────────────────────────────────────────────────────────

class TestAdvance:
    @pytest.mark.parametrize(
        "frequency, expected",
        [
            ("daily", _d(2024, 3, 11)),
            ("weekly", _d(2024, 3, 17)),
            ("bi-weekly", _d(2024, 3, 24)),
            ("monthly", _d(2024, 4, 10)),
            ("quarterly", _d(2024, 6, 10)),
            ("yearly", _d(2025, 3, 10)),
        ],
    )
    def test_one_period_per_frequency(self, frequency, expected):
        assert advance(frequency, _d(2024, 3, 10)) == expected

    def test_accepts_enum_members(self):
        assert advance(Frequency.biweekly, _d(2024, 1, 1)) == _d(2024, 1, 15)

    def test_keeps_time_of_day(self):
        assert advance("monthly", _d(2024, 1, 15, 9, 30)) == _d(2024, 2, 15, 9, 30)

    def test_month_end_clamps_in_leap_year(self):
        assert advance("monthly", _d(2024, 1, 31)) == _d(2024, 2, 29)

    def test_month_end_clamps_in_common_year(self):
        assert advance("monthly", _d(2023, 1, 31)) == _d(2023, 2, 28)

    def test_quarter_from_november_30(self):
        assert advance("quarterly", _d(2023, 11, 30)) == _d(2024, 2, 29)

    def test_yearly_from_leap_day(self):
        assert advance("yearly", _d(2024, 2, 29)) == _d(2025, 2, 28)

    def test_weekly_crosses_year_end(self):
        assert advance("weekly", _d(2024, 12, 28)) == _d(2025, 1, 4)


# ── retreat ──────────────────────────────────────────────────────────────────

class TestRetreat:
    def test_daily(self):
        assert retreat("daily", _d(2024, 3, 1)) == _d(2024, 2, 29)

    def test_monthly(self):
        assert retreat("monthly", _d(2024, 2, 1)) == _d(2024, 1, 1)

    def test_not_an_inverse_across_month_end(self):
        # Jan 31 → Feb 29 → Jan 29: the day lost to clamping is not restored
        forward = advance("monthly", _d(2024, 1, 31))
        assert retreat("monthly", forward) == _d(2024, 1, 29)

    def test_yearly_back_from_leap_day(self):
        assert retreat("yearly", _d(2024, 2, 29)) == _d(2023, 2, 28)

    def test_inverse_for_fixed_length_periods(self):
        start = _d(2024, 2, 27)
        for freq in ("daily", "weekly", "bi-weekly"):
            assert retreat(freq, advance(freq, start)) == start


# ── unknown frequencies ──────────────────────────────────────────────────────

class TestFallback:
    def test_unknown_frequency_is_monthly(self):
        assert advance("fortnightly", _d(2024, 1, 15)) == _d(2024, 2, 15)

    def test_missing_frequency_is_monthly(self):
        assert retreat(None, _d(2024, 3, 15)) == _d(2024, 2, 15)

    def test_fixed_periods_are_timedeltas(self):
        assert period_for("weekly") == timedelta(days=7)
