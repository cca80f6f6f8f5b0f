"""
Recurrence rule tests.
"""

from datetime import datetime

import pytest

from fixit.models.enums import FrequencyType
from fixit.services.recurrence import (
    Frequency,
    InvalidFrequency,
    describe,
    first_due_date,
    next_due_date,
)


def monthly(day: int, **kwargs) -> Frequency:
    return Frequency(type=FrequencyType.MONTHLY, day_of_month=day, **kwargs)


class TestMonthly:
    def test_tick_after_due_moves_to_next_month(self):
        anchor = datetime(2025, 1, 15)
        assert next_due_date(monthly(15), anchor, datetime(2025, 1, 15, 1, 0)) == datetime(2025, 2, 15)

    def test_first_due_is_the_anchor(self):
        anchor = datetime(2025, 1, 15)
        assert first_due_date(monthly(15), anchor) == anchor

    def test_day_31_clamps_to_end_of_february(self):
        anchor = datetime(2025, 1, 31)
        feb = next_due_date(monthly(31), anchor, anchor)
        assert feb == datetime(2025, 2, 28)
        assert next_due_date(monthly(31), anchor, feb) == datetime(2025, 3, 31)

    def test_day_31_in_leap_year(self):
        anchor = datetime(2024, 1, 31)
        feb = next_due_date(monthly(31), anchor, anchor)
        assert feb == datetime(2024, 2, 29)
        assert next_due_date(monthly(31), anchor, feb) == datetime(2024, 3, 31)

    def test_interval_skips_months(self):
        anchor = datetime(2025, 1, 10, 9, 30)
        freq = monthly(10, interval=3)
        assert next_due_date(freq, anchor, anchor) == datetime(2025, 4, 10, 9, 30)

    def test_long_idle_series_catches_up_to_after(self):
        anchor = datetime(2020, 1, 15)
        assert next_due_date(monthly(15), anchor, datetime(2025, 6, 20)) == datetime(2025, 7, 15)


class TestOtherFrequencies:
    def test_weekly_uses_sunday_based_weekday(self):
        # 2025-01-15 is a Wednesday; 1 is Monday
        freq = Frequency(type=FrequencyType.WEEKLY, day_of_week=1)
        assert first_due_date(freq, datetime(2025, 1, 15, 8, 0)) == datetime(2025, 1, 20, 8, 0)

    def test_daily_interval(self):
        freq = Frequency(type=FrequencyType.DAILY, interval=2)
        anchor = datetime(2025, 1, 1, 6, 0)
        assert next_due_date(freq, anchor, datetime(2025, 1, 2, 12, 0)) == datetime(2025, 1, 3, 6, 0)

    def test_yearly_clamps_leap_day(self):
        freq = Frequency(type=FrequencyType.YEARLY, month_of_year=2, day_of_month=29)
        anchor = datetime(2024, 2, 29)
        assert next_due_date(freq, anchor, anchor) == datetime(2025, 2, 28)

    def test_custom_days_fold_in_short_months(self):
        freq = Frequency(type=FrequencyType.CUSTOM, custom_days=(1, 15, 30, 31))
        anchor = datetime(2025, 2, 1)
        due = []
        after = datetime(2025, 1, 31)
        for _ in range(4):
            after = next_due_date(freq, anchor, after)
            due.append(after)
        assert due == [
            datetime(2025, 2, 1),
            datetime(2025, 2, 15),
            datetime(2025, 2, 28),
            datetime(2025, 3, 1),
        ]

    def test_once_has_no_successor(self):
        freq = Frequency(type=FrequencyType.ONCE)
        anchor = datetime(2025, 5, 1)
        assert first_due_date(freq, anchor) == anchor
        assert next_due_date(freq, anchor, anchor) is None


class TestSeriesEnd:
    def test_end_date_stops_series(self):
        freq = Frequency(type=FrequencyType.DAILY, end_date=datetime(2025, 1, 3))
        anchor = datetime(2025, 1, 1)
        assert next_due_date(freq, anchor, datetime(2025, 1, 2, 12)) == datetime(2025, 1, 3)
        assert next_due_date(freq, anchor, datetime(2025, 1, 3)) is None

    def test_exhausted_occurrences(self):
        freq = monthly(1, occurrences=1)
        anchor = datetime(2025, 1, 1)
        assert next_due_date(freq, anchor, anchor) == datetime(2025, 2, 1)
        spent = freq.consume_occurrence()
        assert spent.occurrences == 0
        assert next_due_date(spent, anchor, anchor) is None

    def test_unlimited_series_is_unaffected_by_consume(self):
        freq = monthly(1)
        assert freq.consume_occurrence() is freq


class TestLocalTime:
    def test_time_of_day_is_kept_across_dst(self):
        # 09:00 GMT in March is 09:00 BST (08:00 UTC) in April
        anchor = datetime(2025, 3, 1, 9, 0)
        due = next_due_date(monthly(1), anchor, anchor, tz_name="Europe/London")
        assert due == datetime(2025, 4, 1, 8, 0)


class TestParsing:
    def test_from_dict_accepts_enum_type(self):
        freq = Frequency.from_dict({"type": FrequencyType.MONTHLY, "day_of_month": 15})
        assert freq.type == FrequencyType.MONTHLY

    def test_from_dict_is_case_insensitive(self):
        assert Frequency.from_dict({"type": "Weekly"}).type == FrequencyType.WEEKLY

    def test_empty_record_is_one_time(self):
        assert Frequency.from_dict(None).type == FrequencyType.ONCE

    def test_round_trip_keeps_end_date(self):
        original = monthly(5, end_date=datetime(2026, 1, 1), occurrences=4)
        assert Frequency.from_dict(original.to_dict()) == original

    @pytest.mark.parametrize(
        "record",
        [
            {"type": "fortnightly"},
            {"type": "monthly", "day_of_month": 32},
            {"type": "weekly", "day_of_week": 7},
            {"type": "monthly", "interval": -1},
            {"type": "custom"},
            {"type": "daily", "occurrences": -1},
        ],
    )
    def test_invalid_records_are_rejected(self, record):
        with pytest.raises(InvalidFrequency):
            Frequency.from_dict(record)


@pytest.mark.parametrize(
    "recurring,freq,label",
    [
        (False, None, "One-time"),
        (True, Frequency(type=FrequencyType.DAILY), "Daily"),
        (True, Frequency(type=FrequencyType.WEEKLY, interval=2), "Every 2 weeks"),
        (True, monthly(1), "Monthly"),
        (True, Frequency(type=FrequencyType.YEARLY, interval=3), "Every 3 years"),
        (True, Frequency(type=FrequencyType.CUSTOM, custom_days=(1, 15)), "Custom days: 1, 15"),
    ],
)
def test_describe(recurring, freq, label):
    assert describe(recurring, freq) == label
