import datetime as dt

import numpy as np
import pandas as pd
import pytest

from timeaxis.calendar_math import (
    FiscalQuarter,
    IsoWeek,
    fiscal_quarter,
    fiscal_quarter_start,
    fiscal_year,
    fiscal_year_start,
    iso_week,
    iso_week_start,
    month_abbreviation,
    to_timestamp,
    validate_fiscal_start_month,
)
from timeaxis.errors import InvalidFiscalMonthError, TimeAxisError


class TestIsoWeek:
    @pytest.mark.parametrize(
        "instant, expected",
        [
            ("2024-01-01", IsoWeek(week=1, iso_year=2024)),
            ("2023-12-31", IsoWeek(week=52, iso_year=2023)),
            # Late December rolling into week 1 of the next ISO year
            ("2024-12-30", IsoWeek(week=1, iso_year=2025)),
            # Early January still in the previous ISO year's week 53
            ("2021-01-01", IsoWeek(week=53, iso_year=2020)),
            ("2024-01-15", IsoWeek(week=3, iso_year=2024)),
        ],
    )
    def test_iso_week_boundaries(self, instant, expected):
        assert iso_week(instant) == expected

    def test_key_and_label(self):
        week = iso_week(dt.date(2024, 1, 15))
        assert week.key == "2024-W03"
        assert week.label == "Week 3"

    def test_week_start_is_monday(self):
        assert iso_week_start("2024-01-03") == pd.Timestamp("2024-01-01")
        assert iso_week_start("2023-12-31 18:30") == pd.Timestamp("2023-12-25")
        assert iso_week_start("2024-01-01") == pd.Timestamp("2024-01-01")


class TestFiscalCalendar:
    def test_april_start_quarters(self):
        assert fiscal_quarter("2024-06-15", 4) == FiscalQuarter(quarter=1, fiscal_year=2024)
        assert fiscal_quarter("2024-03-15", 4) == FiscalQuarter(quarter=4, fiscal_year=2023)
        assert fiscal_quarter("2024-12-01", 4) == FiscalQuarter(quarter=3, fiscal_year=2024)

    def test_calendar_quarters_with_january_start(self):
        quarters = [fiscal_quarter(f"2024-{m:02d}-01").quarter for m in range(1, 13)]
        assert quarters == [1, 1, 1, 2, 2, 2, 3, 3, 3, 4, 4, 4]

    def test_fiscal_year_boundary(self):
        assert fiscal_year("2024-03-31", 4) == 2023
        assert fiscal_year("2024-04-01", 4) == 2024
        assert fiscal_year("2024-12-31") == 2024

    def test_quarter_start_across_calendar_year(self):
        # Q4 of FY2023 (April start) begins in January 2024
        assert fiscal_quarter_start(FiscalQuarter(4, 2023), 4) == pd.Timestamp("2024-01-01")
        assert fiscal_quarter_start(FiscalQuarter(1, 2023), 4) == pd.Timestamp("2023-04-01")
        # October start: Q2 of FY2023 begins in January 2024
        assert fiscal_quarter_start(FiscalQuarter(2, 2023), 10) == pd.Timestamp("2024-01-01")
        assert fiscal_quarter_start(FiscalQuarter(3, 2024)) == pd.Timestamp("2024-07-01")

    def test_quarter_start_contains_the_instant(self):
        for month in range(1, 13):
            for start in (1, 4, 7, 10, 2):
                ts = pd.Timestamp(2024, month, 10)
                q = fiscal_quarter(ts, start)
                q_start = fiscal_quarter_start(q, start)
                assert q_start <= ts < q_start + pd.DateOffset(months=3)

    def test_fiscal_year_start(self):
        assert fiscal_year_start(2023, 7) == pd.Timestamp("2023-07-01")
        assert fiscal_year_start(2024) == pd.Timestamp("2024-01-01")


class TestFiscalMonthValidation:
    @pytest.mark.parametrize("value", [0, 13, -1, True, 4.0, "4", None])
    def test_rejects_invalid_start_month(self, value):
        with pytest.raises(InvalidFiscalMonthError):
            validate_fiscal_start_month(value)

    def test_error_type_is_value_error_and_time_axis_error(self):
        with pytest.raises(ValueError):
            fiscal_quarter("2024-01-01", 13)
        with pytest.raises(TimeAxisError):
            fiscal_year("2024-01-01", 0)

    def test_accepts_numpy_integers(self):
        assert validate_fiscal_start_month(np.int64(7)) == 7


def test_to_timestamp_strips_timezone_and_rejects_missing():
    ts = to_timestamp("2024-01-01T10:00:00+02:00")
    assert ts.tzinfo is None
    assert ts.hour == 10
    with pytest.raises(ValueError):
        to_timestamp(None)


def test_month_abbreviation():
    assert month_abbreviation("2024-09-03") == "Sep"
