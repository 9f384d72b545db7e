"""
Calendar helpers: ISO-8601 week numbering and fiscal-aware quarters/years.

All functions are pure. Instants may be anything pandas.Timestamp accepts
(datetime, date, Timestamp, ISO string); time of day is ignored.
"""

from __future__ import annotations

import numbers
from dataclasses import dataclass
from typing import Any

import pandas as pd

from .errors import InvalidFiscalMonthError

MONTH_ABBREVIATIONS = (
    "Jan",
    "Feb",
    "Mar",
    "Apr",
    "May",
    "Jun",
    "Jul",
    "Aug",
    "Sep",
    "Oct",
    "Nov",
    "Dec",
)


@dataclass(frozen=True)
class IsoWeek:
    week: int
    iso_year: int

    @property
    def key(self) -> str:
        return f"{self.iso_year}-W{self.week:02d}"

    @property
    def label(self) -> str:
        return f"Week {self.week}"


@dataclass(frozen=True)
class FiscalQuarter:
    quarter: int
    fiscal_year: int

    @property
    def key(self) -> str:
        return f"{self.fiscal_year}-Q{self.quarter}"

    @property
    def label(self) -> str:
        return f"Q{self.quarter}"


def to_timestamp(instant: Any) -> pd.Timestamp:
    """
    Coerce an instant into a naive pandas.Timestamp.

    Raises:
        ValueError: If the value is missing or cannot be interpreted as a date.
    """
    ts = pd.Timestamp(instant)
    if ts is pd.NaT:
        raise ValueError(f"Not a valid instant: {instant!r}")
    if ts.tzinfo is not None:
        ts = ts.tz_localize(None)
    return ts


def validate_fiscal_start_month(value: Any) -> int:
    """
    Return `value` as an int when it is a valid fiscal year start month.

    Out-of-range months are rejected rather than clamped: a silent clamp would
    move quarter boundaries without the caller noticing.

    Raises:
        InvalidFiscalMonthError: If `value` is not an integer in 1..12.
    """
    if isinstance(value, bool) or not isinstance(value, numbers.Integral):
        raise InvalidFiscalMonthError(
            f"fiscal_year_start_month must be an integer in 1..12, got: {value!r}"
        )
    month = int(value)
    if not 1 <= month <= 12:
        raise InvalidFiscalMonthError(
            f"fiscal_year_start_month must be in 1..12, got: {month}"
        )
    return month


def iso_week(instant: Any) -> IsoWeek:
    """
    ISO-8601 week of an instant.

    Week 1 is the week containing the year's first Thursday and weeks run
    Monday..Sunday, so late-December dates can fall in week 1 of the next ISO
    year and early-January dates in the last week of the previous one.
    """
    ts = to_timestamp(instant)
    iso_year, week, _weekday = ts.isocalendar()
    return IsoWeek(week=int(week), iso_year=int(iso_year))


def iso_week_start(instant: Any) -> pd.Timestamp:
    """Monday 00:00 of the ISO week containing `instant`."""
    ts = to_timestamp(instant).normalize()
    return ts - pd.Timedelta(days=ts.weekday())


def fiscal_year(instant: Any, fiscal_year_start_month: int = 1) -> int:
    """
    Fiscal year of an instant, named after the calendar year it starts in.

    With a start month of 4, 2024-03-31 belongs to fiscal year 2023 and
    2024-04-01 to fiscal year 2024.
    """
    start = validate_fiscal_start_month(fiscal_year_start_month)
    ts = to_timestamp(instant)
    return ts.year if ts.month >= start else ts.year - 1


def fiscal_quarter(instant: Any, fiscal_year_start_month: int = 1) -> FiscalQuarter:
    """
    Fiscal quarter (1..4) and fiscal year of an instant.

    The calendar month is shifted by (month - start) mod 12 and the quarter is
    shifted // 3 + 1; the fiscal year increments at the fiscal boundary.
    """
    start = validate_fiscal_start_month(fiscal_year_start_month)
    ts = to_timestamp(instant)
    shifted = (ts.month - start) % 12
    return FiscalQuarter(
        quarter=shifted // 3 + 1,
        fiscal_year=fiscal_year(ts, start),
    )


def fiscal_quarter_start(
    quarter: FiscalQuarter, fiscal_year_start_month: int = 1
) -> pd.Timestamp:
    """First day of a fiscal quarter, in the calendar year it actually falls in."""
    start = validate_fiscal_start_month(fiscal_year_start_month)
    offset = (start - 1) + (quarter.quarter - 1) * 3
    year = quarter.fiscal_year + offset // 12
    month = offset % 12 + 1
    return pd.Timestamp(year=year, month=month, day=1)


def fiscal_year_start(year: int, fiscal_year_start_month: int = 1) -> pd.Timestamp:
    """First day of the given fiscal year."""
    start = validate_fiscal_start_month(fiscal_year_start_month)
    return pd.Timestamp(year=year, month=start, day=1)


def month_abbreviation(instant: Any) -> str:
    return MONTH_ABBREVIATIONS[to_timestamp(instant).month - 1]
