"""
Two-tier axis labels.

Every tick gets a primary label (day number, week number, month number, ...)
and, unless disabled, a coarser secondary label ("Jan 24", "Q1 24", "2024").
Consecutive ticks sharing a secondary label form a LabelGroup.

Group spans are expressed in band ordinals: tick i occupies the unit cell
[i, i + 1), so the midpoint between tick i - 1 and tick i is exactly ordinal i.
The first group starts at 0 and the last one ends at len(ticks), which makes
the groups tile the whole axis. Mapping ordinals to pixels is left to the
renderer.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Sequence

from .calendar_math import (
    MONTH_ABBREVIATIONS,
    fiscal_quarter,
    fiscal_year,
    iso_week,
    month_abbreviation,
    to_timestamp,
    validate_fiscal_start_month,
)
from .errors import InvalidParamsError

logger = logging.getLogger(__name__)

AUTO = "auto"
DEFAULT_DATE_PATTERN = "MM/dd/yy"


class LabelLevel(Enum):
    """Kinds of axis label; a superset of Granularity."""

    DATE = "date"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"
    NONE = "none"

    @classmethod
    def _missing_(cls, value: object) -> Optional["LabelLevel"]:
        if isinstance(value, str):
            lowered = value.strip().lower()
            for member in cls:
                if member.value == lowered:
                    return member
        return None

    @classmethod
    def coerce(cls, value: Any) -> "LabelLevel":
        """Accept a LabelLevel, a Granularity member or their string value."""
        if isinstance(value, cls):
            return value
        if isinstance(value, Enum):
            value = value.value
        try:
            return cls(value)
        except ValueError:
            raise InvalidParamsError(f"Unknown label level: {value!r}") from None


# Default secondary level for each primary level.
SECONDARY_FOR: dict[LabelLevel, LabelLevel] = {
    LabelLevel.DATE: LabelLevel.MONTH,
    LabelLevel.DAY: LabelLevel.MONTH,
    LabelLevel.WEEK: LabelLevel.MONTH,
    LabelLevel.MONTH: LabelLevel.QUARTER,
    LabelLevel.QUARTER: LabelLevel.YEAR,
    LabelLevel.YEAR: LabelLevel.NONE,
    LabelLevel.NONE: LabelLevel.NONE,
}

PRIMARY_PREFIXES: dict[LabelLevel, str] = {
    LabelLevel.DATE: "Date",
    LabelLevel.DAY: "Day",
    LabelLevel.WEEK: "Week",
    LabelLevel.MONTH: "Month",
    LabelLevel.QUARTER: "Q",
    LabelLevel.YEAR: "Year",
}

SECONDARY_PREFIXES: dict[LabelLevel, str] = {
    LabelLevel.WEEK: "Week",
    LabelLevel.MONTH: "Month",
    LabelLevel.QUARTER: "Quarter",
    LabelLevel.YEAR: "Year",
}


@dataclass(frozen=True)
class LabelPair:
    primary: str
    secondary: Optional[str]


@dataclass(frozen=True)
class LabelGroup:
    """A run of consecutive ticks sharing one secondary label, [start, end)."""

    secondary_label: Optional[str]
    start_ordinal: int
    end_ordinal: int

    @property
    def tick_count(self) -> int:
        return self.end_ordinal - self.start_ordinal

    @property
    def center(self) -> float:
        """Ordinal where the secondary label is centered."""
        return (self.start_ordinal + self.end_ordinal) / 2.0


def _is_auto(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip().lower() == AUTO)


def secondary_for(primary: LabelLevel | str) -> LabelLevel:
    return SECONDARY_FOR[LabelLevel.coerce(primary)]


def resolve_levels(
    granularity: Any,
    primary: Any = AUTO,
    secondary: Any = AUTO,
) -> tuple[LabelLevel, LabelLevel]:
    """
    Effective (primary, secondary) label levels.

    A caller-supplied level wins unless it is "auto" (or None); an automatic
    primary is the granularity itself and an automatic secondary comes from
    SECONDARY_FOR.

    Raises:
        InvalidParamsError: On unknown levels or a primary level of "none".
    """
    effective_primary = LabelLevel.coerce(granularity if _is_auto(primary) else primary)
    if effective_primary is LabelLevel.NONE:
        raise InvalidParamsError("Primary label level cannot be 'none'")
    if _is_auto(secondary):
        effective_secondary = SECONDARY_FOR[effective_primary]
    else:
        effective_secondary = LabelLevel.coerce(secondary)
    return effective_primary, effective_secondary


_DATE_TOKEN_RE = re.compile(r"'[^']*'|yyyy|yy|MMMM|MMM|MM|M|dd|d|EEEE|EEE|[A-Za-z]")


def format_date(instant: Any, pattern: str) -> str:
    """
    Format an instant with a strftime pattern or a date-fns style pattern.

    Patterns containing '%' go straight to strftime. Otherwise the tokens
    yyyy, yy, MMMM, MMM, MM, M, dd, d, EEEE and EEE are substituted and
    'quoted' text is copied literally.

    Raises:
        ValueError: On an empty pattern or an unsupported letter token.
    """
    if not pattern:
        raise ValueError("Empty date pattern")
    ts = to_timestamp(instant)
    if "%" in pattern:
        return ts.strftime(pattern)

    def _token(match: re.Match) -> str:
        token = match.group(0)
        if token.startswith("'"):
            return token[1:-1]
        if token == "yyyy":
            return f"{ts.year:04d}"
        if token == "yy":
            return f"{ts.year % 100:02d}"
        if token == "MMMM":
            return ts.strftime("%B")
        if token == "MMM":
            return MONTH_ABBREVIATIONS[ts.month - 1]
        if token == "MM":
            return f"{ts.month:02d}"
        if token == "M":
            return str(ts.month)
        if token == "dd":
            return f"{ts.day:02d}"
        if token == "d":
            return str(ts.day)
        if token == "EEEE":
            return ts.strftime("%A")
        if token == "EEE":
            return ts.strftime("%a")
        raise ValueError(f"Unsupported date pattern token {token!r} in {pattern!r}")

    return _DATE_TOKEN_RE.sub(_token, pattern)


def primary_text(
    tick: Any,
    level: LabelLevel,
    fiscal_year_start_month: int = 1,
    date_pattern: str = DEFAULT_DATE_PATTERN,
) -> str:
    ts = to_timestamp(tick)
    if level is LabelLevel.DATE:
        try:
            return format_date(ts, date_pattern)
        except ValueError as e:
            logger.warning(f"Invalid date pattern {date_pattern!r}: {e}")
            return format_date(ts, DEFAULT_DATE_PATTERN)
    if level is LabelLevel.DAY:
        return str(ts.day)
    if level is LabelLevel.WEEK:
        return str(iso_week(ts).week)
    if level is LabelLevel.MONTH:
        return str(ts.month)
    if level is LabelLevel.QUARTER:
        return str(fiscal_quarter(ts, fiscal_year_start_month).quarter)
    if level is LabelLevel.YEAR:
        return str(fiscal_year(ts, fiscal_year_start_month))
    raise InvalidParamsError("Primary label level cannot be 'none'")


def secondary_text(
    tick: Any, level: LabelLevel, fiscal_year_start_month: int = 1
) -> Optional[str]:
    """
    Secondary label of one tick: "Week N", "Mon YY", "QN YY" or the full year.

    Quarter and year texts use the fiscal year so that a fiscal year's ticks
    stay under one header. Date and day levels have no secondary text.
    """
    ts = to_timestamp(tick)
    if level is LabelLevel.WEEK:
        return iso_week(ts).label
    if level is LabelLevel.MONTH:
        return f"{month_abbreviation(ts)} {ts.year % 100:02d}"
    if level is LabelLevel.QUARTER:
        quarter = fiscal_quarter(ts, fiscal_year_start_month)
        return f"{quarter.label} {quarter.fiscal_year % 100:02d}"
    if level is LabelLevel.YEAR:
        return str(fiscal_year(ts, fiscal_year_start_month))
    return None


def label_for(
    tick: Any,
    granularity: Any,
    fiscal_year_start_month: int = 1,
    *,
    secondary: Any = AUTO,
    date_pattern: str = DEFAULT_DATE_PATTERN,
) -> LabelPair:
    """
    Primary and secondary label of one tick.

    Args:
        tick: Tick instant.
        granularity: Primary label level (a Granularity, a LabelLevel such as
            "date", or their string value).
        fiscal_year_start_month: First month of the fiscal year (1..12).
        secondary: Secondary level, or "auto" for the SECONDARY_FOR default.
        date_pattern: Pattern for the "date" primary level.
    """
    start_month = validate_fiscal_start_month(fiscal_year_start_month)
    primary_level, secondary_level = resolve_levels(granularity, secondary=secondary)
    return LabelPair(
        primary=primary_text(tick, primary_level, start_month, date_pattern),
        secondary=secondary_text(tick, secondary_level, start_month),
    )


def label_ticks(
    ticks: Sequence[Any],
    granularity: Any,
    fiscal_year_start_month: int = 1,
    *,
    secondary: Any = AUTO,
    date_pattern: str = DEFAULT_DATE_PATTERN,
) -> list[LabelPair]:
    return [
        label_for(
            tick,
            granularity,
            fiscal_year_start_month,
            secondary=secondary,
            date_pattern=date_pattern,
        )
        for tick in ticks
    ]


def group(
    ticks: Sequence[Any],
    granularity: Any,
    fiscal_year_start_month: int = 1,
    *,
    secondary: Any = AUTO,
) -> list[LabelGroup]:
    """
    Partition the tick ordinals into runs sharing a secondary label.

    A new group starts wherever the secondary label differs from the previous
    tick's. The returned groups are contiguous, non-overlapping, in tick order
    and cover [0, len(ticks)) exactly; with no secondary level the whole axis is
    one unlabeled group. Empty input returns [].
    """
    if len(ticks) == 0:
        return []
    start_month = validate_fiscal_start_month(fiscal_year_start_month)
    _, secondary_level = resolve_levels(granularity, secondary=secondary)
    labels = [secondary_text(t, secondary_level, start_month) for t in ticks]

    groups: list[LabelGroup] = []
    start = 0
    for i in range(1, len(labels)):
        if labels[i] != labels[i - 1]:
            groups.append(LabelGroup(labels[i - 1], start, i))
            start = i
    groups.append(LabelGroup(labels[-1], start, len(labels)))
    return groups


def axis_prefixes(
    primary: LabelLevel | str, secondary: LabelLevel | str
) -> tuple[Optional[str], Optional[str]]:
    """Row captions drawn left of the axis, e.g. ("Month", "Quarter")."""
    return (
        PRIMARY_PREFIXES.get(LabelLevel.coerce(primary)),
        SECONDARY_PREFIXES.get(LabelLevel.coerce(secondary)),
    )
