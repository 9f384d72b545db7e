"""
Tick planning for the time axis.

Two policies, chosen by the primary label level:

- dense   (date, day, week, month): one tick per aggregated bucket, every
  bucket individually labeled. Right for series of up to a few hundred
  points; there is no automatic thinning.
- sampled (quarter, year): a reduced set of round ticks (target count 6), at
  most one per fiscal quarter or year, spread over the bucket date range.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Sequence

import pandas as pd
from matplotlib.ticker import MaxNLocator

from .calendar_math import (
    FiscalQuarter,
    fiscal_quarter,
    fiscal_quarter_start,
    fiscal_year,
    fiscal_year_start,
    to_timestamp,
    validate_fiscal_start_month,
)
from .errors import InvalidParamsError
from .labels import LabelLevel

logger = logging.getLogger(__name__)

DEFAULT_SAMPLED_TICK_COUNT = 6


class TickPolicy(Enum):
    DENSE = "dense"
    SAMPLED = "sampled"


TICK_POLICY_FOR: dict[LabelLevel, TickPolicy] = {
    LabelLevel.DATE: TickPolicy.DENSE,
    LabelLevel.DAY: TickPolicy.DENSE,
    LabelLevel.WEEK: TickPolicy.DENSE,
    LabelLevel.MONTH: TickPolicy.DENSE,
    LabelLevel.QUARTER: TickPolicy.SAMPLED,
    LabelLevel.YEAR: TickPolicy.SAMPLED,
}


@dataclass(frozen=True)
class TickPlan:
    ticks: list[pd.Timestamp]
    policy: TickPolicy


def tick_policy_for(level: Any) -> TickPolicy:
    return TICK_POLICY_FOR[LabelLevel.coerce(level)]


# Allowed tick spacings, in units of the level's period. Quarter spacings of
# 4 and 8 keep ticks on fiscal year boundaries.
_PERIOD_STEPS: dict[LabelLevel, list[float]] = {
    LabelLevel.QUARTER: [1, 2, 4, 8, 10],
    LabelLevel.YEAR: [1, 2, 5, 10],
}


def _period_ordinal(ts: pd.Timestamp, level: LabelLevel, fiscal_year_start_month: int) -> int:
    if level is LabelLevel.YEAR:
        return fiscal_year(ts, fiscal_year_start_month)
    quarter = fiscal_quarter(ts, fiscal_year_start_month)
    return quarter.fiscal_year * 4 + quarter.quarter - 1


def _period_start(ordinal: int, level: LabelLevel, fiscal_year_start_month: int) -> pd.Timestamp:
    if level is LabelLevel.YEAR:
        return fiscal_year_start(ordinal, fiscal_year_start_month)
    quarter = FiscalQuarter(quarter=ordinal % 4 + 1, fiscal_year=ordinal // 4)
    return fiscal_quarter_start(quarter, fiscal_year_start_month)


def period_ticks(
    start: Any,
    end: Any,
    level: Any,
    target_count: int = DEFAULT_SAMPLED_TICK_COUNT,
    fiscal_year_start_month: int = 1,
) -> list[pd.Timestamp]:
    """
    Round ticks between start and end, one per chosen fiscal quarter or year.

    Periods are numbered consecutively and matplotlib's MaxNLocator picks an
    integer spacing giving at most about target_count ticks. Each tick sits at
    the start of its period, or at `start` for the period containing it, so no
    two ticks share a quarter or year and the count never exceeds the number
    of periods spanned.

    Raises:
        InvalidParamsError: If level is not quarter or year.
    """
    level = LabelLevel.coerce(level)
    if level not in _PERIOD_STEPS:
        raise InvalidParamsError(f"Sampled ticks need a quarter or year level, got: {level.value}")
    start_month = validate_fiscal_start_month(fiscal_year_start_month)
    start, end = to_timestamp(start), to_timestamp(end)
    if end < start:
        start, end = end, start

    lo = _period_ordinal(start, level, start_month)
    hi = _period_ordinal(end, level, start_month)
    if lo == hi:
        return [start]

    locator = MaxNLocator(
        nbins=max(target_count - 1, 1), integer=True, steps=_PERIOD_STEPS[level]
    )
    ordinals = sorted(
        {int(round(v)) for v in locator.tick_values(lo, hi) if lo <= v <= hi}
    )
    return [max(_period_start(o, level, start_month), start) for o in ordinals]


def plan_ticks(
    bucket_starts: Sequence[Any],
    level: Any,
    target_count: int = DEFAULT_SAMPLED_TICK_COUNT,
    fiscal_year_start_month: int = 1,
) -> TickPlan:
    """
    Choose the ticks for an axis.

    Args:
        bucket_starts: Bucket start instants, in chronological order.
        level: Effective primary label level.
        target_count: Approximate tick count for the sampled policy.
        fiscal_year_start_month: First month of the fiscal year; sampled
            quarter and year ticks fall on its period boundaries.

    Returns:
        TickPlan with the ticks (chronological) and the policy applied. The
        sampled policy never yields more ticks than there are buckets.
    """
    policy = tick_policy_for(level)
    starts = sorted(to_timestamp(s) for s in bucket_starts)
    if not starts:
        return TickPlan(ticks=[], policy=policy)
    if policy is TickPolicy.DENSE:
        return TickPlan(ticks=starts, policy=policy)

    ticks = period_ticks(
        starts[0], starts[-1], level, target_count, fiscal_year_start_month
    )
    if len(ticks) > len(starts):
        ticks = starts
    logger.debug(f"Sampled {len(ticks)} ticks from {len(starts)} buckets ({level})")
    return TickPlan(ticks=ticks, policy=policy)
