"""
Period bucketing and metric aggregation.

Records are mapped to a period bucket (day, ISO week, month, fiscal quarter or
fiscal year) and each metric is combined per bucket with one aggregation
method. Missing or non-numeric metric values are left out of the combination;
they never count as zero.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Optional, Sequence

import numpy as np
import pandas as pd

from .calendar_math import (
    fiscal_quarter,
    fiscal_quarter_start,
    fiscal_year,
    fiscal_year_start,
    iso_week,
    iso_week_start,
    to_timestamp,
    validate_fiscal_start_month,
)
from .date_formats import ParsedRecord
from .diagnostics import StepResult
from .errors import AggregationError, InvalidParamsError
from .utils import parse_number

logger = logging.getLogger(__name__)


class Granularity(Enum):
    """Period size used for bucketing."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"

    @classmethod
    def _missing_(cls, value: object) -> Optional["Granularity"]:
        if isinstance(value, str):
            lowered = value.strip().lower()
            for member in cls:
                if member.value == lowered:
                    return member
        return None

    @classmethod
    def coerce(cls, value: Any) -> "Granularity":
        return value if isinstance(value, cls) else cls(value)


class AggregationMethod(Enum):
    """How the metric values of one bucket are combined."""

    SUM = "sum"
    AVG = "avg"
    MIN = "min"
    MAX = "max"
    COUNT = "count"

    @classmethod
    def _missing_(cls, value: object) -> Optional["AggregationMethod"]:
        if not isinstance(value, str):
            return None
        lowered = value.strip().lower()
        # "average" is the chart editor's spelling
        if lowered in ("average", "mean"):
            return cls.AVG
        for member in cls:
            if member.value == lowered:
                return member
        return None

    @classmethod
    def coerce(cls, value: Any) -> "AggregationMethod":
        return value if isinstance(value, cls) else cls(value)


@dataclass(frozen=True)
class AggregatedBucket:
    """
    One aggregated output unit.

    Attributes:
        bucket_key: Period identifier ("2024-01-15", "2024-W03", "2024-01",
            "2024-Q1", "2024"); sorts chronologically within one granularity.
        bucket_start: First instant of the period.
        metric_values: Metric name -> combined value, None when the bucket has
            no usable value for that metric.
        source_count: Number of records combined into this bucket.
    """

    bucket_key: str
    bucket_start: pd.Timestamp
    metric_values: dict[str, Optional[float]]
    source_count: int


def bucket_for(
    instant: Any,
    granularity: Granularity | str,
    fiscal_year_start_month: int = 1,
) -> tuple[str, pd.Timestamp]:
    """
    Return (bucket_key, bucket_start) of the period containing `instant`.

    Quarter and year buckets follow the fiscal calendar; with a start month
    of 1 they are calendar quarters and years.
    """
    granularity = Granularity.coerce(granularity)
    start_month = validate_fiscal_start_month(fiscal_year_start_month)
    ts = to_timestamp(instant)

    if granularity is Granularity.DAY:
        start = ts.normalize()
        return start.strftime("%Y-%m-%d"), start
    if granularity is Granularity.WEEK:
        return iso_week(ts).key, iso_week_start(ts)
    if granularity is Granularity.MONTH:
        start = pd.Timestamp(year=ts.year, month=ts.month, day=1)
        return f"{ts.year:04d}-{ts.month:02d}", start
    if granularity is Granularity.QUARTER:
        quarter = fiscal_quarter(ts, start_month)
        return quarter.key, fiscal_quarter_start(quarter, start_month)
    year = fiscal_year(ts, start_month)
    return str(year), fiscal_year_start(year, start_month)


def _metric_series(records: Sequence[ParsedRecord], metric: str) -> pd.Series:
    return pd.Series([parse_number(r.get(metric)) for r in records], dtype="float64")


def aggregate(
    records: Sequence[ParsedRecord],
    metric_fields: Sequence[str],
    granularity: Granularity | str,
    method: AggregationMethod | str = AggregationMethod.SUM,
    fiscal_year_start_month: int = 1,
    verbose: bool = False,
) -> list[AggregatedBucket]:
    """
    Bucket parsed records by period and combine each metric per bucket.

    Args:
        records: Parsed records, in any order.
        metric_fields: Names of the numeric fields to combine.
        granularity: Period size.
        method: sum, avg, min, max or count.
        fiscal_year_start_month: First month (1..12) of the fiscal year; only
            affects quarter and year buckets.
        verbose: Log the step summary at INFO.

    Returns:
        Buckets sorted ascending by bucket_start. The source_count values add
        up to len(records). Day granularity over records on distinct dates
        returns one bucket per record with the values unchanged.

    Raises:
        AggregationError: If metric_fields is empty or no record carries any of
            the metric fields.
        InvalidFiscalMonthError: If fiscal_year_start_month is outside 1..12.
    """
    granularity = Granularity.coerce(granularity)
    method = AggregationMethod.coerce(method)
    start_month = validate_fiscal_start_month(fiscal_year_start_month)
    metric_fields = list(metric_fields)

    result = StepResult(label="aggregate")
    result.start()
    result.original_rows = len(records)

    if not metric_fields:
        raise AggregationError("No metric fields given for aggregation")
    if not records:
        result.stop()
        if verbose:
            logger.info(result.summarize())
        return []

    resolved = [m for m in metric_fields if any(m in r.fields for r in records)]
    if not resolved:
        raise AggregationError(
            f"None of the metric fields {metric_fields} is present in the records"
        )
    unresolved = [m for m in metric_fields if m not in resolved]
    if unresolved:
        result.add_warning(f"Metric fields not found in any record: {unresolved}")

    keys_by_start: dict[pd.Timestamp, str] = {}
    starts: list[pd.Timestamp] = []
    for record in records:
        key, start = bucket_for(record.instant, granularity, start_month)
        keys_by_start[start] = key
        starts.append(start)

    # Positional column labels keep arbitrary metric names out of pandas' way
    values = pd.DataFrame(
        {i: _metric_series(records, m) for i, m in enumerate(metric_fields)}
    )
    grouped = values.groupby(pd.DatetimeIndex(starts), sort=True)
    sizes = grouped.size()
    counts = grouped.count()

    if method is AggregationMethod.SUM:
        combined = grouped.sum(min_count=1)
    elif method is AggregationMethod.AVG:
        combined = grouped.mean()
    elif method is AggregationMethod.MIN:
        combined = grouped.min()
    elif method is AggregationMethod.MAX:
        combined = grouped.max()
    else:
        combined = counts

    buckets: list[AggregatedBucket] = []
    for start in combined.index:
        metric_values: dict[str, Optional[float]] = {}
        for i, metric in enumerate(metric_fields):
            if int(counts.at[start, i]) == 0:
                metric_values[metric] = None
                continue
            value = combined.at[start, i]
            if method is AggregationMethod.COUNT:
                metric_values[metric] = int(value)
            else:
                value = float(value)
                metric_values[metric] = value if np.isfinite(value) else None
        ts = pd.Timestamp(start)
        buckets.append(
            AggregatedBucket(
                bucket_key=keys_by_start[ts],
                bucket_start=ts,
                metric_values=metric_values,
                source_count=int(sizes.at[start]),
            )
        )

    result.output_rows = len(buckets)
    result.add_metric("granularity", granularity.value)
    result.add_metric("method", method.value)
    result.stop()
    if verbose:
        logger.info(result.summarize())
    return buckets


def records_as_buckets(
    records: Sequence[ParsedRecord], metric_fields: Iterable[str]
) -> list[AggregatedBucket]:
    """
    One bucket per record: the fallback used when aggregation cannot proceed.

    Records are ordered by instant (ties keep input order). Keys combine the
    instant with the source row index so they stay unique when instants repeat.
    """
    metric_fields = list(metric_fields)
    ordered = sorted(records, key=lambda r: (r.instant, r.source_index))
    return [
        AggregatedBucket(
            bucket_key=f"{r.instant.isoformat()}#{r.source_index}",
            bucket_start=r.instant,
            metric_values={m: parse_number(r.get(m)) for m in metric_fields},
            source_count=1,
        )
        for r in ordered
    ]


def slice_by_percent_range(
    buckets: Sequence[AggregatedBucket],
    start_pct: float = 0.0,
    end_pct: float = 100.0,
) -> list[AggregatedBucket]:
    """
    Keep the chronological slice between two percentages of the bucket count.

    Buckets are sorted by bucket_start and the slice [floor(start% * n),
    ceil(end% * n)) is kept, so (0, 100) keeps everything.

    Raises:
        InvalidParamsError: If the bounds are not 0 <= start <= end <= 100.
    """
    if not 0.0 <= start_pct <= end_pct <= 100.0:
        raise InvalidParamsError(
            f"Percent range must satisfy 0 <= start <= end <= 100, got: ({start_pct}, {end_pct})"
        )
    ordered = sorted(buckets, key=lambda b: b.bucket_start)
    if start_pct == 0.0 and end_pct == 100.0:
        return ordered
    total = len(ordered)
    start_index = math.floor(start_pct / 100.0 * total)
    end_index = math.ceil(end_pct / 100.0 * total)
    return ordered[start_index:end_index]
