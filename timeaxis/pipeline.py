"""
Time axis pipeline.

build_time_axis() runs the whole chain for one chart:

    raw records -> detect date format once -> parse instants (drop bad rows)
    -> aggregate into period buckets -> plan ticks -> primary/secondary labels
    and secondary groups

Every call recomputes everything from its explicit inputs; nothing survives
between calls unless the caller passes its own DateFormatCache.
"""

import dataclasses
import json
import logging
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Sequence, Tuple

import pandas as pd

from .aggregation import (
    AggregatedBucket,
    AggregationMethod,
    Granularity,
    aggregate,
    records_as_buckets,
    slice_by_percent_range,
)
from .calendar_math import validate_fiscal_start_month
from .date_formats import DateFormat, DateFormatCache, parse_records
from .diagnostics import StepResult
from .errors import AggregationError, InvalidParamsError, TimeAxisError
from .labels import (
    AUTO,
    DEFAULT_DATE_PATTERN,
    LabelGroup,
    LabelLevel,
    LabelPair,
    axis_prefixes,
    group,
    label_ticks,
    resolve_levels,
)
from .ticks import DEFAULT_SAMPLED_TICK_COUNT, TickPolicy, plan_ticks
from .utils import canonical_json_hash, sanitize_for_json

logger = logging.getLogger(__name__)


@dataclass
class AxisParams:
    """
    Parameters for one time axis.

    Attributes:
        date_field: Name of the record field holding the date value.
        metric_fields: Numeric fields to aggregate.
        granularity: Bucket period (day/week/month/quarter/year).
        aggregation_method: How values in one bucket are combined.
        fiscal_year_start_month: First month of the fiscal year, 1..12.
            Values outside that range are rejected, not clamped.
        primary_label: "auto" (use the granularity) or a label level
            (date/day/week/month/quarter/year).
        secondary_label: "auto" (default for the primary level) or
            week/month/quarter/year/none.
        date_pattern: Pattern for "date" primary labels; date-fns style
            ("MM/dd/yy") or strftime ("%m/%d/%y").
        sampled_tick_count: Approximate tick count for quarter/year axes.
        percent_range: (start, end) percentages of the buckets to keep,
            chronologically; (0, 100) keeps all.
        verbose: Log step summaries at INFO.
    """

    date_field: str
    metric_fields: List[str]
    granularity: Granularity = Granularity.DAY
    aggregation_method: AggregationMethod = AggregationMethod.SUM
    fiscal_year_start_month: int = 1
    primary_label: str = AUTO
    secondary_label: str = AUTO
    date_pattern: str = DEFAULT_DATE_PATTERN
    sampled_tick_count: int = DEFAULT_SAMPLED_TICK_COUNT
    percent_range: Tuple[float, float] = (0.0, 100.0)
    verbose: bool = False

    def __post_init__(self) -> None:
        try:
            self.granularity = Granularity.coerce(self.granularity)
            self.aggregation_method = AggregationMethod.coerce(self.aggregation_method)
        except ValueError as e:
            raise InvalidParamsError(str(e)) from e
        self.fiscal_year_start_month = validate_fiscal_start_month(
            self.fiscal_year_start_month
        )
        # Validates both levels up front
        resolve_levels(self.granularity, self.primary_label, self.secondary_label)
        if self.sampled_tick_count < 1:
            raise InvalidParamsError(
                f"sampled_tick_count must be >= 1, got: {self.sampled_tick_count}"
            )
        start_pct, end_pct = (float(v) for v in self.percent_range)
        if not 0.0 <= start_pct <= end_pct <= 100.0:
            raise InvalidParamsError(
                f"percent_range must satisfy 0 <= start <= end <= 100, got: {self.percent_range}"
            )
        self.percent_range = (start_pct, end_pct)
        self.metric_fields = list(self.metric_fields)


@dataclass
class AxisOutputs:
    """Everything a renderer needs to draw one time axis and its series."""

    buckets: List[AggregatedBucket]
    ticks: List[pd.Timestamp]
    tick_policy: TickPolicy
    labels: List[LabelPair]
    groups: List[LabelGroup]
    primary_level: LabelLevel
    secondary_level: LabelLevel
    primary_prefix: Optional[str]
    secondary_prefix: Optional[str]
    date_format: Optional[DateFormat]
    aggregated: bool
    parse_diagnostics: StepResult
    diagnostics: StepResult
    warnings: List[str] = field(default_factory=list)


def get_default_params() -> AxisParams:
    """
    Policy defaults matching a fresh chart: daily buckets summed on a calendar
    fiscal year, automatic label levels, "MM/dd/yy" dates, the full range.
    """
    return AxisParams(
        date_field="date",
        metric_fields=[],
        granularity=Granularity.DAY,
        aggregation_method=AggregationMethod.SUM,
        fiscal_year_start_month=1,
        primary_label=AUTO,
        secondary_label=AUTO,
        date_pattern=DEFAULT_DATE_PATTERN,
        sampled_tick_count=DEFAULT_SAMPLED_TICK_COUNT,
        percent_range=(0.0, 100.0),
        verbose=False,
    )


# Chart-editor setting key -> AxisParams attribute
_SETTING_KEYS = {
    "dateField": "date_field",
    "metricNames": "metric_fields",
    "aggregationLevel": "granularity",
    "aggregationMethod": "aggregation_method",
    "fiscalYearStartMonth": "fiscal_year_start_month",
    "xAxisPrimaryLabel": "primary_label",
    "xAxisSecondaryLabel": "secondary_label",
    "dateRangeFilter": "percent_range",
    "sampledTickCount": "sampled_tick_count",
}


def params_from_settings(
    settings: Mapping[str, Any], default: Optional[AxisParams] = None
) -> AxisParams:
    """
    Build AxisParams from chart-editor style settings.

    Recognised keys: dateField, metricNames, aggregationLevel,
    aggregationMethod, fiscalYearStartMonth, xAxisPrimaryLabel,
    xAxisSecondaryLabel, xAxisLabelLevels (1 disables the secondary row),
    dateFormatPreset, dateFormatCustom (overrides the preset when non-empty),
    dateRangeFilter and sampledTickCount. Other keys (styling) are ignored and
    None values keep the default.

    Raises:
        InvalidParamsError: On values that cannot be interpreted.
    """
    base = default if default is not None else get_default_params()
    changes: dict[str, Any] = {}
    for key, attr in _SETTING_KEYS.items():
        if settings.get(key) is not None:
            changes[attr] = settings[key]

    if "percent_range" in changes:
        value = changes["percent_range"]
        if not isinstance(value, (list, tuple)) or len(value) != 2:
            raise InvalidParamsError(
                f"dateRangeFilter must be a [start, end] pair, got: {value!r}"
            )
        changes["percent_range"] = tuple(value)

    if settings.get("xAxisLabelLevels") is not None:
        try:
            levels = int(settings["xAxisLabelLevels"])
        except (TypeError, ValueError):
            raise InvalidParamsError(
                f"xAxisLabelLevels must be 1 or 2, got: {settings['xAxisLabelLevels']!r}"
            ) from None
        if levels == 1:
            changes["secondary_label"] = LabelLevel.NONE.value
        elif levels != 2:
            raise InvalidParamsError(f"xAxisLabelLevels must be 1 or 2, got: {levels}")

    pattern = settings.get("dateFormatCustom") or settings.get("dateFormatPreset")
    if pattern:
        changes["date_pattern"] = str(pattern)

    try:
        return dataclasses.replace(base, **changes)
    except TimeAxisError:
        raise
    except (TypeError, ValueError) as e:
        raise InvalidParamsError(f"Invalid chart settings: {e}") from e


def params_from_json(settings_json: str, default: Optional[AxisParams] = None) -> AxisParams:
    """
    Parse chart settings given as a JSON object (same keys as params_from_settings).
    """
    try:
        settings = json.loads(settings_json)
    except json.JSONDecodeError as e:
        raise InvalidParamsError(f"Chart settings are not valid JSON: {e}") from e
    if not isinstance(settings, dict):
        raise InvalidParamsError("Chart settings JSON must be an object")
    return params_from_settings(settings, default)


def effective_parameters(params: AxisParams) -> dict[str, Any]:
    """JSON-serializable view of the parameters (enums by value)."""
    return sanitize_for_json(dataclasses.asdict(params))


def params_hash(params: AxisParams) -> str:
    """Short canonical hash of the effective parameters."""
    short, _ = canonical_json_hash(effective_parameters(params))
    return short


def build_time_axis(
    raw_records: Sequence[Mapping[str, Any]],
    params: AxisParams,
    date_format: Optional[DateFormat] = None,
    cache: Optional[DateFormatCache] = None,
) -> AxisOutputs:
    """
    Turn raw records into buckets, ticks, labels and secondary groups.

    Args:
        raw_records: Materialised input rows (field name -> value).
        params: Axis parameters.
        date_format: Format to use instead of detecting one.
        cache: Optional caller-owned DateFormatCache.

    Returns:
        AxisOutputs. Unparseable rows are dropped with a warning; when
        aggregation cannot proceed the records are returned one bucket per
        record and `aggregated` is False. Nothing here is fatal to the caller
        except invalid parameters, which AxisParams rejects at construction.
    """
    result = StepResult(label="build_time_axis")
    result.start()
    result.original_rows = len(raw_records)

    parsed = parse_records(
        raw_records,
        params.date_field,
        date_format=date_format,
        cache=cache,
        verbose=params.verbose,
    )

    aggregated = True
    try:
        buckets = aggregate(
            parsed.records,
            params.metric_fields,
            params.granularity,
            params.aggregation_method,
            params.fiscal_year_start_month,
            verbose=params.verbose,
        )
    except AggregationError as e:
        result.set_fallback(f"aggregation failed, using unaggregated records: {e}")
        buckets = records_as_buckets(parsed.records, params.metric_fields)
        aggregated = False

    buckets = slice_by_percent_range(buckets, *params.percent_range)

    primary_level, secondary_level = resolve_levels(
        params.granularity, params.primary_label, params.secondary_label
    )
    plan = plan_ticks(
        [b.bucket_start for b in buckets],
        primary_level,
        params.sampled_tick_count,
        params.fiscal_year_start_month,
    )
    labels = label_ticks(
        plan.ticks,
        primary_level,
        params.fiscal_year_start_month,
        secondary=secondary_level,
        date_pattern=params.date_pattern,
    )
    groups = group(
        plan.ticks,
        primary_level,
        params.fiscal_year_start_month,
        secondary=secondary_level,
    )
    primary_prefix, secondary_prefix = axis_prefixes(primary_level, secondary_level)

    result.output_rows = len(buckets)
    result.dropped_rows = parsed.diagnostics.dropped_rows
    result.add_metric("ticks", len(plan.ticks))
    result.add_metric("groups", len(groups))
    result.add_metric("tick_policy", plan.policy.value)
    result.stop()
    if params.verbose:
        logger.info(result.summarize())

    return AxisOutputs(
        buckets=buckets,
        ticks=plan.ticks,
        tick_policy=plan.policy,
        labels=labels,
        groups=groups,
        primary_level=primary_level,
        secondary_level=secondary_level,
        primary_prefix=primary_prefix,
        secondary_prefix=secondary_prefix,
        date_format=parsed.date_format,
        aggregated=aggregated,
        parse_diagnostics=parsed.diagnostics,
        diagnostics=result,
        warnings=parsed.diagnostics.warnings + result.warnings,
    )
