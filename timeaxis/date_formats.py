"""
Date format detection and record parsing.

A dataset's date column is assumed to use one format throughout. The format is
detected once from a single sample by trying an ordered list of candidate
parsers; the first candidate that yields a valid date wins. That order is the
only tie-break for ambiguous samples: "03/04/2024" is always read as US
(March 4th) because the US slash form is listed before the EU one. EU-formatted
datasets whose first day value is <= 12 are therefore read as US dates; this is
accepted behavior, not corrected here.

Rows that fail under the detected format fall back individually to an ISO
local-midnight parse (for YYYY-MM-DD strings) and then to pandas' generic
inference. Rows that still fail are dropped with a warning.
"""

from __future__ import annotations

import datetime as _dt
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional, Sequence

import pandas as pd

from .diagnostics import StepResult
from .utils import canonical_json_hash

logger = logging.getLogger(__name__)

ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_ISO_WEEK_RE = re.compile(r"^(\d{4})-W(\d{1,2})$")

# Sample values included in the dropped-rows warning
_MAX_REPORTED_FAILURES = 5


def _normalize_parsed(value: Any) -> Optional[pd.Timestamp]:
    if value is None or pd.isna(value):
        return None
    ts = pd.Timestamp(value)
    if ts.tzinfo is not None:
        ts = ts.tz_localize(None)
    return ts


def _strptime_parser(pattern: str) -> Callable[[str], Optional[pd.Timestamp]]:
    def _parse(text: str) -> Optional[pd.Timestamp]:
        return _normalize_parsed(
            pd.to_datetime(text, format=pattern, exact=True, errors="coerce")
        )

    return _parse


def _parse_iso_week(text: str) -> Optional[pd.Timestamp]:
    """Parse YYYY-Www to the Monday of that ISO week."""
    match = _ISO_WEEK_RE.match(text)
    if match is None:
        return None
    year, week = int(match.group(1)), int(match.group(2))
    try:
        return pd.Timestamp(_dt.date.fromisocalendar(year, week, 1))
    except ValueError:
        return None


def _parse_iso_local(text: str) -> Optional[pd.Timestamp]:
    # Anchor to local midnight explicitly; no timezone is ever attached.
    return _normalize_parsed(
        pd.to_datetime(
            f"{text}T00:00:00", format="%Y-%m-%dT%H:%M:%S", errors="coerce"
        )
    )


def _parse_native(text: str) -> Optional[pd.Timestamp]:
    try:
        return _normalize_parsed(pd.to_datetime(text, errors="coerce"))
    except (ValueError, TypeError, OverflowError):
        return None


@dataclass(frozen=True)
class DateFormat:
    """
    One date-format strategy: a cheap shape predicate plus a parser.

    Attributes:
        name: Stable identifier (e.g. "iso", "us_slash", "native").
        pattern: strptime pattern used by the parser, or None for custom parsers.
        predicate: Regex the input must fully match before the parser is tried.
            None means any input is handed to the parser.
        parser: Callable returning a Timestamp or None.
    """

    name: str
    pattern: Optional[str]
    predicate: Optional[re.Pattern] = field(compare=False)
    parser: Callable[[str], Optional[pd.Timestamp]] = field(compare=False)

    def parse(self, text: str) -> Optional[pd.Timestamp]:
        """Parse one value; returns None when the value does not fit this format."""
        if not isinstance(text, str):
            return None
        text = text.strip()
        if not text:
            return None
        if self.predicate is not None and self.predicate.match(text) is None:
            return None
        return self.parser(text)

    def parse_many(self, texts: Sequence[Optional[str]]) -> list[Optional[pd.Timestamp]]:
        """
        Parse a column of values at once.

        strptime-backed formats run one vectorised pandas.to_datetime call over
        the whole column; custom parsers are applied element by element.
        """
        if self.pattern is None:
            return [self.parse(t) if t is not None else None for t in texts]

        stripped = [t.strip() if isinstance(t, str) else None for t in texts]
        mask = [
            t is not None
            and bool(t)
            and (self.predicate is None or self.predicate.match(t) is not None)
            for t in stripped
        ]
        series = pd.Series(
            [t if ok else None for t, ok in zip(stripped, mask)], dtype=object
        )
        converted = pd.to_datetime(
            series, format=self.pattern, exact=True, errors="coerce"
        )
        return [_normalize_parsed(v) for v in converted.tolist()]


def _candidate(name: str, pattern: str, predicate: str) -> DateFormat:
    return DateFormat(
        name=name,
        pattern=pattern,
        predicate=re.compile(predicate, re.IGNORECASE),
        parser=_strptime_parser(pattern),
    )


# Order is the ambiguity tie-break: first match wins.
DATE_FORMAT_CANDIDATES: tuple[DateFormat, ...] = (
    _candidate("iso", "%Y-%m-%d", r"^\d{4}-\d{1,2}-\d{1,2}$"),
    _candidate("us_slash", "%m/%d/%Y", r"^\d{1,2}/\d{1,2}/\d{4}$"),
    _candidate("eu_slash", "%d/%m/%Y", r"^\d{1,2}/\d{1,2}/\d{4}$"),
    _candidate("short_month", "%b %d, %Y", r"^[a-z]{3} \d{1,2}, \d{4}$"),
    _candidate("long_month", "%B %d, %Y", r"^[a-z]+ \d{1,2}, \d{4}$"),
    _candidate("year_month", "%Y-%m", r"^\d{4}-\d{1,2}$"),
    _candidate("year", "%Y", r"^\d{4}$"),
    DateFormat(
        name="iso_week",
        pattern=None,
        predicate=_ISO_WEEK_RE,
        parser=_parse_iso_week,
    ),
    _candidate("date_hour", "%Y-%m-%d %H", r"^\d{4}-\d{1,2}-\d{1,2} \d{1,2}$"),
    _candidate("us_dash", "%m-%d-%Y", r"^\d{1,2}-\d{1,2}-\d{4}$"),
    _candidate("eu_dash", "%d-%m-%Y", r"^\d{1,2}-\d{1,2}-\d{4}$"),
)

ISO_LOCAL_FORMAT = DateFormat(
    name="iso_local", pattern=None, predicate=ISO_DATE_RE, parser=_parse_iso_local
)
NATIVE_FORMAT = DateFormat(
    name="native", pattern=None, predicate=None, parser=_parse_native
)


def detect_date_format(sample: Optional[str]) -> DateFormat:
    """
    Select the date format for a dataset from one representative value.

    Args:
        sample: The date value of the first row that has one.

    Returns:
        The first candidate in DATE_FORMAT_CANDIDATES whose parser yields a
        valid date. When none does, ISO_LOCAL_FORMAT for YYYY-MM-DD strings,
        otherwise NATIVE_FORMAT. Never raises.
    """
    text = sample.strip() if isinstance(sample, str) else ""
    for candidate in DATE_FORMAT_CANDIDATES:
        if candidate.parse(text) is not None:
            logger.debug(f"Detected date format {candidate.name} for sample {text!r}")
            return candidate

    if ISO_DATE_RE.match(text):
        return ISO_LOCAL_FORMAT
    logger.debug(f"No candidate matched sample {text!r}; using native parsing")
    return NATIVE_FORMAT


def _is_missing(value: Any) -> bool:
    return value is None or (pd.api.types.is_scalar(value) and pd.isna(value))


def _is_date_object(value: Any) -> bool:
    # NaT is a datetime instance but carries no date
    return isinstance(value, (_dt.datetime, _dt.date)) and not _is_missing(value)


def _as_text(value: Any) -> Optional[str]:
    if _is_missing(value):
        return None
    text = str(value).strip()
    return text or None


def _fallback_parse(text: str) -> Optional[pd.Timestamp]:
    if ISO_DATE_RE.match(text):
        return ISO_LOCAL_FORMAT.parse(text)
    return NATIVE_FORMAT.parse(text)


def parse_date(value: Any, date_format: DateFormat) -> Optional[pd.Timestamp]:
    """
    Parse one date value with the dataset's format, falling back per value.

    datetime/date objects are accepted as-is. Returns None when the value
    cannot be parsed by the format or by the fallback chain.
    """
    if _is_date_object(value):
        return _normalize_parsed(value)
    text = _as_text(value)
    if text is None:
        return None
    parsed = date_format.parse(text)
    if parsed is None:
        parsed = _fallback_parse(text)
    return parsed


@dataclass(frozen=True)
class ParsedRecord:
    """A raw record together with its resolved instant."""

    fields: Mapping[str, Any]
    instant: pd.Timestamp
    source_index: int

    def get(self, name: str, default: Any = None) -> Any:
        return self.fields.get(name, default)


@dataclass
class ParseOutputs:
    records: list[ParsedRecord]
    date_format: Optional[DateFormat]
    diagnostics: StepResult


class DateFormatCache:
    """
    Caller-owned memo of detected formats keyed by dataset fingerprint.

    Detection is cheap, so most callers do not need this; it exists for hosts
    that re-run the pipeline on the same dataset many times. The cache lives
    exactly as long as the caller keeps the instance.
    """

    def __init__(self) -> None:
        self._formats: dict[str, DateFormat] = {}

    @staticmethod
    def fingerprint(date_field: str, sample: Optional[str]) -> str:
        _, full = canonical_json_hash({"date_field": date_field, "sample": sample})
        return full

    def get_or_detect(self, date_field: str, sample: Optional[str]) -> DateFormat:
        key = self.fingerprint(date_field, sample)
        if key not in self._formats:
            self._formats[key] = detect_date_format(sample)
        return self._formats[key]

    def clear(self) -> None:
        self._formats.clear()

    def __len__(self) -> int:
        return len(self._formats)


def parse_records(
    records: Sequence[Mapping[str, Any]],
    date_field: str,
    date_format: Optional[DateFormat] = None,
    cache: Optional[DateFormatCache] = None,
    verbose: bool = False,
) -> ParseOutputs:
    """
    Resolve the instant of every record; unparseable rows are dropped.

    Args:
        records: Raw records (mappings of field name -> value).
        date_field: Name of the field holding the date value.
        date_format: Format to use. Detected from the first non-empty date
            value when None.
        cache: Optional caller-owned DateFormatCache consulted for detection.
        verbose: Log the step summary at INFO.

    Returns:
        ParseOutputs with the surviving records (input order preserved), the
        format used and the step diagnostics. Dropped rows are reported as a
        warning, never raised.
    """
    result = StepResult(label="parse_records")
    result.start()
    result.original_rows = len(records)

    raw_values = [record.get(date_field) for record in records]
    texts = [None if _is_date_object(v) else _as_text(v) for v in raw_values]

    if date_format is None:
        sample = next((t for t in texts if t is not None), None)
        if cache is not None:
            date_format = cache.get_or_detect(date_field, sample)
        else:
            date_format = detect_date_format(sample)
    result.add_metric("date_format", date_format.name)

    parsed = date_format.parse_many(texts)

    out: list[ParsedRecord] = []
    failures: list[str] = []
    missing = 0
    fallbacks = 0
    for index, (record, raw, text, ts) in enumerate(
        zip(records, raw_values, texts, parsed)
    ):
        if _is_date_object(raw):
            ts = _normalize_parsed(raw)
        elif text is None:
            missing += 1
            continue
        elif ts is None:
            ts = _fallback_parse(text)
            if ts is not None:
                fallbacks += 1
        if ts is None:
            failures.append(text)
            continue
        out.append(ParsedRecord(fields=record, instant=ts, source_index=index))

    if missing:
        result.add_warning(
            f"Dropped {missing} rows with no value in date field '{date_field}'"
        )
    if failures:
        shown = ", ".join(repr(v) for v in failures[:_MAX_REPORTED_FAILURES])
        more = "" if len(failures) <= _MAX_REPORTED_FAILURES else ", ..."
        result.add_warning(
            f"Dropped {len(failures)} rows with unparseable dates in '{date_field}': {shown}{more}"
        )
    result.add_metric("fallback_parsed_rows", fallbacks)
    result.dropped_rows = missing + len(failures)
    result.output_rows = len(out)
    result.stop()
    if verbose:
        logger.info(result.summarize())

    return ParseOutputs(records=out, date_format=date_format, diagnostics=result)
