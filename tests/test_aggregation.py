import logging
from decimal import Decimal

import pandas as pd
import pytest

from timeaxis.aggregation import (
    AggregatedBucket,
    AggregationMethod,
    Granularity,
    aggregate,
    bucket_for,
    records_as_buckets,
    slice_by_percent_range,
)
from timeaxis.date_formats import ParsedRecord, parse_records
from timeaxis.errors import AggregationError, InvalidFiscalMonthError, InvalidParamsError


def make_records(rows):
    """rows: list of (date string, fields dict)."""
    return [
        ParsedRecord(fields=fields, instant=pd.Timestamp(date), source_index=i)
        for i, (date, fields) in enumerate(rows)
    ]


class TestBucketFor:
    @pytest.mark.parametrize(
        "granularity, instant, key, start",
        [
            ("day", "2024-01-15 13:45", "2024-01-15", "2024-01-15"),
            ("week", "2023-12-31", "2023-W52", "2023-12-25"),
            ("week", "2024-12-31", "2025-W01", "2024-12-30"),
            ("month", "2024-02-29", "2024-02", "2024-02-01"),
            ("quarter", "2024-05-20", "2024-Q2", "2024-04-01"),
            ("year", "2024-05-20", "2024", "2024-01-01"),
        ],
    )
    def test_calendar_buckets(self, granularity, instant, key, start):
        assert bucket_for(instant, granularity) == (key, pd.Timestamp(start))

    def test_fiscal_buckets(self):
        assert bucket_for("2024-03-15", Granularity.QUARTER, 4) == (
            "2023-Q4",
            pd.Timestamp("2024-01-01"),
        )
        assert bucket_for("2024-06-30", Granularity.YEAR, 7) == (
            "2023",
            pd.Timestamp("2023-07-01"),
        )

    def test_invalid_fiscal_month(self):
        with pytest.raises(InvalidFiscalMonthError):
            bucket_for("2024-01-01", "quarter", 13)


class TestAggregate:
    def test_monthly_merge(self):
        records = make_records(
            [
                ("2024-01-05", {"v": 10}),
                ("2024-01-31 23:00", {"v": 7}),
                ("2024-01-20", {"v": 5}),
            ]
        )
        buckets = aggregate(records, ["v"], "month", "sum")
        assert buckets == [
            AggregatedBucket("2024-01", pd.Timestamp("2024-01-01"), {"v": 22.0}, 3),
        ]

    def test_adjacent_months_stay_separate(self):
        records = make_records(
            [
                ("2024-01-31", {"v": 1}),
                ("2024-02-01", {"v": 2}),
            ]
        )
        buckets = aggregate(records, ["v"], "month")
        assert [(b.bucket_key, b.metric_values["v"]) for b in buckets] == [
            ("2024-01", 1.0),
            ("2024-02", 2.0),
        ]

    @pytest.mark.parametrize(
        "method, expected",
        [
            ("sum", 12.0),
            ("avg", 4.0),
            ("average", 4.0),
            ("min", 2.0),
            ("max", 6.0),
            ("count", 3),
        ],
    )
    def test_methods(self, method, expected):
        records = make_records(
            [
                ("2024-01-01", {"v": 2}),
                ("2024-01-02", {"v": "4"}),
                ("2024-01-03", {"v": 6.0}),
            ]
        )
        (bucket,) = aggregate(records, ["v"], Granularity.YEAR, method)
        assert bucket.metric_values["v"] == expected
        assert bucket.source_count == 3

    def test_missing_values_are_excluded_not_zero(self):
        records = make_records(
            [
                ("2024-01-01", {"v": 10, "w": "n/a"}),
                ("2024-01-02", {"v": None, "w": None}),
                ("2024-01-03", {"v": "1.5K"}),
            ]
        )
        (avg,) = aggregate(records, ["v", "w"], "month", "avg")
        assert avg.metric_values == {"v": 755.0, "w": None}
        (count,) = aggregate(records, ["v", "w"], "month", "count")
        assert count.metric_values == {"v": 2, "w": None}
        assert count.source_count == 3

    def test_decimal_values_are_aggregated(self):
        raw = [
            {"date": "2024-01-01", "v": Decimal("2.5")},
            {"date": "2024-01-01", "v": Decimal("1.25")},
        ]
        records = parse_records(raw, "date").records
        (bucket,) = aggregate(records, ["v"], "day")
        assert bucket.metric_values == {"v": 3.75}

    def test_day_granularity_on_distinct_days_is_identity(self):
        rows = [(f"2024-03-{d:02d}", {"v": d * 1.5}) for d in (3, 1, 2)]
        buckets = aggregate(make_records(rows), ["v"], "day")
        assert [b.bucket_key for b in buckets] == ["2024-03-01", "2024-03-02", "2024-03-03"]
        assert [b.metric_values["v"] for b in buckets] == [1.5, 3.0, 4.5]
        assert all(b.source_count == 1 for b in buckets)

    def test_source_counts_are_lossless(self):
        rows = [
            (str(pd.Timestamp("2023-11-20") + pd.Timedelta(days=i * 3)), {"v": i})
            for i in range(60)
        ]
        for granularity in Granularity:
            buckets = aggregate(make_records(rows), ["v"], granularity, "count", 4)
            assert sum(b.source_count for b in buckets) == 60
            starts = [b.bucket_start for b in buckets]
            assert starts == sorted(starts)
            assert len(set(b.bucket_key for b in buckets)) == len(buckets)

    def test_metric_named_like_dataframe_attribute(self):
        records = make_records([("2024-01-01", {"index": 1, "sum": 2})])
        (bucket,) = aggregate(records, ["index", "sum"], "day")
        assert bucket.metric_values == {"index": 1.0, "sum": 2.0}

    def test_empty_records(self):
        assert aggregate([], ["v"], "month") == []

    def test_no_metric_fields_raises(self):
        records = make_records([("2024-01-01", {"v": 1})])
        with pytest.raises(AggregationError):
            aggregate(records, [], "month")
        with pytest.raises(AggregationError):
            aggregate(records, ["missing"], "month")

    def test_unresolved_metric_is_warned(self, caplog):
        caplog.set_level(logging.WARNING)
        records = make_records([("2024-01-01", {"v": 1})])
        (bucket,) = aggregate(records, ["v", "ghost"], "month")
        assert bucket.metric_values == {"v": 1.0, "ghost": None}
        assert "Metric fields not found in any record: ['ghost']" in caplog.text

    def test_enum_coercion(self):
        assert Granularity("MONTH") is Granularity.MONTH
        assert AggregationMethod("Mean") is AggregationMethod.AVG
        with pytest.raises(ValueError):
            Granularity("decade")


def test_records_as_buckets_orders_and_keeps_values():
    records = make_records(
        [
            ("2024-01-02", {"v": "3"}),
            ("2024-01-01", {"v": "x"}),
            ("2024-01-02", {"v": 1}),
        ]
    )
    buckets = records_as_buckets(records, ["v"])
    assert [b.bucket_key for b in buckets] == [
        "2024-01-01T00:00:00#1",
        "2024-01-02T00:00:00#0",
        "2024-01-02T00:00:00#2",
    ]
    assert [b.metric_values["v"] for b in buckets] == [None, 3.0, 1.0]
    assert all(b.source_count == 1 for b in buckets)


class TestSliceByPercentRange:
    def _buckets(self, n=10):
        return [
            AggregatedBucket(str(i), pd.Timestamp(2024, 1, 1) + pd.Timedelta(days=i), {}, 1)
            for i in reversed(range(n))
        ]

    def test_full_range_keeps_all_sorted(self):
        out = slice_by_percent_range(self._buckets())
        assert [b.bucket_key for b in out] == [str(i) for i in range(10)]

    def test_partial_range(self):
        out = slice_by_percent_range(self._buckets(), 25, 75)
        # floor(2.5) .. ceil(7.5)
        assert [b.bucket_key for b in out] == ["2", "3", "4", "5", "6", "7"]
        assert slice_by_percent_range(self._buckets(), 0, 50)[-1].bucket_key == "4"

    @pytest.mark.parametrize("start, end", [(-1, 50), (60, 40), (0, 101)])
    def test_invalid_bounds(self, start, end):
        with pytest.raises(InvalidParamsError):
            slice_by_percent_range(self._buckets(), start, end)
