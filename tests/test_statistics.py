"""Tests for numeric coercion, descriptive statistics, correlation and aggregation."""

import math

import pandas as pd
import pytest

from bi_core.statistics import (
    categorical_aggregation,
    coerce_numeric,
    coerce_series,
    compute_column_statistics,
    content_hash,
    correlation,
    statistics_model,
)


@pytest.mark.unit
class TestCoercion:
    """Lenient numeric coercion."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("42", 42.0),
            ("$1,234.50", 1234.5),
            ("-7.25", -7.25),
            ("12-34", 12.0),
            ("abc", 0.0),
            ("", 0.0),
            (None, 0.0),
            (3, 3.0),
            (2.5, 2.5),
        ],
    )
    def test_coerce_numeric(self, raw, expected):
        assert coerce_numeric(raw) == expected

    def test_series_matches_scalar(self):
        raw = ["42", "$1,234.50", "-7.25", "12-34", "abc", ""]
        assert coerce_series(pd.Series(raw)).tolist() == [coerce_numeric(v) for v in raw]


@pytest.mark.unit
class TestColumnStatistics:
    """Per-column statistics record."""

    def test_basic_record(self):
        rows = [{"v": s} for s in ["1", "2", "3", "4"]]
        stats = compute_column_statistics(rows, "v")

        assert stats.count == 4
        assert stats.sum == 10
        assert stats.mean == 2.5
        assert stats.median == 2.5
        assert stats.variance == pytest.approx(1.25)
        assert stats.std_dev == pytest.approx(math.sqrt(1.25))
        assert (stats.min, stats.max, stats.range) == (1, 4, 3)

    def test_invariants(self):
        rows = [{"v": s} for s in ["10", "-3", "7.5", "7.5", "100", "0.25"]]
        stats = compute_column_statistics(rows, "v")

        assert stats.min <= stats.median <= stats.max
        assert stats.range == stats.max - stats.min
        assert stats.std_dev == pytest.approx(math.sqrt(stats.variance))
        assert stats.variance >= 0
        assert stats.mean == pytest.approx(stats.sum / stats.count)

    def test_unparseable_values_count_as_zero(self):
        rows = [{"v": "10"}, {"v": "n/a"}]
        stats = compute_column_statistics(rows, "v")

        assert stats.count == 2
        assert stats.sum == 10
        assert stats.min == 0

    def test_empty_rows_give_no_record(self):
        assert compute_column_statistics([], "v") is None

    def test_statistics_model_skips_columns_without_record(self):
        rows = [{"a": "1", "b": "2"}]
        model = statistics_model(rows, ["a", "b"])
        assert set(model) == {"a", "b"}
        assert statistics_model([], ["a"]) == {}


@pytest.mark.unit
class TestCorrelation:
    """Sum-of-products Pearson correlation."""

    def test_perfect_positive_and_negative(self):
        rows = [{"x": str(i), "y": str(2 * i + 1), "z": str(-i)} for i in range(10)]
        assert correlation(rows, "x", "y") == pytest.approx(1.0)
        assert correlation(rows, "x", "z") == pytest.approx(-1.0)

    def test_symmetric_and_bounded(self):
        rows = [{"x": str(v), "y": str(w)} for v, w in [(1, 5), (2, 3), (3, 8), (4, 1), (5, 9)]]
        r = correlation(rows, "x", "y")
        assert r == pytest.approx(correlation(rows, "y", "x"))
        assert -1.0 <= r <= 1.0

    def test_constant_column_is_zero(self):
        rows = [{"x": "5", "y": str(i)} for i in range(5)]
        assert correlation(rows, "x", "y") == 0.0

    def test_fewer_than_two_rows_is_zero(self):
        assert correlation([{"x": "1", "y": "2"}], "x", "y") == 0.0
        assert correlation([], "x", "y") == 0.0


@pytest.mark.unit
class TestCategoricalAggregation:
    """Group, sum and sort by category."""

    def test_descending_sums_with_trimmed_keys(self):
        rows = [
            {"k": " East ", "v": "10"},
            {"k": "West", "v": "5"},
            {"k": "East", "v": "20"},
        ]
        assert categorical_aggregation(rows, "k", "v") == [("East", 30.0), ("West", 5.0)]

    def test_empty_and_null_keys_excluded(self):
        rows = [
            {"k": "", "v": "100"},
            {"k": "NULL", "v": "100"},
            {"k": "null", "v": "100"},
            {"k": "East", "v": "1"},
        ]
        assert categorical_aggregation(rows, "k", "v") == [("East", 1.0)]

    def test_ties_keep_encounter_order(self):
        rows = [{"k": "b", "v": "5"}, {"k": "a", "v": "5"}, {"k": "c", "v": "9"}]
        assert [k for k, _ in categorical_aggregation(rows, "k", "v")] == ["c", "b", "a"]

    def test_empty_rows(self):
        assert categorical_aggregation([], "k", "v") == []


@pytest.mark.unit
class TestContentHash:
    """Change-detection fingerprint."""

    def test_deterministic(self, sales_rows):
        assert content_hash(sales_rows) == content_hash([dict(r) for r in sales_rows])

    def test_changes_with_content(self, sales_rows):
        changed = [dict(r) for r in sales_rows]
        changed[0]["revenue"] = "101"
        assert content_hash(changed) != content_hash(sales_rows)
