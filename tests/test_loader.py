"""Tests for file decoding, schema discovery and batch ingestion."""

import io

import pandas as pd
import pytest

from bi_core.activity import ActivityLog
from bi_core.errors import DecodeError, DependencyMissing
from bi_core.loader import build_dataset, discover_schema, ingest_files, normalize_rows, parse_file
from bi_core.store import CollectionStore


@pytest.mark.unit
class TestNormalization:
    """Row normalization."""

    def test_trims_keys_and_values_and_drops_empty_rows(self):
        df = pd.DataFrame({" region ": [" East ", "", None], "revenue": ["10 ", "", None]})
        rows, headers = normalize_rows(df)

        assert headers == ["region", "revenue"]
        assert rows == [{"region": "East", "revenue": "10"}]

    def test_duplicate_columns_keep_first(self):
        df = pd.DataFrame([["a", "1", "2"]], columns=["k", "v", "v"])
        rows, headers = normalize_rows(df)

        assert headers == ["k", "v"]
        assert rows == [{"k": "a", "v": "1"}]


@pytest.mark.unit
class TestSchemaDiscovery:
    """Column classification on a sample."""

    def test_partitions_headers(self, sales_rows):
        schema = discover_schema(sales_rows, ["region", "date", "revenue", "units"])

        assert schema.numerical == ("revenue", "units")
        assert schema.temporal == ("date",)
        assert schema.categorical == ("region",)

    def test_blank_sample_is_categorical(self):
        rows = [{"a": "", "b": "1"}, {"a": "x", "b": "2"}]
        schema = discover_schema(rows, ["a", "b"])
        assert schema.categorical == ("a",)

    def test_short_date_like_values_are_not_temporal(self):
        rows = [{"q": "2024"}, {"q": "2025"}, {"q": "Q1"}]
        assert discover_schema(rows, ["q"]).temporal == ()

    def test_only_first_rows_are_sampled(self):
        rows = [{"v": "1"} for _ in range(10)] + [{"v": "text"}]
        assert discover_schema(rows, ["v"], sample_size=10).numerical == ("v",)


@pytest.mark.unit
class TestParseFile:
    """Single file decoding into a Dataset."""

    def test_csv_path(self, sales_csv):
        ds = parse_file(sales_csv)

        assert ds is not None
        assert ds.id.startswith("ds_")
        assert ds.name == "sales.csv"
        assert ds.meta.row_count == 100
        assert ds.meta.source_type == "csv"
        assert ds.meta.size_bytes == sales_csv.stat().st_size
        assert ds.headers == ["region", "date", "revenue", "units"]
        assert all(set(r) <= set(ds.headers) for r in ds.rows)

    def test_tab_separated_buffer(self):
        data = b"region\trevenue\nEast\t10\nWest\t5\n"
        ds = parse_file(io.BytesIO(data), name="sales.tsv")

        assert ds.schema.numerical == ("revenue",)
        assert ds.rows[0] == {"region": "East", "revenue": "10"}

    def test_spreadsheet(self, tmp_path, sales_rows):
        path = tmp_path / "sales.xlsx"
        pd.DataFrame(sales_rows[:20]).to_excel(path, index=False)
        ds = parse_file(path)

        assert ds is not None
        assert ds.meta.source_type == "xlsx"
        assert ds.meta.row_count == 20
        assert "revenue" in ds.schema.numerical

    def test_rejects_without_numeric_column(self):
        ds = parse_file(b"region,owner\nEast,Ann\nWest,Bob\n", name="names.csv")
        assert ds is None

    def test_rejects_without_categorical_or_temporal_column(self):
        ds = parse_file(b"a,b\n1,2\n3,4\n", name="numbers.csv")
        assert ds is None

    def test_rejects_header_only_file(self):
        assert build_dataset(pd.DataFrame(columns=["region", "revenue"]), "empty.csv") is None

    def test_corrupt_spreadsheet_raises_decode_error(self):
        with pytest.raises(DecodeError):
            parse_file(b"definitely not a workbook", name="broken.xlsx")

    def test_missing_spreadsheet_engine(self, monkeypatch):
        def no_engine(*args, **kwargs):
            raise ImportError("Missing optional dependency 'openpyxl'")

        monkeypatch.setattr(pd, "read_excel", no_engine)

        with pytest.raises(DependencyMissing):
            parse_file(b"PK\x03\x04", name="book.xlsx")


@pytest.mark.unit
class TestIngestFiles:
    """Batch ingestion policy."""

    def test_failure_aborts_only_that_file(self, sales_csv_bytes):
        store = CollectionStore()
        activity = ActivityLog()
        report = ingest_files(
            [
                ("broken.xlsx", b"definitely not a workbook"),
                ("names.csv", b"region,owner\nEast,Ann\n"),
                ("sales.csv", sales_csv_bytes),
            ],
            store,
            activity,
        )

        assert len(report.accepted) == 1
        assert report.rejected == ["names.csv"]
        assert report.failed[0]["file"] == "broken.xlsx"
        assert report.failed[0]["type"] == "DecodeError"
        assert len(store) == 1
        messages = [e.message for e in activity.entries()]
        assert any(m.startswith("CRITICAL ERROR") for m in messages)
        assert messages[-1] == "INGRESS COMPLETE: COLLECTION SYNCHRONIZED."

    def test_missing_engine_fails_only_that_file(self, monkeypatch, sales_csv_bytes):
        def no_engine(*args, **kwargs):
            raise ImportError("Missing optional dependency 'openpyxl'")

        monkeypatch.setattr(pd, "read_excel", no_engine)
        store = CollectionStore()
        activity = ActivityLog()
        report = ingest_files([("book.xlsx", b"PK\x03\x04"), ("sales.csv", sales_csv_bytes)], store, activity)

        assert len(report.accepted) == 1
        assert report.failed[0]["file"] == "book.xlsx"
        assert report.failed[0]["type"] == "DependencyMissing"
        assert any(e.message.startswith("CRITICAL ERROR") for e in activity.entries())
