"""Shared fixtures for the audit dashboard test suite."""

import pytest

from bi_core.audit import AuditPayload, run_audit_logic
from bi_core.computation import InProcessComputation
from bi_core.config import Settings
from bi_core.loader import build_dataset
from bi_core.persistence import MemoryStore
from bi_core.session import Session


REGIONS = ["East", "East", "East", "West", "East", "North", "East", "West", "East", "North"]


def make_sales_rows(count=100):
    """Rows where East holds 60% of revenue (every row carries 100)."""
    rows = []
    for i in range(count):
        rows.append(
            {
                "region": REGIONS[i % len(REGIONS)],
                "date": f"2024-{(i % 12) + 1:02d}-{(i % 28) + 1:02d}",
                "revenue": "100",
                "units": str(i + 1),
            }
        )
    return rows


def rows_to_csv(rows):
    headers = list(rows[0].keys())
    lines = [",".join(headers)] + [",".join(r[h] for h in headers) for r in rows]
    return ("\n".join(lines) + "\n").encode("utf-8")


@pytest.fixture
def sales_rows():
    return make_sales_rows()


@pytest.fixture
def sales_csv_bytes(sales_rows):
    return rows_to_csv(sales_rows)


@pytest.fixture
def sales_csv(tmp_path, sales_csv_bytes):
    path = tmp_path / "sales.csv"
    path.write_bytes(sales_csv_bytes)
    return path


@pytest.fixture
def sales_dataset(sales_rows):
    return build_dataset(sales_rows, "sales.csv")


@pytest.fixture
def fast_settings():
    return Settings(worker_timeout_s=5.0, refresh_interval_s=0.01, computation="inline")


@pytest.fixture
def session(fast_settings):
    s = Session(MemoryStore(), config=fast_settings, computation=InProcessComputation())
    yield s
    s.close()


@pytest.fixture
def audit_result(sales_rows):
    return run_audit_logic(AuditPayload(x="region", y="revenue", rows=sales_rows, numeric_columns=("revenue", "units")))
