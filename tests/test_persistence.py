"""Tests for the persistence collaborators and record round trips."""

import pytest

from bi_core.errors import PersistenceFailure
from bi_core.models import AnalysisResult, Dataset
from bi_core.persistence import MemoryStore, SqlStore, open_store


@pytest.fixture(params=["memory", "sqlite"])
def backend(request, tmp_path):
    if request.param == "memory":
        return MemoryStore()
    return SqlStore(f"sqlite:///{tmp_path / 'bi.db'}")


@pytest.mark.unit
class TestKeyValueStore:
    """Shared contract of both backends."""

    def test_dataset_round_trip(self, backend, sales_dataset):
        backend.put("datasets", sales_dataset.to_dict())
        (raw,) = backend.get_all("datasets")

        assert Dataset.from_dict(raw) == sales_dataset

    def test_result_round_trip_keeps_track_id(self, backend, audit_result):
        backend.put("audits", audit_result.to_dict())
        (raw,) = backend.get_all("audits")
        restored = AnalysisResult.from_dict(raw)

        assert restored.track_id == audit_result.track_id
        assert restored == audit_result

    def test_put_replaces_by_key(self, backend):
        backend.put("config", {"key": "theme", "value": "dark"})
        backend.put("config", {"key": "theme", "value": "light"})

        assert backend.get_all("config") == [{"key": "theme", "value": "light"}]

    def test_rewrite_moves_record_to_end(self, backend):
        for key in ["b", "a", "b"]:
            backend.put("datasets", {"id": key})

        assert [r["id"] for r in backend.get_all("datasets")] == ["a", "b"]

    def test_audits_newest_first(self, backend):
        for ts in ["2024-01-01T00:00:00", "2024-03-01T00:00:00", "2024-02-01T00:00:00"]:
            backend.put("audits", {"timestamp": ts})

        assert [r["timestamp"] for r in backend.get_all("audits")] == [
            "2024-03-01T00:00:00",
            "2024-02-01T00:00:00",
            "2024-01-01T00:00:00",
        ]

    def test_delete_and_clear(self, backend):
        backend.put("config", {"key": "a"})
        backend.put("config", {"key": "b"})
        backend.delete("config", "a")
        assert backend.get_all("config") == [{"key": "b"}]

        backend.clear()
        assert backend.get_all("config") == []

    def test_unknown_collection(self, backend):
        with pytest.raises(PersistenceFailure):
            backend.put("sessions", {"id": "x"})
        with pytest.raises(PersistenceFailure):
            backend.get_all("sessions")

    def test_missing_key_field(self, backend):
        with pytest.raises(PersistenceFailure):
            backend.put("datasets", {"name": "no id"})


@pytest.mark.unit
class TestSqlStore:
    """SQLAlchemy backend specifics."""

    def test_survives_reopen(self, tmp_path, sales_dataset):
        url = f"sqlite:///{tmp_path / 'bi.db'}"
        SqlStore(url).put("datasets", sales_dataset.to_dict())

        assert Dataset.from_dict(SqlStore(url).get_all("datasets")[0]) == sales_dataset

    def test_in_memory_url(self):
        store = SqlStore("sqlite://")
        store.put("config", {"key": "k", "value": 1})
        assert store.get_all("config") == [{"key": "k", "value": 1}]

    def test_open_store(self, tmp_path):
        assert isinstance(open_store(None), MemoryStore)
        assert isinstance(open_store(f"sqlite:///{tmp_path / 'x.db'}"), SqlStore)
