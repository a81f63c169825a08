"""Tests for the FastAPI surface."""

import pytest
from fastapi.testclient import TestClient

from bi_api.main import app, get_session


@pytest.fixture
def client(session):
    app.dependency_overrides[get_session] = lambda: session
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def uploaded(client, sales_csv_bytes):
    resp = client.post("/datasets", files=[("files", ("sales.csv", sales_csv_bytes, "text/csv"))])
    assert resp.status_code == 200
    return resp.json()


@pytest.mark.unit
class TestDatasets:
    """Upload, list and remove datasets."""

    def test_upload_reports_candidates(self, uploaded):
        assert len(uploaded["accepted"]) == 1
        assert uploaded["failed"] == []
        assert uploaded["candidates"] == {"x": "date", "y": "units", "z": "revenue"}

    def test_upload_failure_is_reported_per_file(self, client, sales_csv_bytes):
        resp = client.post(
            "/datasets",
            files=[
                ("files", ("broken.xlsx", b"definitely not a workbook", "application/octet-stream")),
                ("files", ("sales.csv", sales_csv_bytes, "text/csv")),
            ],
        )
        body = resp.json()

        assert resp.status_code == 200
        assert len(body["accepted"]) == 1
        assert body["failed"][0]["file"] == "broken.xlsx"

    def test_list_and_delete(self, client, uploaded):
        ds_id = uploaded["accepted"][0]
        listed = client.get("/datasets").json()["datasets"]

        assert [d["id"] for d in listed] == [ds_id]
        assert "rows" not in listed[0]
        assert client.delete(f"/datasets/{ds_id}").status_code == 200
        assert client.delete(f"/datasets/{ds_id}").status_code == 404

    def test_clear(self, client, uploaded):
        assert client.delete("/datasets").json() == {"cleared": True}
        assert client.get("/datasets").json() == {"datasets": []}

    def test_collection_and_summary(self, client, uploaded):
        state = client.get("/collection", params={"mode": "union"}).json()
        assert state["total_rows"] == 100
        assert state["shared_headers"] == ["region", "date", "revenue", "units"]

        summary = client.get("/summary").json()
        assert summary["summary"]["activation_status"] == "STAGING"
        assert summary["state"] == "IDLE"

    def test_invalid_mode(self, client):
        assert client.get("/collection", params={"mode": "merge"}).status_code == 422


@pytest.mark.unit
class TestAudit:
    """Audit, history, activity and export."""

    def test_audit_flow(self, client, uploaded):
        resp = client.post("/audit", json={"x": "region", "y": "revenue"})
        body = resp.json()

        assert resp.status_code == 200
        assert body["result"]["interpretation"]["operational_state"] == "Highly Concentrated"
        assert body["result"]["advisory"][0]["action"] == "DIVERSIFY"
        assert "distribution" in body["charts"]

        history = client.get("/history").json()["history"]
        assert [h["track_id"] for h in history] == [body["result"]["track_id"]]

        export = client.get("/export")
        assert export.status_code == 200
        assert export.headers["content-type"].startswith("text/html")

    def test_validation_error(self, client, uploaded):
        resp = client.post("/audit", json={"x": "region", "y": ""})

        assert resp.status_code == 422
        assert resp.json()["reason"] == "missing_y"

    def test_no_dataset(self, client):
        resp = client.post("/audit", json={"x": "region", "y": "revenue"})
        assert resp.json()["reason"] == "no_dataset"

    def test_export_blocked(self, client):
        resp = client.get("/export")

        assert resp.status_code == 409
        assert resp.json()["type"] == "ExportBlocked"

    def test_clear_history_and_activity(self, client, uploaded):
        client.post("/audit", json={"x": "region", "y": "revenue"})

        assert client.delete("/history").json() == {"cleared": True, "purged": False}
        assert client.get("/history").json() == {"history": []}
        messages = [e["message"] for e in client.get("/activity").json()["activity"]]
        assert "AUDIT HISTORY CLEARED." in messages
