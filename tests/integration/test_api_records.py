"""Integration tests for /records routes."""
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from offsync.api.main import create_app
from offsync.db.store import StoreError
from offsync.models.record import SyncStatus
from offsync.service import get_service


@pytest.fixture(name="client")
def client_fixture(service):
    app = create_app()
    app.dependency_overrides[get_service] = lambda: service
    with TestClient(app) as c:
        yield c


class TestCreateRecord:
    def test_create_returns_201_pending(self, client):
        resp = client.post("/records", json={"title": "Shopping", "body": "milk"})
        assert resp.status_code == 201
        data = resp.json()
        assert data["title"] == "Shopping"
        assert data["sync_status"] == "PENDING"
        assert data["remote_id"] is None
        assert data["id"]

    def test_create_trims_fields(self, client):
        resp = client.post("/records", json={"title": "  Padded  ", "body": " text "})
        assert resp.json()["title"] == "Padded"
        assert resp.json()["body"] == "text"

    def test_blank_title_is_422(self, client):
        resp = client.post("/records", json={"title": "   ", "body": "milk"})
        assert resp.status_code == 422
        assert resp.json()["detail"] == "Title is required"

    def test_long_body_is_422(self, client):
        resp = client.post("/records", json={"title": "T", "body": "x" * 5001})
        assert resp.status_code == 422
        assert "5000" in resp.json()["detail"]

    def test_missing_field_is_422(self, client):
        resp = client.post("/records", json={"title": "T"})
        assert resp.status_code == 422

    def test_create_does_not_sync(self, client, remote):
        client.post("/records", json={"title": "T", "body": "B"})
        remote.send.assert_not_called()


class TestReadRecords:
    def test_list_empty(self, client):
        resp = client.get("/records")
        assert resp.status_code == 200
        assert resp.json() == []

    def test_list_newest_first(self, client, store, make_record):
        store.insert(make_record(0, id="old"))
        store.insert(make_record(5, id="new"))
        resp = client.get("/records")
        assert [r["id"] for r in resp.json()] == ["new", "old"]

    def test_get_by_id(self, client, store, make_record):
        store.insert(make_record(0, id="r1", title="Hello"))
        resp = client.get("/records/r1")
        assert resp.status_code == 200
        assert resp.json()["title"] == "Hello"

    def test_get_missing_is_404(self, client):
        resp = client.get("/records/nope")
        assert resp.status_code == 404

    def test_stats(self, client, store, make_record):
        store.insert(make_record(0, id="a"))
        store.insert(make_record(1, id="b"))
        store.update_status("b", SyncStatus.SYNCING)
        store.update_status("b", SyncStatus.FAILED, sync_error="bad")
        resp = client.get("/records/stats")
        assert resp.status_code == 200
        assert resp.json() == {"total": 2, "synced": 0, "pending": 1, "failed": 1}


class TestStoreErrors:
    def test_store_error_is_503(self):
        broken = MagicMock()
        broken.list_records.side_effect = StoreError("Failed to list records: disk I/O error")
        app = create_app()
        app.dependency_overrides[get_service] = lambda: broken
        with TestClient(app) as client:
            resp = client.get("/records")
        assert resp.status_code == 503
        assert "disk I/O error" in resp.json()["detail"]
