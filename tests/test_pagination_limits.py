import os

# Lightweight DB setup and disable background tasks
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:////tmp/passgate_test_api.db")
os.environ.setdefault("AUTO_CREATE_DB", "true")
os.environ.setdefault("ENABLE_PASSCODE_SWEEPER", "false")

import datetime

from fastapi.testclient import TestClient

from passgate.core.pagination import clamp_page_size, get_max_page_size
from passgate.main import create_app
from passgate.services.access_control import get_access_control
from passgate.services.access_recorder import AccessEntry

from conftest import utcnow


def _client(control) -> TestClient:
    app = create_app()
    app.dependency_overrides[get_access_control] = lambda: control
    return TestClient(app)


def _seed_records(control, count: int = 12) -> None:
    now = utcnow()
    for i in range(count):
        control.recorder.append(
            AccessEntry(
                device_id="GATE_1",
                direction="in",
                result="success",
                timestamp=now - datetime.timedelta(seconds=i),
                user_id=1,
            )
        )


def test_page_size_capped(control, monkeypatch):
    monkeypatch.setenv("API_MAX_PAGE_SIZE", "5")
    _seed_records(control)
    with _client(control) as client:
        resp = client.get("/api/v1/access/records?page_size=100")
        assert resp.status_code == 200
        assert len(resp.json()["items"]) == 5
        assert resp.json()["total_pages"] == 3
        assert resp.headers.get("X-Page-Size") == "5"
        assert resp.headers.get("X-Total-Count") == "12"


def test_negative_page_rejected(control):
    with _client(control) as client:
        resp = client.get("/api/v1/access/records?page=-1")
        assert resp.status_code == 422
        resp = client.get("/api/v1/access/records?page_size=0")
        assert resp.status_code == 422


def test_max_page_size_falls_back_on_bad_values(monkeypatch):
    monkeypatch.setenv("API_MAX_PAGE_SIZE", "not-a-number")
    assert get_max_page_size() == 200
    monkeypatch.setenv("API_MAX_PAGE_SIZE", "0")
    assert get_max_page_size() == 200
    assert clamp_page_size(1000) == 200
    assert clamp_page_size(0) == 1
