import pytest
from django.db import OperationalError

from apps.monitoring import api
from apps.orders import sweeper

HEALTH_URL = "/api/health/"


@pytest.mark.django_db
def test_health_reports_db_and_sweeper(client, monkeypatch):
    monkeypatch.setattr(sweeper, "_last_report", None)
    r = client.get(HEALTH_URL)

    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True
    assert body["components"]["db"] == {"ok": True}
    assert body["components"]["sweeper"] == {"last_run_at": None, "last_report": None}
    assert r.headers["X-Request-ID"]


@pytest.mark.django_db
def test_health_includes_last_sweep(client, state_machine, clock, monkeypatch):
    monkeypatch.setattr(sweeper, "_last_report", None)
    sweeper.ExpirySweeper(state_machine=state_machine, clock=clock).sweep()

    report = client.get(HEALTH_URL).json()["components"]["sweeper"]
    assert report["last_run_at"] == clock.now.isoformat()
    assert report["last_report"]["scanned"] == 0


def test_health_returns_503_when_db_is_down(client, monkeypatch):
    class DownConnection:
        def cursor(self):
            raise OperationalError("could not connect")

    monkeypatch.setattr(api, "connection", DownConnection())
    r = client.get(HEALTH_URL)

    assert r.status_code == 503
    assert r.json()["components"]["db"]["ok"] is False


def test_request_id_is_echoed(client, monkeypatch):
    monkeypatch.setattr(api, "_db_ok", lambda: True)
    r = client.get(HEALTH_URL, headers={"X-Request-Id": "abc-123"})
    assert r.headers["X-Request-ID"] == "abc-123"
