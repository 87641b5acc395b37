import pytest

from webhook_ingest.models import WebhookEventStatus


@pytest.mark.anyio("asyncio")
async def test_healthcheck(client):
    response = await client.get("/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["db_status"] == "ok"
    assert payload["webhook_secrets"] == {"cakto": True, "mercadopago": True}
    assert isinstance(payload["scheduler_config_enabled"], bool)
    assert payload["scheduler_running"] is False
    assert payload["processor_running"] is False
    assert payload["scheduler_lock"]["status"] == "none"
    assert payload["scheduler_lock_held"] is False


@pytest.mark.anyio("asyncio")
async def test_health_reports_event_backlog(client, make_event):
    make_event()
    make_event()
    make_event(status=WebhookEventStatus.FAILED)

    response = await client.get("/health")

    events = response.json()["events"]
    assert events["pending"] == 2
    assert events["failed"] == 1
    assert events["complete"] == 0


@pytest.mark.anyio("asyncio")
async def test_health_reports_missing_secret(client, monkeypatch):
    from webhook_ingest.config import get_settings

    monkeypatch.setattr(get_settings(), "mp_webhook_secret", None)

    response = await client.get("/health")

    assert response.json()["webhook_secrets"] == {"cakto": True, "mercadopago": False}


@pytest.mark.anyio("asyncio")
async def test_health_degrades_on_db_failure(monkeypatch, client):
    class BrokenEngine:
        def connect(self):  # pragma: no cover - simple stub
            raise RuntimeError("DB down")

    monkeypatch.setattr("webhook_ingest.routers.health.get_engine", lambda: BrokenEngine())

    response = await client.get("/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "degraded"
    assert payload["db_status"] == "error"
    assert payload["events"] is None
    assert payload["scheduler_lock"]["status"] == "unknown"


@pytest.mark.anyio("asyncio")
async def test_health_status_degraded_when_db_status_error(monkeypatch, client):
    from webhook_ingest.routers import health as health_module

    monkeypatch.setattr(health_module, "_db_status", lambda: "error")

    response = await client.get("/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "degraded"
    assert payload["db_status"] == "error"
