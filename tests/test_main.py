from types import SimpleNamespace

import pytest

from webhook_ingest.main import _assert_webhook_secrets


def _settings(app_env: str, cakto: str | None = None, mp: str | None = None) -> SimpleNamespace:
    return SimpleNamespace(app_env=app_env, cakto_webhook_secret=cakto, mp_webhook_secret=mp)


def test_missing_secrets_fail_startup_in_prod():
    with pytest.raises(RuntimeError, match="Missing webhook secrets"):
        _assert_webhook_secrets(_settings("prod"))


@pytest.mark.parametrize("env", ["dev", "local", "TEST"])
def test_missing_secrets_tolerated_in_dev(env):
    _assert_webhook_secrets(_settings(env))


def test_single_provider_secret_is_enough(caplog):
    with caplog.at_level("WARNING", logger="webhook_ingest.main"):
        _assert_webhook_secrets(_settings("prod", mp="mp-secret"))

    assert any(getattr(record, "provider", None) == "cakto" for record in caplog.records)


@pytest.mark.anyio("asyncio")
async def test_unknown_route_uses_error_envelope(client):
    response = await client.get("/nope")

    assert response.status_code == 404
    assert response.json() == {"error": "NOT_FOUND", "message": "Endpoint not found"}
