from types import SimpleNamespace

import pytest
from httpx import ASGITransport, AsyncClient

from loyalty_api.core.settings import settings


@pytest.mark.asyncio
async def test_app_healthz_reports_version(app_with_db) -> None:
    app, _ = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/healthz")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["environment"] == settings.environment
    assert "version" in payload


@pytest.mark.asyncio
async def test_readyz_reports_component_statuses(app_with_db) -> None:
    app, _ = app_with_db

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/api/v1/health/readyz")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ready"
    components = payload["components"]
    assert components["database"]["status"] == "ready"
    assert components["card_maintenance"]["status"] == "disabled"


@pytest.mark.asyncio
async def test_readyz_degrades_when_maintenance_sweep_fails(app_with_db, monkeypatch) -> None:
    app, _ = app_with_db
    monkeypatch.setattr(settings, "card_maintenance_worker_enabled", True)
    app.state.card_maintenance_worker = SimpleNamespace(
        is_running=True,
        last_error="database is locked",
        last_success_at=None,
    )

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/api/v1/health/readyz")

    payload = response.json()
    assert payload["status"] == "degraded"
    assert payload["components"]["card_maintenance"]["status"] == "error"
    assert payload["components"]["card_maintenance"]["detail"] == "database is locked"
