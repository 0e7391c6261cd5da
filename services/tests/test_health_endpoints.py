from contextlib import asynccontextmanager
from datetime import datetime

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from services.common import ServiceSettings, dispose_engines
from services.inventory_service.app.main import SERVICE_NAME, create_app


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("app_name", "expected_service"),
    [
        ("inventory-service", SERVICE_NAME),
        ("Inventory Canary", "Inventory Canary"),
    ],
)
async def test_health_endpoint_returns_ok(tmp_path, app_name: str, expected_service: str) -> None:
    settings = ServiceSettings(
        app_name=app_name,
        enable_metrics=False,
        enable_tracing=False,
        enable_sweeper=False,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'health.db'}",
    )
    app = create_app(settings)

    async with lifespan(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["service"] == expected_service
    assert datetime.fromisoformat(body["timestamp"]).tzinfo is not None
    await dispose_engines()


@pytest.mark.asyncio
async def test_service_unavailable_outside_lifespan(tmp_path) -> None:
    settings = ServiceSettings(
        enable_metrics=False,
        enable_tracing=False,
        enable_sweeper=False,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'idle.db'}",
    )
    app = create_app(settings)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        response = await client.get("/api/inventory/statistics")

    assert response.status_code == 503
    await dispose_engines()


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with app.router.lifespan_context(app):
        yield


def test_blank_collaborator_urls_are_treated_as_unset(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SERVICE_REDIS_URL", "  ")
    monkeypatch.setenv("SERVICE_PRODUCT_SERVICE_URL", "http://catalog:3002 ")
    monkeypatch.setenv("SERVICE_RESERVATION_EXPIRY_MINUTES", "45")

    settings = ServiceSettings()

    assert settings.redis_url is None
    assert settings.product_service_url == "http://catalog:3002"
    assert settings.reservation_expiry_minutes == 45
    assert settings.notification_service_url is None
