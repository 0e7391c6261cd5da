from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from prometheus_client import REGISTRY

from services.common import ServiceSettings, create_engine, dispose_engines
from services.inventory_service.app.main import create_app
from services.inventory_service.app.models import Base, InventoryItem
from services.inventory_service.app.services import InventoryService


class _NullProducts:
    async def confirm_product(self, product_id: str) -> dict[str, Any] | None:
        return None


class _RecordingNotifier:
    def __init__(self) -> None:
        self.alerts: list[tuple[str, int]] = []

    def notify_low_stock(self, item: InventoryItem) -> None:
        self.alerts.append((item.product_id, item.available_quantity))


class _MetricTracker:
    def __init__(self, name: str, labels: dict[str, str] | None = None) -> None:
        self.name = name
        self.labels = labels or {}
        baseline = REGISTRY.get_sample_value(name, self.labels)
        self._baseline = baseline if baseline is not None else 0.0

    def delta(self) -> float:
        current = REGISTRY.get_sample_value(self.name, self.labels)
        value = current if current is not None else 0.0
        return value - self._baseline


async def _prepare_app(tmp_path) -> FastAPI:
    db_file = tmp_path / "inventory.db"
    database_url = f"sqlite+aiosqlite:///{db_file}"

    engine = create_engine(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    settings = ServiceSettings(
        app_name="Inventory Service Test",
        enable_metrics=False,
        enable_tracing=False,
        enable_sweeper=False,
        database_url=database_url,
    )
    return create_app(settings)


def _inventory_payload(**overrides: Any) -> dict[str, Any]:
    payload = {
        "productId": str(uuid4()),
        "sku": f"SKU-{uuid4().hex[:8].upper()}",
        "productName": "Trail Running Shoe",
        "quantity": 100,
        "minStockLevel": 10,
        "reorderPoint": 5,
        "location": "A-01",
        "warehouse": "main",
        "costPrice": "12.50",
    }
    payload.update(overrides)
    return payload


async def _create_item(client: AsyncClient, **overrides: Any) -> dict[str, Any]:
    response = await client.post("/api/inventory", json=_inventory_payload(**overrides))
    assert response.status_code == 201, response.text
    return response.json()["data"]


async def _audit(client: AsyncClient, product_id: str) -> dict[str, Any]:
    response = await client.get(f"/api/inventory/product/{product_id}/audit")
    assert response.status_code == 200
    return response.json()["data"]


@pytest.mark.asyncio
async def test_create_and_get_inventory(tmp_path) -> None:
    app = await _prepare_app(tmp_path)

    async with lifespan(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            create_resp = await client.post("/api/inventory/", json=_inventory_payload(sku="SKU-100"))
            assert create_resp.status_code == 201
            body = create_resp.json()
            assert body["success"] is True
            assert body["message"] == "Inventory item created successfully"
            created = body["data"]
            assert created["quantity"] == 100
            assert created["reservedQuantity"] == 0
            assert created["availableQuantity"] == 100
            assert created["isActive"] is True
            assert "reservations" not in created
            product_id = created["productId"]

            by_product = await client.get(f"/api/inventory/product/{product_id}")
            assert by_product.status_code == 200
            fetched = by_product.json()
            assert "message" not in fetched
            assert fetched["data"]["sku"] == "SKU-100"
            assert fetched["data"]["reservations"] == []

            by_sku = await client.get("/api/inventory/sku/SKU-100")
            assert by_sku.status_code == 200
            assert by_sku.json()["data"]["productId"] == product_id

            history = await client.get(f"/api/inventory/product/{product_id}/history")
            entries = history.json()["data"]
            assert [entry["type"] for entry in entries] == ["stock_in"]
            assert entries[0]["reason"] == "Initial stock"
            assert entries[0]["newQuantity"] == 100

    await dispose_engines()


@pytest.mark.asyncio
async def test_create_rejects_duplicates_and_bad_payloads(tmp_path) -> None:
    app = await _prepare_app(tmp_path)

    async with lifespan(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            created = await _create_item(client, sku="SKU-DUP")

            same_sku = await client.post("/api/inventory", json=_inventory_payload(sku="SKU-DUP"))
            assert same_sku.status_code == 409
            assert same_sku.json() == {
                "success": False,
                "message": "An inventory item with this SKU already exists",
            }

            same_product = await client.post(
                "/api/inventory",
                json=_inventory_payload(productId=created["productId"]),
            )
            assert same_product.status_code == 409

            invalid = await client.post(
                "/api/inventory",
                json=_inventory_payload(productId="not-a-uuid", quantity=-1),
            )
            assert invalid.status_code == 400
            error = invalid.json()
            assert error["success"] is False
            assert error["message"] == "Validation error"
            assert "productId" in error["details"]
            assert "quantity" in error["details"]

            missing = await client.get(f"/api/inventory/product/{uuid4()}")
            assert missing.status_code == 404
            assert missing.json()["message"] == "Inventory item not found"

    await dispose_engines()


@pytest.mark.asyncio
async def test_stock_updates_and_history(tmp_path) -> None:
    app = await _prepare_app(tmp_path)
    updates = _MetricTracker("inventory_stock_updates_total", {"type": "stock_in"})

    async with lifespan(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            item = await _create_item(client, quantity=10)
            product_id = item["productId"]
            stock_url = f"/api/inventory/product/{product_id}/stock"

            restock = await client.patch(
                stock_url,
                json={"quantity": 15, "type": "stock_in", "reason": "Supplier delivery", "batchNumber": "B-7"},
            )
            assert restock.status_code == 200
            assert restock.json()["data"]["quantity"] == 25
            assert restock.json()["data"]["lastRestockedAt"] is not None

            sale = await client.patch(stock_url, json={"quantity": 5, "type": "stock_out", "reason": "Walk-in sale"})
            assert sale.json()["data"]["quantity"] == 20

            adjust = await client.patch(stock_url, json={"quantity": 18, "type": "adjustment", "reason": "Cycle count"})
            assert adjust.json()["data"]["quantity"] == 18

            history = await client.get(f"/api/inventory/product/{product_id}/history", params={"limit": 2})
            body = history.json()
            assert body["pagination"] == {"total": 4, "page": 1, "pages": 2, "limit": 2}
            assert [entry["type"] for entry in body["data"]] == ["adjustment", "stock_out"]
            assert body["data"][0]["quantity"] == -2
            assert body["data"][0]["previousQuantity"] == 20

            filtered = await client.get(
                f"/api/inventory/product/{product_id}/history",
                params={"type": "stock_in"},
            )
            restocks = filtered.json()["data"]
            assert len(restocks) == 2
            assert restocks[0]["batchNumber"] == "B-7"

            bad_type = await client.patch(stock_url, json={"quantity": 1, "type": "transfer", "reason": "x"})
            assert bad_type.status_code == 400

            audit = await _audit(client, product_id)
            assert audit["consistent"] is True
            assert audit["replayedQuantity"] == 18

    await dispose_engines()
    assert updates.delta() == 1


@pytest.mark.asyncio
async def test_stock_out_beyond_on_hand_changes_nothing(tmp_path) -> None:
    app = await _prepare_app(tmp_path)
    rejections = _MetricTracker("inventory_stock_rejections_total", {"reason": "insufficient_stock"})

    async with lifespan(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            item = await _create_item(client, quantity=10)
            product_id = item["productId"]

            response = await client.patch(
                f"/api/inventory/product/{product_id}/stock",
                json={"quantity": 20, "type": "stock_out", "reason": "Bulk order"},
            )
            assert response.status_code == 409
            assert response.json() == {"success": False, "message": "Insufficient stock for deduction"}

            current = await client.get(f"/api/inventory/product/{product_id}")
            assert current.json()["data"]["quantity"] == 10

            history = await client.get(f"/api/inventory/product/{product_id}/history")
            assert history.json()["pagination"]["total"] == 1

    await dispose_engines()
    assert rejections.delta() == 1


@pytest.mark.asyncio
async def test_reserve_then_fulfill(tmp_path) -> None:
    app = await _prepare_app(tmp_path)

    async with lifespan(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            item = await _create_item(client, quantity=100)
            product_id = item["productId"]
            order_id = str(uuid4())

            reserve = await client.post(
                "/api/inventory/reserve",
                json={"productId": product_id, "quantity": 30, "orderId": order_id},
            )
            assert reserve.status_code == 201
            reservation = reserve.json()["data"]
            assert reservation["status"] == "active"
            assert reservation["orderId"] == order_id
            assert reservation["reason"] == "order_processing"

            check = await client.get(f"/api/inventory/check/{product_id}", params={"quantity": 80})
            assert check.json()["data"] == {"available": False, "availableQuantity": 70, "requestedQuantity": 80}

            fetched = await client.get(f"/api/inventory/product/{product_id}")
            assert fetched.json()["data"]["reservedQuantity"] == 30
            assert [r["id"] for r in fetched.json()["data"]["reservations"]] == [reservation["id"]]

            fulfil = await client.patch(f"/api/inventory/reservations/{reservation['id']}", json={"fulfill": True})
            assert fulfil.status_code == 200
            assert fulfil.json()["message"] == "Reservation fulfilled successfully"
            assert fulfil.json()["data"]["status"] == "fulfilled"
            assert fulfil.json()["data"]["fulfilledAt"] is not None

            after = (await client.get(f"/api/inventory/product/{product_id}")).json()["data"]
            assert after["quantity"] == 70
            assert after["reservedQuantity"] == 0
            assert after["reservations"] == []

            stock_out = await client.get(
                f"/api/inventory/product/{product_id}/history",
                params={"type": "stock_out"},
            )
            rows = stock_out.json()["data"]
            assert len(rows) == 1
            assert rows[0]["quantity"] == 30
            assert rows[0]["referenceId"] == reservation["id"]

            again = await client.patch(f"/api/inventory/reservations/{reservation['id']}")
            assert again.status_code == 409

            unknown = await client.patch(f"/api/inventory/reservations/{uuid4()}")
            assert unknown.status_code == 404

            audit = await _audit(client, product_id)
            assert audit["consistent"] is True

    await dispose_engines()


@pytest.mark.asyncio
async def test_cancel_reservation_restores_availability(tmp_path) -> None:
    app = await _prepare_app(tmp_path)

    async with lifespan(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            item = await _create_item(client, quantity=12)
            product_id = item["productId"]

            reserve = await client.post("/api/inventory/reserve", json={"productId": product_id, "quantity": 12})
            assert reserve.status_code == 201
            reservation_id = reserve.json()["data"]["id"]

            over = await client.post("/api/inventory/reserve", json={"productId": product_id, "quantity": 1})
            assert over.status_code == 409

            cancel = await client.patch(f"/api/inventory/reservations/{reservation_id}")
            assert cancel.status_code == 200
            assert cancel.json()["data"]["status"] == "cancelled"

            check = await client.get(f"/api/inventory/check/{product_id}", params={"quantity": 12})
            assert check.json()["data"]["available"] is True

            types = await client.get(f"/api/inventory/product/{product_id}/history")
            assert [entry["type"] for entry in types.json()["data"]] == ["release", "reservation", "stock_in"]

    await dispose_engines()


@pytest.mark.asyncio
async def test_reserving_exactly_available_succeeds(tmp_path) -> None:
    app = await _prepare_app(tmp_path)

    async with lifespan(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            item = await _create_item(client, quantity=40)
            product_id = item["productId"]
            await client.post("/api/inventory/reserve", json={"productId": product_id, "quantity": 15})

            too_many = await client.post("/api/inventory/reserve", json={"productId": product_id, "quantity": 26})
            assert too_many.status_code == 409
            assert too_many.json()["success"] is False

            exact = await client.post("/api/inventory/reserve", json={"productId": product_id, "quantity": 25})
            assert exact.status_code == 201

            state = (await client.get(f"/api/inventory/product/{product_id}")).json()["data"]
            assert state["availableQuantity"] == 0
            assert state["reservedQuantity"] == 40

            blocked = await client.patch(
                f"/api/inventory/product/{product_id}/stock",
                json={"quantity": 1, "type": "stock_out", "reason": "Damaged in transit"},
            )
            assert blocked.status_code == 409

            zero = await client.post("/api/inventory/reserve", json={"productId": product_id, "quantity": 0})
            assert zero.status_code == 400

    await dispose_engines()


@pytest.mark.asyncio
async def test_expire_reservations_endpoint(tmp_path) -> None:
    app = await _prepare_app(tmp_path)

    async with lifespan(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            item = await _create_item(client, quantity=60)
            product_id = item["productId"]
            elapsed = (datetime.now(timezone.utc) - timedelta(milliseconds=1)).isoformat()
            later = (datetime.now(timezone.utc) + timedelta(hours=1)).isoformat()

            stale = await client.post(
                "/api/inventory/reserve",
                json={"productId": product_id, "quantity": 50, "expiresAt": elapsed},
            )
            fresh = await client.post(
                "/api/inventory/reserve",
                json={"productId": product_id, "quantity": 5, "expiresAt": later},
            )
            assert stale.status_code == 201
            assert fresh.status_code == 201

            expire = await client.post("/api/inventory/expire-reservations")
            assert expire.status_code == 200
            assert expire.json()["data"] == {"expiredCount": 1}
            assert expire.json()["message"] == "Expired 1 reservations"

            state = (await client.get(f"/api/inventory/product/{product_id}")).json()["data"]
            assert state["reservedQuantity"] == 5
            assert state["quantity"] == 60
            assert [r["id"] for r in state["reservations"]] == [fresh.json()["data"]["id"]]

            expired_release = await client.patch(f"/api/inventory/reservations/{stale.json()['data']['id']}")
            assert expired_release.status_code == 409

            second_run = await client.post("/api/inventory/expire-reservations")
            assert second_run.json()["data"] == {"expiredCount": 0}

            audit = await _audit(client, product_id)
            assert audit["consistent"] is True
            assert audit["activeReservedQuantity"] == 5

    await dispose_engines()


@pytest.mark.asyncio
async def test_check_availability_for_unknown_product(tmp_path) -> None:
    app = await _prepare_app(tmp_path)

    async with lifespan(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get(f"/api/inventory/check/{uuid4()}")
            assert response.status_code == 200
            assert response.json()["data"] == {
                "available": False,
                "availableQuantity": 0,
                "requestedQuantity": 1,
                "error": "Product not found in inventory",
            }

            invalid = await client.get(f"/api/inventory/check/{uuid4()}", params={"quantity": 0})
            assert invalid.status_code == 400

    await dispose_engines()


@pytest.mark.asyncio
async def test_low_stock_statistics_and_deactivate(tmp_path) -> None:
    app = await _prepare_app(tmp_path)

    async with lifespan(app):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            plenty = await _create_item(client, sku="SKU-PLENTY", quantity=100)
            scarce = await _create_item(client, sku="SKU-SCARCE", quantity=4)
            await _create_item(client, sku="SKU-EAST", quantity=3, warehouse="east")

            low = await client.get("/api/inventory/low-stock")
            assert [entry["sku"] for entry in low.json()["data"]] == ["SKU-EAST", "SKU-SCARCE"]

            main_only = await client.get("/api/inventory/low-stock", params={"threshold": 50, "warehouse": "main"})
            assert [entry["sku"] for entry in main_only.json()["data"]] == ["SKU-SCARCE"]

            stats = await client.get("/api/inventory/statistics")
            assert stats.json()["data"] == {
                "totalProducts": 3,
                "totalQuantity": 107,
                "totalReserved": 0,
                "availableQuantity": 107,
                "lowStockItems": 2,
                "warehouse": None,
            }

            removed = await client.delete(f"/api/inventory/product/{scarce['productId']}")
            assert removed.status_code == 200
            assert removed.json()["data"]["isActive"] is False

            stats_after = await client.get("/api/inventory/statistics", params={"warehouse": "main"})
            data = stats_after.json()["data"]
            assert data["totalProducts"] == 1
            assert data["totalQuantity"] == plenty["quantity"]
            assert data["lowStockItems"] == 0
            assert data["warehouse"] == "main"

            still_there = await client.get(f"/api/inventory/product/{scarce['productId']}")
            assert still_there.status_code == 200

    await dispose_engines()


@pytest.mark.asyncio
async def test_low_stock_alert_after_stock_out(tmp_path) -> None:
    app = await _prepare_app(tmp_path)
    notifier = _RecordingNotifier()

    async with lifespan(app):
        app.state.inventory_service = InventoryService(
            app.state.session_factory,
            cache=app.state.inventory_cache,
            products=_NullProducts(),
            notifier=notifier,
        )
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            item = await _create_item(client, quantity=20, reorderPoint=5)
            product_id = item["productId"]
            stock_url = f"/api/inventory/product/{product_id}/stock"

            await client.patch(stock_url, json={"quantity": 10, "type": "stock_out", "reason": "Sale"})
            assert notifier.alerts == []

            await client.patch(stock_url, json={"quantity": 5, "type": "stock_out", "reason": "Sale"})
            assert notifier.alerts == [(product_id, 5)]

    await dispose_engines()


@asynccontextmanager
async def lifespan(app: FastAPI):
    async with app.router.lifespan_context(app):
        yield
