"""HTTP clients for the product and notification collaborators."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

import httpx

from .errors import UpstreamValidationError
from .metrics import INVENTORY_LOW_STOCK_ALERTS_TOTAL, INVENTORY_PRODUCT_LOOKUPS_TOTAL
from .models import InventoryItem

_LOGGER = logging.getLogger(__name__)


class ProductLookup(Protocol):
    async def confirm_product(self, product_id: str) -> dict[str, Any] | None: ...


class LowStockNotifier(Protocol):
    def notify_low_stock(self, item: InventoryItem) -> None: ...


def _normalize_base(url: str | None) -> str | None:
    if not url:
        return None
    return url.rstrip("/")


class ProductServiceClient:
    """Confirms that a product exists before inventory is tracked for it."""

    def __init__(self, client: httpx.AsyncClient, *, base_url: str | None) -> None:
        self._client = client
        self._base_url = _normalize_base(base_url)

    async def confirm_product(self, product_id: str) -> dict[str, Any] | None:
        """Return the product payload, or None when no product service is configured."""

        if self._base_url is None:
            INVENTORY_PRODUCT_LOOKUPS_TOTAL.labels(outcome="skipped").inc()
            return None
        url = f"{self._base_url}/api/products/{product_id}"
        try:
            response = await self._client.get(url)
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            INVENTORY_PRODUCT_LOOKUPS_TOTAL.labels(outcome="rejected").inc()
            _LOGGER.info("Product %s could not be confirmed: %s", product_id, exc)
            raise UpstreamValidationError() from exc
        INVENTORY_PRODUCT_LOOKUPS_TOTAL.labels(outcome="confirmed").inc()
        if isinstance(body, dict) and isinstance(body.get("data"), dict):
            return body["data"]
        return body if isinstance(body, dict) else None


def low_stock_payload(item: InventoryItem) -> dict[str, Any]:
    return {
        "type": "low_stock_alert",
        "productId": item.product_id,
        "data": {
            "sku": item.sku,
            "productName": item.product_name,
            "availableQuantity": item.available_quantity,
            "reorderPoint": item.reorder_point,
            "warehouse": item.warehouse,
        },
    }


class NotificationServiceClient:
    """Fire-and-forget low-stock alerts; failures are logged and never raised."""

    def __init__(self, client: httpx.AsyncClient, *, base_url: str | None) -> None:
        self._client = client
        self._base_url = _normalize_base(base_url)
        self._pending: set[asyncio.Task[None]] = set()

    def notify_low_stock(self, item: InventoryItem) -> None:
        payload = low_stock_payload(item)
        if self._base_url is None:
            _LOGGER.warning(
                "Low stock for %s (%s available); no notification service configured",
                item.sku,
                item.available_quantity,
            )
            INVENTORY_LOW_STOCK_ALERTS_TOTAL.labels(outcome="skipped").inc()
            return
        task = asyncio.create_task(self._send(payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _send(self, payload: dict[str, Any]) -> None:
        url = f"{self._base_url}/api/notifications/send"
        try:
            response = await self._client.post(url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError:
            _LOGGER.error("Failed to send low stock alert for product %s", payload["productId"], exc_info=True)
            INVENTORY_LOW_STOCK_ALERTS_TOTAL.labels(outcome="failed").inc()
            return
        INVENTORY_LOW_STOCK_ALERTS_TOTAL.labels(outcome="sent").inc()

    async def drain(self) -> None:
        """Wait for in-flight alerts (shutdown and tests)."""

        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
