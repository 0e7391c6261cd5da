"""Best-effort Redis mirror of per-product inventory quantities."""

from __future__ import annotations

import json
import logging
from contextlib import suppress
from datetime import datetime, timezone
from typing import Any, Protocol

from services.common.cache import RedisType

from .metrics import INVENTORY_CACHE_EVENTS_TOTAL
from .models import InventoryItem

_LOGGER = logging.getLogger(__name__)


class InventoryCacheProtocol(Protocol):
    async def read(self, product_id: str) -> dict[str, Any] | None:
        ...

    async def write(self, item: InventoryItem) -> None:
        ...


def cache_payload(item: InventoryItem) -> dict[str, Any]:
    return {
        "id": item.id,
        "productId": item.product_id,
        "sku": item.sku,
        "quantity": item.quantity,
        "reservedQuantity": item.reserved_quantity,
        "availableQuantity": item.available_quantity,
        "minStockLevel": item.min_stock_level,
        "reorderPoint": item.reorder_point,
        "warehouse": item.warehouse,
        "isActive": item.is_active,
        "lastUpdated": datetime.now(timezone.utc).isoformat(),
    }


class InventoryCache:
    """Overwrite-on-write cache; the database stays authoritative and reads may lag."""

    def __init__(self, redis: RedisType | None, *, ttl_seconds: int) -> None:
        self._redis = redis
        self._ttl = ttl_seconds

    @property
    def enabled(self) -> bool:
        return self._redis is not None and self._ttl > 0

    async def read(self, product_id: str) -> dict[str, Any] | None:
        if not self.enabled:
            return None
        key = self.cache_key(product_id)
        try:
            cached = await self._redis.get(key)
        except Exception:
            _LOGGER.warning("Inventory cache read failed for %s", key, exc_info=True)
            INVENTORY_CACHE_EVENTS_TOTAL.labels(event="error").inc()
            INVENTORY_CACHE_EVENTS_TOTAL.labels(event="miss").inc()
            return None
        if not cached:
            INVENTORY_CACHE_EVENTS_TOTAL.labels(event="miss").inc()
            return None
        try:
            data = json.loads(cached)
            int(data["quantity"])
            int(data["reservedQuantity"])
        except (json.JSONDecodeError, KeyError, TypeError, ValueError):
            _LOGGER.warning("Discarding undecodable inventory cache entry %s", key)
            INVENTORY_CACHE_EVENTS_TOTAL.labels(event="corrupt").inc()
            INVENTORY_CACHE_EVENTS_TOTAL.labels(event="miss").inc()
            with suppress(Exception):
                await self._redis.delete(key)
            return None
        INVENTORY_CACHE_EVENTS_TOTAL.labels(event="hit").inc()
        return data

    async def write(self, item: InventoryItem) -> None:
        if not self.enabled:
            return
        key = self.cache_key(item.product_id)
        try:
            await self._redis.set(key, json.dumps(cache_payload(item)), ex=self._ttl)
        except Exception:
            _LOGGER.error("Inventory cache update failed for %s", key, exc_info=True)
            INVENTORY_CACHE_EVENTS_TOTAL.labels(event="error").inc()
            return
        INVENTORY_CACHE_EVENTS_TOTAL.labels(event="write").inc()

    @staticmethod
    def cache_key(product_id: str) -> str:
        return f"inventory:{product_id}"
