"""Timer-driven background sweeps for reservation expiry and low-stock scans."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from time import perf_counter
from typing import Protocol

from .metrics import INVENTORY_SWEEP_FAILURES_TOTAL, INVENTORY_SWEEP_SECONDS
from .models import InventoryItem

_LOGGER = logging.getLogger(__name__)


class SweepTarget(Protocol):
    async def expire_reservations(self, *, limit: int | None = None) -> int: ...

    async def get_low_stock_items(
        self, threshold: int | None = None, *, warehouse: str | None = None
    ) -> list[InventoryItem]: ...


class InventorySweeper:
    """Runs each sweep on its own interval; a failed tick is logged and retried on the next one.

    No cursor is persisted: every tick rescans, so a crash mid-sweep heals itself.
    """

    def __init__(
        self,
        service: SweepTarget,
        *,
        expiry_interval: float,
        expiry_batch_size: int,
        low_stock_interval: float,
    ) -> None:
        self._service = service
        self._expiry_interval = expiry_interval
        self._expiry_batch_size = expiry_batch_size
        self._low_stock_interval = low_stock_interval
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self) -> None:
        if self.running:
            return
        self._tasks = [
            asyncio.create_task(
                self._loop("reservation_expiry", self._expiry_interval, self.run_expiry_once),
                name="inventory-reservation-expiry",
            ),
            asyncio.create_task(
                self._loop("low_stock", self._low_stock_interval, self.run_low_stock_once),
                name="inventory-low-stock",
            ),
        ]
        _LOGGER.info(
            "Inventory sweeper started (expiry every %ss, low stock every %ss)",
            self._expiry_interval,
            self._low_stock_interval,
        )

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

    async def run_expiry_once(self) -> int | None:
        started = perf_counter()
        try:
            expired = await self._service.expire_reservations(limit=self._expiry_batch_size)
        except Exception:
            INVENTORY_SWEEP_FAILURES_TOTAL.labels(sweep="reservation_expiry").inc()
            _LOGGER.exception("Failed to expire reservations")
            return None
        INVENTORY_SWEEP_SECONDS.labels(sweep="reservation_expiry").observe(perf_counter() - started)
        return expired

    async def run_low_stock_once(self) -> int | None:
        started = perf_counter()
        try:
            items = await self._service.get_low_stock_items()
        except Exception:
            INVENTORY_SWEEP_FAILURES_TOTAL.labels(sweep="low_stock").inc()
            _LOGGER.exception("Failed to check low stock items")
            return None
        INVENTORY_SWEEP_SECONDS.labels(sweep="low_stock").observe(perf_counter() - started)
        if items:
            _LOGGER.warning(
                "Low stock alert: %d items need restocking (%s)",
                len(items),
                ", ".join(item.sku for item in items[:10]),
            )
        return len(items)

    @staticmethod
    async def _loop(name: str, interval: float, tick: Callable[[], Awaitable[int | None]]) -> None:
        while True:
            await asyncio.sleep(interval)
            result = await tick()
            _LOGGER.debug("Sweep %s finished with %s", name, result)
