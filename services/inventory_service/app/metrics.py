"""Prometheus metrics for the inventory service."""

from __future__ import annotations

from typing import Final

from prometheus_client import Counter, Histogram

# Stock movements --------------------------------------------------------------------------
INVENTORY_STOCK_UPDATES_TOTAL: Final = Counter(
    "inventory_stock_updates_total",
    "Stock mutations committed, by ledger transaction type.",
    labelnames=("type",),
)

INVENTORY_STOCK_REJECTIONS_TOTAL: Final = Counter(
    "inventory_stock_rejections_total",
    "Stock mutations or reservations rejected by a business rule.",
    labelnames=("reason",),
)

# Reservations -----------------------------------------------------------------------------
INVENTORY_RESERVATIONS_TOTAL: Final = Counter(
    "inventory_reservations_total",
    "Reservation lifecycle transitions.",
    labelnames=("status",),
)

INVENTORY_SWEEP_SECONDS: Final = Histogram(
    "inventory_sweep_seconds",
    "Duration of periodic inventory sweeps.",
    labelnames=("sweep",),
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30),
)

INVENTORY_SWEEP_FAILURES_TOTAL: Final = Counter(
    "inventory_sweep_failures_total",
    "Periodic sweep ticks that raised and will be retried on the next tick.",
    labelnames=("sweep",),
)

# Cache mirror -----------------------------------------------------------------------------
INVENTORY_CACHE_EVENTS_TOTAL: Final = Counter(
    "inventory_cache_events_total",
    "Inventory cache mirror reads/writes by outcome.",
    labelnames=("event",),
)

# Collaborators ----------------------------------------------------------------------------
INVENTORY_LOW_STOCK_ALERTS_TOTAL: Final = Counter(
    "inventory_low_stock_alerts_total",
    "Low-stock alerts handed to the notification service, by outcome.",
    labelnames=("outcome",),
)

INVENTORY_PRODUCT_LOOKUPS_TOTAL: Final = Counter(
    "inventory_product_lookups_total",
    "Product existence checks against the product service, by outcome.",
    labelnames=("outcome",),
)
