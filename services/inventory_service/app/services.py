"""Inventory domain services."""

from __future__ import annotations

import logging
import math
from collections.abc import AsyncIterator, Callable, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.common import read_session, transactional_session

from .cache import InventoryCacheProtocol
from .clients import LowStockNotifier, ProductLookup
from .errors import (
    DuplicateProductError,
    DuplicateSkuError,
    InsufficientAvailableStockError,
    InsufficientStockError,
    NotFoundError,
    ReservationNotActiveError,
    ReservationNotFoundError,
    TransientStorageError,
    ValidationError,
)
from .metrics import (
    INVENTORY_RESERVATIONS_TOTAL,
    INVENTORY_STOCK_REJECTIONS_TOTAL,
    INVENTORY_STOCK_UPDATES_TOTAL,
)
from .models import (
    InventoryItem,
    InventoryTransaction,
    ReservationStatus,
    StockReservation,
    TransactionType,
    as_utc,
    utcnow,
)
from .repository import InventoryRepository
from .schemas import InventoryCreate

_LOGGER = logging.getLogger(__name__)

STOCK_UPDATE_TYPES = frozenset(
    {TransactionType.STOCK_IN.value, TransactionType.STOCK_OUT.value, TransactionType.ADJUSTMENT.value}
)
_LEDGER_OPTION_FIELDS = frozenset(
    {
        "reference",
        "reference_id",
        "performed_by",
        "cost",
        "location",
        "warehouse",
        "batch_number",
        "expiry_date",
        "notes",
        "metadata",
    }
)
# SQLite names the column, PostgreSQL names the unique index.
_SKU_UNIQUE_MARKERS = ("inventory_items.sku", "ix_inventory_items_sku")
_PRODUCT_UNIQUE_MARKERS = ("inventory_items.product_id", "ix_inventory_items_product_id")


@dataclass
class Availability:
    available: bool
    available_quantity: int
    requested_quantity: int
    error: str | None = None


@dataclass
class HistoryPage:
    transactions: list[InventoryTransaction]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


@dataclass
class InventoryStatistics:
    total_products: int
    total_quantity: int
    total_reserved: int
    low_stock_items: int
    warehouse: str | None

    @property
    def available_quantity(self) -> int:
        return self.total_quantity - self.total_reserved


@dataclass
class LedgerAudit:
    product_id: str
    recorded_quantity: int
    replayed_quantity: int
    reserved_quantity: int
    active_reserved_quantity: int
    transaction_count: int

    @property
    def consistent(self) -> bool:
        return (
            self.recorded_quantity == self.replayed_quantity
            and self.reserved_quantity == self.active_reserved_quantity
            and self.reserved_quantity <= self.recorded_quantity
        )


def replay_ledger(transactions: Iterable[InventoryTransaction]) -> int:
    """Rebuild on-hand quantity from zero by applying each ledger row in order."""

    on_hand = 0
    for entry in transactions:
        if entry.previous_quantity != on_hand:
            _LOGGER.warning(
                "Ledger gap on transaction %s: expected previous %s, recorded %s",
                entry.id,
                on_hand,
                entry.previous_quantity,
            )
        on_hand = entry.previous_quantity + entry.signed_delta
    return on_hand


def _ledger_options(options: dict[str, Any]) -> dict[str, Any]:
    unknown = set(options) - _LEDGER_OPTION_FIELDS
    if unknown:
        msg = f"Unsupported stock update options: {', '.join(sorted(unknown))}"
        raise ValidationError(msg)
    values: dict[str, Any] = {}
    for key, value in options.items():
        if value is None:
            continue
        if isinstance(value, UUID):
            value = str(value)
        values["extra" if key == "metadata" else key] = value
    return values


def _duplicate_error(exc: IntegrityError) -> Exception | None:
    """Map a unique violation on product id or SKU; anything else is not a duplicate."""

    detail = str(exc.orig).lower()
    if any(marker in detail for marker in _SKU_UNIQUE_MARKERS):
        return DuplicateSkuError()
    if any(marker in detail for marker in _PRODUCT_UNIQUE_MARKERS):
        return DuplicateProductError()
    return None


class InventoryService:
    """Orchestrates item, ledger and reservation changes; one database transaction per operation."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        cache: InventoryCacheProtocol,
        products: ProductLookup,
        notifier: LowStockNotifier,
        reservation_expiry_minutes: int = 30,
        low_stock_threshold: int = 10,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._cache = cache
        self._products = products
        self._notifier = notifier
        self._reservation_expiry = timedelta(minutes=reservation_expiry_minutes)
        self.low_stock_threshold = low_stock_threshold
        self._clock = clock

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[InventoryRepository]:
        try:
            async with transactional_session(self._session_factory) as session:
                yield InventoryRepository(session)
        except OperationalError as exc:
            _LOGGER.warning("Inventory transaction aborted by the database: %s", exc.orig)
            raise TransientStorageError() from exc

    @asynccontextmanager
    async def _reader(self) -> AsyncIterator[InventoryRepository]:
        async with read_session(self._session_factory) as session:
            yield InventoryRepository(session)

    async def _after_commit(self, item: InventoryItem, *, check_low_stock: bool) -> None:
        await self._cache.write(item)
        if check_low_stock and item.available_quantity <= item.reorder_point:
            _LOGGER.info(
                "Low stock for %s: %s units available (reorder point %s)",
                item.sku,
                item.available_quantity,
                item.reorder_point,
            )
            self._notifier.notify_low_stock(item)

    # Item store -------------------------------------------------------------------------------

    async def create_item(self, payload: InventoryCreate) -> InventoryItem:
        product_id = str(payload.product_id)
        await self._products.confirm_product(product_id)
        try:
            async with self._transaction() as repository:
                if await repository.find_by_product(product_id) is not None:
                    raise DuplicateProductError()
                if await repository.find_by_sku(payload.sku) is not None:
                    raise DuplicateSkuError()
                item = await repository.create_item(
                    product_id=product_id,
                    sku=payload.sku,
                    product_name=payload.product_name,
                    quantity=payload.quantity,
                    reserved_quantity=0,
                    min_stock_level=payload.min_stock_level,
                    max_stock_level=payload.max_stock_level,
                    reorder_point=payload.reorder_point,
                    location=payload.location,
                    warehouse=payload.warehouse,
                    supplier=payload.supplier,
                    cost_price=payload.cost_price,
                    tracking_enabled=payload.tracking_enabled,
                    is_active=True,
                    extra=payload.metadata,
                )
                if payload.quantity > 0:
                    cost = payload.cost_price * payload.quantity if payload.cost_price is not None else None
                    await repository.add_transaction(
                        item,
                        type=TransactionType.STOCK_IN.value,
                        quantity=payload.quantity,
                        previous_quantity=0,
                        new_quantity=payload.quantity,
                        reason="Initial stock",
                        cost=cost,
                        location=item.location,
                        notes="Initial inventory setup",
                    )
        except IntegrityError as exc:
            duplicate = _duplicate_error(exc)
            if duplicate is None:
                raise
            raise duplicate from exc
        _LOGGER.info("Created inventory item %s for product %s", item.sku, product_id)
        await self._after_commit(item, check_low_stock=False)
        return item

    async def get_by_product(self, product_id: str) -> InventoryItem:
        async with self._reader() as repository:
            item = await repository.get_by_product(product_id)
        if item is None:
            raise NotFoundError()
        return item

    async def get_by_sku(self, sku: str) -> InventoryItem:
        async with self._reader() as repository:
            item = await repository.get_by_sku(sku)
        if item is None:
            raise NotFoundError()
        return item

    async def deactivate(self, product_id: str, *, performed_by: str | None = None) -> InventoryItem:
        async with self._transaction() as repository:
            item = await repository.lock_by_product(product_id)
            if item is None:
                raise NotFoundError()
            if item.is_active:
                item.is_active = False
                await repository.add_transaction(
                    item,
                    type=TransactionType.ADJUSTMENT.value,
                    quantity=0,
                    previous_quantity=item.quantity,
                    new_quantity=item.quantity,
                    reason="Inventory tracking deactivated",
                    performed_by=performed_by,
                )
        await self._after_commit(item, check_low_stock=False)
        return item

    # Stock mutations --------------------------------------------------------------------------

    async def update_stock(
        self,
        product_id: str,
        quantity: int,
        transaction_type: str,
        *,
        reason: str | None = None,
        **options: Any,
    ) -> InventoryItem:
        if transaction_type not in STOCK_UPDATE_TYPES:
            raise ValidationError("Invalid stock update type")
        ledger_values = _ledger_options(options)

        async with self._transaction() as repository:
            item = await repository.lock_by_product(product_id)
            if item is None:
                raise NotFoundError()

            previous = item.quantity
            now = self._clock()
            if transaction_type == TransactionType.STOCK_IN.value:
                movement = abs(quantity)
                new_quantity = previous + movement
                item.last_restocked_at = now
            elif transaction_type == TransactionType.STOCK_OUT.value:
                movement = abs(quantity)
                new_quantity = previous - movement
                if new_quantity < 0:
                    INVENTORY_STOCK_REJECTIONS_TOTAL.labels(reason="insufficient_stock").inc()
                    raise InsufficientStockError()
                if new_quantity < item.reserved_quantity:
                    INVENTORY_STOCK_REJECTIONS_TOTAL.labels(reason="reserved_stock").inc()
                    raise InsufficientStockError(
                        f"Cannot deduct {movement} units: {item.reserved_quantity} of {previous} are reserved"
                    )
                item.last_sold_at = now
            else:
                if quantity < 0:
                    raise ValidationError("Adjustment quantity cannot be negative")
                if quantity < item.reserved_quantity:
                    INVENTORY_STOCK_REJECTIONS_TOTAL.labels(reason="reserved_stock").inc()
                    raise InsufficientStockError(
                        f"Adjusted quantity {quantity} is below the reserved quantity {item.reserved_quantity}"
                    )
                new_quantity = quantity
                movement = new_quantity - previous

            item.quantity = new_quantity
            ledger_values.setdefault("location", item.location)
            await repository.add_transaction(
                item,
                type=transaction_type,
                quantity=movement,
                previous_quantity=previous,
                new_quantity=new_quantity,
                reason=reason or f"{transaction_type} operation",
                **ledger_values,
            )

        INVENTORY_STOCK_UPDATES_TOTAL.labels(type=transaction_type).inc()
        await self._after_commit(item, check_low_stock=True)
        return await self.get_by_product(product_id)

    # Reservations -----------------------------------------------------------------------------

    def default_expiry(self) -> datetime:
        return self._clock() + self._reservation_expiry

    async def reserve(
        self,
        product_id: str,
        quantity: int,
        *,
        order_id: str | None = None,
        user_id: str | None = None,
        reason: str | None = None,
        expires_at: datetime | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> StockReservation:
        if quantity < 1:
            raise ValidationError("Reservation quantity must be at least 1")
        expiry = as_utc(expires_at) if expires_at is not None else self.default_expiry()

        async with self._transaction() as repository:
            item = await repository.lock_by_product(product_id)
            if item is None:
                raise NotFoundError()
            available = item.available_quantity
            if available < quantity:
                INVENTORY_STOCK_REJECTIONS_TOTAL.labels(reason="insufficient_available").inc()
                raise InsufficientAvailableStockError(
                    f"Insufficient available stock for reservation: requested {quantity}, available {available}"
                )
            reservation = await repository.create_reservation(
                item,
                order_id=order_id,
                user_id=user_id,
                quantity=quantity,
                reason=reason or "order_processing",
                expires_at=expiry,
                extra=metadata,
            )
            item.reserved_quantity += quantity
            await repository.add_transaction(
                item,
                type=TransactionType.RESERVATION.value,
                quantity=quantity,
                previous_quantity=item.quantity,
                new_quantity=item.quantity,
                reason="Stock reserved",
                reference=order_id,
                reference_id=reservation.id,
                performed_by=user_id,
                notes=f"Reserved {quantity} units for {reason or 'order'}",
            )

        INVENTORY_RESERVATIONS_TOTAL.labels(status=ReservationStatus.ACTIVE.value).inc()
        await self._after_commit(item, check_low_stock=False)
        return reservation

    async def release(self, reservation_id: str, *, fulfill: bool = False) -> StockReservation:
        async with self._transaction() as repository:
            reservation = await repository.lock_reservation(reservation_id)
            if reservation is None:
                raise ReservationNotFoundError()
            if not reservation.is_active:
                raise ReservationNotActiveError(f"Reservation {reservation_id} is already {reservation.status}")
            item = await repository.lock_item(reservation.inventory_item_id)
            if item is None:
                raise NotFoundError()

            now = self._clock()
            previous = item.quantity
            if fulfill:
                item.quantity -= reservation.quantity
                item.reserved_quantity -= reservation.quantity
                item.last_sold_at = now
                reservation.status = ReservationStatus.FULFILLED.value
                reservation.fulfilled_at = now
                ledger_type = TransactionType.STOCK_OUT
                reason = "Reservation fulfilled"
            else:
                item.reserved_quantity -= reservation.quantity
                reservation.status = ReservationStatus.CANCELLED.value
                ledger_type = TransactionType.RELEASE
                reason = "Reservation cancelled"

            await repository.add_transaction(
                item,
                type=ledger_type.value,
                quantity=reservation.quantity,
                previous_quantity=previous,
                new_quantity=item.quantity,
                reason=reason,
                reference=reservation.order_id,
                reference_id=reservation.id,
                notes=f"{reason} for {reservation.quantity} units",
            )

        INVENTORY_RESERVATIONS_TOTAL.labels(status=reservation.status).inc()
        await self._after_commit(item, check_low_stock=fulfill)
        return reservation

    async def expire_reservations(self, *, limit: int | None = None) -> int:
        """Expire active reservations past their deadline; each one in its own locked transaction."""

        now = self._clock()
        async with self._reader() as repository:
            candidates = await repository.expired_reservation_ids(now, limit=limit)

        expired = 0
        for reservation_id in candidates:
            item = await self._expire_one(reservation_id, now)
            if item is None:
                continue
            expired += 1
            await self._cache.write(item)

        if expired:
            INVENTORY_RESERVATIONS_TOTAL.labels(status=ReservationStatus.EXPIRED.value).inc(expired)
        _LOGGER.info("Expired %d reservations", expired)
        return expired

    async def _expire_one(self, reservation_id: str, now: datetime) -> InventoryItem | None:
        async with self._transaction() as repository:
            reservation = await repository.lock_reservation(reservation_id)
            # Another sweep or a release may have settled it since the scan.
            if reservation is None or not reservation.is_active or as_utc(reservation.expires_at) >= now:
                return None
            item = await repository.lock_item(reservation.inventory_item_id)
            if item is None:
                return None
            reservation.status = ReservationStatus.EXPIRED.value
            item.reserved_quantity -= reservation.quantity
            await repository.add_transaction(
                item,
                type=TransactionType.RELEASE.value,
                quantity=reservation.quantity,
                previous_quantity=item.quantity,
                new_quantity=item.quantity,
                reason="Reservation expired",
                reference=reservation.order_id,
                reference_id=reservation.id,
                notes=f"Expired reservation for {reservation.quantity} units",
            )
            return item

    # Availability and reporting ---------------------------------------------------------------

    async def check_availability(self, product_id: str, quantity: int) -> Availability:
        cached = await self._cache.read(product_id)
        if cached is not None:
            available_quantity = int(cached["quantity"]) - int(cached["reservedQuantity"])
            return Availability(
                available=available_quantity >= quantity,
                available_quantity=available_quantity,
                requested_quantity=quantity,
            )

        async with self._reader() as repository:
            item = await repository.find_by_product(product_id)
        if item is None:
            return Availability(
                available=False,
                available_quantity=0,
                requested_quantity=quantity,
                error="Product not found in inventory",
            )
        await self._cache.write(item)
        return Availability(
            available=item.available_quantity >= quantity,
            available_quantity=item.available_quantity,
            requested_quantity=quantity,
        )

    async def get_low_stock_items(
        self, threshold: int | None = None, *, warehouse: str | None = None
    ) -> list[InventoryItem]:
        limit = self.low_stock_threshold if threshold is None else threshold
        async with self._reader() as repository:
            return await repository.list_low_stock(limit, warehouse=warehouse)

    async def get_inventory_history(
        self,
        product_id: str,
        *,
        page: int = 1,
        limit: int = 20,
        transaction_type: str | None = None,
    ) -> HistoryPage:
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")
        if transaction_type is not None and transaction_type not in {t.value for t in TransactionType}:
            raise ValidationError(f"Unknown transaction type: {transaction_type}")
        async with self._reader() as repository:
            rows, total = await repository.list_transactions(
                product_id,
                transaction_type=transaction_type,
                limit=limit,
                offset=(page - 1) * limit,
            )
        return HistoryPage(transactions=rows, total=total, page=page, limit=limit)

    async def get_inventory_statistics(self, warehouse: str | None = None) -> InventoryStatistics:
        async with self._reader() as repository:
            total_products, total_quantity, total_reserved = await repository.totals(warehouse=warehouse)
            low_stock = await repository.list_low_stock(self.low_stock_threshold, warehouse=warehouse)
        return InventoryStatistics(
            total_products=total_products,
            total_quantity=total_quantity,
            total_reserved=total_reserved,
            low_stock_items=len(low_stock),
            warehouse=warehouse,
        )

    async def audit_item(self, product_id: str) -> LedgerAudit:
        """Compare the stored quantities with a ledger replay and the active reservations."""

        async with self._reader() as repository:
            item = await repository.find_by_product(product_id)
            if item is None:
                raise NotFoundError()
            ledger = await repository.ledger_for_item(item.id)
            active_reserved = await repository.active_reserved_total(item.id)
        audit = LedgerAudit(
            product_id=product_id,
            recorded_quantity=item.quantity,
            replayed_quantity=replay_ledger(ledger),
            reserved_quantity=item.reserved_quantity,
            active_reserved_quantity=active_reserved,
            transaction_count=len(ledger),
        )
        if not audit.consistent:
            _LOGGER.warning("Inventory drift detected for product %s: %s", product_id, audit)
        return audit
