"""Data access helpers for inventory service."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Sequence

from sqlalchemy import Select, and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from .models import (
    InventoryItem,
    InventoryTransaction,
    ReservationStatus,
    StockReservation,
)


def _with_active_reservations(stmt: Select[tuple[InventoryItem]]) -> Select[tuple[InventoryItem]]:
    return stmt.options(
        selectinload(
            InventoryItem.reservations.and_(StockReservation.status == ReservationStatus.ACTIVE.value)
        )
    )


def _available_expression():
    return InventoryItem.quantity - InventoryItem.reserved_quantity


class InventoryRepository:
    """Persistence utilities for inventory items, ledger rows and reservations."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # Items ------------------------------------------------------------------------------------

    async def create_item(self, **values: Any) -> InventoryItem:
        item = InventoryItem(**values)
        self.session.add(item)
        await self.session.flush()
        return item

    async def find_by_sku(self, sku: str) -> InventoryItem | None:
        result = await self.session.execute(select(InventoryItem).where(InventoryItem.sku == sku))
        return result.scalar_one_or_none()

    async def find_by_product(self, product_id: str) -> InventoryItem | None:
        result = await self.session.execute(
            select(InventoryItem).where(InventoryItem.product_id == product_id)
        )
        return result.scalar_one_or_none()

    async def get_by_product(self, product_id: str) -> InventoryItem | None:
        stmt = _with_active_reservations(
            select(InventoryItem).where(InventoryItem.product_id == product_id)
        )
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def get_by_sku(self, sku: str) -> InventoryItem | None:
        stmt = _with_active_reservations(select(InventoryItem).where(InventoryItem.sku == sku))
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def lock_by_product(self, product_id: str) -> InventoryItem | None:
        """SELECT ... FOR UPDATE the item row for the rest of the transaction."""

        result = await self.session.execute(
            select(InventoryItem)
            .where(InventoryItem.product_id == product_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def lock_item(self, item_id: str) -> InventoryItem | None:
        result = await self.session.execute(
            select(InventoryItem)
            .where(InventoryItem.id == item_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_low_stock(self, threshold: int, *, warehouse: str | None = None) -> list[InventoryItem]:
        available = _available_expression()
        filters = [
            available <= threshold,
            InventoryItem.is_active.is_(True),
            InventoryItem.tracking_enabled.is_(True),
        ]
        if warehouse is not None:
            filters.append(InventoryItem.warehouse == warehouse)
        result = await self.session.execute(
            select(InventoryItem).where(and_(*filters)).order_by(available.asc(), InventoryItem.sku.asc())
        )
        return list(result.scalars())

    async def totals(self, *, warehouse: str | None = None) -> tuple[int, int, int]:
        """Return (active item count, on-hand sum, reserved sum)."""

        stmt = select(
            func.count(InventoryItem.id),
            func.coalesce(func.sum(InventoryItem.quantity), 0),
            func.coalesce(func.sum(InventoryItem.reserved_quantity), 0),
        ).where(InventoryItem.is_active.is_(True))
        if warehouse is not None:
            stmt = stmt.where(InventoryItem.warehouse == warehouse)
        count, on_hand, reserved = (await self.session.execute(stmt)).one()
        return int(count), int(on_hand), int(reserved)

    # Ledger -----------------------------------------------------------------------------------

    async def add_transaction(self, item: InventoryItem, **values: Any) -> InventoryTransaction:
        values.setdefault("warehouse", item.warehouse)
        entry = InventoryTransaction(
            inventory_item_id=item.id,
            product_id=item.product_id,
            **values,
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def list_transactions(
        self,
        product_id: str,
        *,
        transaction_type: str | None,
        limit: int,
        offset: int,
    ) -> tuple[list[InventoryTransaction], int]:
        filters = [InventoryTransaction.product_id == product_id]
        if transaction_type is not None:
            filters.append(InventoryTransaction.type == transaction_type)
        clause = and_(*filters)

        count: Select[tuple[int]] = select(func.count(InventoryTransaction.id)).where(clause)
        total = (await self.session.execute(count)).scalar_one()
        result = await self.session.execute(
            select(InventoryTransaction)
            .where(clause)
            .order_by(InventoryTransaction.created_at.desc(), InventoryTransaction.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars()), total

    async def ledger_for_item(self, item_id: str) -> Sequence[InventoryTransaction]:
        result = await self.session.execute(
            select(InventoryTransaction)
            .where(InventoryTransaction.inventory_item_id == item_id)
            .order_by(InventoryTransaction.id.asc())
        )
        return result.scalars().all()

    # Reservations -----------------------------------------------------------------------------

    async def create_reservation(self, item: InventoryItem, **values: Any) -> StockReservation:
        reservation = StockReservation(
            inventory_item_id=item.id,
            product_id=item.product_id,
            status=ReservationStatus.ACTIVE.value,
            **values,
        )
        self.session.add(reservation)
        await self.session.flush()
        return reservation

    async def lock_reservation(self, reservation_id: str) -> StockReservation | None:
        result = await self.session.execute(
            select(StockReservation)
            .where(StockReservation.id == reservation_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def expired_reservation_ids(self, now: datetime, *, limit: int | None = None) -> list[str]:
        stmt = (
            select(StockReservation.id)
            .where(
                StockReservation.status == ReservationStatus.ACTIVE.value,
                StockReservation.expires_at < now,
            )
            .order_by(StockReservation.expires_at.asc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list((await self.session.execute(stmt)).scalars())

    async def active_reserved_total(self, item_id: str) -> int:
        result = await self.session.execute(
            select(func.coalesce(func.sum(StockReservation.quantity), 0)).where(
                StockReservation.inventory_item_id == item_id,
                StockReservation.status == ReservationStatus.ACTIVE.value,
            )
        )
        return int(result.scalar_one())
