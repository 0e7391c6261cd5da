"""SQLAlchemy models for inventory service."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes (as returned by SQLite) as UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class TransactionType(str, Enum):
    STOCK_IN = "stock_in"
    STOCK_OUT = "stock_out"
    ADJUSTMENT = "adjustment"
    RESERVATION = "reservation"
    RELEASE = "release"
    TRANSFER = "transfer"
    RETURN = "return"
    DAMAGED = "damaged"
    EXPIRED = "expired"


class ReservationStatus(str, Enum):
    ACTIVE = "active"
    FULFILLED = "fulfilled"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class Base(DeclarativeBase):
    """Base class for inventory ORM models."""


class InventoryItem(Base):
    __tablename__ = "inventory_items"
    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_inventory_items_quantity_non_negative"),
        CheckConstraint("reserved_quantity >= 0", name="ck_inventory_items_reserved_non_negative"),
        CheckConstraint("reserved_quantity <= quantity", name="ck_inventory_items_reserved_within_on_hand"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    product_id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True, index=True)
    sku: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reserved_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    min_stock_level: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    max_stock_level: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reorder_point: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    location: Mapped[str | None] = mapped_column(String(64), nullable=True)
    warehouse: Mapped[str] = mapped_column(String(64), nullable=False, default="main", index=True)
    supplier: Mapped[str | None] = mapped_column(String(255), nullable=True)
    cost_price: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    tracking_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_restocked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_sold_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    extra: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )

    transactions: Mapped[list[InventoryTransaction]] = relationship(
        back_populates="item",
        lazy="raise",
        order_by="InventoryTransaction.id",
    )
    reservations: Mapped[list[StockReservation]] = relationship(
        back_populates="item",
        lazy="raise",
    )

    @property
    def available_quantity(self) -> int:
        return self.quantity - self.reserved_quantity


class InventoryTransaction(Base):
    __tablename__ = "inventory_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    inventory_item_id: Mapped[str] = mapped_column(
        ForeignKey("inventory_items.id"), nullable=False, index=True
    )
    product_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    previous_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    new_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(String(255), nullable=False)
    reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    reference_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    performed_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    cost: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    location: Mapped[str | None] = mapped_column(String(64), nullable=True)
    warehouse: Mapped[str] = mapped_column(String(64), nullable=False, default="main", index=True)
    batch_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    expiry_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    extra: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(), index=True
    )

    item: Mapped[InventoryItem] = relationship(back_populates="transactions", lazy="raise")

    @property
    def signed_delta(self) -> int:
        """Change this row applied to on-hand quantity."""

        if self.type == TransactionType.STOCK_IN.value:
            return self.quantity
        if self.type == TransactionType.STOCK_OUT.value:
            return -self.quantity
        if self.type == TransactionType.ADJUSTMENT.value:
            return self.quantity
        return self.new_quantity - self.previous_quantity


class StockReservation(Base):
    __tablename__ = "stock_reservations"
    __table_args__ = (CheckConstraint("quantity >= 1", name="ck_stock_reservations_quantity_positive"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    inventory_item_id: Mapped[str] = mapped_column(
        ForeignKey("inventory_items.id"), nullable=False, index=True
    )
    product_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    order_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    user_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=ReservationStatus.ACTIVE.value, index=True
    )
    reason: Mapped[str] = mapped_column(String(255), nullable=False, default="order_processing")
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    fulfilled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    extra: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
    )

    item: Mapped[InventoryItem] = relationship(back_populates="reservations", lazy="raise")

    @property
    def is_active(self) -> bool:
        return self.status == ReservationStatus.ACTIVE.value
