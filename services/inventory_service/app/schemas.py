"""Pydantic schemas for inventory service."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, ClassVar, Generic, Literal, TypeVar
from uuid import UUID

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    NonNegativeInt,
    PositiveInt,
    SerializerFunctionWrapHandler,
    field_validator,
    model_serializer,
    model_validator,
)

DataT = TypeVar("DataT")

StockUpdateType = Literal["stock_in", "stock_out", "adjustment"]


def _strip_optional(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = value.strip()
    return cleaned or None


class _RequestModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class InventoryCreate(_RequestModel):
    product_id: UUID = Field(alias="productId")
    sku: str = Field(min_length=1, max_length=64)
    product_name: str = Field(min_length=1, max_length=255, alias="productName")
    quantity: NonNegativeInt = Field(default=0)
    min_stock_level: NonNegativeInt = Field(default=10, alias="minStockLevel")
    max_stock_level: NonNegativeInt | None = Field(default=None, alias="maxStockLevel")
    reorder_point: NonNegativeInt = Field(default=5, alias="reorderPoint")
    location: str | None = Field(default=None, max_length=64)
    warehouse: str = Field(default="main", min_length=1, max_length=64)
    supplier: str | None = Field(default=None, max_length=255)
    cost_price: Decimal | None = Field(default=None, gt=0, max_digits=10, decimal_places=2, alias="costPrice")
    tracking_enabled: bool = Field(default=True, alias="trackingEnabled")
    metadata: dict[str, Any] | None = None

    @field_validator("sku", "product_name", "warehouse")
    @classmethod
    def _strip_required(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            msg = "value must be non-empty"
            raise ValueError(msg)
        return cleaned

    @field_validator("location", "supplier")
    @classmethod
    def _strip_location(cls, value: str | None) -> str | None:
        return _strip_optional(value)

    @model_validator(mode="after")
    def _check_levels(self) -> InventoryCreate:
        if self.max_stock_level is not None and self.max_stock_level < self.min_stock_level:
            msg = "maxStockLevel must be greater than or equal to minStockLevel"
            raise ValueError(msg)
        return self


class StockUpdate(_RequestModel):
    quantity: int
    type: StockUpdateType
    reason: str = Field(min_length=1, max_length=255)
    reference: str | None = Field(default=None, max_length=255)
    reference_id: UUID | None = Field(default=None, alias="referenceId")
    performed_by: UUID | None = Field(default=None, alias="performedBy")
    cost: Decimal | None = Field(default=None, gt=0, max_digits=10, decimal_places=2)
    location: str | None = Field(default=None, max_length=64)
    warehouse: str | None = Field(default=None, max_length=64)
    batch_number: str | None = Field(default=None, max_length=64, alias="batchNumber")
    expiry_date: datetime | None = Field(default=None, alias="expiryDate")
    notes: str | None = Field(default=None, max_length=500)
    metadata: dict[str, Any] | None = None

    @model_validator(mode="after")
    def _check_adjustment(self) -> StockUpdate:
        if self.type == "adjustment" and self.quantity < 0:
            msg = "adjustment quantity is an absolute on-hand value and cannot be negative"
            raise ValueError(msg)
        return self


class ReserveRequest(_RequestModel):
    product_id: UUID = Field(alias="productId")
    quantity: PositiveInt
    order_id: UUID | None = Field(default=None, alias="orderId")
    user_id: UUID | None = Field(default=None, alias="userId")
    reason: str = Field(default="order_processing", min_length=1, max_length=255)
    expires_at: datetime | None = Field(default=None, alias="expiresAt")
    metadata: dict[str, Any] | None = None


class ReleaseRequest(_RequestModel):
    fulfill: bool = False


class _ResponseModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Optional keys left out of the body entirely instead of rendered as null.
    omit_when_none: ClassVar[tuple[str, ...]] = ()

    @model_serializer(mode="wrap")
    def _omit_empty(self, handler: SerializerFunctionWrapHandler) -> dict[str, Any]:
        payload = handler(self)
        for key in self.omit_when_none:
            if key in payload and payload[key] is None:
                del payload[key]
        return payload


class ReservationResponse(_ResponseModel):
    id: str
    inventory_item_id: str = Field(alias="inventoryItemId")
    product_id: str = Field(alias="productId")
    order_id: str | None = Field(alias="orderId")
    user_id: str | None = Field(alias="userId")
    quantity: int
    status: str
    reason: str
    expires_at: datetime = Field(alias="expiresAt")
    fulfilled_at: datetime | None = Field(alias="fulfilledAt")
    metadata: dict[str, Any] | None
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")


class InventoryItemResponse(_ResponseModel):
    omit_when_none = ("reservations",)

    id: str
    product_id: str = Field(alias="productId")
    sku: str
    product_name: str = Field(alias="productName")
    quantity: int
    reserved_quantity: int = Field(alias="reservedQuantity")
    available_quantity: int = Field(alias="availableQuantity")
    min_stock_level: int = Field(alias="minStockLevel")
    max_stock_level: int | None = Field(alias="maxStockLevel")
    reorder_point: int = Field(alias="reorderPoint")
    location: str | None
    warehouse: str
    supplier: str | None
    cost_price: Decimal | None = Field(alias="costPrice")
    is_active: bool = Field(alias="isActive")
    tracking_enabled: bool = Field(alias="trackingEnabled")
    last_restocked_at: datetime | None = Field(alias="lastRestockedAt")
    last_sold_at: datetime | None = Field(alias="lastSoldAt")
    metadata: dict[str, Any] | None
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")
    reservations: list[ReservationResponse] | None = None


class TransactionResponse(_ResponseModel):
    id: int
    inventory_item_id: str = Field(alias="inventoryItemId")
    product_id: str = Field(alias="productId")
    type: str
    quantity: int
    previous_quantity: int = Field(alias="previousQuantity")
    new_quantity: int = Field(alias="newQuantity")
    reason: str
    reference: str | None
    reference_id: str | None = Field(alias="referenceId")
    performed_by: str | None = Field(alias="performedBy")
    cost: Decimal | None
    location: str | None
    warehouse: str
    batch_number: str | None = Field(alias="batchNumber")
    expiry_date: datetime | None = Field(alias="expiryDate")
    notes: str | None
    metadata: dict[str, Any] | None
    created_at: datetime = Field(alias="createdAt")


class AvailabilityResponse(_ResponseModel):
    omit_when_none = ("error",)

    available: bool
    available_quantity: int = Field(alias="availableQuantity")
    requested_quantity: int = Field(alias="requestedQuantity")
    error: str | None = None


class StatisticsResponse(_ResponseModel):
    total_products: int = Field(alias="totalProducts")
    total_quantity: int = Field(alias="totalQuantity")
    total_reserved: int = Field(alias="totalReserved")
    available_quantity: int = Field(alias="availableQuantity")
    low_stock_items: int = Field(alias="lowStockItems")
    warehouse: str | None


class AuditResponse(_ResponseModel):
    product_id: str = Field(alias="productId")
    recorded_quantity: int = Field(alias="recordedQuantity")
    replayed_quantity: int = Field(alias="replayedQuantity")
    reserved_quantity: int = Field(alias="reservedQuantity")
    active_reserved_quantity: int = Field(alias="activeReservedQuantity")
    transaction_count: int = Field(alias="transactionCount")
    consistent: bool


class ExpiredCountResponse(_ResponseModel):
    expired_count: int = Field(alias="expiredCount")


class Pagination(BaseModel):
    total: int
    page: int
    pages: int
    limit: int


class Envelope(_ResponseModel, Generic[DataT]):
    """Standard `{success, message?, data?, pagination?}` response body."""

    omit_when_none = ("message", "pagination")

    success: bool = True
    message: str | None = None
    data: DataT | None = None
    pagination: Pagination | None = None
