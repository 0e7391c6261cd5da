"""Domain errors raised by the inventory service."""

from __future__ import annotations

from fastapi import status


class InventoryError(Exception):
    """Base class for inventory failures that map onto an HTTP response."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Inventory operation failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFoundError(InventoryError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Inventory item not found"


class ReservationNotFoundError(NotFoundError):
    default_message = "Reservation not found"


class ValidationError(InventoryError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Validation error"


class UpstreamValidationError(ValidationError):
    """The product service could not confirm the referenced product."""

    default_message = "Invalid product ID"


class DuplicateSkuError(InventoryError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "An inventory item with this SKU already exists"


class DuplicateProductError(InventoryError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Inventory is already tracked for this product"


class InsufficientStockError(InventoryError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Insufficient stock for deduction"


class InsufficientAvailableStockError(InventoryError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Insufficient available stock for reservation"


class ReservationNotActiveError(InventoryError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Active reservation not found"


class TransientStorageError(InventoryError):
    """Lock wait or connection failure; the caller should retry."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Inventory storage temporarily unavailable, retry the request"
