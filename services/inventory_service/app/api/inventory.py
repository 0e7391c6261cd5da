"""Inventory HTTP endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from ..dependencies import get_inventory_service
from ..models import InventoryItem, InventoryTransaction, StockReservation
from ..schemas import (
    AuditResponse,
    AvailabilityResponse,
    Envelope,
    ExpiredCountResponse,
    InventoryCreate,
    InventoryItemResponse,
    Pagination,
    ReleaseRequest,
    ReservationResponse,
    ReserveRequest,
    StatisticsResponse,
    StockUpdate,
    TransactionResponse,
)
from ..services import InventoryService

router = APIRouter(prefix="/api/inventory", tags=["inventory"])


def _serialize_reservation(reservation: StockReservation) -> dict[str, object]:
    return {
        "id": reservation.id,
        "inventoryItemId": reservation.inventory_item_id,
        "productId": reservation.product_id,
        "orderId": reservation.order_id,
        "userId": reservation.user_id,
        "quantity": reservation.quantity,
        "status": reservation.status,
        "reason": reservation.reason,
        "expiresAt": reservation.expires_at,
        "fulfilledAt": reservation.fulfilled_at,
        "metadata": reservation.extra,
        "createdAt": reservation.created_at,
        "updatedAt": reservation.updated_at,
    }


def _serialize_item(item: InventoryItem, *, with_reservations: bool = False) -> dict[str, object]:
    payload: dict[str, object] = {
        "id": item.id,
        "productId": item.product_id,
        "sku": item.sku,
        "productName": item.product_name,
        "quantity": item.quantity,
        "reservedQuantity": item.reserved_quantity,
        "availableQuantity": item.available_quantity,
        "minStockLevel": item.min_stock_level,
        "maxStockLevel": item.max_stock_level,
        "reorderPoint": item.reorder_point,
        "location": item.location,
        "warehouse": item.warehouse,
        "supplier": item.supplier,
        "costPrice": item.cost_price,
        "isActive": item.is_active,
        "trackingEnabled": item.tracking_enabled,
        "lastRestockedAt": item.last_restocked_at,
        "lastSoldAt": item.last_sold_at,
        "metadata": item.extra,
        "createdAt": item.created_at,
        "updatedAt": item.updated_at,
    }
    if with_reservations:
        payload["reservations"] = [_serialize_reservation(reservation) for reservation in item.reservations]
    return payload


def _serialize_transaction(entry: InventoryTransaction) -> dict[str, object]:
    return {
        "id": entry.id,
        "inventoryItemId": entry.inventory_item_id,
        "productId": entry.product_id,
        "type": entry.type,
        "quantity": entry.quantity,
        "previousQuantity": entry.previous_quantity,
        "newQuantity": entry.new_quantity,
        "reason": entry.reason,
        "reference": entry.reference,
        "referenceId": entry.reference_id,
        "performedBy": entry.performed_by,
        "cost": entry.cost,
        "location": entry.location,
        "warehouse": entry.warehouse,
        "batchNumber": entry.batch_number,
        "expiryDate": entry.expiry_date,
        "notes": entry.notes,
        "metadata": entry.extra,
        "createdAt": entry.created_at,
    }


def _item_response(item: InventoryItem, *, with_reservations: bool = False) -> InventoryItemResponse:
    return InventoryItemResponse.model_validate(_serialize_item(item, with_reservations=with_reservations))


@router.post(
    "/",
    response_model=Envelope[InventoryItemResponse],
    status_code=status.HTTP_201_CREATED,
)
@router.post(
    "",
    response_model=Envelope[InventoryItemResponse],
    status_code=status.HTTP_201_CREATED,
    include_in_schema=False,
)
async def create_inventory_item(
    payload: InventoryCreate,
    service: InventoryService = Depends(get_inventory_service),
) -> Envelope[InventoryItemResponse]:
    item = await service.create_item(payload)
    return Envelope(message="Inventory item created successfully", data=_item_response(item))


@router.get("/product/{product_id}", response_model=Envelope[InventoryItemResponse])
async def get_inventory_by_product(
    product_id: str,
    service: InventoryService = Depends(get_inventory_service),
) -> Envelope[InventoryItemResponse]:
    item = await service.get_by_product(product_id)
    return Envelope(data=_item_response(item, with_reservations=True))


@router.get("/sku/{sku}", response_model=Envelope[InventoryItemResponse])
async def get_inventory_by_sku(
    sku: str,
    service: InventoryService = Depends(get_inventory_service),
) -> Envelope[InventoryItemResponse]:
    item = await service.get_by_sku(sku)
    return Envelope(data=_item_response(item, with_reservations=True))


@router.patch("/product/{product_id}/stock", response_model=Envelope[InventoryItemResponse])
async def update_stock(
    product_id: str,
    payload: StockUpdate,
    service: InventoryService = Depends(get_inventory_service),
) -> Envelope[InventoryItemResponse]:
    options = payload.model_dump(exclude={"quantity", "type", "reason"}, exclude_none=True)
    item = await service.update_stock(
        product_id,
        payload.quantity,
        payload.type,
        reason=payload.reason,
        **options,
    )
    return Envelope(message="Stock updated successfully", data=_item_response(item, with_reservations=True))


@router.delete("/product/{product_id}", response_model=Envelope[InventoryItemResponse])
async def deactivate_inventory_item(
    product_id: str,
    service: InventoryService = Depends(get_inventory_service),
) -> Envelope[InventoryItemResponse]:
    item = await service.deactivate(product_id)
    return Envelope(message="Inventory item deactivated", data=_item_response(item))


@router.get("/check/{product_id}", response_model=Envelope[AvailabilityResponse])
async def check_availability(
    product_id: str,
    quantity: int = Query(default=1, ge=1),
    service: InventoryService = Depends(get_inventory_service),
) -> Envelope[AvailabilityResponse]:
    availability = await service.check_availability(product_id, quantity)
    data = {
        "available": availability.available,
        "availableQuantity": availability.available_quantity,
        "requestedQuantity": availability.requested_quantity,
    }
    if availability.error is not None:
        data["error"] = availability.error
    return Envelope(data=AvailabilityResponse.model_validate(data))


@router.post(
    "/reserve",
    response_model=Envelope[ReservationResponse],
    status_code=status.HTTP_201_CREATED,
)
async def reserve_stock(
    payload: ReserveRequest,
    service: InventoryService = Depends(get_inventory_service),
) -> Envelope[ReservationResponse]:
    reservation = await service.reserve(
        str(payload.product_id),
        payload.quantity,
        order_id=str(payload.order_id) if payload.order_id else None,
        user_id=str(payload.user_id) if payload.user_id else None,
        reason=payload.reason,
        expires_at=payload.expires_at,
        metadata=payload.metadata,
    )
    return Envelope(
        message="Stock reserved successfully",
        data=ReservationResponse.model_validate(_serialize_reservation(reservation)),
    )


@router.patch(
    "/reservations/{reservation_id}",
    response_model=Envelope[ReservationResponse],
)
async def release_reservation(
    reservation_id: str,
    payload: ReleaseRequest | None = None,
    service: InventoryService = Depends(get_inventory_service),
) -> Envelope[ReservationResponse]:
    fulfill = payload.fulfill if payload is not None else False
    reservation = await service.release(reservation_id, fulfill=fulfill)
    outcome = "fulfilled" if fulfill else "cancelled"
    return Envelope(
        message=f"Reservation {outcome} successfully",
        data=ReservationResponse.model_validate(_serialize_reservation(reservation)),
    )


@router.get(
    "/product/{product_id}/history",
    response_model=Envelope[list[TransactionResponse]],
)
async def get_inventory_history(
    product_id: str,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    transaction_type: str | None = Query(default=None, alias="type"),
    service: InventoryService = Depends(get_inventory_service),
) -> Envelope[list[TransactionResponse]]:
    history = await service.get_inventory_history(
        product_id,
        page=page,
        limit=limit,
        transaction_type=transaction_type,
    )
    return Envelope(
        data=[TransactionResponse.model_validate(_serialize_transaction(entry)) for entry in history.transactions],
        pagination=Pagination(total=history.total, page=history.page, pages=history.pages, limit=history.limit),
    )


@router.get("/product/{product_id}/audit", response_model=Envelope[AuditResponse])
async def audit_inventory_item(
    product_id: str,
    service: InventoryService = Depends(get_inventory_service),
) -> Envelope[AuditResponse]:
    audit = await service.audit_item(product_id)
    return Envelope(
        data=AuditResponse.model_validate(
            {
                "productId": audit.product_id,
                "recordedQuantity": audit.recorded_quantity,
                "replayedQuantity": audit.replayed_quantity,
                "reservedQuantity": audit.reserved_quantity,
                "activeReservedQuantity": audit.active_reserved_quantity,
                "transactionCount": audit.transaction_count,
                "consistent": audit.consistent,
            }
        )
    )


@router.get("/low-stock", response_model=Envelope[list[InventoryItemResponse]])
async def get_low_stock_items(
    threshold: int | None = Query(default=None, ge=0),
    warehouse: str | None = None,
    service: InventoryService = Depends(get_inventory_service),
) -> Envelope[list[InventoryItemResponse]]:
    items = await service.get_low_stock_items(threshold, warehouse=warehouse)
    return Envelope(data=[_item_response(item) for item in items])


@router.get("/statistics", response_model=Envelope[StatisticsResponse])
async def get_inventory_statistics(
    warehouse: str | None = None,
    service: InventoryService = Depends(get_inventory_service),
) -> Envelope[StatisticsResponse]:
    stats = await service.get_inventory_statistics(warehouse or None)
    return Envelope(
        data=StatisticsResponse.model_validate(
            {
                "totalProducts": stats.total_products,
                "totalQuantity": stats.total_quantity,
                "totalReserved": stats.total_reserved,
                "availableQuantity": stats.available_quantity,
                "lowStockItems": stats.low_stock_items,
                "warehouse": stats.warehouse,
            }
        )
    )


@router.post("/expire-reservations", response_model=Envelope[ExpiredCountResponse])
async def expire_reservations(
    service: InventoryService = Depends(get_inventory_service),
) -> Envelope[ExpiredCountResponse]:
    expired_count = await service.expire_reservations()
    return Envelope(
        message=f"Expired {expired_count} reservations",
        data=ExpiredCountResponse.model_validate({"expiredCount": expired_count}),
    )
