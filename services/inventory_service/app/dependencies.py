"""Dependency helpers for inventory service."""

from __future__ import annotations

from typing import cast

from fastapi import HTTPException, Request, status

from .services import InventoryService


def get_inventory_service(request: Request) -> InventoryService:
    """Return the service wired up in the application lifespan."""

    service = getattr(request.app.state, "inventory_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Inventory service is not ready",
        )
    return cast(InventoryService, service)
