from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from httpx import AsyncClient

from services.common import (
    DEFAULT_APP_NAME,
    ServiceSettings,
    build_app,
    close_redis_connections,
    configure_logging,
    dispose_engines,
    get_session_factory,
    get_settings,
    resolve_database_url,
    resolve_redis,
)
from services.common.tracing import flush_tracing

from .api.health import router as health_router
from .api.inventory import router as inventory_router
from .cache import InventoryCache
from .clients import NotificationServiceClient, ProductServiceClient
from .errors import InventoryError
from .services import InventoryService
from .sweeper import InventorySweeper

SERVICE_NAME = "Inventory Service"
DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./inventory_service.db"


async def _inventory_error_handler(_request: Request, exc: InventoryError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.message})


async def _request_validation_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    details = "; ".join(
        f"{'.'.join(str(part) for part in error.get('loc', ()) if part != 'body')}: {error.get('msg')}"
        for error in exc.errors()
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=jsonable_encoder({"success": False, "message": "Validation error", "details": details}),
    )


def create_app(settings: ServiceSettings | None = None) -> FastAPI:
    """Create the Inventory Service FastAPI application."""

    resolved_settings = settings or get_settings()
    if resolved_settings.app_name == DEFAULT_APP_NAME:
        resolved_settings = resolved_settings.model_copy(update={"app_name": SERVICE_NAME})
    configure_logging(resolved_settings)
    database_url = resolve_database_url(resolved_settings, DEFAULT_DATABASE_URL)
    session_factory = get_session_factory(database_url, echo=resolved_settings.database_echo)

    redis_client = resolve_redis(resolved_settings)
    cache = InventoryCache(redis_client, ttl_seconds=resolved_settings.inventory_cache_ttl_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        http_client: AsyncClient | None = None
        notifier: NotificationServiceClient | None = None
        sweeper: InventorySweeper | None = None
        app.state.session_factory = session_factory
        app.state.inventory_cache = cache
        try:
            http_client = AsyncClient(timeout=resolved_settings.http_timeout_seconds)
            notifier = NotificationServiceClient(
                http_client,
                base_url=resolved_settings.notification_service_url,
            )
            service = InventoryService(
                session_factory,
                cache=cache,
                products=ProductServiceClient(http_client, base_url=resolved_settings.product_service_url),
                notifier=notifier,
                reservation_expiry_minutes=resolved_settings.reservation_expiry_minutes,
                low_stock_threshold=resolved_settings.low_stock_threshold,
            )
            app.state.inventory_service = service
            app.state.notifier = notifier
            if resolved_settings.enable_sweeper:
                sweeper = InventorySweeper(
                    service,
                    expiry_interval=resolved_settings.reservation_sweep_interval_seconds,
                    expiry_batch_size=resolved_settings.reservation_sweep_batch_size,
                    low_stock_interval=resolved_settings.low_stock_sweep_interval_seconds,
                )
                sweeper.start()
            app.state.sweeper = sweeper
            yield
        finally:
            app.state.inventory_service = None
            app.state.session_factory = None  # type: ignore[assignment]
            app.state.inventory_cache = None
            app.state.notifier = None
            app.state.sweeper = None
            if sweeper is not None:
                await sweeper.stop()
            if notifier is not None:
                await notifier.drain()
            if http_client is not None:
                await http_client.aclose()
            await dispose_engines()
            if redis_client is not None:
                await close_redis_connections()
            if resolved_settings.enable_tracing:
                flush_tracing()

    app = build_app(resolved_settings, lifespan=lifespan)
    app.add_exception_handler(InventoryError, _inventory_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _request_validation_handler)  # type: ignore[arg-type]
    app.include_router(health_router)
    app.include_router(inventory_router)
    return app


app = create_app()
