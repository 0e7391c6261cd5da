from datetime import datetime, timezone

from fastapi import APIRouter, Request, status

router = APIRouter(prefix="/health", tags=["health"])


@router.get("", status_code=status.HTTP_200_OK)
async def healthcheck(request: Request) -> dict[str, str]:
    """Report liveness with the service name and current server time."""

    settings = getattr(request.app.state, "settings", None)
    return {
        "status": "ok",
        "service": settings.app_name if settings is not None else request.app.title,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
