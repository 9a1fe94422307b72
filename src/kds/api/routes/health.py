from __future__ import annotations

from fastapi import APIRouter, Request, Response, status

from kds.infrastructure.db.session import ping_database
from kds.infrastructure.messaging.redis_client import ping_redis

router = APIRouter()


@router.get("/health/live")
def live() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/health/ready")
def ready(request: Request, response: Response) -> dict[str, object]:
    postgres_ready = ping_database(timeout_seconds=1.0)
    redis_ready = ping_redis(timeout_seconds=1.0)
    registry = getattr(request.app.state, "kitchens", None)
    venues = [str(venue_id) for venue_id in registry.venues()] if registry is not None else []

    if postgres_ready and redis_ready:
        return {"status": "ok", "venues": venues}

    response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return {
        "status": "unavailable",
        "checks": {"postgres": postgres_ready, "redis": redis_ready},
    }
