from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from kds.api.error_handling import register_exception_handlers
from kds.api.middleware.access_log import AccessLogMiddleware
from kds.api.middleware.request_id import RequestIDMiddleware
from kds.api.routes.health import router as health_router
from kds.api.routes.kitchen import router as kitchen_router
from kds.api.routes.metrics import router as metrics_router
from kds.application.kitchen_session import KitchenRegistry
from kds.application.ports.store import VenueOrderStore
from kds.infrastructure.db.repositories.order_store import SqlAlchemyVenueOrderStore
from kds.infrastructure.messaging.redis_order_feed import RedisOrderFeed
from kds.infrastructure.messaging.redis_publisher import RedisOrderChangePublisher
from kds.infrastructure.observability.logging_config import configure_logging
from kds.infrastructure.observability.otel import configure_otel

logger = logging.getLogger(__name__)


def _cors_allow_origins() -> list[str]:
    env = os.getenv("APP_ENV", "dev").lower()

    # Dev/test: unblock everything (no credentials allowed)
    if env in {"dev", "test"}:
        return ["*"]

    raw_value = os.getenv("CORS_ALLOW_ORIGINS", "")
    return [origin.strip() for origin in raw_value.split(",") if origin.strip()]


def _sequencer_options() -> dict[str, Any]:
    return {
        "write_attempts": int(os.getenv("KDS_STORE_WRITE_ATTEMPTS", "3")),
        "retry_delay_seconds": float(os.getenv("KDS_STORE_RETRY_DELAY_SECONDS", "0.2")),
    }


def _registry_options() -> dict[str, Any]:
    return {
        "max_sessions": int(os.getenv("KDS_MAX_SESSIONS", "64")),
        "idle_timeout_seconds": float(os.getenv("KDS_SESSION_IDLE_SECONDS", "900")),
    }


def build_venue_order_store() -> VenueOrderStore:
    if not os.getenv("REDIS_URL"):
        logger.warning("order_feed_disabled", extra={"reason": "REDIS_URL missing"})
        return SqlAlchemyVenueOrderStore()
    return SqlAlchemyVenueOrderStore(
        publisher=RedisOrderChangePublisher(),
        feed=RedisOrderFeed(),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.kitchens = KitchenRegistry(
        store_factory=build_venue_order_store,
        **_registry_options(),
        **_sequencer_options(),
    )
    try:
        yield
    finally:
        app.state.kitchens.close()


def create_app() -> FastAPI:
    configure_logging()

    app = FastAPI(title="Kitchen Display Sequencer", version="0.1.0", lifespan=lifespan)
    register_exception_handlers(app)
    app.include_router(health_router)
    app.include_router(metrics_router)
    app.include_router(kitchen_router)

    app.add_middleware(AccessLogMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_allow_origins(),
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-Id"],
    )

    configure_otel(app)
    return app


app = create_app()
