from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import Any

import redis

from kds.application.mappers.change_envelope import order_channel, parse_order_change
from kds.application.ports.store import OrderChange
from kds.domain.common.ids import VenueId
from kds.infrastructure.messaging.redis_client import redis_url
from kds.infrastructure.observability.otel import get_tracer

logger = logging.getLogger(__name__)

_MAX_BACKOFF_SECONDS = 5.0


def _decode_value(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode("utf-8")
    return value if isinstance(value, str) else None


class RedisOrderSubscription:
    """Listens on one venue channel from a daemon thread until closed."""

    def __init__(
        self,
        venue_id: VenueId,
        on_change: Callable[[OrderChange], None],
        url: str,
        poll_timeout_seconds: float = 1.0,
    ) -> None:
        self._venue_id = venue_id
        self._on_change = on_change
        self._url = url
        self._poll_timeout_seconds = poll_timeout_seconds
        self._stop = threading.Event()
        self._thread = threading.Thread(
            target=self._run,
            name=f"kds-order-feed-{venue_id}",
            daemon=True,
        )

    @property
    def venue_id(self) -> VenueId:
        return self._venue_id

    def start(self) -> None:
        self._thread.start()

    def close(self) -> None:
        self._stop.set()
        if self._thread.is_alive() and self._thread is not threading.current_thread():
            self._thread.join(timeout=self._poll_timeout_seconds * 2)

    def dispatch(self, message: dict[str, Any]) -> None:
        try:
            payload = _decode_value(message.get("data"))
            if not payload:
                return
            change = parse_order_change(payload)
        except ValueError:
            # UnicodeDecodeError is a ValueError too.
            logger.warning(
                "order_feed_invalid_message",
                extra={"venue_id": self._venue_id},
                exc_info=True,
            )
            return
        with get_tracer().start_as_current_span("order_feed.dispatch") as span:
            span.set_attribute("kds.venue_id", str(self._venue_id))
            span.set_attribute("kds.change_kind", change.kind.value)
            try:
                self._on_change(change)
            except Exception:
                logger.exception(
                    "order_feed_handler_failed",
                    extra={"venue_id": self._venue_id, "order_id": change.record.get("id")},
                )

    def _run(self) -> None:
        channel = order_channel(str(self._venue_id))
        backoff_seconds = 1.0
        while not self._stop.is_set():
            client: redis.Redis | None = None
            pubsub: Any = None
            try:
                client = redis.Redis.from_url(self._url)
                pubsub = client.pubsub()
                pubsub.subscribe(channel)
                logger.info("order_feed_subscribed", extra={"channel": channel})
                backoff_seconds = 1.0

                while not self._stop.is_set():
                    message = pubsub.get_message(
                        ignore_subscribe_messages=True,
                        timeout=self._poll_timeout_seconds,
                    )
                    if message is None:
                        continue
                    self.dispatch(message)
            except Exception:
                logger.exception(
                    "order_feed_error",
                    extra={"channel": channel, "backoff_seconds": backoff_seconds},
                )
                self._stop.wait(backoff_seconds)
                backoff_seconds = min(backoff_seconds * 2, _MAX_BACKOFF_SECONDS)
            finally:
                if pubsub is not None:
                    pubsub.close()
                if client is not None:
                    client.close()
        logger.info("order_feed_stopped", extra={"channel": channel})


class RedisOrderFeed:
    def __init__(self, url: str | None = None, poll_timeout_seconds: float = 1.0) -> None:
        self._url = url
        self._poll_timeout_seconds = poll_timeout_seconds

    def subscribe(
        self,
        venue_id: VenueId,
        on_change: Callable[[OrderChange], None],
    ) -> RedisOrderSubscription:
        subscription = RedisOrderSubscription(
            venue_id=venue_id,
            on_change=on_change,
            url=self._url or redis_url(),
            poll_timeout_seconds=self._poll_timeout_seconds,
        )
        subscription.start()
        return subscription
