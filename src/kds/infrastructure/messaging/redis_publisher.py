from __future__ import annotations

from datetime import datetime, timezone

from opentelemetry import trace

from kds.application.mappers.change_envelope import order_channel, serialize_order_change
from kds.application.ports.publisher import OrderChangePublisher
from kds.application.ports.store import OrderChange
from kds.application.use_cases.context import TraceContext, get_request_id
from kds.domain.common.ids import VenueId
from kds.infrastructure.messaging.redis_client import get_redis_client


def _current_trace_context() -> TraceContext:
    span_context = trace.get_current_span().get_span_context()
    trace_id = format(span_context.trace_id, "032x") if span_context.is_valid else None
    return TraceContext(trace_id=trace_id, request_id=get_request_id())


class RedisOrderChangePublisher(OrderChangePublisher):
    def __init__(self, timeout_seconds: float = 1.0) -> None:
        self._timeout_seconds = timeout_seconds

    def publish(self, venue_id: VenueId, change: OrderChange) -> None:
        context = _current_trace_context()
        message = serialize_order_change(
            change=change,
            venue_id=str(venue_id),
            occurred_at=datetime.now(timezone.utc),
            trace_id=context.trace_id,
            request_id=context.request_id,
        )
        get_redis_client(timeout_seconds=self._timeout_seconds).publish(
            order_channel(str(venue_id)),
            message,
        )
