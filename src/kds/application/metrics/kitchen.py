from __future__ import annotations

from datetime import datetime, timezone

from prometheus_client import Counter, Gauge, Histogram

from kds.domain.order.entities import Order, OrderStatus

KITCHEN_TRANSITIONS_TOTAL = Counter(
    "kds_order_transition_total",
    "Total number of kitchen order status transitions.",
    ["from", "to"],
)

KITCHEN_ITEM_TRANSITIONS_TOTAL = Counter(
    "kds_item_transition_total",
    "Total number of kitchen item transitions by target status.",
    ["venue_id", "to"],
)

ORDER_TIME_TO_READY_SECONDS = Histogram(
    "kds_order_time_to_ready_seconds",
    "Time between an order entering the kitchen queue and all items being ready.",
)

ORDER_TIME_TO_SERVE_SECONDS = Histogram(
    "kds_order_time_to_serve_seconds",
    "Time between an order entering the kitchen queue and being served.",
)

WORKING_SET_SIZE = Gauge(
    "kds_working_set_size",
    "Current number of active kitchen orders held for a venue.",
    ["venue_id", "status"],
)

INGEST_TOTAL = Counter(
    "kds_ingest_total",
    "Total number of order records reconciled into the working set by outcome.",
    ["venue_id", "outcome"],
)

STORE_WRITE_FAILURES_TOTAL = Counter(
    "kds_store_write_failures_total",
    "Total number of failed store write attempts.",
    ["venue_id", "final"],
)


def record_transition(from_status: OrderStatus, to_status: OrderStatus) -> None:
    if from_status == to_status:
        return
    KITCHEN_TRANSITIONS_TOTAL.labels(**{"from": from_status.value, "to": to_status.value}).inc()


def record_item_transition(venue_id: str, to_status: str) -> None:
    KITCHEN_ITEM_TRANSITIONS_TOTAL.labels(venue_id=venue_id, to=to_status).inc()


def record_time_to_ready(order: Order, now: datetime | None = None) -> None:
    current = now or datetime.now(timezone.utc)
    ORDER_TIME_TO_READY_SECONDS.observe(max((current - order.created_at).total_seconds(), 0.0))


def record_time_to_serve(order: Order, now: datetime | None = None) -> None:
    current = now or datetime.now(timezone.utc)
    ORDER_TIME_TO_SERVE_SECONDS.observe(max((current - order.created_at).total_seconds(), 0.0))


def record_working_set(venue_id: str, counts: dict[OrderStatus, int]) -> None:
    for status in (OrderStatus.PENDING, OrderStatus.PREPARING, OrderStatus.READY):
        WORKING_SET_SIZE.labels(venue_id=venue_id, status=status.value).set(counts.get(status, 0))


def record_ingest(venue_id: str, outcome: str) -> None:
    INGEST_TOTAL.labels(venue_id=venue_id, outcome=outcome).inc()


def record_store_write_failure(venue_id: str, final: bool) -> None:
    STORE_WRITE_FAILURES_TOTAL.labels(venue_id=venue_id, final=str(final).lower()).inc()


def clear_working_set(venue_id: str) -> None:
    for status in (OrderStatus.PENDING, OrderStatus.PREPARING, OrderStatus.READY):
        try:
            WORKING_SET_SIZE.remove(venue_id, status.value)
        except KeyError:
            continue
