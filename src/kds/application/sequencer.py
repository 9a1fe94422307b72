"""In-memory kitchen working set for one venue.

The sequencer owns the classification of open orders and the kitchen
transitions. The venue order store stays the source of truth: every transition
is applied to the working set first and then written back, and every change
reported by the store is reconciled through :meth:`KitchenOrderSequencer.ingest`.

All reads and mutations of the working set are serialised on one re-entrant
lock so that operator actions and change-feed callbacks never interleave.
Store writes run after the lock is released.

While a snapshot query is in flight (:meth:`KitchenOrderSequencer.load_from`),
every order that is changed or removed is remembered; those entries win over
the snapshot rows, which may predate them.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from kds.application.errors import (
    InvalidTransitionError,
    ItemNotFoundError,
    OrderNotFoundError,
    OrderRecordValidationError,
    StoreWriteError,
)
from kds.application.mappers.order_mapper import (
    order_details_patch,
    order_to_patch,
    record_to_order,
)
from kds.application.metrics.kitchen import (
    record_ingest,
    record_item_transition,
    record_store_write_failure,
    record_time_to_ready,
    record_time_to_serve,
    record_transition,
    record_working_set,
)
from kds.application.ports.store import VenueOrderStore
from kds.domain.common.ids import ItemId, OrderId, VenueId
from kds.domain.order.classification import sort_ticket_items
from kds.domain.order.entities import (
    Order,
    OrderItem,
    OrderItemNotFoundError,
    OrderPriority,
    OrderStatus,
    OrderTransitionError,
)
from kds.domain.order.timing import is_overdue, sort_board

logger = logging.getLogger(__name__)

_MAX_RETRY_DELAY_SECONDS = 2.0
_READY_SAMPLE_SIZE = 200


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class KitchenStats:
    active_orders: int
    pending: int
    preparing: int
    ready: int
    item_units: int
    overdue: int
    avg_preparation_minutes: int


class KitchenOrderSequencer:
    def __init__(
        self,
        venue_id: VenueId,
        store: VenueOrderStore,
        clock: Callable[[], datetime] = _utcnow,
        write_attempts: int = 3,
        retry_delay_seconds: float = 0.2,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if write_attempts < 1:
            raise ValueError("write_attempts must be >= 1")
        self._venue_id = venue_id
        self._store = store
        self._clock = clock
        self._write_attempts = write_attempts
        self._retry_delay_seconds = retry_delay_seconds
        self._sleep = sleep
        self._orders: dict[OrderId, Order] = {}
        self._lock = threading.RLock()
        self._loads_in_flight = 0
        # None marks an order removed while a snapshot was being read.
        self._touched: dict[OrderId, Order | None] = {}
        self._ready_seconds: deque[float] = deque(maxlen=_READY_SAMPLE_SIZE)

    @property
    def venue_id(self) -> VenueId:
        return self._venue_id

    def now(self) -> datetime:
        return self._clock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._orders)

    def __contains__(self, order_id: object) -> bool:
        with self._lock:
            return order_id in self._orders

    # Reconciliation

    def load(self, records: Iterable[Mapping[str, Any]]) -> int:
        return self.load_from(lambda: records)

    def load_from(self, fetch: Callable[[], Iterable[Mapping[str, Any]]]) -> int:
        """Replace the working set with a full snapshot of active orders.

        ``fetch`` runs outside the lock. Invalid records are logged and
        skipped so that one bad row does not blank the whole board. Tracked
        orders that are newer than their snapshot row are kept, and orders
        changed or removed while ``fetch`` ran keep that outcome.
        """
        with self._lock:
            self._loads_in_flight += 1
        try:
            snapshot = self._parse_snapshot(fetch())
            with self._lock:
                for order_id, order in snapshot.items():
                    current = self._orders.get(order_id)
                    if current is not None and _is_stale(current, order):
                        snapshot[order_id] = current
                for order_id, touched in self._touched.items():
                    if touched is None:
                        snapshot.pop(order_id, None)
                    else:
                        snapshot[order_id] = touched
                self._orders = snapshot
                self._publish_gauge()
                size = len(self._orders)
        finally:
            with self._lock:
                self._loads_in_flight -= 1
                if not self._loads_in_flight:
                    self._touched.clear()

        logger.info("kitchen_working_set_loaded", extra={"venue_id": self._venue_id, "size": size})
        return size

    def ingest(self, record: Mapping[str, Any]) -> Order | None:
        try:
            incoming = record_to_order(record)
        except OrderRecordValidationError:
            record_ingest(str(self._venue_id), "invalid")
            raise

        with self._lock:
            current = self._orders.get(incoming.order_id)
            if not incoming.is_active:
                self._touch(incoming.order_id, None)
                if current is None:
                    record_ingest(str(self._venue_id), "ignored")
                    return None
                del self._orders[incoming.order_id]
                self._publish_gauge()
                record_ingest(str(self._venue_id), "removed")
                logger.info(
                    "kitchen_order_removed",
                    extra={
                        "venue_id": self._venue_id,
                        "order_id": incoming.order_id,
                        "status": incoming.status.value,
                    },
                )
                return None

            if current is not None and _is_stale(current, incoming):
                record_ingest(str(self._venue_id), "stale")
                logger.debug(
                    "kitchen_stale_record_ignored",
                    extra={"venue_id": self._venue_id, "order_id": incoming.order_id},
                )
                return current

            order = incoming.reconciled()
            if order.status != incoming.status:
                logger.debug(
                    "kitchen_order_status_reconciled",
                    extra={
                        "venue_id": self._venue_id,
                        "order_id": order.order_id,
                        "status": order.status.value,
                    },
                )
            self._orders[order.order_id] = order
            self._touch(order.order_id, order)
            self._publish_gauge()
            if current is not None and current.status != OrderStatus.READY:
                if order.status == OrderStatus.READY:
                    self._record_ready(order)

        record_ingest(str(self._venue_id), "inserted" if current is None else "updated")
        if current is not None:
            record_transition(current.status, order.status)
        return order

    def remove(self, order_id: OrderId) -> bool:
        with self._lock:
            self._touch(order_id, None)
            removed = self._orders.pop(order_id, None)
            if removed is None:
                return False
            self._publish_gauge()
        logger.info(
            "kitchen_order_removed",
            extra={"venue_id": self._venue_id, "order_id": order_id},
        )
        return True

    # Transitions

    def start_preparation(self, order_id: OrderId) -> Order:
        with self._lock:
            current = self._require(order_id)
            updated = self._transition(lambda order: order.start_preparation(self._clock()), current)
            if updated is current:
                return current
            self._store_local(current, updated)

        logger.info(
            "kitchen_preparation_started",
            extra={"venue_id": self._venue_id, "order_id": order_id},
        )
        self._write(updated, order_to_patch(updated))
        return updated

    def start_item(self, order_id: OrderId, item_id: ItemId) -> Order:
        with self._lock:
            current = self._require(order_id)
            updated = self._transition(
                lambda order: order.start_item(item_id, self._clock()), current
            )
            if updated is current:
                return current
            self._store_local(current, updated)
            record_item_transition(str(self._venue_id), "preparing")

        logger.info(
            "kitchen_item_started",
            extra={"venue_id": self._venue_id, "order_id": order_id, "item_id": item_id},
        )
        self._write(updated, order_to_patch(updated))
        return updated

    def mark_item_ready(self, order_id: OrderId, item_id: ItemId) -> Order:
        with self._lock:
            current = self._require(order_id)
            updated = self._transition(
                lambda order: order.mark_item_ready(item_id, self._clock()), current
            )
            if updated is current:
                return current
            self._store_local(current, updated)
            record_item_transition(str(self._venue_id), "ready")

        logger.info(
            "kitchen_item_ready",
            extra={"venue_id": self._venue_id, "order_id": order_id, "item_id": item_id},
        )
        self._write(updated, order_to_patch(updated))
        return updated

    def set_priority(self, order_id: OrderId, priority: OrderPriority) -> Order:
        with self._lock:
            current = self._require(order_id)
            updated = self._transition(
                lambda order: order.with_priority(priority, self._clock()), current
            )
            if updated is current:
                return current
            self._store_local(current, updated)

        logger.info(
            "kitchen_order_priority_changed",
            extra={"venue_id": self._venue_id, "order_id": order_id, "status": priority.value},
        )
        self._write(updated, order_details_patch(updated))
        return updated

    def add_note(self, order_id: OrderId, note: str | None) -> Order:
        with self._lock:
            current = self._require(order_id)
            updated = self._transition(lambda order: order.with_note(note, self._clock()), current)
            if updated is current:
                return current
            self._store_local(current, updated)

        logger.info(
            "kitchen_order_note_changed",
            extra={"venue_id": self._venue_id, "order_id": order_id},
        )
        self._write(updated, order_details_patch(updated))
        return updated

    def complete_order(self, order_id: OrderId) -> Order:
        with self._lock:
            current = self._require(order_id)
            served = self._transition(lambda order: order.complete(self._clock()), current)
            del self._orders[order_id]
            self._touch(order_id, None)
            self._publish_gauge()

        try:
            self._write(served, order_to_patch(served, include_items=False))
        except StoreWriteError:
            # Put the ticket back so the operator can retry the completion.
            with self._lock:
                if order_id not in self._orders:
                    self._orders[order_id] = current
                    self._touch(order_id, current)
                    self._publish_gauge()
            raise

        record_transition(current.status, served.status)
        record_time_to_serve(served, now=served.updated_at)
        logger.info(
            "kitchen_order_served",
            extra={"venue_id": self._venue_id, "order_id": order_id},
        )
        return served

    # Queries

    def get(self, order_id: OrderId) -> Order:
        with self._lock:
            return self._require(order_id)

    def orders(self, status: OrderStatus | None = None) -> list[Order]:
        with self._lock:
            orders = list(self._orders.values())
        if status is not None:
            orders = [order for order in orders if order.status == status]
        return sort_board(orders)

    def ticket(self, order_id: OrderId) -> list[OrderItem]:
        return sort_ticket_items(self.get(order_id).items)

    def stats(self, now: datetime | None = None) -> KitchenStats:
        current = now or self._clock()
        with self._lock:
            orders = list(self._orders.values())
            ready_seconds = list(self._ready_seconds)
        counts = _count_by_status(orders)
        avg_minutes = round(sum(ready_seconds) / len(ready_seconds) / 60) if ready_seconds else 0
        return KitchenStats(
            active_orders=len(orders),
            pending=counts.get(OrderStatus.PENDING, 0),
            preparing=counts.get(OrderStatus.PREPARING, 0),
            ready=counts.get(OrderStatus.READY, 0),
            item_units=sum(item.quantity for order in orders for item in order.items),
            overdue=sum(1 for order in orders if is_overdue(order, current)),
            avg_preparation_minutes=avg_minutes,
        )

    # Internals

    def _parse_snapshot(self, records: Iterable[Mapping[str, Any]]) -> dict[OrderId, Order]:
        snapshot: dict[OrderId, Order] = {}
        for record in records:
            try:
                order = record_to_order(record)
            except OrderRecordValidationError as exc:
                record_ingest(str(self._venue_id), "invalid")
                logger.warning(
                    "kitchen_record_rejected",
                    extra={"venue_id": self._venue_id, "details": exc.details},
                )
                continue
            if order.is_active:
                snapshot[order.order_id] = order.reconciled()
        return snapshot

    def _require(self, order_id: OrderId) -> Order:
        order = self._orders.get(order_id)
        if order is None:
            raise OrderNotFoundError(f"order {order_id} not found")
        return order

    def _transition(self, apply: Callable[[Order], Order], order: Order) -> Order:
        try:
            return apply(order)
        except OrderItemNotFoundError as exc:
            raise ItemNotFoundError(str(exc)) from exc
        except OrderTransitionError as exc:
            raise InvalidTransitionError(str(exc)) from exc

    def _touch(self, order_id: OrderId, order: Order | None) -> None:
        if self._loads_in_flight:
            self._touched[order_id] = order

    def _store_local(self, before: Order, after: Order) -> None:
        self._orders[after.order_id] = after
        self._touch(after.order_id, after)
        self._publish_gauge()
        record_transition(before.status, after.status)
        if after.status == OrderStatus.READY and before.status != OrderStatus.READY:
            self._record_ready(after)
            logger.info(
                "kitchen_order_ready",
                extra={"venue_id": self._venue_id, "order_id": after.order_id},
            )

    def _record_ready(self, order: Order) -> None:
        ready_at = order.updated_at or self._clock()
        self._ready_seconds.append(max((ready_at - order.created_at).total_seconds(), 0.0))
        record_time_to_ready(order, now=ready_at)

    def _publish_gauge(self) -> None:
        record_working_set(str(self._venue_id), _count_by_status(self._orders.values()))

    def _write(self, order: Order, patch: dict[str, Any]) -> None:
        delay = self._retry_delay_seconds
        for attempt in range(1, self._write_attempts + 1):
            try:
                self._store.update_order(order.order_id, patch)
                return
            except Exception as exc:
                final = attempt == self._write_attempts
                record_store_write_failure(str(self._venue_id), final=final)
                logger.warning(
                    "kitchen_store_write_failed",
                    extra={
                        "venue_id": self._venue_id,
                        "order_id": order.order_id,
                        "attempt": attempt,
                    },
                    exc_info=final,
                )
                if final:
                    raise StoreWriteError(
                        f"failed to write order {order.order_id} after {attempt} attempts",
                        order_id=str(order.order_id),
                    ) from exc
                self._sleep(delay)
                delay = min(delay * 2, _MAX_RETRY_DELAY_SECONDS)


def _is_stale(current: Order, incoming: Order) -> bool:
    if current.updated_at is None or incoming.updated_at is None:
        return False
    return incoming.updated_at < current.updated_at


def _count_by_status(orders: Iterable[Order]) -> dict[OrderStatus, int]:
    counts: dict[OrderStatus, int] = {}
    for order in orders:
        counts[order.status] = counts.get(order.status, 0) + 1
    return counts
