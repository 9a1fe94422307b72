from __future__ import annotations

import sys
import threading
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[3] / "src"))

from kds.application.errors import (
    InvalidTransitionError,
    ItemNotFoundError,
    OrderNotFoundError,
    OrderRecordValidationError,
    StoreWriteError,
)
from kds.application.ports.store import OrderChange, StoreUnavailableError
from kds.application.sequencer import KitchenOrderSequencer
from kds.domain.common.ids import ItemId, OrderId, VenueId
from kds.domain.order.entities import ItemStatus, OrderPriority, OrderStatus, aggregate_status

NOW = datetime(2026, 10, 19, 19, 30, tzinfo=timezone.utc)
VENUE_ID = VenueId("ven_001")


class FakeSubscription:
    def __init__(self, venue_id: VenueId) -> None:
        self._venue_id = venue_id

    @property
    def venue_id(self) -> VenueId:
        return self._venue_id

    def close(self) -> None:
        return None


class FakeVenueOrderStore:
    def __init__(self, records: list[dict[str, Any]] | None = None, failures: int = 0) -> None:
        self.records = records or []
        self.failures = failures
        self.updates: list[tuple[str, dict[str, Any]]] = []

    def list_active_orders(self, venue_id: VenueId) -> list[dict[str, Any]]:
        return [dict(record) for record in self.records]

    def subscribe(
        self,
        venue_id: VenueId,
        on_change: Callable[[OrderChange], None],
    ) -> FakeSubscription:
        return FakeSubscription(venue_id)

    def update_order(self, order_id: OrderId, patch: dict[str, Any]) -> None:
        if self.failures > 0:
            self.failures -= 1
            raise StoreUnavailableError("store offline")
        self.updates.append((str(order_id), patch))

    def unsubscribe(self, subscription: FakeSubscription) -> None:
        subscription.close()


def _record(
    order_id: str = "ord_001",
    status: str = "confirmed",
    minutes_ago: int = 4,
    updated_at: datetime | None = None,
    items: list[dict[str, Any]] | None = None,
    **extra: Any,
) -> dict[str, Any]:
    record = {
        "id": order_id,
        "order_number": "A-101",
        "table_number": "5",
        "type": "dine_in",
        "status": status,
        "created_at": (NOW - timedelta(minutes=minutes_ago)).isoformat(),
        "updated_at": updated_at.isoformat() if updated_at else None,
        "items": items
        if items is not None
        else [
            {"id": "i-meat", "name": "Adana Kebap", "quantity": 2, "category": "Kebaplar"},
            {"id": "i-dessert", "name": "Künefe", "quantity": 1, "category": "Tatlılar"},
            {"id": "i-cold", "name": "Haydari", "quantity": 1, "category": "Soğuk Mezeler"},
        ],
    }
    record.update(extra)
    return record


def _sequencer(
    store: FakeVenueOrderStore,
    sleeps: list[float] | None = None,
    **options: Any,
) -> KitchenOrderSequencer:
    sink = sleeps if sleeps is not None else []
    return KitchenOrderSequencer(
        VENUE_ID,
        store,
        clock=lambda: NOW,
        sleep=sink.append,
        **options,
    )


def test_full_kitchen_flow_from_ticket_to_served() -> None:
    store = FakeVenueOrderStore()
    sequencer = _sequencer(store)

    order = sequencer.ingest(_record())
    assert order is not None
    assert order.status == OrderStatus.PENDING
    assert [str(item.item_id) for item in sequencer.ticket(OrderId("ord_001"))] == [
        "i-cold",
        "i-meat",
        "i-dessert",
    ]

    started = sequencer.start_preparation(OrderId("ord_001"))
    assert started.status == OrderStatus.PREPARING
    assert {item.status for item in started.items} == {ItemStatus.PREPARING}
    order_id, patch = store.updates[-1]
    assert order_id == "ord_001"
    assert patch["status"] == "preparing"
    assert patch["updated_at"] == NOW.isoformat()
    assert {item["status"] for item in patch["items"]} == {"preparing"}

    for item_id in ("i-cold", "i-meat"):
        partial = sequencer.mark_item_ready(OrderId("ord_001"), ItemId(item_id))
        assert partial.status == OrderStatus.PREPARING

    ready = sequencer.mark_item_ready(OrderId("ord_001"), ItemId("i-dessert"))
    assert ready.status == OrderStatus.READY
    assert store.updates[-1][1]["status"] == "ready"

    served = sequencer.complete_order(OrderId("ord_001"))
    assert served.status == OrderStatus.SERVED
    assert OrderId("ord_001") not in sequencer
    assert store.updates[-1] == ("ord_001", {"status": "served", "updated_at": NOW.isoformat()})
    assert len(store.updates) == 5


def test_mark_item_ready_twice_writes_once() -> None:
    store = FakeVenueOrderStore()
    sequencer = _sequencer(store)
    sequencer.ingest(_record())

    first = sequencer.mark_item_ready(OrderId("ord_001"), ItemId("i-cold"))
    second = sequencer.mark_item_ready(OrderId("ord_001"), ItemId("i-cold"))

    assert second is first
    assert len(store.updates) == 1


def test_start_item_moves_single_item() -> None:
    store = FakeVenueOrderStore()
    sequencer = _sequencer(store)
    sequencer.ingest(_record())

    order = sequencer.start_item(OrderId("ord_001"), ItemId("i-meat"))

    assert order.status == OrderStatus.PREPARING
    assert order.find_item(ItemId("i-meat")).status == ItemStatus.PREPARING
    assert order.find_item(ItemId("i-cold")).status == ItemStatus.PENDING


def test_start_item_rejects_ready_item() -> None:
    sequencer = _sequencer(FakeVenueOrderStore())
    sequencer.ingest(_record())
    sequencer.mark_item_ready(OrderId("ord_001"), ItemId("i-cold"))

    with pytest.raises(InvalidTransitionError):
        sequencer.start_item(OrderId("ord_001"), ItemId("i-cold"))


def test_complete_requires_ready_order() -> None:
    store = FakeVenueOrderStore()
    sequencer = _sequencer(store)
    sequencer.ingest(_record())

    with pytest.raises(InvalidTransitionError):
        sequencer.complete_order(OrderId("ord_001"))
    assert OrderId("ord_001") in sequencer
    assert store.updates == []


def test_unknown_order_and_item_raise_not_found() -> None:
    sequencer = _sequencer(FakeVenueOrderStore())
    sequencer.ingest(_record())

    with pytest.raises(OrderNotFoundError):
        sequencer.get(OrderId("missing"))
    with pytest.raises(OrderNotFoundError):
        sequencer.start_preparation(OrderId("missing"))
    with pytest.raises(ItemNotFoundError):
        sequencer.mark_item_ready(OrderId("ord_001"), ItemId("missing"))


def test_ingest_terminal_status_removes_order() -> None:
    sequencer = _sequencer(FakeVenueOrderStore())
    sequencer.ingest(_record())

    assert sequencer.ingest(_record(status="cancelled")) is None
    assert len(sequencer) == 0
    assert sequencer.ingest(_record(order_id="ord_unknown", status="served")) is None


def test_ingest_ignores_stale_record() -> None:
    sequencer = _sequencer(FakeVenueOrderStore())
    newer = NOW - timedelta(seconds=10)
    older = NOW - timedelta(seconds=30)
    sequencer.ingest(
        _record(
            updated_at=newer,
            items=[{"id": "a", "name": "Ayran", "quantity": 1, "status": "ready"}],
        )
    )

    result = sequencer.ingest(
        _record(updated_at=older, items=[{"id": "a", "name": "Ayran", "quantity": 1}])
    )

    assert result is not None
    assert result.status == OrderStatus.READY
    assert sequencer.get(OrderId("ord_001")).updated_at == newer


def test_stale_terminal_record_still_removes_order() -> None:
    sequencer = _sequencer(FakeVenueOrderStore())
    sequencer.ingest(_record(updated_at=NOW))

    sequencer.ingest(_record(status="cancelled", updated_at=NOW - timedelta(minutes=1)))

    assert len(sequencer) == 0


def test_ingest_defaults_missing_item_status_to_pending() -> None:
    sequencer = _sequencer(FakeVenueOrderStore())
    order = sequencer.ingest(
        _record(status="preparing", items=[{"id": 7, "name": "Çorba", "quantity": 1}])
    )

    assert order is not None
    assert order.items[0].item_id == "7"
    assert order.items[0].status == ItemStatus.PENDING
    assert order.status == OrderStatus.PENDING


@pytest.mark.parametrize(
    "items",
    [
        [],
        [{"id": "a", "name": "Ayran", "quantity": 0}],
        [{"id": "a", "name": "Ayran", "quantity": 1}, {"id": "a", "name": "Ayran", "quantity": 1}],
    ],
)
def test_ingest_rejects_invalid_records(items: list[dict[str, Any]]) -> None:
    sequencer = _sequencer(FakeVenueOrderStore())

    with pytest.raises(OrderRecordValidationError):
        sequencer.ingest(_record(items=items))
    assert len(sequencer) == 0


def test_write_retries_then_succeeds() -> None:
    store = FakeVenueOrderStore(failures=1)
    sleeps: list[float] = []
    sequencer = _sequencer(store, sleeps, retry_delay_seconds=0.1)
    sequencer.ingest(_record())

    sequencer.start_preparation(OrderId("ord_001"))

    assert sleeps == [0.1]
    assert len(store.updates) == 1


def test_write_failure_keeps_local_state_and_raises() -> None:
    store = FakeVenueOrderStore(failures=10)
    sleeps: list[float] = []
    sequencer = _sequencer(store, sleeps, write_attempts=3, retry_delay_seconds=0.1)
    sequencer.ingest(_record())

    with pytest.raises(StoreWriteError) as exc_info:
        sequencer.start_preparation(OrderId("ord_001"))

    assert exc_info.value.details == {"orderId": "ord_001"}
    assert sleeps == [0.1, 0.2]
    assert sequencer.get(OrderId("ord_001")).status == OrderStatus.PREPARING


def test_write_attempts_must_be_positive() -> None:
    with pytest.raises(ValueError):
        _sequencer(FakeVenueOrderStore(), write_attempts=0)


def test_load_replaces_working_set_and_skips_invalid_records() -> None:
    sequencer = _sequencer(FakeVenueOrderStore())
    sequencer.ingest(_record(order_id="ord_gone"))

    size = sequencer.load(
        [
            _record(order_id="ord_a"),
            _record(order_id="ord_b", items=[]),
            _record(order_id="ord_c", status="completed"),
        ]
    )

    assert size == 1
    assert [str(order.order_id) for order in sequencer.orders()] == ["ord_a"]


def test_load_keeps_newer_local_version() -> None:
    sequencer = _sequencer(FakeVenueOrderStore())
    sequencer.ingest(_record(updated_at=NOW))
    sequencer.mark_item_ready(OrderId("ord_001"), ItemId("i-cold"))

    sequencer.load([_record(updated_at=NOW - timedelta(minutes=1))])

    order = sequencer.get(OrderId("ord_001"))
    assert order.find_item(ItemId("i-cold")).status == ItemStatus.READY


def test_orders_filter_and_board_order() -> None:
    sequencer = _sequencer(FakeVenueOrderStore())
    sequencer.ingest(_record(order_id="ord_old", minutes_ago=20))
    sequencer.ingest(_record(order_id="ord_new", minutes_ago=1))
    sequencer.ingest(_record(order_id="ord_rush", minutes_ago=2, priority="rush"))
    sequencer.start_preparation(OrderId("ord_new"))

    assert [str(order.order_id) for order in sequencer.orders()] == [
        "ord_rush",
        "ord_old",
        "ord_new",
    ]
    assert [str(order.order_id) for order in sequencer.orders(OrderStatus.PREPARING)] == [
        "ord_new"
    ]


def test_stats_counts_statuses_units_and_overdue() -> None:
    sequencer = _sequencer(FakeVenueOrderStore())
    sequencer.ingest(_record(order_id="ord_a", minutes_ago=12))
    sequencer.ingest(_record(order_id="ord_b", minutes_ago=2))
    sequencer.start_preparation(OrderId("ord_b"))

    stats = sequencer.stats()

    assert stats.active_orders == 2
    assert stats.pending == 1
    assert stats.preparing == 1
    assert stats.ready == 0
    assert stats.item_units == 8
    assert stats.overdue == 1


def test_changes_during_snapshot_query_win_over_snapshot_rows() -> None:
    sequencer = _sequencer(FakeVenueOrderStore())
    sequencer.ingest(_record(order_id="ord_001"))

    def fetch() -> list[dict[str, Any]]:
        # The feed delivers these while the query is still running.
        sequencer.ingest(_record(order_id="ord_001", status="cancelled"))
        sequencer.ingest(_record(order_id="ord_002", minutes_ago=1))
        return [_record(order_id="ord_001")]

    size = sequencer.load_from(fetch)

    assert size == 1
    assert [str(order.order_id) for order in sequencer.orders()] == ["ord_002"]


def test_completion_during_snapshot_query_is_not_resurrected() -> None:
    sequencer = _sequencer(FakeVenueOrderStore())
    ready_items = [{"id": "a", "name": "Ayran", "quantity": 1, "status": "ready"}]
    sequencer.ingest(_record(items=ready_items))

    def fetch() -> list[dict[str, Any]]:
        sequencer.complete_order(OrderId("ord_001"))
        return [_record(items=ready_items)]

    assert sequencer.load_from(fetch) == 0
    assert OrderId("ord_001") not in sequencer

    # Outside a snapshot window nothing is remembered any more.
    assert sequencer.load([_record(items=ready_items)]) == 1


def test_transition_during_snapshot_query_is_kept() -> None:
    sequencer = _sequencer(FakeVenueOrderStore())
    sequencer.ingest(_record())

    def fetch() -> list[dict[str, Any]]:
        sequencer.mark_item_ready(OrderId("ord_001"), ItemId("i-cold"))
        return [_record()]

    sequencer.load_from(fetch)

    order = sequencer.get(OrderId("ord_001"))
    assert order.find_item(ItemId("i-cold")).status == ItemStatus.READY


def test_failed_snapshot_query_keeps_working_set() -> None:
    sequencer = _sequencer(FakeVenueOrderStore())
    sequencer.ingest(_record())

    def fetch() -> list[dict[str, Any]]:
        raise StoreUnavailableError("store offline")

    with pytest.raises(StoreUnavailableError):
        sequencer.load_from(fetch)
    assert [str(order.order_id) for order in sequencer.orders()] == ["ord_001"]


def test_concurrent_feed_echoes_do_not_lose_ready_marks() -> None:
    sequencer = _sequencer(FakeVenueOrderStore())
    echoed_at = NOW - timedelta(minutes=1)
    records = [_record(order_id=f"ord_{index:03d}", updated_at=echoed_at) for index in range(30)]
    for record in records:
        sequencer.ingest(record)
    item_ids = ("i-cold", "i-meat", "i-dessert")
    done = threading.Event()
    mismatches: list[str] = []

    def cook() -> None:
        try:
            for record in records:
                for item_id in item_ids:
                    sequencer.mark_item_ready(OrderId(record["id"]), ItemId(item_id))
        finally:
            done.set()

    def replay_feed() -> None:
        while not done.is_set():
            for record in records:
                sequencer.ingest(record)

    def watch_board() -> None:
        while not done.is_set():
            for order in sequencer.orders():
                if order.status != aggregate_status(order.items):
                    mismatches.append(str(order.order_id))

    threads = [threading.Thread(target=target) for target in (cook, replay_feed, watch_board)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert mismatches == []
    orders = sequencer.orders()
    assert len(orders) == 30
    assert {order.status for order in orders} == {OrderStatus.READY}
    assert all(item.status == ItemStatus.READY for order in orders for item in order.items)


def test_complete_order_write_failure_puts_ticket_back() -> None:
    store = FakeVenueOrderStore(failures=10)
    sequencer = _sequencer(store, write_attempts=2)
    sequencer.ingest(
        _record(items=[{"id": "a", "name": "Ayran", "quantity": 1, "status": "ready"}])
    )

    with pytest.raises(StoreWriteError):
        sequencer.complete_order(OrderId("ord_001"))

    assert sequencer.get(OrderId("ord_001")).status == OrderStatus.READY
    assert sequencer.stats().ready == 1

    store.failures = 0
    served = sequencer.complete_order(OrderId("ord_001"))

    assert served.status == OrderStatus.SERVED
    assert OrderId("ord_001") not in sequencer
    assert store.updates == [("ord_001", {"status": "served", "updated_at": NOW.isoformat()})]


def test_set_priority_writes_details_and_reorders_board() -> None:
    store = FakeVenueOrderStore()
    sequencer = _sequencer(store)
    sequencer.ingest(_record(order_id="ord_old", minutes_ago=20))
    sequencer.ingest(_record(order_id="ord_new", minutes_ago=1))

    updated = sequencer.set_priority(OrderId("ord_new"), OrderPriority.RUSH)

    assert updated.priority == OrderPriority.RUSH
    assert updated.updated_at == NOW
    assert store.updates == [
        ("ord_new", {"priority": "rush", "notes": None, "updated_at": NOW.isoformat()})
    ]
    assert [str(order.order_id) for order in sequencer.orders()] == ["ord_new", "ord_old"]

    assert sequencer.set_priority(OrderId("ord_new"), OrderPriority.RUSH) is updated
    assert len(store.updates) == 1


def test_add_note_strips_and_clears() -> None:
    store = FakeVenueOrderStore()
    sequencer = _sequencer(store)
    sequencer.ingest(_record())

    noted = sequencer.add_note(OrderId("ord_001"), "  no onions  ")
    assert noted.notes == "no onions"
    assert store.updates[-1][1]["notes"] == "no onions"

    cleared = sequencer.add_note(OrderId("ord_001"), "   ")
    assert cleared.notes is None
    assert store.updates[-1][1] == {
        "priority": "normal",
        "notes": None,
        "updated_at": NOW.isoformat(),
    }

    assert sequencer.add_note(OrderId("ord_001"), None) is cleared
    assert len(store.updates) == 2


def test_set_priority_unknown_order_raises_not_found() -> None:
    sequencer = _sequencer(FakeVenueOrderStore())

    with pytest.raises(OrderNotFoundError):
        sequencer.set_priority(OrderId("missing"), OrderPriority.HIGH)
    with pytest.raises(OrderNotFoundError):
        sequencer.add_note(OrderId("missing"), "allergy")


def test_stats_average_preparation_minutes() -> None:
    sequencer = _sequencer(FakeVenueOrderStore())
    assert sequencer.stats().avg_preparation_minutes == 0

    single_item = [{"id": "a", "name": "Ayran", "quantity": 1}]
    sequencer.ingest(_record(order_id="ord_a", minutes_ago=12, items=single_item))
    sequencer.ingest(_record(order_id="ord_b", minutes_ago=4, items=single_item))
    sequencer.mark_item_ready(OrderId("ord_a"), ItemId("a"))
    sequencer.mark_item_ready(OrderId("ord_b"), ItemId("a"))

    assert sequencer.stats().avg_preparation_minutes == 8
