from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parents[3] / "src"))

from kds.application.errors import OrderRecordValidationError
from kds.application.mappers.order_mapper import (
    order_to_patch,
    order_to_record,
    record_to_order,
    to_kitchen_order_response,
)
from kds.domain.common.ids import ItemId
from kds.domain.order.entities import OrderPriority, OrderStatus, OrderType


def _record(**overrides) -> dict:
    record = {
        "id": "ord_010",
        "order_number": 1010,
        "status": "pending",
        "created_at": "2026-10-19T12:00:00",
        "items": [
            {"id": "a", "name": "Mercimek Çorbası", "quantity": 2, "category": "Çorbalar"},
            {"id": "b", "name": "Ayran", "quantity": 2, "category": "Soğuk İçecekler"},
        ],
    }
    record.update(overrides)
    return record


def test_record_defaults_and_coercions() -> None:
    order = record_to_order(_record(table_number=7, unknown_column="ignored"))

    assert order.order_number == "1010"
    assert order.table_number == "7"
    assert order.order_type == OrderType.DINE_IN
    assert order.priority == OrderPriority.NORMAL
    assert order.created_at == datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
    assert order.updated_at is None


def test_record_with_unknown_status_is_rejected() -> None:
    with pytest.raises(OrderRecordValidationError) as exc_info:
        record_to_order(_record(status="lost"))
    assert exc_info.value.details["errors"]


def test_record_without_items_is_rejected() -> None:
    record = _record()
    del record["items"]
    with pytest.raises(OrderRecordValidationError):
        record_to_order(record)


def test_order_to_record_round_trips_through_mapper() -> None:
    order = record_to_order(_record(type="takeaway", priority="high", notes="Acele"))

    restored = record_to_order(order_to_record(order))

    assert restored == order


def test_patch_contains_items_unless_excluded() -> None:
    now = datetime(2026, 10, 19, 12, 5, tzinfo=timezone.utc)
    order = record_to_order(_record()).mark_item_ready(ItemId("a"), now)

    patch = order_to_patch(order)
    assert patch["status"] == OrderStatus.PENDING.value
    assert [item["status"] for item in patch["items"]] == ["ready", "pending"]
    assert patch["updated_at"] == now.isoformat()

    assert "items" not in order_to_patch(order, include_items=False)


def test_kitchen_order_response_sorts_ticket_and_adds_timing() -> None:
    order = record_to_order(_record())
    now = order.created_at + timedelta(minutes=11, seconds=20)

    response = to_kitchen_order_response(order, now)

    assert [item.itemId for item in response.items] == ["b", "a"]
    assert response.items[0].thermalClass == "drink"
    assert response.items[0].priorityRank == 1
    assert response.elapsedMinutes == 11
    assert response.overdue is True
    assert response.urgency == "urgent"
    assert response.estimatedMinutes == 10
