from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from kds.application.dto.records import OrderRecordModel
from kds.application.dto.responses import KitchenOrderResponse, TicketItemResponse
from kds.application.errors import OrderRecordValidationError
from kds.domain.common.ids import ItemId, OrderId
from kds.domain.order.classification import classify_category, sort_ticket_items
from kds.domain.order.entities import Order, OrderItem
from kds.domain.order.timing import (
    elapsed_minutes,
    estimate_preparation_minutes,
    is_overdue,
    time_urgency,
)


def record_to_order(record: Mapping[str, Any]) -> Order:
    try:
        model = OrderRecordModel.model_validate(dict(record))
        return Order(
            order_id=OrderId(model.id),
            order_number=model.order_number,
            order_type=model.type,
            items=tuple(
                OrderItem(
                    item_id=ItemId(item.id),
                    name=item.name,
                    quantity=item.quantity,
                    notes=item.notes,
                    category=item.category,
                    status=item.status,
                )
                for item in model.items
            ),
            created_at=model.created_at,
            status=model.status,
            table_number=model.table_number,
            priority=model.priority,
            notes=model.notes,
            updated_at=model.updated_at,
        )
    except ValidationError as exc:
        raise OrderRecordValidationError(
            f"invalid order record: {record.get('id', '<missing id>')}",
            details={"errors": exc.errors(include_url=False, include_context=False)},
        ) from exc
    except ValueError as exc:
        raise OrderRecordValidationError(
            f"invalid order record: {exc}",
            details={"orderId": str(record.get("id"))},
        ) from exc


def items_to_records(items: tuple[OrderItem, ...]) -> list[dict[str, Any]]:
    return [
        {
            "id": str(item.item_id),
            "name": item.name,
            "quantity": item.quantity,
            "notes": item.notes,
            "category": item.category,
            "status": item.status.value,
        }
        for item in items
    ]


def order_to_record(order: Order) -> dict[str, Any]:
    return {
        "id": str(order.order_id),
        "order_number": order.order_number,
        "table_number": order.table_number,
        "type": order.order_type.value,
        "status": order.status.value,
        "priority": order.priority.value,
        "notes": order.notes,
        "items": items_to_records(order.items),
        "created_at": order.created_at.isoformat(),
        "updated_at": order.updated_at.isoformat() if order.updated_at else None,
    }


def order_to_patch(order: Order, include_items: bool = True) -> dict[str, Any]:
    patch: dict[str, Any] = {"status": order.status.value}
    if include_items:
        patch["items"] = items_to_records(order.items)
    if order.updated_at is not None:
        patch["updated_at"] = order.updated_at.isoformat()
    return patch


def order_details_patch(order: Order) -> dict[str, Any]:
    patch: dict[str, Any] = {"priority": order.priority.value, "notes": order.notes}
    if order.updated_at is not None:
        patch["updated_at"] = order.updated_at.isoformat()
    return patch


def to_kitchen_order_response(order: Order, now: datetime) -> KitchenOrderResponse:
    items: list[TicketItemResponse] = []
    for item in sort_ticket_items(order.items):
        category_class = classify_category(item.category)
        items.append(
            TicketItemResponse(
                itemId=str(item.item_id),
                name=item.name,
                quantity=item.quantity,
                notes=item.notes,
                category=item.category,
                status=item.status.value,
                priorityRank=category_class.priority_rank,
                thermalClass=category_class.thermal_class.value,
            )
        )

    return KitchenOrderResponse(
        orderId=str(order.order_id),
        orderNumber=order.order_number,
        tableNumber=order.table_number,
        type=order.order_type.value,
        status=order.status.value,
        priority=order.priority.value,
        notes=order.notes,
        items=items,
        createdAt=order.created_at,
        updatedAt=order.updated_at,
        elapsedMinutes=elapsed_minutes(order.created_at, now),
        overdue=is_overdue(order, now),
        urgency=time_urgency(order, now).value,
        estimatedMinutes=estimate_preparation_minutes(order.items),
    )
