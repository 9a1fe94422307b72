from __future__ import annotations

import math
from collections.abc import Iterable
from datetime import datetime
from enum import Enum

from kds.domain.order.entities import Order, OrderItem, OrderPriority, OrderStatus

OVERDUE_AFTER_MINUTES = 10
MINUTES_PER_BATCH = 5
UNITS_PER_BATCH = 3

_PRIORITY_ORDER = {
    OrderPriority.RUSH: 0,
    OrderPriority.HIGH: 1,
    OrderPriority.NORMAL: 2,
}


class TimeUrgency(str, Enum):
    OK = "ok"
    WARNING = "warning"
    URGENT = "urgent"
    CRITICAL = "critical"


def elapsed_minutes(created_at: datetime, now: datetime) -> int:
    seconds = (now - created_at).total_seconds()
    return max(math.floor(seconds / 60), 0)


def is_overdue(order: Order, now: datetime) -> bool:
    if order.status in (OrderStatus.READY, OrderStatus.SERVED, OrderStatus.COMPLETED):
        return False
    return elapsed_minutes(order.created_at, now) > OVERDUE_AFTER_MINUTES


def time_urgency(order: Order, now: datetime) -> TimeUrgency:
    if order.status in (OrderStatus.READY, OrderStatus.SERVED, OrderStatus.COMPLETED):
        return TimeUrgency.OK
    minutes = elapsed_minutes(order.created_at, now)
    if minutes < 5:
        return TimeUrgency.OK
    if minutes < 10:
        return TimeUrgency.WARNING
    if minutes < 15:
        return TimeUrgency.URGENT
    return TimeUrgency.CRITICAL


def estimate_preparation_minutes(items: Iterable[OrderItem]) -> int:
    units = sum(item.quantity for item in items)
    return math.ceil(units / UNITS_PER_BATCH) * MINUTES_PER_BATCH


def sort_board(orders: Iterable[Order]) -> list[Order]:
    """Rush orders first, then oldest first within the same priority."""
    return sorted(orders, key=lambda order: (_PRIORITY_ORDER[order.priority], order.created_at))
