from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum

from kds.domain.common.ids import ItemId, OrderId


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    READY = "ready"
    SERVED = "served"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


ACTIVE_STATUSES = frozenset(
    {OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.PREPARING, OrderStatus.READY}
)
TERMINAL_STATUSES = frozenset({OrderStatus.SERVED, OrderStatus.COMPLETED, OrderStatus.CANCELLED})


class ItemStatus(str, Enum):
    PENDING = "pending"
    PREPARING = "preparing"
    READY = "ready"


class OrderType(str, Enum):
    DINE_IN = "dine_in"
    TAKEAWAY = "takeaway"
    DELIVERY = "delivery"
    QR_ORDER = "qr_order"


class OrderPriority(str, Enum):
    NORMAL = "normal"
    HIGH = "high"
    RUSH = "rush"


@dataclass(frozen=True)
class OrderItem:
    item_id: ItemId
    name: str
    quantity: int
    notes: str | None = None
    category: str | None = None
    status: ItemStatus = ItemStatus.PENDING

    def __post_init__(self) -> None:
        if self.quantity < 1:
            raise ValueError("quantity must be >= 1")

    def start(self) -> OrderItem:
        if self.status == ItemStatus.READY:
            raise OrderTransitionError(f"cannot start item {self.item_id} from status=ready")
        if self.status == ItemStatus.PREPARING:
            return self
        return replace(self, status=ItemStatus.PREPARING)

    def mark_ready(self) -> OrderItem:
        if self.status == ItemStatus.READY:
            return self
        return replace(self, status=ItemStatus.READY)


def aggregate_status(items: Iterable[OrderItem]) -> OrderStatus:
    """Derive the order status from its items.

    ``ready`` when every item is ready, ``preparing`` when at least one item is
    preparing, ``pending`` otherwise.
    """
    statuses = [item.status for item in items]
    if not statuses:
        raise ValueError("cannot aggregate an order without items")
    if all(status == ItemStatus.READY for status in statuses):
        return OrderStatus.READY
    if any(status == ItemStatus.PREPARING for status in statuses):
        return OrderStatus.PREPARING
    return OrderStatus.PENDING


@dataclass(frozen=True)
class Order:
    order_id: OrderId
    order_number: str
    order_type: OrderType
    items: tuple[OrderItem, ...]
    created_at: datetime
    status: OrderStatus
    table_number: str | None = None
    priority: OrderPriority = OrderPriority.NORMAL
    notes: str | None = None
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        if not self.items:
            raise ValueError("order must contain at least one item")
        item_ids = [item.item_id for item in self.items]
        if len(set(item_ids)) != len(item_ids):
            raise ValueError("item ids must be unique within an order")

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def find_item(self, item_id: ItemId) -> OrderItem | None:
        for item in self.items:
            if item.item_id == item_id:
                return item
        return None

    def reconciled(self) -> Order:
        if not self.is_active:
            return self
        status = aggregate_status(self.items)
        if status == self.status:
            return self
        return replace(self, status=status)

    def start_preparation(self, now: datetime) -> Order:
        self._ensure_active("start preparation")
        if self.status == OrderStatus.READY:
            return self
        items = tuple(
            item if item.status == ItemStatus.READY else replace(item, status=ItemStatus.PREPARING)
            for item in self.items
        )
        if items == self.items and self.status == OrderStatus.PREPARING:
            return self
        return self._with_items(items, now)

    def start_item(self, item_id: ItemId, now: datetime) -> Order:
        self._ensure_active("start item")
        return self._update_item(item_id, OrderItem.start, now)

    def mark_item_ready(self, item_id: ItemId, now: datetime) -> Order:
        self._ensure_active("mark item ready")
        return self._update_item(item_id, OrderItem.mark_ready, now)

    def with_priority(self, priority: OrderPriority, now: datetime) -> Order:
        self._ensure_active("change priority")
        if priority == self.priority:
            return self
        return replace(self, priority=priority, updated_at=now)

    def with_note(self, note: str | None, now: datetime) -> Order:
        self._ensure_active("change the note")
        cleaned = note.strip() if note else ""
        notes = cleaned or None
        if notes == self.notes:
            return self
        return replace(self, notes=notes, updated_at=now)

    def complete(self, now: datetime) -> Order:
        if self.status != OrderStatus.READY:
            raise OrderTransitionError(
                f"cannot complete order {self.order_id} from status={self.status.value}"
            )
        return replace(self, status=OrderStatus.SERVED, updated_at=now)

    def _ensure_active(self, action: str) -> None:
        if not self.is_active:
            raise OrderTransitionError(
                f"cannot {action} for order {self.order_id} from status={self.status.value}"
            )

    def _update_item(
        self,
        item_id: ItemId,
        transition: Callable[[OrderItem], OrderItem],
        now: datetime,
    ) -> Order:
        current = self.find_item(item_id)
        if current is None:
            raise OrderItemNotFoundError(f"item {item_id} not found in order {self.order_id}")
        updated = transition(current)
        if updated is current:
            return self
        items = tuple(updated if item.item_id == item_id else item for item in self.items)
        return self._with_items(items, now)

    def _with_items(self, items: tuple[OrderItem, ...], now: datetime) -> Order:
        return replace(self, items=items, status=aggregate_status(items), updated_at=now)


class OrderTransitionError(Exception):
    pass


class OrderItemNotFoundError(LookupError):
    pass
