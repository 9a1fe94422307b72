from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from kds.domain.common.ids import OrderId, VenueId

OrderRecord = dict[str, Any]


class ChangeKind(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


@dataclass(frozen=True)
class OrderChange:
    kind: ChangeKind
    record: OrderRecord


class Subscription(Protocol):
    @property
    def venue_id(self) -> VenueId: ...

    def close(self) -> None: ...


class VenueOrderStore(Protocol):
    def list_active_orders(self, venue_id: VenueId) -> list[OrderRecord]: ...

    def subscribe(
        self,
        venue_id: VenueId,
        on_change: Callable[[OrderChange], None],
    ) -> Subscription: ...

    def update_order(self, order_id: OrderId, patch: dict[str, Any]) -> None: ...

    def unsubscribe(self, subscription: Subscription) -> None: ...


class StoreUnavailableError(Exception):
    pass
