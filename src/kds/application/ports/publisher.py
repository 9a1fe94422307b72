from __future__ import annotations

from typing import Protocol

from kds.application.ports.store import OrderChange
from kds.domain.common.ids import VenueId


class OrderChangePublisher(Protocol):
    def publish(self, venue_id: VenueId, change: OrderChange) -> None: ...
