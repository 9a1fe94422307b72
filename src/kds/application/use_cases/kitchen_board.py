from __future__ import annotations

from kds.application.dto.responses import (
    KitchenBoardResponse,
    KitchenOrderResponse,
    KitchenStatsResponse,
)
from kds.application.mappers.order_mapper import to_kitchen_order_response
from kds.application.sequencer import KitchenOrderSequencer
from kds.domain.common.ids import OrderId
from kds.domain.order.entities import OrderStatus

_STATUS_MAP: dict[str, OrderStatus | None] = {
    "ALL": None,
    "PENDING": OrderStatus.PENDING,
    "PREPARING": OrderStatus.PREPARING,
    "READY": OrderStatus.READY,
}


class InvalidKitchenBoardStatusError(Exception):
    pass


class KitchenBoard:
    def __init__(self, sequencer: KitchenOrderSequencer) -> None:
        self._sequencer = sequencer

    def execute(self, status: str = "ALL") -> KitchenBoardResponse:
        normalized_status = status.upper()
        if normalized_status not in _STATUS_MAP:
            raise InvalidKitchenBoardStatusError(f"invalid kitchen board status: {status}")

        now = self._sequencer.now()
        orders = self._sequencer.orders(status=_STATUS_MAP[normalized_status])
        return KitchenBoardResponse(
            venueId=str(self._sequencer.venue_id),
            orders=[to_kitchen_order_response(order, now) for order in orders],
        )


class GetKitchenOrder:
    def __init__(self, sequencer: KitchenOrderSequencer) -> None:
        self._sequencer = sequencer

    def execute(self, order_id: OrderId) -> KitchenOrderResponse:
        order = self._sequencer.get(order_id)
        return to_kitchen_order_response(order, self._sequencer.now())


class KitchenStatsView:
    def __init__(self, sequencer: KitchenOrderSequencer) -> None:
        self._sequencer = sequencer

    def execute(self) -> KitchenStatsResponse:
        stats = self._sequencer.stats()
        return KitchenStatsResponse(
            venueId=str(self._sequencer.venue_id),
            activeOrders=stats.active_orders,
            pending=stats.pending,
            preparing=stats.preparing,
            ready=stats.ready,
            itemUnits=stats.item_units,
            overdue=stats.overdue,
            avgPreparationMinutes=stats.avg_preparation_minutes,
        )
