from __future__ import annotations

from kds.application.dto.requests import UpdateOrderNoteRequest, UpdateOrderPriorityRequest
from kds.application.dto.responses import KitchenOrderResponse
from kds.application.mappers.order_mapper import to_kitchen_order_response
from kds.application.sequencer import KitchenOrderSequencer
from kds.domain.common.ids import ItemId, OrderId


class StartPreparation:
    def __init__(self, sequencer: KitchenOrderSequencer) -> None:
        self._sequencer = sequencer

    def execute(self, order_id: OrderId) -> KitchenOrderResponse:
        order = self._sequencer.start_preparation(order_id)
        return to_kitchen_order_response(order, self._sequencer.now())


class StartItem:
    def __init__(self, sequencer: KitchenOrderSequencer) -> None:
        self._sequencer = sequencer

    def execute(self, order_id: OrderId, item_id: ItemId) -> KitchenOrderResponse:
        order = self._sequencer.start_item(order_id, item_id)
        return to_kitchen_order_response(order, self._sequencer.now())


class MarkItemReady:
    def __init__(self, sequencer: KitchenOrderSequencer) -> None:
        self._sequencer = sequencer

    def execute(self, order_id: OrderId, item_id: ItemId) -> KitchenOrderResponse:
        order = self._sequencer.mark_item_ready(order_id, item_id)
        return to_kitchen_order_response(order, self._sequencer.now())


class CompleteOrder:
    def __init__(self, sequencer: KitchenOrderSequencer) -> None:
        self._sequencer = sequencer

    def execute(self, order_id: OrderId) -> KitchenOrderResponse:
        order = self._sequencer.complete_order(order_id)
        return to_kitchen_order_response(order, self._sequencer.now())


class SetOrderPriority:
    def __init__(self, sequencer: KitchenOrderSequencer) -> None:
        self._sequencer = sequencer

    def execute(self, order_id: OrderId, request: UpdateOrderPriorityRequest) -> KitchenOrderResponse:
        order = self._sequencer.set_priority(order_id, request.priority)
        return to_kitchen_order_response(order, self._sequencer.now())


class AddOrderNote:
    def __init__(self, sequencer: KitchenOrderSequencer) -> None:
        self._sequencer = sequencer

    def execute(self, order_id: OrderId, request: UpdateOrderNoteRequest) -> KitchenOrderResponse:
        order = self._sequencer.add_note(order_id, request.note)
        return to_kitchen_order_response(order, self._sequencer.now())
