from __future__ import annotations

from fastapi import APIRouter, Query, Request, Response, status

from kds.application.dto.requests import UpdateOrderNoteRequest, UpdateOrderPriorityRequest
from kds.application.dto.responses import (
    KitchenBoardResponse,
    KitchenOrderResponse,
    KitchenStatsResponse,
)
from kds.application.kitchen_session import KitchenRegistry
from kds.application.sequencer import KitchenOrderSequencer
from kds.application.use_cases.kitchen_board import GetKitchenOrder, KitchenBoard, KitchenStatsView
from kds.application.use_cases.order_transitions import (
    AddOrderNote,
    CompleteOrder,
    MarkItemReady,
    SetOrderPriority,
    StartItem,
    StartPreparation,
)
from kds.domain.common.ids import ItemId, OrderId, VenueId

router = APIRouter(prefix="/v1/venues/{venue_id}/kitchen")


def _registry(request: Request) -> KitchenRegistry:
    return request.app.state.kitchens


def _sequencer(request: Request, venue_id: str) -> KitchenOrderSequencer:
    return _registry(request).sequencer(VenueId(venue_id))


@router.get("/orders", response_model=KitchenBoardResponse)
def kitchen_board(
    request: Request,
    venue_id: str,
    status_filter: str = Query(default="ALL", alias="status"),
) -> KitchenBoardResponse:
    return KitchenBoard(_sequencer(request, venue_id)).execute(status=status_filter)


@router.get("/orders/{order_id}", response_model=KitchenOrderResponse)
def kitchen_order(request: Request, venue_id: str, order_id: str) -> KitchenOrderResponse:
    return GetKitchenOrder(_sequencer(request, venue_id)).execute(order_id=OrderId(order_id))


@router.get("/stats", response_model=KitchenStatsResponse)
def kitchen_stats(request: Request, venue_id: str) -> KitchenStatsResponse:
    return KitchenStatsView(_sequencer(request, venue_id)).execute()


@router.post("/orders/{order_id}/start", response_model=KitchenOrderResponse)
def start_preparation(request: Request, venue_id: str, order_id: str) -> KitchenOrderResponse:
    return StartPreparation(_sequencer(request, venue_id)).execute(order_id=OrderId(order_id))


@router.post("/orders/{order_id}/items/{item_id}/start", response_model=KitchenOrderResponse)
def start_item(
    request: Request,
    venue_id: str,
    order_id: str,
    item_id: str,
) -> KitchenOrderResponse:
    return StartItem(_sequencer(request, venue_id)).execute(
        order_id=OrderId(order_id),
        item_id=ItemId(item_id),
    )


@router.post("/orders/{order_id}/items/{item_id}/ready", response_model=KitchenOrderResponse)
def mark_item_ready(
    request: Request,
    venue_id: str,
    order_id: str,
    item_id: str,
) -> KitchenOrderResponse:
    return MarkItemReady(_sequencer(request, venue_id)).execute(
        order_id=OrderId(order_id),
        item_id=ItemId(item_id),
    )


@router.post("/orders/{order_id}/complete", response_model=KitchenOrderResponse)
def complete_order(request: Request, venue_id: str, order_id: str) -> KitchenOrderResponse:
    return CompleteOrder(_sequencer(request, venue_id)).execute(order_id=OrderId(order_id))


@router.put("/orders/{order_id}/priority", response_model=KitchenOrderResponse)
def set_priority(
    request: Request,
    venue_id: str,
    order_id: str,
    payload: UpdateOrderPriorityRequest,
) -> KitchenOrderResponse:
    return SetOrderPriority(_sequencer(request, venue_id)).execute(
        order_id=OrderId(order_id),
        request=payload,
    )


@router.put("/orders/{order_id}/note", response_model=KitchenOrderResponse)
def add_note(
    request: Request,
    venue_id: str,
    order_id: str,
    payload: UpdateOrderNoteRequest,
) -> KitchenOrderResponse:
    return AddOrderNote(_sequencer(request, venue_id)).execute(
        order_id=OrderId(order_id),
        request=payload,
    )


@router.post("/refresh", response_model=KitchenBoardResponse)
def refresh(request: Request, venue_id: str) -> KitchenBoardResponse:
    session = _registry(request).session(VenueId(venue_id))
    session.refresh()
    return KitchenBoard(session.sequencer).execute()


@router.delete("/session", status_code=status.HTTP_204_NO_CONTENT)
def release_session(request: Request, venue_id: str) -> Response:
    _registry(request).release(VenueId(venue_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
