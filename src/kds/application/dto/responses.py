from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class TicketItemResponse(BaseModel):
    itemId: str
    name: str
    quantity: int
    notes: str | None = None
    category: str | None = None
    status: str
    priorityRank: int
    thermalClass: str


class KitchenOrderResponse(BaseModel):
    orderId: str
    orderNumber: str
    tableNumber: str | None = None
    type: str
    status: str
    priority: str
    notes: str | None = None
    items: list[TicketItemResponse] = Field(default_factory=list)
    createdAt: datetime
    updatedAt: datetime | None = None
    elapsedMinutes: int
    overdue: bool
    urgency: str
    estimatedMinutes: int


class KitchenBoardResponse(BaseModel):
    venueId: str
    orders: list[KitchenOrderResponse] = Field(default_factory=list)


class KitchenStatsResponse(BaseModel):
    venueId: str
    activeOrders: int
    pending: int
    preparing: int
    ready: int
    itemUnits: int
    overdue: int
    avgPreparationMinutes: int
