from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from kds.domain.order.entities import OrderPriority


class UpdateOrderPriorityRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    priority: OrderPriority


class UpdateOrderNoteRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    note: str | None = Field(default=None, max_length=1000)
