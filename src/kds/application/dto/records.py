from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from kds.domain.order.entities import ItemStatus, OrderPriority, OrderStatus, OrderType


def _as_str(value: Any) -> Any:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


class OrderItemRecord(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    name: str
    quantity: int = Field(gt=0)
    notes: str | None = None
    category: str | None = None
    status: ItemStatus = ItemStatus.PENDING

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        return _as_str(value)

    @field_validator("status", mode="before")
    @classmethod
    def _default_status(cls, value: Any) -> Any:
        return ItemStatus.PENDING if value in (None, "") else value


class OrderRecordModel(BaseModel):
    """Order row as delivered by the venue order store."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    order_number: str
    table_number: str | None = None
    type: OrderType = OrderType.DINE_IN
    status: OrderStatus
    items: list[OrderItemRecord] = Field(min_length=1)
    created_at: datetime
    updated_at: datetime | None = None
    priority: OrderPriority = OrderPriority.NORMAL
    notes: str | None = None

    @field_validator("id", "order_number", "table_number", mode="before")
    @classmethod
    def _coerce_strings(cls, value: Any) -> Any:
        return _as_str(value)

    @field_validator("created_at", "updated_at", mode="after")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @field_validator("type", mode="before")
    @classmethod
    def _default_type(cls, value: Any) -> Any:
        return OrderType.DINE_IN if value in (None, "") else value

    @field_validator("priority", mode="before")
    @classmethod
    def _default_priority(cls, value: Any) -> Any:
        return OrderPriority.NORMAL if value in (None, "") else value
