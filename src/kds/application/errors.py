from __future__ import annotations

from typing import Any


class OrderNotFoundError(Exception):
    pass


class ItemNotFoundError(Exception):
    pass


class InvalidTransitionError(Exception):
    pass


class OrderRecordValidationError(Exception):
    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.details = details or {}


class StoreWriteError(Exception):
    def __init__(self, message: str, order_id: str) -> None:
        super().__init__(message)
        self.order_id = order_id
        self.details = {"orderId": order_id}
