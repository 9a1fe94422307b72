from __future__ import annotations

import json
from datetime import datetime
from typing import Any
from uuid import uuid4

from kds.application.ports.store import ChangeKind, OrderChange

_EVENT_TYPES: dict[ChangeKind, str] = {
    ChangeKind.INSERT: "order.inserted",
    ChangeKind.UPDATE: "order.updated",
    ChangeKind.DELETE: "order.deleted",
}
_KINDS = {event_type: kind for kind, event_type in _EVENT_TYPES.items()}


def order_channel(venue_id: str) -> str:
    return f"orders:{venue_id}"


def serialize_order_change(
    *,
    change: OrderChange,
    venue_id: str,
    occurred_at: datetime,
    trace_id: str | None,
    request_id: str | None,
) -> str:
    envelope = {
        "event_id": str(uuid4()),
        "event_type": _EVENT_TYPES[change.kind],
        "occurred_at": occurred_at.isoformat(),
        "request_id": request_id,
        "trace_id": trace_id,
        "venue_id": venue_id,
        "payload": change.record,
    }
    return json.dumps(envelope, separators=(",", ":"), ensure_ascii=False, default=str)


def parse_order_change(raw: str) -> OrderChange:
    try:
        envelope: Any = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("order change is not valid JSON") from exc
    if not isinstance(envelope, dict):
        raise ValueError("order change must be a JSON object")

    event_type = envelope.get("event_type")
    kind = _KINDS.get(event_type) if isinstance(event_type, str) else None
    if kind is None:
        raise ValueError(f"unknown order change type: {event_type}")
    payload = envelope.get("payload")
    if not isinstance(payload, dict):
        raise ValueError("order change payload must be an object")
    return OrderChange(kind=kind, record=payload)
