from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Engine, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from kds.application.ports.publisher import OrderChangePublisher
from kds.application.ports.store import (
    ChangeKind,
    OrderChange,
    OrderRecord,
    StoreUnavailableError,
    Subscription,
    VenueOrderStore,
)
from kds.domain.common.ids import OrderId, VenueId
from kds.domain.order.entities import ACTIVE_STATUSES
from kds.infrastructure.db.models.order import KitchenOrderModel
from kds.infrastructure.db.session import get_engine
from kds.infrastructure.messaging.redis_order_feed import RedisOrderFeed
from kds.infrastructure.observability.otel import get_tracer

logger = logging.getLogger(__name__)

_PATCHABLE_FIELDS = frozenset({"items", "status", "priority", "notes", "updated_at"})


class _DetachedSubscription:
    def __init__(self, venue_id: VenueId) -> None:
        self._venue_id = venue_id

    @property
    def venue_id(self) -> VenueId:
        return self._venue_id

    def close(self) -> None:
        return None


class SqlAlchemyVenueOrderStore(VenueOrderStore):
    def __init__(
        self,
        engine: Engine | None = None,
        publisher: OrderChangePublisher | None = None,
        feed: RedisOrderFeed | None = None,
    ) -> None:
        self._engine = engine or get_engine()
        self._publisher = publisher
        self._feed = feed

    def list_active_orders(self, venue_id: VenueId) -> list[OrderRecord]:
        statement = (
            select(KitchenOrderModel)
            .where(
                KitchenOrderModel.venue_id == str(venue_id),
                KitchenOrderModel.status.in_([status.value for status in ACTIVE_STATUSES]),
            )
            .order_by(KitchenOrderModel.created_at.asc(), KitchenOrderModel.id.asc())
        )
        try:
            with Session(self._engine) as session:
                models = list(session.execute(statement).scalars().all())
                return [_to_record(model) for model in models]
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"failed to list orders for venue {venue_id}") from exc

    def get_order(self, order_id: OrderId) -> OrderRecord | None:
        try:
            with Session(self._engine) as session:
                model = session.get(KitchenOrderModel, str(order_id))
                return None if model is None else _to_record(model)
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"failed to read order {order_id}") from exc

    def add_order(self, venue_id: VenueId, record: Mapping[str, Any]) -> None:
        model = KitchenOrderModel(
            id=str(record["id"]),
            venue_id=str(venue_id),
            order_number=str(record["order_number"]),
            table_number=record.get("table_number"),
            type=record.get("type") or "dine_in",
            status=record["status"],
            priority=record.get("priority") or "normal",
            notes=record.get("notes"),
            items=[dict(item) for item in record["items"]],
            created_at=_parse_timestamp(record.get("created_at")) or datetime.now(timezone.utc),
            updated_at=_parse_timestamp(record.get("updated_at")),
        )
        try:
            with Session(self._engine) as session:
                session.add(model)
                session.commit()
                stored = _to_record(model)
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"failed to add order {record['id']}") from exc
        self._publish(venue_id, OrderChange(kind=ChangeKind.INSERT, record=stored))

    def update_order(self, order_id: OrderId, patch: dict[str, Any]) -> None:
        unknown = set(patch) - _PATCHABLE_FIELDS
        if unknown:
            raise ValueError(f"unsupported order patch fields: {sorted(unknown)}")

        with get_tracer().start_as_current_span("order_store.update_order") as span:
            span.set_attribute("kds.order_id", str(order_id))
            span.set_attribute("kds.patch_fields", sorted(patch))
            venue_id, stored = self._apply_patch(order_id, patch)
        self._publish(venue_id, OrderChange(kind=ChangeKind.UPDATE, record=stored))

    def _apply_patch(self, order_id: OrderId, patch: dict[str, Any]) -> tuple[VenueId, OrderRecord]:
        try:
            with Session(self._engine) as session:
                model = session.get(KitchenOrderModel, str(order_id))
                if model is None:
                    raise StoreUnavailableError(f"order {order_id} not found in store")
                if "items" in patch:
                    model.items = [dict(item) for item in patch["items"]]
                if "status" in patch:
                    model.status = str(patch["status"])
                if "priority" in patch:
                    model.priority = str(patch["priority"])
                if "notes" in patch:
                    model.notes = patch["notes"]
                if "updated_at" in patch:
                    model.updated_at = _parse_timestamp(patch["updated_at"])
                session.commit()
                return VenueId(model.venue_id), _to_record(model)
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"failed to update order {order_id}") from exc

    def delete_order(self, order_id: OrderId) -> bool:
        try:
            with Session(self._engine) as session:
                model = session.get(KitchenOrderModel, str(order_id))
                if model is None:
                    return False
                venue_id = VenueId(model.venue_id)
                session.delete(model)
                session.commit()
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"failed to delete order {order_id}") from exc
        self._publish(venue_id, OrderChange(kind=ChangeKind.DELETE, record={"id": str(order_id)}))
        return True

    def subscribe(
        self,
        venue_id: VenueId,
        on_change: Callable[[OrderChange], None],
    ) -> Subscription:
        if self._feed is None:
            logger.warning(
                "order_feed_not_started",
                extra={"venue_id": venue_id, "reason": "no change feed configured"},
            )
            return _DetachedSubscription(venue_id)
        return self._feed.subscribe(venue_id, on_change)

    def unsubscribe(self, subscription: Subscription) -> None:
        subscription.close()

    def _publish(self, venue_id: VenueId, change: OrderChange) -> None:
        if self._publisher is None:
            return
        try:
            self._publisher.publish(venue_id, change)
        except Exception:
            logger.exception(
                "order_change_publish_failed",
                extra={"venue_id": venue_id, "order_id": change.record.get("id")},
            )


def _parse_timestamp(value: Any) -> datetime | None:
    if value is None:
        return None
    parsed = value if isinstance(value, datetime) else datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _to_record(model: KitchenOrderModel) -> OrderRecord:
    created_at = _parse_timestamp(model.created_at)
    updated_at = _parse_timestamp(model.updated_at)
    return {
        "id": model.id,
        "order_number": model.order_number,
        "table_number": model.table_number,
        "type": model.type,
        "status": model.status,
        "priority": model.priority,
        "notes": model.notes,
        "items": [dict(item) for item in model.items],
        "created_at": created_at.isoformat() if created_at else None,
        "updated_at": updated_at.isoformat() if updated_at else None,
    }
