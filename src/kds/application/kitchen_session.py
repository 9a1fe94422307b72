from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from types import TracebackType
from typing import Any

from kds.application.errors import OrderRecordValidationError
from kds.application.metrics.kitchen import clear_working_set
from kds.application.ports.store import ChangeKind, OrderChange, Subscription, VenueOrderStore
from kds.application.sequencer import KitchenOrderSequencer
from kds.domain.common.ids import OrderId, VenueId

logger = logging.getLogger(__name__)


class KitchenSession:
    """Change-feed subscription plus working set for the active venue.

    ``open()`` subscribes before loading the snapshot so that no change is
    missed in between; changes that arrive while the snapshot is read win over
    its rows, and rows delivered twice are reconciled by the sequencer.
    """

    def __init__(
        self,
        venue_id: VenueId,
        store: VenueOrderStore,
        **sequencer_options: Any,
    ) -> None:
        self._venue_id = venue_id
        self._store = store
        self._sequencer = KitchenOrderSequencer(venue_id, store, **sequencer_options)
        self._subscription: Subscription | None = None

    @property
    def venue_id(self) -> VenueId:
        return self._venue_id

    @property
    def sequencer(self) -> KitchenOrderSequencer:
        return self._sequencer

    @property
    def is_open(self) -> bool:
        return self._subscription is not None

    def open(self) -> KitchenSession:
        if self._subscription is not None:
            return self
        subscription = self._store.subscribe(self._venue_id, self._on_change)
        try:
            self.refresh()
        except Exception:
            self._store.unsubscribe(subscription)
            raise
        self._subscription = subscription
        logger.info("kitchen_session_opened", extra={"venue_id": self._venue_id})
        return self

    def refresh(self) -> int:
        return self._sequencer.load_from(lambda: self._store.list_active_orders(self._venue_id))

    def close(self) -> None:
        subscription = self._subscription
        if subscription is None:
            return
        self._subscription = None
        try:
            self._store.unsubscribe(subscription)
        finally:
            clear_working_set(str(self._venue_id))
        logger.info("kitchen_session_closed", extra={"venue_id": self._venue_id})

    def __enter__(self) -> KitchenSession:
        return self.open()

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def _on_change(self, change: OrderChange) -> None:
        if change.kind == ChangeKind.DELETE:
            order_id = change.record.get("id")
            if order_id is not None:
                self._sequencer.remove(OrderId(str(order_id)))
            return
        try:
            self._sequencer.ingest(change.record)
        except OrderRecordValidationError as exc:
            logger.warning(
                "kitchen_change_rejected",
                extra={
                    "venue_id": self._venue_id,
                    "order_id": change.record.get("id"),
                    "details": exc.details,
                },
            )


class KitchenRegistry:
    """Kitchen sessions keyed by venue, opened on first use.

    Sessions are opened under a per-venue lock so a slow snapshot only holds
    up requests for that venue. Sessions idle for longer than
    ``idle_timeout_seconds`` are closed, and at most ``max_sessions`` stay open;
    beyond that the least recently used venue is released.
    """

    def __init__(
        self,
        store_factory: Callable[[], VenueOrderStore],
        max_sessions: int = 64,
        idle_timeout_seconds: float = 900.0,
        monotonic: Callable[[], float] = time.monotonic,
        **sequencer_options: Any,
    ) -> None:
        if max_sessions < 1:
            raise ValueError("max_sessions must be >= 1")
        self._store_factory = store_factory
        self._max_sessions = max_sessions
        self._idle_timeout_seconds = idle_timeout_seconds
        self._monotonic = monotonic
        self._sequencer_options = sequencer_options
        self._store: VenueOrderStore | None = None
        self._sessions: dict[VenueId, KitchenSession] = {}
        self._venue_locks: dict[VenueId, threading.Lock] = {}
        self._last_used: dict[VenueId, float] = {}
        self._lock = threading.Lock()

    def session(self, venue_id: VenueId) -> KitchenSession:
        with self._lock:
            session = self._sessions.get(venue_id)
            if session is None:
                if self._store is None:
                    self._store = self._store_factory()
                session = KitchenSession(venue_id, self._store, **self._sequencer_options)
                self._sessions[venue_id] = session
                self._venue_locks[venue_id] = threading.Lock()
            venue_lock = self._venue_locks[venue_id]
            self._last_used[venue_id] = self._monotonic()
            evicted = self._take_evictions(keep=venue_id)

        for stale in evicted:
            self._close_quietly(stale, reason="evicted")

        with venue_lock:
            if not session.is_open:
                try:
                    session.open()
                except Exception:
                    with self._lock:
                        if self._sessions.get(venue_id) is session:
                            self._forget(venue_id)
                    raise

        with self._lock:
            registered = self._sessions.get(venue_id) is session
        if not registered:
            # Released while opening; serve this request and stop listening.
            self._close_quietly(session, reason="released")
        return session

    def sequencer(self, venue_id: VenueId) -> KitchenOrderSequencer:
        return self.session(venue_id).sequencer

    def venues(self) -> list[VenueId]:
        with self._lock:
            return sorted(self._sessions)

    def release(self, venue_id: VenueId) -> bool:
        with self._lock:
            session = self._forget(venue_id)
        if session is None:
            return False
        session.close()
        return True

    def close(self) -> None:
        with self._lock:
            sessions = [self._forget(venue_id) for venue_id in list(self._sessions)]
        for session in sessions:
            if session is not None:
                self._close_quietly(session, reason="shutdown")

    def _forget(self, venue_id: VenueId) -> KitchenSession | None:
        self._venue_locks.pop(venue_id, None)
        self._last_used.pop(venue_id, None)
        return self._sessions.pop(venue_id, None)

    def _take_evictions(self, keep: VenueId) -> list[KitchenSession]:
        now = self._monotonic()
        victims = [
            venue_id
            for venue_id, last_used in self._last_used.items()
            if venue_id != keep and now - last_used > self._idle_timeout_seconds
        ]
        overflow = len(self._sessions) - len(victims) - self._max_sessions
        if overflow > 0:
            by_age = sorted(
                (last_used, venue_id)
                for venue_id, last_used in self._last_used.items()
                if venue_id != keep and venue_id not in victims
            )
            victims.extend(venue_id for _, venue_id in by_age[:overflow])

        evicted: list[KitchenSession] = []
        for venue_id in victims:
            session = self._forget(venue_id)
            if session is not None:
                evicted.append(session)
        return evicted

    def _close_quietly(self, session: KitchenSession, reason: str) -> None:
        try:
            session.close()
        except Exception:
            logger.exception(
                "kitchen_session_close_failed",
                extra={"venue_id": session.venue_id, "reason": reason},
            )
        else:
            logger.info(
                "kitchen_session_released",
                extra={"venue_id": session.venue_id, "reason": reason},
            )
