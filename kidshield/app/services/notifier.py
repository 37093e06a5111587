"""Blocked-domain notifications.

Every DNS query answered by the sinkhole emits a BlockedDomainEvent
`{domain, timestamp: "HH:MM:SS"}`. Delivery is best effort: listener
failures are logged and never reach the packet loop. The most recent
events are kept in a bounded history for the control API.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable
from datetime import datetime

from app.models.sinkhole import BlockedDomainEvent

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 100

BlockedDomainListener = Callable[[BlockedDomainEvent], None]


class BlockedDomainNotifier:
    """Fan-out of blocked-domain events to registered listeners."""

    def __init__(self, history_size: int = DEFAULT_HISTORY_SIZE) -> None:
        self._listeners: list[BlockedDomainListener] = []
        self._history: deque[BlockedDomainEvent] = deque(maxlen=history_size)
        self._lock = threading.Lock()

    def subscribe(self, listener: BlockedDomainListener) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def unsubscribe(self, listener: BlockedDomainListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def emit(self, domain: str, when: datetime | None = None) -> BlockedDomainEvent:
        """Record and deliver one blocked-domain event."""
        event = BlockedDomainEvent(
            domain=domain,
            timestamp=(when or datetime.now()).strftime("%H:%M:%S"),
        )
        with self._lock:
            self._history.append(event)
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                logger.warning(f"Blocked-domain listener failed (domain={domain}, error={e})")
        return event

    def recent(self, limit: int | None = None) -> list[BlockedDomainEvent]:
        """Most recent events, newest first. A negative limit returns none."""
        with self._lock:
            events = list(self._history)
        events.reverse()
        return events[:max(limit, 0)] if limit is not None else events

    def clear(self) -> None:
        with self._lock:
            self._history.clear()
