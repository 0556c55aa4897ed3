"""Event log — queryable, thread-safe event store.

Stores a bounded ring buffer of ``GustEvent`` objects for inspection.

Thread Safety:
    All methods are protected by a ``threading.Lock``. Responses on
    different worker threads may share one log.

"""

import threading
from collections import deque
from typing import Any

from gust.observability.events import GustEvent


class EventLog:
    """Bounded event store with query support.

    When the buffer is full, the oldest events are discarded automatically.

    Args:
        max_events: Maximum number of events to retain.

    """

    __slots__ = ("_events", "_lock", "_max_events")

    def __init__(self, max_events: int = 10_000) -> None:
        self._max_events = max_events
        self._events: deque[GustEvent] = deque(maxlen=max_events)
        self._lock = threading.Lock()

    def append(self, event: GustEvent) -> None:
        with self._lock:
            self._events.append(event)

    def query(
        self,
        *,
        event_type: type | None = None,
        since_ns: int = 0,
        event: str | None = None,
        limit: int = 100,
    ) -> list[GustEvent]:
        """Query events with optional filters.

        Args:
            event_type: Only return events of this type.
            since_ns: Only return events after this timestamp (nanoseconds).
            event: Only return ``PatchEmitted`` events with this wire name.
            limit: Maximum number of events to return.

        Returns:
            List of matching events, most recent first.

        """
        with self._lock:
            results: list[GustEvent] = []
            for item in reversed(self._events):
                if len(results) >= limit:
                    break
                if event_type is not None and not isinstance(item, event_type):
                    continue
                if since_ns and item.timestamp_ns < since_ns:
                    continue
                if event is not None and getattr(item, "event", None) != event:
                    continue
                results.append(item)
            return results

    def recent(self, n: int = 20) -> list[GustEvent]:
        """Return the N most recent events, oldest first."""
        with self._lock:
            items = list(self._events)
        return items[-n:]

    def clear(self) -> int:
        """Clear all events and return the count that was cleared."""
        with self._lock:
            count = len(self._events)
            self._events.clear()
            return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def stats(self) -> dict[str, Any]:
        """Return summary statistics about stored events."""
        with self._lock:
            events = list(self._events)

        type_counts: dict[str, int] = {}
        wire_counts: dict[str, int] = {}
        for item in events:
            name = type(item).__name__
            type_counts[name] = type_counts.get(name, 0) + 1
            wire = getattr(item, "event", None)
            if isinstance(wire, str):
                wire_counts[wire] = wire_counts.get(wire, 0) + 1

        return {
            "total": len(events),
            "max_events": self._max_events,
            "by_type": type_counts,
            "by_event": wire_counts,
        }
