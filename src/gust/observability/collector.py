"""Patch collector — records delivery events into an ``EventLog``.

Responses and streams call the ``record_*`` methods; passing no collector
disables recording entirely.

Thread Safety:
    The collector delegates to ``EventLog`` which is internally locked.

"""

from __future__ import annotations

from typing import TYPE_CHECKING

from gust.observability.events import (
    PatchEmitted,
    ResponseFinalized,
    StreamFinished,
    now_ns,
)
from gust.observability.log import EventLog

if TYPE_CHECKING:
    from gust._types import Delivery, StreamOutcome


class PatchCollector:
    """Collects patch delivery events.

    Args:
        log: The EventLog to store events in.

    """

    __slots__ = ("_log",)

    def __init__(self, log: EventLog | None = None) -> None:
        self._log = log if log is not None else EventLog()

    @property
    def log(self) -> EventLog:
        """The underlying event log."""
        return self._log

    def record_patch(self, event: str, kind: str, *, delivery: Delivery, size: int) -> None:
        self._log.append(
            PatchEmitted(
                event=event,
                kind=kind,
                delivery=delivery,
                size=size,
                timestamp_ns=now_ns(),
            )
        )

    def record_finalize(self, *, events: int, size: int, push: bool = True) -> None:
        """Record a buffered body (or a non-push fallback) being produced."""
        self._log.append(
            ResponseFinalized(events=events, size=size, push=push, timestamp_ns=now_ns())
        )

    def record_stream(
        self,
        outcome: StreamOutcome,
        *,
        flushed: int = 0,
        duration_ms: float = 0.0,
        error_type: str | None = None,
    ) -> None:
        """Record the end of a live stream."""
        self._log.append(
            StreamFinished(
                outcome=outcome,
                flushed=flushed,
                duration_ms=duration_ms,
                error_type=error_type,
                timestamp_ns=now_ns(),
            )
        )
