"""Patch delivery observability.

Every frame a response emits and every stream outcome can be recorded as a
frozen event with a nanosecond timestamp.

Quick Start:
    >>> from gust.observability import EventLog, PatchCollector
    >>> collector = PatchCollector(EventLog())
    >>> # PatchResponse(request, collector=collector)
    >>> # collector.log.query(event="state-patch")

"""

from gust.observability.collector import PatchCollector
from gust.observability.events import (
    GustEvent,
    PatchEmitted,
    ResponseFinalized,
    StreamFinished,
    now_ns,
)
from gust.observability.log import EventLog

__all__ = [
    "EventLog",
    "GustEvent",
    "PatchCollector",
    "PatchEmitted",
    "ResponseFinalized",
    "StreamFinished",
    "now_ns",
]
