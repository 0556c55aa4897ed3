"""Event model for patch delivery.

Records what each response put on the wire, so a running app (or a test)
can inspect emitted frames and stream outcomes without parsing output.

All events are frozen dataclasses with:
- ``timestamp_ns``: Monotonic nanosecond timestamp
- Descriptive fields for the specific event type

Thread Safety:
    All events are frozen (immutable) and safe to share across threads.

"""

import time
from dataclasses import dataclass

from gust._types import Delivery, StreamOutcome


@dataclass(frozen=True, slots=True)
class PatchEmitted:
    """One patch operation was encoded into a frame.

    Attributes:
        event: Wire event name (``state-patch``, ``elements-patch``, ...).
        kind: Patch kind value.
        delivery: ``buffered`` when queued for a single body, ``stream``
            when flushed to a live transport.
        size: Frame size in characters.
        timestamp_ns: Monotonic nanosecond timestamp.

    """

    event: str
    kind: str
    delivery: Delivery
    size: int
    timestamp_ns: int


@dataclass(frozen=True, slots=True)
class ResponseFinalized:
    """A response was turned into a single buffered body.

    Attributes:
        events: Number of frames in the body.
        size: Body size in characters.
        push: False when the request was not a push request (fallback used).
        timestamp_ns: Monotonic nanosecond timestamp.

    """

    events: int
    size: int
    push: bool
    timestamp_ns: int


@dataclass(frozen=True, slots=True)
class StreamFinished:
    """A live stream ended.

    Attributes:
        outcome: How it ended.
        flushed: Number of frames written to the transport.
        duration_ms: Wall time from start to close.
        error_type: Exception class name for failed streams.
        timestamp_ns: Monotonic nanosecond timestamp.

    """

    outcome: StreamOutcome
    flushed: int
    duration_ms: float
    error_type: str | None
    timestamp_ns: int


type GustEvent = PatchEmitted | ResponseFinalized | StreamFinished


def now_ns() -> int:
    """Return the current monotonic clock value in nanoseconds."""
    return time.monotonic_ns()
