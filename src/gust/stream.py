"""Live streaming — flush every patch the moment it is appended.

``PatchResponse.stream(producer)`` followed by ``to_response()`` returns a
``PatchStream``. Running it against a transport:

1. flushes whatever the handler queued before streaming, in order
2. calls ``producer(response)``; each append is encoded and flushed at once
3. turns diagnostic output written to ``response.diagnostics`` into
   additional patches between flushes
4. converts an uncaught producer exception into one error-page patch
5. stops the producer right after a redirect has been flushed
6. closes the transport

Delivery is at most once per operation. Nothing already flushed is rolled
back when the producer fails.
"""

from __future__ import annotations

import asyncio
import inspect
import sys
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

from gust._errors import AccumulatorClosed, GustError
from gust.diagnostics import console_script, document_replace_script, render_error_page, wrap_output
from gust.encoder import EVENT_NAMES
from gust.patches import PatchKind, PatchOperation, make_execute_script, make_html_patch

if TYPE_CHECKING:
    from gust._types import Producer, StreamOutcome
    from gust.response import PatchResponse
    from gust.transport import Transport


class StreamStop(BaseException):
    """Ends a producer early.

    A ``BaseException`` so that broad ``except Exception`` blocks in
    producer code do not swallow it.
    """


class StreamRedirected(StreamStop):
    """A redirect was flushed; nothing may follow it."""


class StreamDisconnected(StreamStop):
    """The client went away before the next flush."""


class DiagnosticSink:
    """Side channel for debug output produced while building a response.

    ``dump()`` values are logged to the browser console; ``html()`` markup
    and plain ``write()`` text are appended to the page body. Pending
    output is turned into patches before the next flush and when the
    response ends, so it never lands inside another frame.

    The sink is file-like, so ``print(..., file=response.diagnostics)``
    works too.
    """

    def __init__(self) -> None:
        self._pending: list[PatchOperation] = []
        self._text: list[str] = []

    def _flush_text(self) -> None:
        text = "".join(self._text)
        self._text.clear()
        if text.strip():
            self._pending.append(_body_append(wrap_output(text)))

    def dump(self, *values: object) -> None:
        self._flush_text()
        self._pending.append(make_execute_script(console_script(values)))

    def html(self, markup: str) -> None:
        self._flush_text()
        self._pending.append(_body_append(wrap_output(markup)))

    def write(self, text: str) -> int:
        self._text.append(text)
        return len(text)

    def flush(self) -> None:
        pass

    def take(self) -> list[PatchOperation]:
        """Remove and return pending diagnostics as patch operations."""
        self._flush_text()
        pending, self._pending = self._pending, []
        return pending

    def __bool__(self) -> bool:
        return bool(self._pending) or any(t.strip() for t in self._text)


def _body_append(markup: str) -> PatchOperation:
    return make_html_patch(markup, {"selector": "body", "mode": "append"})


@dataclass(frozen=True, slots=True)
class StreamResult:
    """How a stream ended.

    Attributes:
        outcome: ``completed``, ``failed``, ``redirected`` or ``disconnected``.
        flushed: Number of frames written to the transport.
        error: The producer exception for failed streams.

    """

    outcome: StreamOutcome
    flushed: int
    error: Exception | None = None


class PatchStream:
    """Streams one response to one transport. Runs at most once."""

    def __init__(self, response: PatchResponse, producer: Producer) -> None:
        self.response = response
        self.producer = producer
        self.status = 200
        self.headers = response.config.sse_headers()
        self.flushed = 0
        self._transport: Transport | None = None
        self._started = False
        self._draining = False
        self._started_at = 0.0

    @property
    def active(self) -> bool:
        """True once ``run``/``arun`` has attached a transport."""
        return self._transport is not None

    # -- Hooks called by PatchResponse ----------------------------------------

    def deliver(self, op: PatchOperation, frame: str) -> None:
        """Flush one encoded operation. Before the stream runs this is a no-op."""
        if self._transport is None:
            return
        if not self._transport.is_connected():
            raise StreamDisconnected
        self._transport.send(frame)
        self.flushed += 1
        collector = self.response.collector
        if collector is not None:
            collector.record_patch(
                EVENT_NAMES[op.kind], op.kind.value, delivery="stream", size=len(frame)
            )
        if op.kind is PatchKind.REDIRECT:
            raise StreamRedirected

    def drain(self) -> None:
        """Append pending diagnostics ahead of the next operation."""
        if self._draining or self._transport is None:
            return
        self._draining = True
        try:
            for op in self.response.diagnostics.take():
                self.response.append_operation(op)
        finally:
            self._draining = False

    # -- Running ---------------------------------------------------------------

    def run(self, transport: Transport) -> StreamResult:
        """Stream with a synchronous producer, blocking until it ends."""
        if inspect.iscoroutinefunction(self.producer):
            msg = "Async producers must be run with 'await stream.arun(transport)'"
            raise TypeError(msg)
        self._claim(transport)
        outcome: StreamOutcome = "failed"
        error: Exception | None = None
        try:
            self._flush_queued()
            self.producer(self.response)
            self.drain()
            outcome = "completed"
        except StreamRedirected:
            outcome = "redirected"
        except StreamDisconnected:
            outcome = "disconnected"
        except Exception as exc:
            error = exc
            self._report(exc)
        finally:
            self._close(outcome, error)
        return StreamResult(outcome, self.flushed, error)

    async def arun(self, transport: Transport) -> StreamResult:
        """Stream with a sync or async producer.

        A sync producer runs in a worker thread, so the loop keeps serving
        other requests and each frame reaches the transport as it is
        flushed. The transport must accept sends from that thread
        (``QueueTransport`` does).

        Cancellation (the client went away) closes the stream as
        ``disconnected`` and is re-raised.
        """
        self._claim(transport)
        outcome: StreamOutcome = "failed"
        error: Exception | None = None
        try:
            self._flush_queued()
            await self._call_producer()
            self.drain()
            outcome = "completed"
        except StreamRedirected:
            outcome = "redirected"
        except StreamDisconnected:
            outcome = "disconnected"
        except asyncio.CancelledError:
            outcome = "disconnected"
            raise
        except Exception as exc:
            error = exc
            self._report(exc)
        finally:
            self._close(outcome, error)
        return StreamResult(outcome, self.flushed, error)

    # -- Internals ---------------------------------------------------------------

    async def _call_producer(self) -> None:
        if inspect.iscoroutinefunction(self.producer):
            await self.producer(self.response)
            return
        worker = asyncio.ensure_future(asyncio.to_thread(self.producer, self.response))
        try:
            result = await asyncio.shield(worker)
        except asyncio.CancelledError:
            # A thread cannot be interrupted; it stops at its next flush once
            # the transport reports the client gone.
            await asyncio.wait([worker])
            if not worker.cancelled():
                worker.exception()
            raise
        if inspect.isawaitable(result):
            await result

    def _claim(self, transport: Transport) -> None:
        if self._started:
            msg = "This stream has already run"
            raise AccumulatorClosed(msg)
        self._started = True
        self._started_at = time.perf_counter()
        self._transport = transport

    def _flush_queued(self) -> None:
        # Everything appended before streaming goes out first, in order
        for op, frame in self.response.take_queued():
            self.deliver(op, frame)
        self.drain()

    def _report(self, exc: Exception) -> None:
        """Replace the page with an error page describing ``exc``."""
        print(f"  gust: stream failed: {type(exc).__name__}: {exc}", file=sys.stderr)
        if self._transport is None or not self._transport.is_connected():
            return
        page = render_error_page(exc, debug=self.response.config.debug)
        try:
            self.response.append_operation(make_execute_script(document_replace_script(page)))
        except (GustError, OSError, StreamStop) as report_exc:
            print(f"  gust: could not send error page: {report_exc!r}", file=sys.stderr)

    def _close(self, outcome: StreamOutcome, error: Exception | None) -> None:
        self.response.close()
        if self._transport is not None:
            self._transport.close()
        if outcome == "disconnected":
            print("  gust: client disconnected, stream stopped", file=sys.stderr)
        collector = self.response.collector
        if collector is not None:
            collector.record_stream(
                outcome,
                flushed=self.flushed,
                duration_ms=(time.perf_counter() - self._started_at) * 1000,
                error_type=type(error).__name__ if error is not None else None,
            )
