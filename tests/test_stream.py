"""Tests for gust.stream — live flushing, failures and disconnects."""

from __future__ import annotations

import asyncio
import time

import pytest

from gust._errors import AccumulatorClosed
from gust.config import GustConfig
from gust.encoder import decode_stream
from gust.observability import PatchCollector, PatchEmitted, StreamFinished
from gust.patches import PatchKind, make_state_merge
from gust.response import PatchResponse, ResponseState
from gust.stream import DiagnosticSink, PatchStream, StreamStop
from gust.transport import BufferTransport, QueueTransport
from tests.conftest import make_request

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _stream(producer, **kwargs) -> PatchStream:
    stream = PatchResponse(make_request(), **kwargs).stream(producer).to_response()
    assert isinstance(stream, PatchStream)
    return stream


def _decoded(transport: BufferTransport) -> list[list]:
    return [decode_stream(chunk) for chunk in transport.chunks]


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestFlushing:
    """Every append is flushed before the next one."""

    def test_one_flush_per_append(self) -> None:
        transport = BufferTransport()
        seen: list[int] = []

        def producer(response: PatchResponse) -> None:
            for step in range(3):
                response.state("step", step)
                seen.append(len(transport.chunks))

        result = _stream(producer).run(transport)
        assert seen == [1, 2, 3]
        assert _decoded(transport) == [[make_state_merge({"step": i})] for i in range(3)]
        assert result.outcome == "completed"
        assert result.flushed == 3

    def test_queued_operations_flush_first(self) -> None:
        response = PatchResponse(make_request()).state("before", 1)
        stream = response.stream(lambda r: r.state("during", 1)).to_response()
        transport = BufferTransport()
        stream.run(transport)
        assert _decoded(transport) == [
            [make_state_merge({"before": 1})],
            [make_state_merge({"during": 1})],
        ]

    def test_stream_headers(self) -> None:
        stream = _stream(lambda r: None)
        assert stream.status == 200
        assert stream.headers["Content-Type"] == "text/event-stream"

    def test_closes_response_and_transport(self) -> None:
        transport = BufferTransport()
        stream = _stream(lambda r: r.state("a", 1))
        stream.run(transport)
        assert transport.closed
        assert stream.response.phase is ResponseState.CLOSED
        with pytest.raises(AccumulatorClosed):
            stream.response.state("b", 2)

    def test_to_response_inside_producer(self) -> None:
        returned: list[object] = []
        stream = _stream(lambda r: returned.append(r.state("a", 1).to_response()))
        stream.run(BufferTransport())
        assert returned == [stream]

    def test_runs_once(self) -> None:
        stream = _stream(lambda r: None)
        stream.run(BufferTransport())
        with pytest.raises(AccumulatorClosed, match="already run"):
            stream.run(BufferTransport())

    def test_stream_twice_not_allowed_after_start(self) -> None:
        response = PatchResponse(make_request()).stream(lambda r: None)
        response.to_response()
        with pytest.raises(AccumulatorClosed):
            response.stream(lambda r: None)


class TestFailure:
    """An uncaught producer error becomes one error-page patch."""

    def test_step_then_one_diagnostic(self, capsys) -> None:
        def producer(response: PatchResponse) -> None:
            response.state("step", 1)
            raise ValueError("boom")

        transport = BufferTransport()
        result = _stream(producer).run(transport)

        first, second = _decoded(transport)
        assert first == [make_state_merge({"step": 1})]
        (diagnostic,) = second
        assert diagnostic.kind is PatchKind.EXECUTE_SCRIPT
        assert diagnostic.payload.startswith("document.open();document.write(")
        assert "ValueError" in diagnostic.payload
        assert "Traceback" not in diagnostic.payload
        assert result.outcome == "failed"
        assert isinstance(result.error, ValueError)
        assert transport.closed
        assert "stream failed: ValueError: boom" in capsys.readouterr().err

    def test_debug_page_has_trace(self) -> None:
        def producer(response: PatchResponse) -> None:
            raise RuntimeError("kaput")

        transport = BufferTransport()
        _stream(producer, config=GustConfig(debug=True)).run(transport)
        ((diagnostic,),) = _decoded(transport)
        assert "Traceback" in diagnostic.payload

    def test_nothing_rolled_back(self) -> None:
        def producer(response: PatchResponse) -> None:
            response.state("a", 1).state("b", 2)
            raise KeyError("x")

        transport = BufferTransport()
        _stream(producer).run(transport)
        assert len(transport.chunks) == 3


class TestStopping:
    """Disconnects and redirects stop the producer."""

    def test_disconnect_stops_producer(self, capsys) -> None:
        reached: list[int] = []

        def producer(response: PatchResponse) -> None:
            for step in range(5):
                response.state("step", step)
                reached.append(step)

        transport = BufferTransport(disconnect_after=1)
        result = _stream(producer).run(transport)
        assert result.outcome == "disconnected"
        assert len(transport.chunks) == 1
        assert reached == [0]
        assert "client disconnected" in capsys.readouterr().err

    def test_broad_except_does_not_swallow_stop(self) -> None:
        def producer(response: PatchResponse) -> None:
            for step in range(3):
                try:
                    response.state("step", step)
                except Exception:
                    pass

        transport = BufferTransport(disconnect_after=1)
        assert _stream(producer).run(transport).outcome == "disconnected"
        assert issubclass(StreamStop, BaseException)
        assert not issubclass(StreamStop, Exception)

    def test_no_error_page_after_disconnect(self) -> None:
        def producer(response: PatchResponse) -> None:
            response.state("a", 1)
            raise ValueError("late")

        transport = BufferTransport(disconnect_after=1)
        result = _stream(producer).run(transport)
        assert result.outcome == "failed"
        assert len(transport.chunks) == 1

    def test_redirect_is_last(self) -> None:
        def producer(response: PatchResponse) -> None:
            response.state("a", 1)
            response.redirect("/done").to_response()
            response.state("never", 1)

        transport = BufferTransport()
        result = _stream(producer).run(transport)
        assert result.outcome == "redirected"
        ops = [op for chunk in _decoded(transport) for op in chunk]
        assert len(ops) == 2
        assert ops[-1].payload == 'window.location.href = "/done"'


class TestDiagnostics:
    """Debug output between flushes."""

    def test_dump_flushed_before_next_patch(self) -> None:
        def producer(response: PatchResponse) -> None:
            response.diagnostics.dump("checkpoint", 1)
            response.state("a", 1)

        transport = BufferTransport()
        _stream(producer).run(transport)
        (dump,), (state,) = _decoded(transport)
        assert dump.payload == 'console.log("checkpoint",1);'
        assert state == make_state_merge({"a": 1})

    def test_printed_text_flushed_at_end(self) -> None:
        def producer(response: PatchResponse) -> None:
            response.state("a", 1)
            print("a < b", file=response.diagnostics)

        transport = BufferTransport()
        _stream(producer).run(transport)
        (output,) = _decoded(transport)[-1]
        assert output.kind is PatchKind.HTML_PATCH
        assert output.selector == "body"
        assert output.payload == '<pre class="gust-output">a &lt; b\n</pre>'


class TestDiagnosticSink:
    """DiagnosticSink — pending output bookkeeping."""

    def test_empty(self) -> None:
        sink = DiagnosticSink()
        assert not sink
        assert sink.take() == []

    def test_whitespace_only_text_dropped(self) -> None:
        sink = DiagnosticSink()
        sink.write("  \n")
        assert not sink
        assert sink.take() == []

    def test_order_kept(self) -> None:
        sink = DiagnosticSink()
        sink.write("first")
        sink.html("<div>second</div>")
        ops = sink.take()
        assert [op.payload for op in ops] == [
            '<pre class="gust-output">first</pre>',
            "<div>second</div>",
        ]
        assert not sink


class TestObservability:
    """Stream events recorded on the collector."""

    def test_events(self, collector: PatchCollector) -> None:
        stream = _stream(lambda r: r.state("a", 1).state("b", 2), collector=collector)
        stream.run(BufferTransport())
        emitted = collector.log.query(event_type=PatchEmitted)
        assert len(emitted) == 2
        assert all(e.delivery == "stream" for e in emitted)
        (finished,) = collector.log.query(event_type=StreamFinished)
        assert finished.outcome == "completed"
        assert finished.flushed == 2
        assert finished.error_type is None

    def test_failed_stream_error_type(self, collector: PatchCollector) -> None:
        def producer(response: PatchResponse) -> None:
            raise LookupError("nope")

        _stream(producer, collector=collector).run(BufferTransport())
        (finished,) = collector.log.query(event_type=StreamFinished)
        assert finished.outcome == "failed"
        assert finished.error_type == "LookupError"


class TestAsync:
    """arun with async producers."""

    def test_run_rejects_async_producer(self) -> None:
        async def producer(response: PatchResponse) -> None:
            response.state("a", 1)

        with pytest.raises(TypeError, match="arun"):
            _stream(producer).run(BufferTransport())

    @pytest.mark.asyncio
    async def test_async_producer(self) -> None:
        async def producer(response: PatchResponse) -> None:
            response.state("a", 1)
            await asyncio.sleep(0)
            response.state("b", 2)

        transport = BufferTransport()
        result = await _stream(producer).arun(transport)
        assert result.outcome == "completed"
        assert _decoded(transport) == [
            [make_state_merge({"a": 1})],
            [make_state_merge({"b": 2})],
        ]

    @pytest.mark.asyncio
    async def test_sync_producer_under_arun(self) -> None:
        transport = BufferTransport()
        result = await _stream(lambda r: r.state("a", 1)).arun(transport)
        assert result.flushed == 1

    @pytest.mark.asyncio
    async def test_cancellation_is_disconnect(self, collector: PatchCollector) -> None:
        started = asyncio.Event()

        async def producer(response: PatchResponse) -> None:
            response.state("a", 1)
            started.set()
            await asyncio.Event().wait()

        transport = BufferTransport()
        task = asyncio.create_task(_stream(producer, collector=collector).arun(transport))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert transport.closed
        (finished,) = collector.log.query(event_type=StreamFinished)
        assert finished.outcome == "disconnected"


class TestSyncProducerUnderArun:
    """Sync producers run off the event loop and flush frame by frame."""

    @pytest.mark.asyncio
    async def test_each_frame_arrives_before_next_delay_ends(self) -> None:
        def producer(response: PatchResponse) -> None:
            for step in range(3):
                response.state("step", step)
                time.sleep(0.2)

        transport = QueueTransport()
        started = time.perf_counter()
        task = asyncio.create_task(_stream(producer).arun(transport))
        arrivals: list[float] = []
        chunks: list[str] = []
        while (chunk := await transport.queue.get()) is not None:
            arrivals.append(time.perf_counter() - started)
            chunks.append(chunk)

        result = await task
        assert result.outcome == "completed"
        assert [decode_stream(chunk) for chunk in chunks] == [
            [make_state_merge({"step": i})] for i in range(3)
        ]
        for step, arrived in enumerate(arrivals):
            assert arrived < 0.2 * step + 0.15

    @pytest.mark.asyncio
    async def test_loop_keeps_running(self) -> None:
        ticks = 0

        async def ticker() -> None:
            nonlocal ticks
            while True:
                ticks += 1
                await asyncio.sleep(0.01)

        def producer(response: PatchResponse) -> None:
            response.state("a", 1)
            time.sleep(0.3)

        ticking = asyncio.create_task(ticker())
        try:
            await _stream(producer).arun(BufferTransport())
        finally:
            ticking.cancel()
        assert ticks > 5

    @pytest.mark.asyncio
    async def test_disconnect_seen_at_next_flush(self) -> None:
        reached: list[int] = []

        def producer(response: PatchResponse) -> None:
            for step in range(50):
                response.state("step", step)
                reached.append(step)
                time.sleep(0.05)

        transport = QueueTransport()
        task = asyncio.create_task(_stream(producer).arun(transport))
        assert await transport.queue.get() is not None
        transport.disconnect()

        result = await task
        assert result.outcome == "disconnected"
        assert len(reached) < 10

    @pytest.mark.asyncio
    async def test_cancel_waits_for_worker(self, collector: PatchCollector) -> None:
        reached: list[int] = []

        def producer(response: PatchResponse) -> None:
            for step in range(50):
                response.state("step", step)
                reached.append(step)
                time.sleep(0.05)

        transport = QueueTransport()
        task = asyncio.create_task(_stream(producer, collector=collector).arun(transport))
        await transport.queue.get()
        transport.disconnect()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        stopped_at = len(reached)
        await asyncio.sleep(0.15)
        assert len(reached) == stopped_at
        (finished,) = collector.log.query(event_type=StreamFinished)
        assert finished.outcome == "disconnected"


class TestRetention:
    """Streamed frames are not kept on the response."""

    def test_flushed_operations_not_logged(self) -> None:
        def producer(response: PatchResponse) -> None:
            for step in range(500):
                response.state("step", step)

        transport = BufferTransport()
        stream = _stream(producer)
        stream.run(transport)
        assert len(transport.chunks) == 500
        assert stream.response.operations == ()
        assert len(stream.response) == 0
        assert stream.response.streamed == 500

    def test_queued_operations_released_on_start(self) -> None:
        response = PatchResponse(make_request()).state("before", 1)
        stream = response.stream(lambda r: r.state("during", 1)).to_response()
        assert len(response) == 1
        stream.run(BufferTransport())
        assert len(response) == 0
        assert response.streamed == 1
