"""Transports — where encoded frames go.

The stream controller only needs three things from a connection: write a
chunk, tell whether the peer is still there, and close it. Each transport
is owned by exactly one stream and written by one writer at a time.
"""

from __future__ import annotations

import asyncio
from typing import IO, Protocol, runtime_checkable


@runtime_checkable
class Transport(Protocol):
    """A one-directional push channel."""

    def send(self, chunk: str) -> None: ...

    def is_connected(self) -> bool: ...

    def close(self) -> None: ...


class BufferTransport:
    """Records every chunk in memory.

    Used for buffered bodies and in tests. ``disconnect_after`` simulates a
    peer that goes away after that many sends.
    """

    def __init__(self, *, disconnect_after: int | None = None) -> None:
        self.chunks: list[str] = []
        self.closed = False
        self._connected = True
        self._disconnect_after = disconnect_after

    @property
    def text(self) -> str:
        return "".join(self.chunks)

    def send(self, chunk: str) -> None:
        self.chunks.append(chunk)
        if self._disconnect_after is not None and len(self.chunks) >= self._disconnect_after:
            self._connected = False

    def is_connected(self) -> bool:
        return self._connected and not self.closed

    def disconnect(self) -> None:
        self._connected = False

    def close(self) -> None:
        self.closed = True


class WriterTransport:
    """Writes chunks to a file-like object and flushes after every write.

    A broken pipe marks the transport disconnected instead of raising, so
    the stream stops at its next liveness check.
    """

    def __init__(self, writer: IO[str], *, close_writer: bool = False) -> None:
        self._writer = writer
        self._close_writer = close_writer
        self._connected = True

    def send(self, chunk: str) -> None:
        try:
            self._writer.write(chunk)
            self._writer.flush()
        except (BrokenPipeError, ConnectionResetError):
            self._connected = False

    def is_connected(self) -> bool:
        return self._connected

    def close(self) -> None:
        self._connected = False
        if self._close_writer:
            self._writer.close()


class QueueTransport:
    """Bridges a stream to an async consumer through an ``asyncio.Queue``.

    Each chunk is queued as-is; ``close()`` queues ``None`` as the end marker.
    The consumer calls ``disconnect()`` when the client goes away.

    Created inside a running loop, the transport may be written from a
    worker thread: chunks are handed to the loop with
    ``call_soon_threadsafe`` and keep their order.
    """

    def __init__(self, queue: asyncio.Queue[str | None] | None = None) -> None:
        self.queue: asyncio.Queue[str | None] = queue if queue is not None else asyncio.Queue()
        self._connected = True
        self._closed = False
        try:
            self._loop: asyncio.AbstractEventLoop | None = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None

    def _put(self, item: str | None) -> None:
        if self._loop is None or _on_loop(self._loop):
            self.queue.put_nowait(item)
        else:
            self._loop.call_soon_threadsafe(self.queue.put_nowait, item)

    def send(self, chunk: str) -> None:
        self._put(chunk)

    def is_connected(self) -> bool:
        return self._connected

    def disconnect(self) -> None:
        self._connected = False

    def close(self) -> None:
        if not self._closed:
            self._closed = True
            self._put(None)


def _on_loop(loop: asyncio.AbstractEventLoop) -> bool:
    try:
        return asyncio.get_running_loop() is loop
    except RuntimeError:
        return False
