"""Chirp integration — request scopes in, chirp responses out.

``gust_middleware()`` gives every request its own ``RequestScope`` (reached
through ``current_scope()`` inside handlers) and converts whatever gust
object a handler returns into a chirp response:

- ``PatchResponse`` / ``PatchRedirect`` are finalized first
- ``PatchBody`` becomes a plain ``Response``
- ``PatchStream`` becomes an ``EventStream`` fed by ``sse_events()``

Chirp is imported lazily so the core package works without it.
"""

from __future__ import annotations

import asyncio
import contextvars
import inspect
from collections.abc import Callable
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

from gust.encoder import parse_frames
from gust.redirect import PatchRedirect
from gust.request import PatchRequest, RequestScope
from gust.response import PatchBody, PatchResponse
from gust.stream import PatchStream
from gust.transport import QueueTransport

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from chirp.http.request import Request
    from chirp.middleware.protocol import Next

    from gust.config import GustConfig
    from gust.observability.collector import PatchCollector
    from gust.redirect import FlashSession
    from gust.render import TemplateRenderer

_current_scope: contextvars.ContextVar[RequestScope] = contextvars.ContextVar("gust_scope")


def current_scope() -> RequestScope:
    """The scope of the request being handled.

    Raises:
        LookupError: Outside a request handled by ``gust_middleware``.

    """
    return _current_scope.get()


async def _read_body(request: Request) -> bytes | str | None:
    body = getattr(request, "body", None)
    if callable(body):
        body = body()
    if inspect.isawaitable(body):
        body = await body
    return body


def _query_string(request: Request) -> str:
    raw = getattr(request, "query_string", None)
    if isinstance(raw, bytes):
        return raw.decode("latin-1")
    if isinstance(raw, str):
        return raw
    query = getattr(request, "query", None) or {}
    return urlencode(list(query.items()))


async def scope_from_chirp(
    request: Request,
    *,
    config: GustConfig | None = None,
    renderer: TemplateRenderer | None = None,
    session: FlashSession | None = None,
    collector: PatchCollector | None = None,
) -> RequestScope:
    """Build the per-request scope from a chirp request.

    The posted state is only read for push requests.
    """
    headers = dict(request.headers)
    patch_request = PatchRequest.from_headers(
        headers,
        path=request.path,
        query=_query_string(request),
        config=config,
    )
    if patch_request.is_push:
        patch_request = PatchRequest.from_headers(
            headers,
            await _read_body(request),
            path=patch_request.path,
            query=patch_request.query,
            config=config,
        )
    return RequestScope(
        patch_request,
        config=config,
        renderer=renderer,
        session=session,
        collector=collector,
    )


async def sse_events(stream: PatchStream) -> AsyncIterator[Any]:
    """Run ``stream`` and yield one chirp ``SSEEvent`` per flushed frame.

    The stream runs as its own task and hands frames over through a
    ``QueueTransport``. When the client goes away the transport is marked
    disconnected and the task is cancelled, so the producer stops at its
    next flush (or await).

    The end marker is queued whenever the task ends, even if it fails
    before streaming starts; that failure is re-raised here.
    """
    from chirp import SSEEvent

    transport = QueueTransport()
    task = asyncio.create_task(stream.arun(transport))
    task.add_done_callback(lambda _: transport.close())
    try:
        while (chunk := await transport.queue.get()) is not None:
            for frame in parse_frames(chunk):
                yield SSEEvent(
                    data="\n".join(frame.data),
                    event=frame.event,
                    id=frame.id,
                    retry=frame.retry,
                )
        await task
    finally:
        if not task.done():
            transport.disconnect()
            task.cancel()
        elif not task.cancelled():
            task.exception()


def to_chirp_response(result: Any) -> Any:
    """Convert a handler result into a chirp response (others pass through)."""
    if isinstance(result, (PatchResponse, PatchRedirect)):
        result = result.to_response()

    if isinstance(result, PatchStream):
        from chirp import EventStream

        return EventStream(sse_events(result))

    if isinstance(result, PatchBody):
        from chirp.http.response import Response

        headers = dict(result.headers)
        response = Response(
            body=result.body,
            status=result.status,
            content_type=headers.pop("Content-Type", "text/plain; charset=utf-8"),
        )
        for name, value in headers.items():
            response = response.with_header(name, value)
        return response

    return result


def gust_middleware(
    *,
    config: GustConfig | None = None,
    renderer: TemplateRenderer | None = None,
    session_factory: Callable[[Request], FlashSession | None] | None = None,
    collector: PatchCollector | None = None,
) -> Callable[[Request, Next], Any]:
    """Create chirp middleware that scopes a fresh ``PatchResponse`` per request.

    Args:
        config: Protocol configuration.
        renderer: Template renderer passed to every response.
        session_factory: Returns the flash session for a request.
        collector: Optional event collector shared by all responses.

    """

    async def middleware(request: Request, next: Next) -> Any:
        scope = await scope_from_chirp(
            request,
            config=config,
            renderer=renderer,
            session=session_factory(request) if session_factory is not None else None,
            collector=collector,
        )
        token = _current_scope.set(scope)
        try:
            result = await next(request)
        finally:
            _current_scope.reset(token)
        return to_chirp_response(result)

    return middleware
