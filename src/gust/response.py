"""The response builder — one ordered log of patch operations per request.

Handlers call fluent mutators (``state``, ``html``, ``view``, ``navigate``,
``dispatch`` ...). Each call builds one operation, encodes it, and only
then appends it, so a failed call leaves the log untouched. The log is
finalized either into one buffered body (``to_response()``) or into a
live ``PatchStream`` (``stream(producer)`` then ``to_response()``).

Lifecycle::

    building --to_response()--> finalizing --> closed
    building --stream() + to_response()--> streaming --run()--> closed

A ``PatchResponse`` belongs to exactly one request. Create it through
``RequestScope`` (or directly) per request; never cache or share it.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from gust._errors import AccumulatorClosed, InvalidOption, NavigationError
from gust.config import DEFAULT_CONFIG, GustConfig
from gust.encoder import EVENT_NAMES, KEEPALIVE, encode_frame
from gust.navigation import ComponentTargetResolver, url_with_query, validate_navigate_url
from gust.patches import (
    PatchOperation,
    PatchMode,
    make_component_method,
    make_component_state,
    make_custom_event,
    make_execute_script,
    make_fragment_render,
    make_html_patch,
    make_navigate,
    make_redirect,
    make_state_forget,
    make_state_merge,
    make_view_render,
)
from gust.redirect import PatchRedirect
from gust.render import render_view
from gust.stream import DiagnosticSink, PatchStream

if TYPE_CHECKING:
    from gust._errors import ValidationFailed
    from gust._types import NavigateKey, Producer, Selector
    from gust.observability.collector import PatchCollector
    from gust.redirect import FlashSession
    from gust.render import TemplateRenderer
    from gust.request import PatchRequest

type Condition = bool | Callable[[PatchResponse], Any]
type Branch = Callable[[PatchResponse], Any]


class ResponseState(StrEnum):
    BUILDING = "building"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    CLOSED = "closed"


@dataclass(frozen=True, slots=True)
class PatchBody:
    """A complete, buffered HTTP response.

    Attributes:
        status: HTTP status code.
        headers: Response headers.
        body: Response body text.

    """

    status: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: str = ""

    @property
    def content_type(self) -> str | None:
        return self.headers.get("Content-Type")


def _html_body(content: str) -> PatchBody:
    return PatchBody(status=200, headers={"Content-Type": "text/html; charset=utf-8"}, body=content)


class PatchResponse:
    """Accumulates patch operations for one request.

    Args:
        request: The inbound request; None means a push request with no
            posted state (useful in tests and background jobs).
        config: Protocol configuration (defaults to the request's).
        renderer: Template renderer for ``view``/``fragment``.
        session: Flash session for redirects.
        collector: Optional event collector.

    """

    def __init__(
        self,
        request: PatchRequest | None = None,
        *,
        config: GustConfig | None = None,
        renderer: TemplateRenderer | None = None,
        session: FlashSession | None = None,
        collector: PatchCollector | None = None,
    ) -> None:
        self.request = request
        self.config = config or (request.config if request is not None else DEFAULT_CONFIG)
        self.renderer = renderer
        self.session = session
        self.collector = collector
        self.diagnostics = DiagnosticSink()
        self.components = ComponentTargetResolver()

        self._log: list[tuple[PatchOperation, str]] = []
        self._streamed = 0
        self._phase = ResponseState.BUILDING
        self._stream: PatchStream | None = None
        self._producer: Producer | None = None
        self._fallback: Any = None
        self._pending_redirect: PatchRedirect | None = None
        self._navigated = False
        self._event_id: str | None = None
        self._retry_ms: int | None = self.config.retry_ms

    # -- Introspection -------------------------------------------------------

    @property
    def phase(self) -> ResponseState:
        return self._phase

    @property
    def is_push(self) -> bool:
        return self.request is None or self.request.is_push

    @property
    def operations(self) -> tuple[PatchOperation, ...]:
        """Snapshot of the operation log, in append order.

        Operations already flushed to a running stream are not included.
        """
        return tuple(op for op, _ in self._log)

    @property
    def frames(self) -> tuple[str, ...]:
        """Encoded frame for each logged operation."""
        return tuple(frame for _, frame in self._log)

    def take_queued(self) -> list[tuple[PatchOperation, str]]:
        """Remove and return the operations waiting for a stream to start."""
        queued, self._log = self._log, []
        return queued

    @property
    def streamed(self) -> int:
        """Operations delivered straight to a running stream (not logged)."""
        return self._streamed

    def __len__(self) -> int:
        return len(self._log)

    # -- Core append -----------------------------------------------------------

    def _check_open(self) -> None:
        if self._phase in (ResponseState.FINALIZING, ResponseState.CLOSED):
            msg = f"Response is {self._phase.value}; no further patches can be added"
            raise AccumulatorClosed(msg)

    def append_operation(self, op: PatchOperation) -> PatchResponse:
        """Encode ``op`` and append it (flushing it when streaming).

        Once a stream is running, frames go straight to its transport and
        are not kept, so a long-running producer holds no history.
        Non-push requests ignore operations, since their answer is the
        ``web()`` fallback.
        """
        self._check_open()
        if not self.is_push:
            return self
        if self._stream is not None:
            self._stream.drain()
        frame = encode_frame(op, event_id=self._event_id, retry_ms=self._retry_ms)
        if self._stream is not None and self._stream.active:
            self._stream.deliver(op, frame)
            self._streamed += 1
        else:
            self._log.append((op, frame))
        return self

    def _append_all(self, ops: Iterable[PatchOperation]) -> PatchResponse:
        for op in ops:
            self.append_operation(op)
        return self

    def close(self) -> None:
        self._phase = ResponseState.CLOSED

    # -- State ---------------------------------------------------------------------

    def state(
        self,
        key: str | Mapping[str, Any],
        value: Any = None,
        *,
        only_if_missing: bool = False,
    ) -> PatchResponse:
        """Merge into the client store: ``state("count", 1)`` or ``state({...})``."""
        patch = dict(key) if isinstance(key, Mapping) else {key: value}
        return self.append_operation(make_state_merge(patch, only_if_missing=only_if_missing))

    def forget(self, keys: str | Iterable[str] | Mapping[str, Any] | None = None) -> PatchResponse:
        """Delete keys from the client store.

        The reserved messages key is reset to an empty mapping instead.
        ``None`` is a no-op: the server does not know which keys exist.
        """
        if keys is None:
            self._check_open()
            return self
        names = [keys] if isinstance(keys, str) else [str(k) for k in keys]
        op = make_state_forget(names, reset_to_empty=(self.config.messages_key,))
        return self.append_operation(op)

    def messages(self, messages: Mapping[str, Any]) -> PatchResponse:
        return self.state(self.config.messages_key, dict(messages))

    def clear_messages(self) -> PatchResponse:
        return self.forget(self.config.messages_key)

    def reject(self, failure: ValidationFailed) -> PatchResponse:
        """Send a validation failure's field messages."""
        return self.messages(failure.messages)

    # -- Elements ------------------------------------------------------------------

    def html(self, selector: Selector | None, content: str, *, web: bool = False, **options: Any) -> PatchResponse:
        """Patch ``content`` into ``selector`` (mode defaults to ``morph``).

        With ``selector=None`` the runtime matches top-level elements of
        ``content`` by id. ``web=True`` also makes ``content`` the page
        returned to non-push requests.
        """
        if web:
            self.web(_html_body(content))
        if selector is not None:
            options["selector"] = selector
        return self.append_operation(make_html_patch(content, options))

    def _with_mode(self, mode: PatchMode, selector: str | None, content: str, options: dict[str, Any]) -> PatchResponse:
        if "mode" in options:
            msg = f"{mode.value}() does not accept a mode option"
            raise InvalidOption(msg)
        return self.html(selector, content, mode=mode, **options)

    def morph(self, selector: str | None, content: str, **options: Any) -> PatchResponse:
        return self._with_mode(PatchMode.MORPH, selector, content, options)

    def inner(self, selector: str, content: str, **options: Any) -> PatchResponse:
        return self._with_mode(PatchMode.INNER, selector, content, options)

    def outer(self, selector: str, content: str, **options: Any) -> PatchResponse:
        return self._with_mode(PatchMode.OUTER, selector, content, options)

    def replace(self, selector: str, content: str, **options: Any) -> PatchResponse:
        return self._with_mode(PatchMode.REPLACE, selector, content, options)

    def append(self, selector: str, content: str, **options: Any) -> PatchResponse:
        return self._with_mode(PatchMode.APPEND, selector, content, options)

    def prepend(self, selector: str, content: str, **options: Any) -> PatchResponse:
        return self._with_mode(PatchMode.PREPEND, selector, content, options)

    def before(self, selector: str, content: str, **options: Any) -> PatchResponse:
        return self._with_mode(PatchMode.BEFORE, selector, content, options)

    def after(self, selector: str, content: str, **options: Any) -> PatchResponse:
        return self._with_mode(PatchMode.AFTER, selector, content, options)

    def remove(self, selector: str) -> PatchResponse:
        return self.append_operation(
            make_html_patch("", {"selector": selector, "mode": PatchMode.REMOVE})
        )

    def component(self, name: str, content: str, mode: str = "morph", **options: Any) -> PatchResponse:
        """Patch the element of the named client component."""
        return self.html(self.components.selector(name), content, mode=mode, **options)

    # -- Templates ---------------------------------------------------------------

    def view(
        self,
        name: str,
        data: Mapping[str, Any] | None = None,
        *,
        web: bool = False,
        **options: Any,
    ) -> PatchResponse:
        """Render a whole view and patch it in like ``html()``.

        Non-push requests skip the render. With ``web=True`` they get the
        rendered view as their page instead (rendered on finalize).
        """
        self._check_open()
        if web:
            self.web(lambda: _html_body(render_view(self.renderer, name, data)))
        if not self.is_push:
            return self
        content = render_view(self.renderer, name, data)
        return self.append_operation(make_view_render(content, name, options))

    def fragment(
        self,
        view: str,
        fragment: str,
        data: Mapping[str, Any] | None = None,
        **options: Any,
    ) -> PatchResponse:
        """Render one named fragment (template block) of a view."""
        self._check_open()
        if not self.is_push:
            return self
        content = render_view(self.renderer, view, data, fragment=fragment)
        return self.append_operation(make_fragment_render(content, view, fragment, options))

    def fragments(self, specs: Iterable[Mapping[str, Any]]) -> PatchResponse:
        """Render several fragments; all render before any is appended.

        Each spec has ``view`` and ``fragment`` and optional ``data`` and
        ``options``.
        """
        self._check_open()
        if not self.is_push:
            return self
        ops: list[PatchOperation] = []
        for spec in specs:
            try:
                view, fragment = spec["view"], spec["fragment"]
            except KeyError as exc:
                msg = f"Fragment spec is missing {exc.args[0]!r}: {spec!r}"
                raise InvalidOption(msg) from None
            content = render_view(self.renderer, view, spec.get("data"), fragment=fragment)
            ops.append(make_fragment_render(content, view, fragment, spec.get("options")))
        return self._append_all(ops)

    # -- Components ----------------------------------------------------------------

    def component_state(
        self,
        name: str,
        state: Mapping[str, Any],
        *,
        only_if_missing: bool = False,
    ) -> PatchResponse:
        return self.append_operation(
            make_component_state(name, state, only_if_missing=only_if_missing)
        )

    def component_method(self, name: str, method: str, args: Iterable[Any] = ()) -> PatchResponse:
        return self.append_operation(make_component_method(name, method, args))

    # -- Navigation ----------------------------------------------------------------

    def _path(self) -> str:
        return self.request.path if self.request is not None else "/"

    def _host(self) -> str:
        return self.request.host if self.request is not None else ""

    def navigate(
        self,
        url: str | Mapping[str, Any],
        key: NavigateKey = "true",
        *,
        merge_query: bool | None = None,
        only: Iterable[str] | None = None,
        except_: Iterable[str] | None = None,
        replace: bool = False,
    ) -> PatchResponse:
        """Client-side navigation (no full page load).

        ``url`` may be a mapping of query parameters, which targets the
        current path. Only one navigate is allowed per response. Non-push
        requests ignore it.

        Raises:
            NavigationError: For cross-origin URLs or a second navigate.

        """
        self._check_open()
        if not self.is_push:
            return self
        if isinstance(url, Mapping):
            url = url_with_query(self._path(), url)
        url = validate_navigate_url(url, self._host())
        if self._navigated:
            msg = "Only one navigate() is allowed per response"
            raise NavigationError(msg)
        op = make_navigate(
            url,
            key=key,
            merge_query=merge_query,
            only=only,
            except_=except_,
            replace=replace,
        )
        self.append_operation(op)
        self._navigated = True
        return self

    def navigate_merge(self, url: str | Mapping[str, Any], key: str = "true", **options: Any) -> PatchResponse:
        """Navigate keeping the browser's current query parameters."""
        return self.navigate(url, key, merge_query=True, **options)

    def navigate_clean(self, url: str | Mapping[str, Any], key: str = "true", **options: Any) -> PatchResponse:
        """Navigate dropping the browser's current query parameters."""
        return self.navigate(url, key, merge_query=False, **options)

    def navigate_only(self, url: str | Mapping[str, Any], only: Iterable[str], key: str = "true") -> PatchResponse:
        return self.navigate(url, key, merge_query=True, only=only)

    def navigate_except(self, url: str | Mapping[str, Any], except_: Iterable[str], key: str = "true") -> PatchResponse:
        return self.navigate(url, key, merge_query=True, except_=except_)

    def navigate_replace(self, url: str | Mapping[str, Any], key: str = "true", **options: Any) -> PatchResponse:
        """Navigate replacing the current history entry."""
        return self.navigate(url, key, replace=True, **options)

    def update_queries(self, queries: Mapping[str, Any], key: str = "filters", *, merge: bool = True) -> PatchResponse:
        """Set query parameters on the current page.

        Parameters set to None or "" are removed from the browser's query.
        """
        removed = [name for name, value in queries.items() if value is None or value == ""]
        return self.navigate(queries, key, merge_query=merge, except_=removed or None)

    def clear_queries(self, names: Iterable[str], key: str = "clear") -> PatchResponse:
        """Remove query parameters from the current page, keeping the rest."""
        return self.navigate(self._path(), key, merge_query=True, except_=list(names))

    # -- Events and scripts --------------------------------------------------------

    def dispatch(
        self,
        name: str,
        detail: Any = None,
        *,
        selector: str | None = None,
        window: bool | None = None,
        bubbles: bool = True,
        cancelable: bool = True,
        composed: bool = True,
    ) -> PatchResponse:
        """Dispatch a ``CustomEvent`` on window, or on each selector match."""
        return self.append_operation(
            make_custom_event(
                name,
                detail,
                selector=selector,
                window=window,
                bubbles=bubbles,
                cancelable=cancelable,
                composed=composed,
            )
        )

    def js(
        self,
        script: str,
        *,
        auto_remove: bool = True,
        attributes: Mapping[str, str] | None = None,
    ) -> PatchResponse:
        return self.append_operation(
            make_execute_script(script, auto_remove=auto_remove, attributes=attributes)
        )

    def reload(self) -> PatchResponse:
        return self.js("window.location.reload()")

    # -- Redirects -------------------------------------------------------------------

    def redirect(self, url: str | None = None) -> PatchRedirect:
        """Start a full-page redirect; finish it with ``.to_response()``."""
        self._check_open()
        return PatchRedirect(self, url)

    def emit_redirect(self, url: str) -> PatchBody | PatchStream:
        """Append the redirect patch and finalize.

        While streaming, the append flushes the redirect and stops the
        producer, so this never returns there.
        """
        self.append_operation(make_redirect(url))
        return self.to_response()

    # -- Control flow -----------------------------------------------------------------

    def when(self, condition: Condition, then: Branch, otherwise: Branch | None = None) -> PatchResponse:
        """Run ``then(self)`` if ``condition`` holds, else ``otherwise(self)``.

        A ``PatchRedirect`` returned by the branch becomes the pending
        redirect, which takes precedence in ``to_response()``.
        """
        result = condition(self) if callable(condition) else condition
        branch = then if result else otherwise
        if branch is not None:
            outcome = branch(self)
            if isinstance(outcome, PatchRedirect):
                self._pending_redirect = outcome
        return self

    def unless(self, condition: Condition, then: Branch, otherwise: Branch | None = None) -> PatchResponse:
        if callable(condition):
            return self.when(lambda response: not condition(response), then, otherwise)
        return self.when(not condition, then, otherwise)

    def when_push(self, then: Branch, otherwise: Branch | None = None) -> PatchResponse:
        return self.when(self.is_push, then, otherwise)

    def when_not_push(self, then: Branch, otherwise: Branch | None = None) -> PatchResponse:
        return self.when(not self.is_push, then, otherwise)

    def when_navigate(
        self,
        key: str | Branch | None = None,
        then: Branch | None = None,
        otherwise: Branch | None = None,
    ) -> PatchResponse:
        """Run ``then`` for navigate requests (for ``key``, when given).

        ``when_navigate(callback)`` is shorthand for any navigate request.
        """
        if callable(key):
            key, then, otherwise = None, key, then
        navigating = self.request is not None and self.request.is_navigate(key)
        if then is None:
            return self
        return self.when(navigating, then, otherwise)

    def web(self, fallback: Any) -> PatchResponse:
        """Response for non-push requests (a callable is called on finalize)."""
        self._fallback = fallback
        return self

    # -- Frame options -------------------------------------------------------------------

    def with_event_id(self, event_id: str) -> PatchResponse:
        """Set the SSE ``id:`` for frames appended from now on."""
        if "\n" in event_id or "\r" in event_id:
            msg = "event id must be a single line"
            raise InvalidOption(msg)
        self._event_id = event_id
        return self

    def with_retry(self, milliseconds: int) -> PatchResponse:
        """Set the SSE ``retry:`` for frames appended from now on."""
        if isinstance(milliseconds, bool) or not isinstance(milliseconds, int) or milliseconds < 0:
            msg = f"retry must be a non-negative integer, got {milliseconds!r}"
            raise InvalidOption(msg)
        self._retry_ms = milliseconds
        return self

    # -- Finalize -------------------------------------------------------------------------

    def stream(self, producer: Producer) -> PatchResponse:
        """Finalize as a live stream driven by ``producer(response)``."""
        self._check_open()
        if self._phase is not ResponseState.BUILDING:
            msg = "stream() was already called for this response"
            raise AccumulatorClosed(msg)
        self._producer = producer
        return self

    def to_response(self) -> Any:
        """Finalize the response.

        Returns a ``PatchBody`` for buffered push responses, a ``PatchStream``
        when a producer was set, the pending redirect's response when a
        ``when()`` branch returned one, and the ``web()`` fallback (or an
        empty 204) for non-push requests. Called from inside a producer it
        returns the running stream.
        """
        if self._phase is ResponseState.STREAMING and self._stream is not None:
            return self._stream
        self._check_open()

        if self._pending_redirect is not None:
            pending, self._pending_redirect = self._pending_redirect, None
            return pending.to_response()

        if not self.is_push:
            self._phase = ResponseState.CLOSED
            if self.collector is not None:
                self.collector.record_finalize(events=0, size=0, push=False)
            if self._fallback is None:
                return PatchBody(status=204)
            return self._fallback() if callable(self._fallback) else self._fallback

        if self._producer is not None:
            self._phase = ResponseState.STREAMING
            self._stream = PatchStream(self, self._producer)
            return self._stream

        for op in self.diagnostics.take():
            self.append_operation(op)
        self._phase = ResponseState.FINALIZING
        body = (KEEPALIVE if self.config.keepalive else "") + "".join(self.frames)
        if self.collector is not None:
            for op, frame in self._log:
                self.collector.record_patch(
                    EVENT_NAMES[op.kind], op.kind.value, delivery="buffered", size=len(frame)
                )
            self.collector.record_finalize(events=len(self._log), size=len(body))
        self._phase = ResponseState.CLOSED
        return PatchBody(status=200, headers=self.config.sse_headers(), body=body)
