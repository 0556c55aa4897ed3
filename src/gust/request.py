"""Request side of the protocol.

``PatchRequest`` is the narrow view of an inbound request the response
builder needs: is this a push request, what state did the browser send,
and which navigate keys are set. Framework glue builds it from raw headers
and body (see ``gust.server``); nothing here parses HTTP itself.

``RequestScope`` is the per-request holder that hands out exactly one
``PatchResponse``. Create one per inbound request; never share it.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from gust._errors import SerializationError
from gust.config import DEFAULT_CONFIG, GustConfig
from gust.navigation import NavigationKeyResolver

if TYPE_CHECKING:
    from gust._types import NavigateKey
    from gust.observability.collector import PatchCollector
    from gust.redirect import FlashSession
    from gust.render import TemplateRenderer
    from gust.response import PatchResponse

_MISSING = object()


def _lookup(data: Any, dotted: str) -> Any:
    current = data
    for part in dotted.split("."):
        if isinstance(current, Mapping):
            current = current.get(part, _MISSING)
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return _MISSING
        if current is _MISSING:
            return _MISSING
    return current


@dataclass(frozen=True, slots=True)
class PatchRequest:
    """What the builder knows about the inbound request.

    Attributes:
        headers: Request headers, keys lowercased.
        body_state: State document the browser runtime posted.
        path: Request path, without query string.
        query: Raw query string (no leading ``?``).
        host: Request host (``name[:port]``), used for same-origin checks.
        config: Protocol configuration (header names).

    """

    headers: Mapping[str, str] = field(default_factory=dict)
    body_state: Mapping[str, Any] = field(default_factory=dict)
    path: str = "/"
    query: str = ""
    host: str = ""
    config: GustConfig = DEFAULT_CONFIG

    @classmethod
    def from_headers(
        cls,
        headers: Mapping[str, str],
        body: bytes | str | Mapping[str, Any] | None = None,
        *,
        path: str = "/",
        query: str = "",
        host: str = "",
        config: GustConfig | None = None,
    ) -> PatchRequest:
        """Build a request from raw headers and the posted body.

        A bytes or str body is parsed as JSON; it must be an object.

        Raises:
            SerializationError: If the body is not a JSON object.

        """
        lowered = {k.lower(): v for k, v in headers.items()}
        return cls(
            headers=lowered,
            body_state=_parse_body(body),
            path=path or "/",
            query=query,
            host=host or lowered.get("host", ""),
            config=config or DEFAULT_CONFIG,
        )

    def header(self, name: str, default: str | None = None) -> str | None:
        return self.headers.get(name.lower(), default)

    @property
    def is_push(self) -> bool:
        """True when the browser runtime made this request."""
        value = self.header(self.config.request_header)
        return value is not None and value.strip().lower() not in ("", "false", "0")

    def state(self, key: str | None = None, default: Any = None) -> Any:
        """Posted state, or one value by dotted key (``form.email``, ``items.0``)."""
        if key is None:
            return dict(self.body_state)
        value = _lookup(self.body_state, key)
        return default if value is _MISSING else value

    def has_state(self, key: str) -> bool:
        return _lookup(self.body_state, key) is not _MISSING

    def navigate_key(self) -> NavigateKey | None:
        return NavigationKeyResolver(self.config).key(self.headers)

    def navigate_keys(self) -> tuple[NavigateKey, ...]:
        return NavigationKeyResolver(self.config).keys(self.headers)

    def is_navigate(self, key: NavigateKey | None = None) -> bool:
        """True for navigate requests; with ``key``, only when that key was sent."""
        return NavigationKeyResolver(self.config).is_navigate(self.headers, key)

    @property
    def url(self) -> str:
        return f"{self.path}?{self.query}" if self.query else self.path

    @property
    def referer(self) -> str | None:
        return self.header("referer")


def _parse_body(body: bytes | str | Mapping[str, Any] | None) -> dict[str, Any]:
    if body is None:
        return {}
    if isinstance(body, Mapping):
        return dict(body)
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    if not body.strip():
        return {}
    try:
        data = json.loads(body)
    except json.JSONDecodeError as exc:
        msg = f"Request state is not valid JSON: {exc}"
        raise SerializationError(msg) from exc
    if not isinstance(data, dict):
        msg = f"Request state must be a JSON object, got {type(data).__name__}"
        raise SerializationError(msg)
    return data


class RequestScope:
    """Per-request context: the request plus its collaborators.

    ``response`` is created on first access and then reused, so every
    handler and helper working on this request appends to the same log.
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
        self.config = config or (request.config if request is not None else DEFAULT_CONFIG)
        self.request = request
        self.renderer = renderer
        self.session = session
        self.collector = collector
        self._response: PatchResponse | None = None

    @property
    def response(self) -> PatchResponse:
        if self._response is None:
            from gust.response import PatchResponse

            self._response = PatchResponse(
                self.request,
                config=self.config,
                renderer=self.renderer,
                session=self.session,
                collector=self.collector,
            )
        return self._response
