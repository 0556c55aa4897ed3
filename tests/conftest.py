"""Shared test fixtures for gust."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import pytest

from gust.config import GustConfig
from gust.observability import EventLog, PatchCollector
from gust.request import PatchRequest
from gust.response import PatchResponse

PUSH_HEADERS = {"Gust-Request": "true", "Host": "example.com"}


@pytest.fixture
def push_request() -> PatchRequest:
    """A push request for ``/items?page=2`` on example.com."""
    return PatchRequest.from_headers(PUSH_HEADERS, path="/items", query="page=2")


@pytest.fixture
def plain_request() -> PatchRequest:
    """A regular (non-push) browser request."""
    return PatchRequest.from_headers({"Host": "example.com"}, path="/items")


@pytest.fixture
def response(push_request: PatchRequest) -> PatchResponse:
    return PatchResponse(push_request)


@pytest.fixture
def collector() -> PatchCollector:
    return PatchCollector(EventLog())


@pytest.fixture
def debug_config() -> GustConfig:
    return GustConfig(debug=True)


class FakeRenderer:
    """Template renderer returning canned markup; records calls."""

    def __init__(self, templates: Mapping[str, str] | None = None) -> None:
        self.templates = dict(templates or {})
        self.calls: list[tuple[str, str | None, dict[str, Any]]] = []

    def render(self, view: str, context: Mapping[str, Any]) -> str:
        self.calls.append((view, None, dict(context)))
        return self.templates[view].format(**context)

    def render_fragment(self, view: str, fragment: str, context: Mapping[str, Any]) -> str:
        self.calls.append((view, fragment, dict(context)))
        return self.templates[f"{view}#{fragment}"].format(**context)


class FakeSession:
    """Flash session recording flashed values."""

    def __init__(self, intended: str | None = None) -> None:
        self.flashed: dict[str, Any] = {}
        self.intended = intended

    def flash(self, key: str, value: Any) -> None:
        self.flashed[key] = value

    def pull_intended(self, default: str) -> str:
        url, self.intended = self.intended, None
        return url if url is not None else default


def make_request(
    headers: Mapping[str, str] | None = None,
    body: Any = None,
    *,
    path: str = "/",
    query: str = "",
    push: bool = True,
) -> PatchRequest:
    """Build a request on example.com; push requests get the request header."""
    merged = {"Host": "example.com", **(headers or {})}
    if push:
        merged.setdefault("Gust-Request", "true")
    return PatchRequest.from_headers(merged, body, path=path, query=query)
