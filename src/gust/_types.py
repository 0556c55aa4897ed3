"""Shared type definitions for gust."""

from collections.abc import Awaitable, Callable, Mapping
from typing import TYPE_CHECKING, Any, Literal

if TYPE_CHECKING:
    from gust.response import PatchResponse

# JSON-compatible value carried in state payloads
type JSONValue = None | bool | int | float | str | list[Any] | dict[str, Any]

# RFC 7386 merge patch document
type MergePatch = Mapping[str, Any]

# CSS selector targeting DOM elements
type Selector = str

# Navigate key sent back by the browser runtime (e.g. "filters", "sidebar")
type NavigateKey = str

# How a frame reached the client
type Delivery = Literal["buffered", "stream"]

# Terminal state of a streamed response
type StreamOutcome = Literal["completed", "failed", "redirected", "disconnected"]

# Caller-supplied stream body; may be sync or async
type Producer = Callable[[PatchResponse], None | Awaitable[None]]
