"""Push-event wire format — one SSE frame per patch operation.

Frame layout::

    event: <event-name>
    data: <option> <value>          (zero or more, fixed order per kind)
    data: <payload-key> <line>      (one or more)
    <blank line>

The event-name table is the contract with the browser runtime and never
changes meaning. Option lines come before payload lines in a documented
order, but receivers should match lines by their leading key.

JSON payloads are compact and HTML-safe, so they always fit one line.
HTML and script payloads are split one source line per ``elements`` line;
the receiver rejoins ``elements`` lines with ``\\n``.

This module also carries the reference decoder used by tests and by
``gust inspect``; it reproduces kind, selector, mode and payload of every
encoded operation.
"""

from __future__ import annotations

import html
import json
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from gust._errors import SerializationError
from gust.patches import (
    ELEMENT_KINDS,
    PatchKind,
    PatchOperation,
    make_component_method,
    make_component_state,
    make_custom_event,
    make_execute_script,
    make_html_patch,
    make_navigate,
    make_state_merge,
)

EVENT_NAMES: Mapping[PatchKind, str] = {
    PatchKind.STATE_MERGE: "state-patch",
    PatchKind.STATE_FORGET: "state-patch",
    PatchKind.HTML_PATCH: "elements-patch",
    PatchKind.VIEW_RENDER: "elements-patch",
    PatchKind.FRAGMENT_RENDER: "elements-patch",
    PatchKind.COMPONENT_STATE: "component-patch",
    PatchKind.COMPONENT_METHOD: "component-invoke",
    PatchKind.NAVIGATE: "navigate-patch",
    PatchKind.CUSTOM_EVENT: "event-dispatch",
    PatchKind.EXECUTE_SCRIPT: "elements-patch",
    PatchKind.REDIRECT: "elements-patch",
}

KEEPALIVE = ": keepalive\n\n"

# Python option name -> wire option name, in wire order
_ELEMENT_OPTIONS: tuple[tuple[str, str], ...] = (
    ("selector", "selector"),
    ("mode", "mode"),
    ("use_view_transition", "useViewTransition"),
    ("settle", "settle"),
    ("limit", "limit"),
    ("scroll", "scroll"),
    ("show", "show"),
    ("focus_scroll", "focusScroll"),
)
_ELEMENT_INT_OPTIONS = frozenset({"settle", "limit"})
_ELEMENT_FLAG_OPTIONS = frozenset({"useViewTransition", "focusScroll"})

# Marks script elements generated for execute_script / redirect operations
SCRIPT_MARKER = "data-gust-script"
AUTO_REMOVE_INIT = "$nextTick(() => $el.remove())"

_SCRIPT_ELEMENT = re.compile(
    rf"^<script {SCRIPT_MARKER}(?P<attrs>[^>]*)>(?P<body>.*)</script>$",
    re.DOTALL,
)
_ATTRIBUTE = re.compile(r'\s([^\s="]+)="([^"]*)"')
_SCRIPT_CLOSE = re.compile(r"</script", re.IGNORECASE)

_JSON_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "'": "\\u0027",
}


# ---------------------------------------------------------------------------
# Encoding helpers
# ---------------------------------------------------------------------------


def to_json(value: Any) -> str:
    """Compact, HTML-safe JSON on a single line."""
    try:
        text = json.dumps(value, separators=(",", ":"), ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError) as exc:
        msg = f"Value is not JSON-serializable: {exc}"
        raise SerializationError(msg) from exc
    for char, escape in _JSON_ESCAPES.items():
        text = text.replace(char, escape)
    return text


def _bool(value: bool) -> str:
    return "true" if value else "false"


def _line(key: str, value: Any) -> str:
    text = str(value)
    if "\n" in text or "\r" in text:
        msg = f"Option {key!r} must fit on one line, got {text!r}"
        raise SerializationError(msg)
    return f"{key} {text}"


def _text_lines(key: str, text: Any) -> list[str]:
    if not isinstance(text, str):
        msg = f"{key} payload must be a string, got {type(text).__name__}"
        raise SerializationError(msg)
    if not text:
        return []
    normalized = text.replace("\r\n", "\n").replace("\r", "\n")
    return [f"{key} {line}" for line in normalized.split("\n")]


def script_element(
    script: str,
    *,
    auto_remove: bool = True,
    attributes: Mapping[str, str] | None = None,
) -> str:
    """Build the ``<script>`` element the runtime appends to ``<body>``."""
    if not isinstance(script, str):
        msg = f"script payload must be a string, got {type(script).__name__}"
        raise SerializationError(msg)
    if _SCRIPT_CLOSE.search(script):
        msg = "script body must not contain a closing </script> tag"
        raise SerializationError(msg)
    parts = [f"<script {SCRIPT_MARKER}"]
    for name, value in (attributes or {}).items():
        parts.append(f' {name}="{html.escape(value, quote=True)}"')
    if auto_remove:
        parts.append(f' x-init="{html.escape(AUTO_REMOVE_INIT, quote=True)}"')
    return "".join(parts) + f">{script}</script>"


def redirect_script(url: str) -> str:
    """Location assignment used for redirects on both delivery paths."""
    return f"window.location.href = {to_json(url)}"


# ---------------------------------------------------------------------------
# Per-kind data lines
# ---------------------------------------------------------------------------


def _state_lines(op: PatchOperation) -> list[str]:
    lines = ["onlyIfMissing true"] if op.options.get("only_if_missing") else []
    lines.append(f"state {to_json(op.payload)}")
    return lines


def _element_lines(op: PatchOperation) -> list[str]:
    lines: list[str] = []
    for name, wire in _ELEMENT_OPTIONS:
        value = op.options.get(name)
        if value is None:
            continue
        if wire in _ELEMENT_FLAG_OPTIONS:
            if value:
                lines.append(f"{wire} true")
            continue
        lines.append(_line(wire, value))
    lines.extend(_text_lines("elements", op.payload))
    return lines


def _script_lines(op: PatchOperation) -> list[str]:
    if op.kind is PatchKind.REDIRECT:
        element = script_element(redirect_script(op.payload))
    else:
        element = script_element(
            op.payload,
            auto_remove=op.options.get("auto_remove", True),
            attributes=op.options.get("attributes"),
        )
    return ["selector body", "mode append", *_text_lines("elements", element)]


def _component_state_lines(op: PatchOperation) -> list[str]:
    lines = [_line("component", op.payload["component"])]
    if op.options.get("only_if_missing"):
        lines.append("onlyIfMissing true")
    lines.append(f"state {to_json(op.payload['state'])}")
    return lines


def _component_method_lines(op: PatchOperation) -> list[str]:
    return [
        _line("component", op.payload["component"]),
        _line("method", op.payload["method"]),
        f"args {to_json(op.payload['args'])}",
    ]


def _navigate_lines(op: PatchOperation) -> list[str]:
    options = op.options
    lines = [_line("key", options.get("key", "true"))]
    if "merge_query" in options:
        lines.append(f"mergeQuery {_bool(options['merge_query'])}")
    if options.get("only"):
        lines.append(f"only {to_json(options['only'])}")
    if options.get("except_"):
        lines.append(f"except {to_json(options['except_'])}")
    if options.get("replace"):
        lines.append("replace true")
    lines.append(_line("url", op.payload))
    return lines


def _event_lines(op: PatchOperation) -> list[str]:
    options = op.options
    lines: list[str] = []
    if options.get("selector") is not None:
        lines.append(_line("selector", options["selector"]))
    for name in ("window", "bubbles", "cancelable", "composed"):
        lines.append(f"{name} {_bool(options.get(name, True))}")
    lines.append(_line("name", op.payload["name"]))
    lines.append(f"detail {to_json(op.payload['detail'])}")
    return lines


def data_lines(op: PatchOperation) -> list[str]:
    """Return the ``<key> <value>`` data lines for one operation."""
    if op.kind in (PatchKind.STATE_MERGE, PatchKind.STATE_FORGET):
        return _state_lines(op)
    if op.kind in ELEMENT_KINDS:
        return _element_lines(op)
    if op.kind in (PatchKind.EXECUTE_SCRIPT, PatchKind.REDIRECT):
        return _script_lines(op)
    if op.kind is PatchKind.COMPONENT_STATE:
        return _component_state_lines(op)
    if op.kind is PatchKind.COMPONENT_METHOD:
        return _component_method_lines(op)
    if op.kind is PatchKind.NAVIGATE:
        return _navigate_lines(op)
    return _event_lines(op)


def encode(op: PatchOperation) -> list[str]:
    """Encode one operation as the ordered text lines of a single frame.

    The last line is the empty frame terminator.
    """
    lines = [f"event: {EVENT_NAMES[op.kind]}"]
    lines.extend(f"data: {line}" for line in data_lines(op))
    lines.append("")
    return lines


def format_frame(
    event: str,
    lines: Iterable[str],
    *,
    event_id: str | None = None,
    retry_ms: int | None = None,
) -> str:
    """Serialize a frame; ``lines`` are raw data lines without the ``data:`` prefix."""
    output: list[str] = []
    if event_id is not None:
        output.append(_line("id:", event_id))
    if retry_ms is not None:
        output.append(f"retry: {int(retry_ms)}")
    output.append(f"event: {event}")
    output.extend(f"data: {line}" for line in lines)
    output.append("")
    return "\n".join(output) + "\n"


def encode_frame(
    op: PatchOperation,
    *,
    event_id: str | None = None,
    retry_ms: int | None = None,
) -> str:
    """Encode one operation to its complete frame text."""
    return format_frame(
        EVENT_NAMES[op.kind], data_lines(op), event_id=event_id, retry_ms=retry_ms
    )


# ---------------------------------------------------------------------------
# Reference decoder
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class SseFrame:
    """One dispatched SSE frame, before patch decoding."""

    event: str = "message"
    data: list[str] = field(default_factory=list)
    id: str | None = None
    retry: int | None = None


def parse_frames(text: str) -> list[SseFrame]:
    """Split an event-stream body into frames (comments are skipped)."""
    frames: list[SseFrame] = []
    current = SseFrame()
    touched = False
    for raw in re.split(r"\r\n|\r|\n", text):
        if raw == "":
            if touched:
                frames.append(current)
            current = SseFrame()
            touched = False
            continue
        if raw.startswith(":"):
            continue
        name, _, value = raw.partition(":")
        if value.startswith(" "):
            value = value[1:]
        touched = True
        if name == "event":
            current.event = value
        elif name == "data":
            current.data.append(value)
        elif name == "id":
            current.id = value
        elif name == "retry" and value.isdigit():
            current.retry = int(value)
    if touched:
        frames.append(current)
    return frames


def _split(frame: SseFrame) -> tuple[dict[str, str], dict[str, list[str]]]:
    """Group data lines into single-valued options and multi-line payloads."""
    single: dict[str, str] = {}
    multi: dict[str, list[str]] = {}
    for line in frame.data:
        key, _, value = line.partition(" ")
        single[key] = value
        multi.setdefault(key, []).append(value)
    return single, multi


def _json_field(single: Mapping[str, str], key: str, frame: SseFrame) -> Any:
    if key not in single:
        msg = f"{frame.event} frame is missing {key!r}"
        raise SerializationError(msg)
    try:
        return json.loads(single[key])
    except json.JSONDecodeError as exc:
        msg = f"{frame.event} frame has malformed {key!r}: {exc}"
        raise SerializationError(msg) from exc


def _flag(single: Mapping[str, str], key: str, default: bool = False) -> bool:
    if key not in single:
        return default
    return single[key] == "true"


def _decode_elements(frame: SseFrame) -> PatchOperation:
    single, multi = _split(frame)
    content = "\n".join(multi.get("elements", []))

    match = _SCRIPT_ELEMENT.match(content)
    if match and single.get("selector") == "body" and single.get("mode") == "append":
        attributes = {
            name: html.unescape(value) for name, value in _ATTRIBUTE.findall(match["attrs"])
        }
        auto_remove = attributes.pop("x-init", None) == AUTO_REMOVE_INIT
        return make_execute_script(
            match["body"], auto_remove=auto_remove, attributes=attributes or None
        )

    options: dict[str, Any] = {}
    for name, wire in _ELEMENT_OPTIONS:
        if wire not in single:
            continue
        if wire in _ELEMENT_FLAG_OPTIONS:
            options[name] = single[wire] == "true"
        elif wire in _ELEMENT_INT_OPTIONS:
            options[name] = int(single[wire])
        else:
            options[name] = single[wire]
    return make_html_patch(content, options)


def decode_frame(frame: SseFrame) -> PatchOperation:
    """Rebuild the operation a frame was encoded from."""
    single, _ = _split(frame)
    match frame.event:
        case "state-patch":
            return make_state_merge(
                _json_field(single, "state", frame),
                only_if_missing=_flag(single, "onlyIfMissing"),
            )
        case "elements-patch":
            return _decode_elements(frame)
        case "component-patch":
            return make_component_state(
                single.get("component", ""),
                _json_field(single, "state", frame),
                only_if_missing=_flag(single, "onlyIfMissing"),
            )
        case "component-invoke":
            return make_component_method(
                single.get("component", ""),
                single.get("method", ""),
                _json_field(single, "args", frame),
            )
        case "navigate-patch":
            return make_navigate(
                single.get("url", ""),
                key=single.get("key", "true"),
                merge_query=_flag(single, "mergeQuery") if "mergeQuery" in single else None,
                only=_json_field(single, "only", frame) if "only" in single else None,
                except_=_json_field(single, "except", frame) if "except" in single else None,
                replace=_flag(single, "replace"),
            )
        case "event-dispatch":
            return make_custom_event(
                single.get("name", ""),
                _json_field(single, "detail", frame),
                selector=single.get("selector"),
                window=_flag(single, "window", True),
                bubbles=_flag(single, "bubbles", True),
                cancelable=_flag(single, "cancelable", True),
                composed=_flag(single, "composed", True),
            )
    msg = f"Unknown event {frame.event!r}"
    raise SerializationError(msg)


def decode_stream(text: str) -> list[PatchOperation]:
    """Decode a whole event-stream body into operations, in order."""
    return [decode_frame(frame) for frame in parse_frames(text)]


def event_names(text: str) -> Sequence[str]:
    """Event names of every frame in ``text``, in order."""
    return [frame.event for frame in parse_frames(text)]
