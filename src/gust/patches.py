"""Patch operations — immutable descriptions of one UI mutation.

Every builder call on a ``PatchResponse`` produces exactly one
``PatchOperation`` (or several for batch calls). Operations are plain data:
the encoder turns them into push-event frames and the browser runtime
applies them strictly in the order they were appended.

The constructors in this module are pure. They validate options up front
and raise ``InvalidOption`` before anything reaches a response log.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from gust._errors import InvalidOption

if TYPE_CHECKING:
    from gust._types import MergePatch


class PatchKind(StrEnum):
    """Closed set of operation kinds understood by the browser runtime."""

    STATE_MERGE = "state_merge"
    STATE_FORGET = "state_forget"
    HTML_PATCH = "html_patch"
    VIEW_RENDER = "view_render"
    FRAGMENT_RENDER = "fragment_render"
    COMPONENT_STATE = "component_state"
    COMPONENT_METHOD = "component_method"
    NAVIGATE = "navigate"
    CUSTOM_EVENT = "custom_event"
    EXECUTE_SCRIPT = "execute_script"
    REDIRECT = "redirect"


class PatchMode(StrEnum):
    """How an HTML patch is applied to the elements matched by its selector."""

    MORPH = "morph"
    INNER = "inner"
    OUTER = "outer"
    REPLACE = "replace"
    PREPEND = "prepend"
    APPEND = "append"
    BEFORE = "before"
    AFTER = "after"
    REMOVE = "remove"


STATE_KINDS = frozenset({PatchKind.STATE_MERGE, PatchKind.STATE_FORGET})
ELEMENT_KINDS = frozenset({
    PatchKind.HTML_PATCH,
    PatchKind.VIEW_RENDER,
    PatchKind.FRAGMENT_RENDER,
})
SCRIPT_KINDS = frozenset({PatchKind.EXECUTE_SCRIPT, PatchKind.REDIRECT})

HTML_OPTIONS = frozenset({
    "selector",
    "mode",
    "use_view_transition",
    "settle",
    "limit",
    "scroll",
    "show",
    "focus_scroll",
})

_VIEWPORT_EDGES = frozenset({"top", "bottom"})

# Valid HTML attribute names for script elements
_ATTRIBUTE_NAME = re.compile(r"^[A-Za-z_:][-A-Za-z0-9_:.]*$")


def _copy(value: Any) -> Any:
    """Copy mappings and sequences recursively so the log owns its data."""
    if isinstance(value, Mapping):
        return {k: _copy(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_copy(v) for v in value]
    return value


@dataclass(frozen=True, slots=True)
class PatchOperation:
    """One atomic unit of UI mutation intent.

    Attributes:
        kind: Which mutation this is (decides the wire event name).
        payload: Kind-specific data; see the constructors below.
        options: Recognized options for the kind, keyed by Python name.
            Unset options are absent rather than stored as defaults.
        source: Where the payload came from (view or ``view#fragment``) for
            rendered patches. Not written to the wire.

    """

    kind: PatchKind
    payload: Any
    options: Mapping[str, Any] = field(default_factory=dict)
    source: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", PatchKind(self.kind))
        object.__setattr__(self, "payload", _copy(self.payload))
        object.__setattr__(self, "options", _copy(self.options))

    @property
    def mode(self) -> PatchMode | None:
        """Patch mode for element operations, None for everything else."""
        return self.options.get("mode")

    @property
    def selector(self) -> str | None:
        return self.options.get("selector")


# ---------------------------------------------------------------------------
# Option validation
# ---------------------------------------------------------------------------


def parse_mode(value: str | PatchMode | None) -> PatchMode:
    """Resolve a mode name; None means the default ``morph``."""
    if value is None:
        return PatchMode.MORPH
    try:
        return PatchMode(value)
    except ValueError:
        allowed = ", ".join(m.value for m in PatchMode)
        msg = f"Unknown patch mode {value!r} (expected one of: {allowed})"
        raise InvalidOption(msg) from None


def _check_names(kind: PatchKind, options: Mapping[str, Any], allowed: frozenset[str]) -> None:
    unknown = sorted(set(options) - allowed)
    if unknown:
        msg = f"Unknown option(s) for {kind.value}: {', '.join(unknown)}"
        raise InvalidOption(msg)


def _check_text(name: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        msg = f"{name} must be a non-empty string, got {value!r}"
        raise InvalidOption(msg)
    return value


def _check_count(name: str, value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        msg = f"{name} must be a non-negative integer, got {value!r}"
        raise InvalidOption(msg)
    return value


def _check_flag(name: str, value: Any) -> bool:
    if not isinstance(value, bool):
        msg = f"{name} must be a boolean, got {value!r}"
        raise InvalidOption(msg)
    return value


def _check_names_list(name: str, value: Any) -> list[str]:
    if isinstance(value, str) or not isinstance(value, Iterable):
        msg = f"{name} must be a list of names, got {value!r}"
        raise InvalidOption(msg)
    return [_check_text(f"{name} entry", item) for item in value]


def normalize_html_options(options: Mapping[str, Any] | None) -> dict[str, Any]:
    """Validate element patch options and drop the ones left unset."""
    options = dict(options or {})
    _check_names(PatchKind.HTML_PATCH, options, HTML_OPTIONS)

    result: dict[str, Any] = {}
    selector = options.get("selector")
    if selector is not None:
        result["selector"] = _check_text("selector", selector)
    result["mode"] = parse_mode(options.get("mode"))

    if options.get("use_view_transition"):
        result["use_view_transition"] = _check_flag(
            "use_view_transition", options["use_view_transition"]
        )
    for name in ("settle", "limit"):
        if options.get(name) is not None:
            result[name] = _check_count(name, options[name])
    for name in ("scroll", "show"):
        value = options.get(name)
        if value is None:
            continue
        if value not in _VIEWPORT_EDGES:
            msg = f"{name} must be 'top' or 'bottom', got {value!r}"
            raise InvalidOption(msg)
        result[name] = value
    if options.get("focus_scroll"):
        result["focus_scroll"] = _check_flag("focus_scroll", options["focus_scroll"])

    if result["mode"] is PatchMode.REMOVE and "selector" not in result:
        msg = "mode 'remove' requires a selector"
        raise InvalidOption(msg)
    return result


# ---------------------------------------------------------------------------
# Constructors
# ---------------------------------------------------------------------------


def make_state_merge(state: MergePatch, *, only_if_missing: bool = False) -> PatchOperation:
    """Merge ``state`` into the client store (RFC 7386: null deletes)."""
    if not isinstance(state, Mapping):
        msg = f"state must be a mapping, got {type(state).__name__}"
        raise InvalidOption(msg)
    options = {"only_if_missing": True} if _check_flag("only_if_missing", only_if_missing) else {}
    return PatchOperation(PatchKind.STATE_MERGE, dict(state), options)


def make_state_forget(
    keys: Iterable[str],
    *,
    reset_to_empty: Iterable[str] = (),
) -> PatchOperation:
    """Delete ``keys`` from the client store.

    Keys listed in ``reset_to_empty`` are set to an empty mapping instead of
    the null deletion sentinel (used for the reserved messages key, which
    the runtime expects to always exist).
    """
    reset = frozenset(reset_to_empty)
    deletion: dict[str, Any] = {}
    for key in keys:
        _check_text("state key", key)
        deletion[key] = {} if key in reset else None
    return PatchOperation(PatchKind.STATE_FORGET, deletion)


def make_html_patch(
    html: str,
    options: Mapping[str, Any] | None = None,
    *,
    kind: PatchKind = PatchKind.HTML_PATCH,
    source: str | None = None,
) -> PatchOperation:
    """Patch ``html`` into the elements matched by ``options['selector']``.

    Without a selector the runtime targets elements by the ``id`` of the
    top-level nodes in ``html``.
    """
    if kind not in ELEMENT_KINDS:
        msg = f"{kind.value} is not an element patch kind"
        raise InvalidOption(msg)
    normalized = normalize_html_options(options)
    if normalized["mode"] is PatchMode.REMOVE:
        html = ""
    return PatchOperation(kind, html, normalized, source)


def make_view_render(html: str, view: str, options: Mapping[str, Any] | None = None) -> PatchOperation:
    return make_html_patch(html, options, kind=PatchKind.VIEW_RENDER, source=view)


def make_fragment_render(
    html: str,
    view: str,
    fragment: str,
    options: Mapping[str, Any] | None = None,
) -> PatchOperation:
    return make_html_patch(
        html, options, kind=PatchKind.FRAGMENT_RENDER, source=f"{view}#{fragment}"
    )


def make_component_state(
    component: str,
    state: Mapping[str, Any],
    *,
    only_if_missing: bool = False,
) -> PatchOperation:
    """Merge ``state`` into the named component's reactive data.

    ``only_if_missing`` is passed through to the runtime; the server cannot
    see component state and never evaluates it.
    """
    _check_text("component", component)
    if not isinstance(state, Mapping):
        msg = f"component state must be a mapping, got {type(state).__name__}"
        raise InvalidOption(msg)
    options = {"only_if_missing": True} if _check_flag("only_if_missing", only_if_missing) else {}
    return PatchOperation(
        PatchKind.COMPONENT_STATE,
        {"component": component, "state": dict(state)},
        options,
    )


def make_component_method(
    component: str,
    method: str,
    args: Iterable[Any] = (),
) -> PatchOperation:
    """Invoke ``method`` on the named component with positional ``args``."""
    _check_text("component", component)
    _check_text("method", method)
    if isinstance(args, (str, bytes, Mapping)) or not isinstance(args, Iterable):
        msg = f"args must be a sequence, got {type(args).__name__}"
        raise InvalidOption(msg)
    return PatchOperation(
        PatchKind.COMPONENT_METHOD,
        {"component": component, "method": method, "args": list(args)},
    )


def make_navigate(
    url: str,
    *,
    key: str = "true",
    merge_query: bool | None = None,
    only: Iterable[str] | None = None,
    except_: Iterable[str] | None = None,
    replace: bool = False,
) -> PatchOperation:
    """Client-side navigation to ``url``.

    ``merge_query`` only signals intent: the server never sees the browser's
    current query string, so the runtime merges against its own location.
    """
    _check_text("url", url)
    options: dict[str, Any] = {"key": _check_text("key", key)}
    if merge_query is not None:
        options["merge_query"] = _check_flag("merge_query", merge_query)
    if only:
        options["only"] = _check_names_list("only", only)
    if except_:
        options["except_"] = _check_names_list("except", except_)
    if _check_flag("replace", replace):
        options["replace"] = True
    return PatchOperation(PatchKind.NAVIGATE, url, options)


def make_custom_event(
    name: str,
    detail: Any = None,
    *,
    selector: str | None = None,
    window: bool | None = None,
    bubbles: bool = True,
    cancelable: bool = True,
    composed: bool = True,
) -> PatchOperation:
    """Dispatch a DOM ``CustomEvent`` named ``name`` carrying ``detail``.

    Targets ``window`` unless a selector is given.
    """
    _check_text("event name", name)
    options: dict[str, Any] = {}
    if selector is not None:
        options["selector"] = _check_text("selector", selector)
    options["window"] = _check_flag("window", selector is None if window is None else window)
    options["bubbles"] = _check_flag("bubbles", bubbles)
    options["cancelable"] = _check_flag("cancelable", cancelable)
    options["composed"] = _check_flag("composed", composed)
    return PatchOperation(
        PatchKind.CUSTOM_EVENT,
        {"name": name, "detail": {} if detail is None else detail},
        options,
    )


def make_execute_script(
    script: str,
    *,
    auto_remove: bool = True,
    attributes: Mapping[str, str] | None = None,
) -> PatchOperation:
    """Run ``script`` once in the browser.

    With ``auto_remove`` the runtime detaches the script element right after
    it executes.
    """
    options: dict[str, Any] = {"auto_remove": _check_flag("auto_remove", auto_remove)}
    if attributes:
        for name, value in attributes.items():
            if not isinstance(name, str) or not _ATTRIBUTE_NAME.match(name):
                msg = f"Invalid script attribute name {name!r}"
                raise InvalidOption(msg)
            if not isinstance(value, str):
                msg = f"Script attribute {name!r} must be a string, got {value!r}"
                raise InvalidOption(msg)
        options["attributes"] = dict(attributes)
    return PatchOperation(PatchKind.EXECUTE_SCRIPT, script, options)


def make_redirect(url: str) -> PatchOperation:
    """Full-page navigation to ``url`` (a location assignment on the wire)."""
    return PatchOperation(PatchKind.REDIRECT, _check_text("url", url))
