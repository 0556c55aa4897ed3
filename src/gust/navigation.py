"""Navigation and component targeting helpers.

Everything here works on strings the server already has: the target URL
and the request headers. The browser's current location is never known
server-side, so query merging is left to the runtime.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode, urlsplit

from gust._errors import InvalidOption, NavigationError
from gust.config import DEFAULT_CONFIG, GustConfig

if TYPE_CHECKING:
    from gust._types import NavigateKey, Selector

_ALLOWED_SCHEMES = frozenset({"http", "https"})


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)


def build_query_string(params: Mapping[str, Any]) -> str:
    """Encode ``params`` as a query string.

    None and empty-string values are dropped. Sequences become repeated
    ``key[]=value`` pairs.
    """
    pairs: list[tuple[str, str]] = []
    for key, value in params.items():
        if value is None or value == "":
            continue
        if isinstance(value, (list, tuple)):
            pairs.extend(
                (f"{key}[]", _query_value(item)) for item in value if item is not None and item != ""
            )
        else:
            pairs.append((key, _query_value(value)))
    return urlencode(pairs)


def url_with_query(path: str, params: Mapping[str, Any]) -> str:
    """``path`` with ``params`` as its query string (no ``?`` when empty)."""
    query = build_query_string(params)
    return f"{path}?{query}" if query else path


def validate_navigate_url(url: str, host: str = "") -> str:
    """Check that ``url`` is a safe client-side navigation target.

    Relative URLs (paths, ``?query``, ``#fragment``) always pass. Absolute
    and scheme-relative URLs must use http(s) and point at ``host``.

    Raises:
        NavigationError: If the URL is empty, uses another scheme, or
            leaves the current origin.

    """
    if not isinstance(url, str) or not url.strip():
        msg = f"Navigate URL must be a non-empty string, got {url!r}"
        raise NavigationError(msg)
    url = url.strip()

    parts = urlsplit(url)
    if not parts.scheme and not url.startswith("//"):
        return url
    if parts.scheme and parts.scheme.lower() not in _ALLOWED_SCHEMES:
        msg = f"Navigate URL scheme {parts.scheme!r} is not allowed: {url}"
        raise NavigationError(msg)
    if not host or parts.netloc.lower() != host.lower():
        msg = f"Navigate URL must stay on the current host ({host or 'unknown'}): {url}"
        raise NavigationError(msg)
    return url


class NavigationKeyResolver:
    """Reads and writes the navigate request headers.

    A navigate request carries ``navigate_header: true`` plus an optional
    comma-separated list of keys naming which parts of the page asked for
    the navigation.
    """

    def __init__(self, config: GustConfig = DEFAULT_CONFIG) -> None:
        self._config = config

    def _get(self, headers: Mapping[str, str], name: str) -> str | None:
        lowered = name.lower()
        for key, value in headers.items():
            if key.lower() == lowered:
                return value
        return None

    def is_navigate(self, headers: Mapping[str, str], key: str | None = None) -> bool:
        value = self._get(headers, self._config.navigate_header)
        if value is None or value.strip().lower() in ("", "false", "0"):
            return False
        if key is None:
            return True
        return key in self.keys(headers)

    def keys(self, headers: Mapping[str, str]) -> tuple[str, ...]:
        raw = self._get(headers, self._config.navigate_key_header) or ""
        return tuple(part.strip() for part in raw.split(",") if part.strip())

    def key(self, headers: Mapping[str, str]) -> NavigateKey | None:
        keys = self.keys(headers)
        return keys[0] if keys else None

    def headers_for(self, keys: Iterable[str] = ()) -> dict[str, str]:
        """Request headers a navigate request for ``keys`` carries."""
        headers = {
            self._config.request_header: "true",
            self._config.navigate_header: "true",
        }
        keys = [k for k in keys if k]
        if keys:
            headers[self._config.navigate_key_header] = ",".join(keys)
        return headers


class ComponentTargetResolver:
    """Maps logical component names to CSS selectors."""

    def __init__(self, attribute: str = "x-component") -> None:
        self.attribute = attribute

    def selector(self, name: str) -> Selector:
        if not isinstance(name, str) or not name.strip():
            msg = f"Component name must be a non-empty string, got {name!r}"
            raise InvalidOption(msg)
        escaped = name.replace("\\", "\\\\").replace('"', '\\"')
        return f'[{self.attribute}="{escaped}"]'
