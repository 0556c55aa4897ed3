"""Full-page redirects with session flash data.

``PatchResponse.redirect()`` returns a ``PatchRedirect`` instead of
appending an operation: the destination is often chosen in steps
(``back()``, ``intended()``) and flash data must reach the session before
the browser navigates. On push requests the redirect is written as a
location-assignment script through the same response log, so buffered
and streamed redirects look the same on the wire. Other requests get a
plain 302.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable
from urllib.parse import urlsplit

from gust._errors import RedirectMissingUrl

if TYPE_CHECKING:
    from gust.response import PatchBody, PatchResponse
    from gust.stream import PatchStream

OLD_INPUT_KEY = "_old_input"
ERRORS_KEY = "errors"


@runtime_checkable
class FlashSession(Protocol):
    """Session collaborator used by redirects."""

    def flash(self, key: str, value: Any) -> None: ...

    def pull_intended(self, default: str) -> str:
        """Remove and return the URL stored before an auth redirect."""
        ...


def _host_of(url: str) -> str:
    return urlsplit(url).netloc.lower()


class PatchRedirect:
    """Builder for one redirect issued from a response.

    Attributes:
        url: Destination, or None until one of the target methods is called.
        flash_data: Values flashed to the session on ``to_response()``.

    """

    def __init__(self, response: PatchResponse, url: str | None = None) -> None:
        self._response = response
        self.url = url
        self.flash_data: dict[str, Any] = {}

    # -- Targets --------------------------------------------------------------

    def to(self, url: str) -> PatchRedirect:
        self.url = url
        return self

    def away(self, url: str) -> PatchRedirect:
        """Redirect to an external URL (no host check)."""
        self.url = url
        return self

    def home(self) -> PatchRedirect:
        self.url = "/"
        return self

    def back(self, fallback: str = "/") -> PatchRedirect:
        """Redirect to the referer when it is on this host and not this page."""
        request = self._response.request
        previous = request.referer if request is not None else None
        if not previous:
            self.url = fallback
            return self
        parts = urlsplit(previous)
        # Relative referers are on this host by definition
        same_host = not parts.netloc or parts.netloc.lower() == request.host.lower()
        target = f"{parts.path}?{parts.query}" if parts.query else parts.path
        self.url = previous if same_host and target not in (request.path, request.url) else fallback
        return self

    def refresh(self, *, preserve_query: bool = True, preserve_fragment: bool = False) -> PatchRedirect:
        """Redirect to the current page.

        The fragment is never sent to the server; with ``preserve_fragment``
        it is taken from the referer when present.
        """
        request = self._response.request
        if request is None:
            self.url = "/"
            return self
        url = request.url if preserve_query else request.path
        if preserve_fragment and request.referer:
            fragment = urlsplit(request.referer).fragment
            if fragment:
                url = f"{url}#{fragment}"
        self.url = url
        return self

    def intended(self, default: str = "/") -> PatchRedirect:
        """Redirect to the URL stored in the session before authentication.

        Falls back to ``default`` when there is none or it is on another host.
        """
        session = self._response.session
        url = session.pull_intended(default) if session is not None else default
        if url != default:
            request = self._response.request
            host = _host_of(url)
            if host and (request is None or host != request.host.lower()):
                url = default
        self.url = url
        return self

    # -- Flash data -----------------------------------------------------------

    def with_flash(self, key: str | Mapping[str, Any], value: Any = None) -> PatchRedirect:
        """Flash one value or a mapping of values; repeated calls accumulate."""
        if isinstance(key, Mapping):
            self.flash_data.update(key)
        else:
            self.flash_data[key] = value
        return self

    def with_input(self, data: Mapping[str, Any] | None = None) -> PatchRedirect:
        """Flash form input (the posted request state by default)."""
        if data is None:
            request = self._response.request
            data = request.state() if request is not None else {}
        return self.with_flash(OLD_INPUT_KEY, dict(data))

    def with_errors(self, errors: Mapping[str, Any]) -> PatchRedirect:
        return self.with_flash(ERRORS_KEY, dict(errors))

    def _flash(self) -> None:
        session = self._response.session
        if session is None or not self.flash_data:
            return
        for key, value in self.flash_data.items():
            session.flash(str(key), value)
        self.flash_data = {}

    # -- Finalize -------------------------------------------------------------

    def force_reload(self, force: bool = False) -> PatchBody | PatchStream:
        """Reload the current page; ``force`` bypasses the browser cache."""
        self._flash()
        script = f"window.location.reload({'true' if force else 'false'})"
        self._response.js(script)
        return self._response.to_response()

    def to_response(self) -> PatchBody | PatchStream:
        """Flash pending data and emit the redirect.

        Raises:
            RedirectMissingUrl: If no destination was set.

        """
        if self.url is None:
            msg = (
                "Redirect URL not set. Use redirect('/path'), .to(), .back(), "
                ".home(), .refresh() or .intended()."
            )
            raise RedirectMissingUrl(msg)
        self._flash()
        if not self._response.is_push:
            from gust.response import PatchBody

            self._response.close()
            return PatchBody(status=302, headers={"Location": self.url}, body="")
        return self._response.emit_redirect(self.url)
