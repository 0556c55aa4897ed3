"""Gust configuration.

GustConfig is the central configuration object, frozen after creation.
"""

from dataclasses import dataclass

from gust._errors import ConfigError


@dataclass(frozen=True, slots=True)
class GustConfig:
    """Configuration for the patch protocol and its HTTP glue.

    Attributes:
        request_header: Request header the browser runtime sends on every
            push-capable request.
        navigate_header: Request header marking client-side navigate requests.
        navigate_key_header: Request header carrying comma-separated navigate keys.
        response_header: Response header set to ``true`` on push responses.
        debug: Include tracebacks in stream failure diagnostics.
        keepalive: Start buffered bodies with a ``: keepalive`` comment.
        retry_ms: SSE ``retry:`` value written on every frame (None = omit).
        messages_key: Reserved state key holding field messages.

    """

    request_header: str = "Gust-Request"
    navigate_header: str = "Gust-Navigate"
    navigate_key_header: str = "Gust-Navigate-Key"
    response_header: str = "X-Gust-Response"
    debug: bool = False
    keepalive: bool = True
    retry_ms: int | None = None
    messages_key: str = "messages"

    def __post_init__(self) -> None:
        if self.retry_ms is not None and (
            not isinstance(self.retry_ms, int) or self.retry_ms < 0
        ):
            msg = f"retry_ms must be a non-negative integer, got {self.retry_ms!r}"
            raise ConfigError(msg)
        if not self.messages_key:
            msg = "messages_key must not be empty"
            raise ConfigError(msg)
        for name in ("request_header", "navigate_header", "navigate_key_header", "response_header"):
            if not getattr(self, name):
                msg = f"{name} must not be empty"
                raise ConfigError(msg)

    def sse_headers(self) -> dict[str, str]:
        """HTTP headers for a push-event response."""
        return {
            "Cache-Control": "no-cache",
            "Content-Type": "text/event-stream",
            "X-Accel-Buffering": "no",
            self.response_header: "true",
        }


DEFAULT_CONFIG = GustConfig()
