"""Gust error hierarchy.

All gust-specific errors inherit from GustError for easy catching.
"""

from __future__ import annotations


class GustError(Exception):
    """Base error for all gust operations."""


class ConfigError(GustError):
    """Invalid or missing configuration."""


class InvalidOption(GustError):
    """Unrecognized patch mode or option value.

    Raised while an operation is being constructed, before anything is
    appended to a response or written to a transport.
    """


class NavigationError(InvalidOption):
    """Navigate target rejected (malformed, cross-origin, or repeated)."""


class SerializationError(GustError):
    """A value cannot be represented in the wire payload format."""


class TemplateRenderError(GustError):
    """The template renderer failed while producing HTML for a patch.

    The original renderer exception is kept as ``__cause__``.
    """


class AccumulatorClosed(GustError):
    """A response was mutated after it was finalized or streamed."""


class RedirectMissingUrl(GustError):
    """A redirect was finalized without a target URL."""


class ValidationFailed(GustError):
    """Validation of request state failed.

    Not an accumulator error: this is the failure half of the result returned
    by ``gust.validation.validate_state``. It is an exception subclass so that
    handlers which prefer raising can ``raise`` it and catch it at the edge.

    Attributes:
        messages: Field name to message mapping sent to the client under the
            reserved messages state key.

    """

    def __init__(self, messages: dict[str, str]) -> None:
        self.messages = dict(messages)
        fields = ", ".join(sorted(k for k, v in self.messages.items() if v))
        super().__init__(f"validation failed: {fields}" if fields else "validation failed")

    @property
    def ok(self) -> bool:
        return False

    def unwrap(self) -> dict[str, object]:
        """Raise this failure; mirrors ``Ok.unwrap`` for result handling."""
        raise self
