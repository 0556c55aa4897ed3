"""Gust — server-driven UI patches for the Bengal ecosystem.

A request handler emits typed patch operations (state merges, element
patches, navigation, events, scripts); gust encodes them as a
Server-Sent Events stream that the browser runtime applies in order.

Quick start::

    from gust import PatchResponse

    response = PatchResponse(request)
    response.state("count", 1).html("#total", "<b>1</b>")
    body = response.to_response()

Streaming::

    def producer(response):
        for step in range(3):
            response.state("step", step)

    stream = PatchResponse(request).stream(producer).to_response()
    stream.run(transport)

"""

from gust._errors import (
    AccumulatorClosed,
    ConfigError,
    GustError,
    InvalidOption,
    NavigationError,
    RedirectMissingUrl,
    SerializationError,
    TemplateRenderError,
    ValidationFailed,
)

# PEP 703: Declare this module as free-threading safe
_Py_mod_gil = 0

__version__ = "0.1.0"
__all__ = [
    "AccumulatorClosed",
    "ConfigError",
    "GustConfig",
    "GustError",
    "InvalidOption",
    "NavigationError",
    "PatchBody",
    "PatchKind",
    "PatchMode",
    "PatchOperation",
    "PatchRedirect",
    "PatchRequest",
    "PatchResponse",
    "PatchStream",
    "RedirectMissingUrl",
    "RequestScope",
    "SerializationError",
    "StreamResult",
    "TemplateRenderError",
    "ValidationFailed",
    "__version__",
    "load_config",
]

_LAZY = {
    "GustConfig": "gust.config",
    "load_config": "gust.config_loader",
    "PatchKind": "gust.patches",
    "PatchMode": "gust.patches",
    "PatchOperation": "gust.patches",
    "PatchRedirect": "gust.redirect",
    "PatchRequest": "gust.request",
    "RequestScope": "gust.request",
    "PatchBody": "gust.response",
    "PatchResponse": "gust.response",
    "PatchStream": "gust.stream",
    "StreamResult": "gust.stream",
}


def __getattr__(name: str) -> object:
    """Lazy imports for the public API.

    Keeps ``import gust`` fast while providing a clean top-level API.
    """
    module_name = _LAZY.get(name)
    if module_name is None:
        msg = f"module {__name__!r} has no attribute {name!r}"
        raise AttributeError(msg)

    import importlib

    return getattr(importlib.import_module(module_name), name)
