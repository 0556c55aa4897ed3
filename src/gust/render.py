"""Template rendering collaborator.

The response builder never renders templates itself. It calls a
``TemplateRenderer`` and wraps whatever goes wrong in ``TemplateRenderError``
so a failed render appends nothing.
"""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from gust._errors import TemplateRenderError

if TYPE_CHECKING:
    from kida import Environment


@runtime_checkable
class TemplateRenderer(Protocol):
    """Renders views (whole templates) and fragments (named blocks)."""

    def render(self, view: str, context: Mapping[str, Any]) -> str: ...

    def render_fragment(self, view: str, fragment: str, context: Mapping[str, Any]) -> str: ...


class KidaRenderer:
    """Renders views and fragments through a kida ``Environment``.

    Fragments are template blocks rendered on their own with
    ``render_block``.
    """

    def __init__(
        self,
        env: Environment | None = None,
        *,
        template_dirs: list[Path] | None = None,
    ) -> None:
        if env is None:
            from kida import Environment, FileSystemLoader

            env = Environment(loader=FileSystemLoader(template_dirs or [Path("templates")]))
        self.env = env

    def render(self, view: str, context: Mapping[str, Any]) -> str:
        template = self.env.get_template(view)
        return template.render(**context)

    def render_fragment(self, view: str, fragment: str, context: Mapping[str, Any]) -> str:
        template = self.env.get_template(view)
        return template.render_block(fragment, **context)


def render_view(
    renderer: TemplateRenderer | None,
    view: str,
    context: Mapping[str, Any] | None = None,
    fragment: str | None = None,
) -> str:
    """Render a view or one of its fragments, normalizing failures.

    Raises:
        TemplateRenderError: If no renderer is configured, the renderer
            raises, or it returns something other than a string.

    """
    target = f"{view}#{fragment}" if fragment else view
    if renderer is None:
        msg = f"No template renderer configured to render {target!r}"
        raise TemplateRenderError(msg)
    try:
        if fragment is None:
            result = renderer.render(view, dict(context or {}))
        else:
            result = renderer.render_fragment(view, fragment, dict(context or {}))
    except TemplateRenderError:
        raise
    except Exception as exc:
        msg = f"Failed to render {target!r}: {exc}"
        raise TemplateRenderError(msg) from exc
    if not isinstance(result, str):
        msg = f"Renderer returned {type(result).__name__} for {target!r}, expected str"
        raise TemplateRenderError(msg)
    return result
