"""Stream diagnostics — render failures and debug output as patch payloads.

Provides:
1. ``render_error_page`` — a self-contained HTML page for an exception,
   used when a stream producer fails after output has already been flushed.
2. ``document_replace_script`` — the script that swaps the current page for
   that error page in the browser.
3. ``wrap_output`` — turns captured debug output into markup that can be
   appended to the page.

Tracebacks and source context are only rendered in debug mode.
"""

from __future__ import annotations

import html
import linecache
import re
import traceback

from gust._errors import SerializationError
from gust.encoder import to_json

# ---------------------------------------------------------------------------
# Error page template (inline CSS, the page replaces the whole document)
# ---------------------------------------------------------------------------

_ERROR_PAGE = """\
<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>{error_type}</title>
<style>
*,*::before,*::after{{box-sizing:border-box}}
body{{margin:0;font-family:ui-monospace,SFMono-Regular,Menlo,Monaco,Consolas,monospace;
  background:#1a1a1a;color:#e0e0e0;line-height:1.6}}
.overlay{{max-width:860px;margin:2rem auto;padding:0 1.5rem}}
.error-header{{background:#2d1010;border:1px solid #e74c3c;border-radius:8px;
  padding:1.25rem 1.5rem;margin-bottom:1.5rem}}
.error-header h1{{margin:0;font-size:1rem;color:#e74c3c;font-weight:600}}
.error-header .message{{margin:0.5rem 0 0;font-size:0.95rem;color:#f0a0a0;
  word-break:break-word}}
.source{{background:#1e1e1e;border:1px solid #3a3a3a;border-radius:8px;
  padding:1rem 0;margin-bottom:1.5rem;overflow-x:auto}}
.source .file{{padding:0 1.25rem;margin-bottom:0.75rem;font-size:0.8rem;color:#9e9e9e}}
.source pre{{margin:0;padding:0;font-size:0.85rem}}
.source .line{{display:block;padding:0 1.25rem;white-space:pre}}
.source .line.error-line{{background:#3a1515;border-left:3px solid #e74c3c}}
.source .line .num{{display:inline-block;width:3.5rem;color:#757575;
  text-align:right;padding-right:1rem;user-select:none}}
.trace{{background:#1e1e1e;border:1px solid #3a3a3a;border-radius:8px;
  padding:1rem 1.25rem;font-size:0.8rem;overflow-x:auto;white-space:pre;
  color:#9e9e9e}}
.note{{color:#9e9e9e;font-size:0.85rem}}
</style>
</head>
<body>
<div class="overlay">
  <div class="error-header">
    <h1>{error_type}</h1>
    <p class="message">{error_message}</p>
  </div>
  {details}
</div>
</body>
</html>
"""

_DEBUG_DETAILS = """{source_section}
  <div class="trace">{stack_trace}</div>"""

_QUIET_DETAILS = (
    '<p class="note">The stream stopped after an unexpected error. '
    "Enable debug mode for details.</p>"
)

_HTML_MARKERS = re.compile(r"<\s*(!doctype|html|head|body|div|pre|table|script|style)\b", re.I)


# ---------------------------------------------------------------------------
# Source context extraction
# ---------------------------------------------------------------------------


def _extract_source_context(filename: str, lineno: int, context: int = 5) -> str:
    """Read source lines around the error and render as HTML."""
    if not filename or lineno <= 0:
        return ""

    start = max(1, lineno - context)
    rows: list[str] = []
    for i in range(start, lineno + context + 1):
        line = linecache.getline(filename, i)
        if not line and i > lineno:
            break
        cls = ' class="line error-line"' if i == lineno else ' class="line"'
        rows.append(f'<span{cls}><span class="num">{i}</span>{html.escape(line.rstrip())}</span>')

    if not rows:
        return ""
    return (
        f'<div class="source">'
        f'<div class="file">{html.escape(filename)}:{lineno}</div>'
        f'<pre>{"".join(rows)}</pre>'
        f"</div>"
    )


def error_location(exc: BaseException) -> tuple[str, int]:
    """Filename and line number of the innermost traceback frame."""
    tb = exc.__traceback__
    if tb is None:
        return "", 0
    while tb.tb_next is not None:
        tb = tb.tb_next
    return tb.tb_frame.f_code.co_filename, tb.tb_lineno


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def render_error_page(exc: BaseException, *, debug: bool = False) -> str:
    """Render a full HTML error page for ``exc``.

    Without ``debug`` only the exception type and message are shown.
    """
    if debug:
        filename, lineno = error_location(exc)
        details = _DEBUG_DETAILS.format(
            source_section=_extract_source_context(filename, lineno),
            stack_trace=html.escape(
                "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
            ),
        )
    else:
        details = _QUIET_DETAILS
    return _ERROR_PAGE.format(
        error_type=html.escape(type(exc).__qualname__),
        error_message=html.escape(str(exc)),
        details=details,
    )


def document_replace_script(page: str) -> str:
    """Script that replaces the whole current document with ``page``."""
    return f"document.open();document.write({to_json(page)});document.close();"


def console_script(values: tuple[object, ...]) -> str:
    """Script that logs ``values`` to the browser console."""
    return f"console.log({','.join(_printable(v) for v in values)});"


def looks_like_html(text: str) -> bool:
    return bool(_HTML_MARKERS.search(text))


def wrap_output(text: str) -> str:
    """Markup for captured output; plain text is escaped into a ``<pre>``."""
    return text if looks_like_html(text) else f'<pre class="gust-output">{html.escape(text)}</pre>'


def _printable(value: object) -> str:
    try:
        return to_json(value)
    except SerializationError:
        return to_json(repr(value))
