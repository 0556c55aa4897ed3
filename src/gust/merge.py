"""RFC 7386 JSON Merge Patch.

The server never holds the client's state document. It only emits state
operations in order; this module describes what the receiver does with
them, and lets tests and tooling replay a stream against a document.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

from gust.patches import STATE_KINDS

if TYPE_CHECKING:
    from gust._types import JSONValue, MergePatch
    from gust.patches import PatchOperation


def merge_patch(base: JSONValue, patch: JSONValue | MergePatch) -> JSONValue:
    """Apply ``patch`` to ``base`` and return the result.

    - null values delete the key (and its whole subtree)
    - mapping into mapping merges recursively
    - anything else (arrays, scalars) replaces wholesale
    - a non-mapping patch replaces the entire document

    ``base`` is never mutated; untouched subtrees are shared with the result.
    """
    if not isinstance(patch, Mapping):
        return patch

    result: dict[str, Any] = dict(base) if isinstance(base, Mapping) else {}
    for key, value in patch.items():
        if value is None:
            result.pop(key, None)
        elif isinstance(value, Mapping):
            result[key] = merge_patch(result.get(key), value)
        else:
            result[key] = value
    return result


def apply_patches(
    operations: Iterable[PatchOperation],
    base: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Replay the state operations of a log, in order, against ``base``.

    Non-state operations are skipped. Sequential application is equivalent
    to one cumulative merge, so the result is what the browser store holds
    after the whole stream has been applied. ``only_if_missing`` operations
    only contribute top-level keys the document does not have yet.
    """
    document: dict[str, Any] = dict(base or {})
    for op in operations:
        if op.kind not in STATE_KINDS:
            continue
        patch = op.payload
        if op.options.get("only_if_missing"):
            patch = {k: v for k, v in patch.items() if k not in document}
        document = merge_patch(document, patch)
    return document
