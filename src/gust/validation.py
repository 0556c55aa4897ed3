"""Validation glue — field messages for posted state.

Validation itself is done by a collaborator. This module decides which
existing field messages to clear before validating, and turns the
collaborator's result into a messages state patch.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from gust._errors import ValidationFailed

if TYPE_CHECKING:
    from gust.request import PatchRequest
    from gust.response import PatchResponse


@dataclass(frozen=True, slots=True)
class Ok:
    """Successful validation carrying the validated data."""

    data: dict[str, Any]

    @property
    def ok(self) -> bool:
        return True

    def unwrap(self) -> dict[str, Any]:
        return self.data


type ValidationResult = Ok | ValidationFailed


@runtime_checkable
class StateValidator(Protocol):
    """Validates posted state against rules keyed by dotted field name."""

    def validate(self, data: Mapping[str, Any], rules: Mapping[str, Any]) -> ValidationResult: ...


def _rule_pattern(rule: str) -> re.Pattern[str]:
    """``items.*.name`` matches ``items.0.name``, ``items.12.name`` and so on."""
    return re.compile("^" + re.escape(rule).replace(r"\*", r"\d+") + "$")


def clear_messages_for(existing: Mapping[str, Any], rules: Iterable[str]) -> dict[str, Any]:
    """Blank the messages of every field covered by ``rules``.

    Messages for fields outside ``rules`` are kept, so validating one form
    section leaves messages of other sections alone.
    """
    cleared = dict(existing)
    for rule in rules:
        if "*" in rule:
            pattern = _rule_pattern(rule)
            for key in cleared:
                if pattern.match(key):
                    cleared[key] = ""
        else:
            cleared[rule] = ""
    return cleared


def validate_state(
    request: PatchRequest,
    response: PatchResponse | None,
    rules: Mapping[str, Any],
    validator: StateValidator,
) -> ValidationResult:
    """Validate the posted state.

    On success the cleared messages are sent with ``response`` (removing
    stale errors) and ``Ok`` is returned. On failure nothing is sent; the
    returned ``ValidationFailed`` carries cleared plus new messages and is
    sent with ``response.reject(failure)``.
    """
    messages_key = request.config.messages_key
    existing = request.state(messages_key) or {}
    if not isinstance(existing, Mapping):
        existing = {}
    cleared = clear_messages_for(existing, rules)

    result = validator.validate(request.state(), rules)
    if isinstance(result, ValidationFailed):
        return ValidationFailed({**cleared, **result.messages})
    if response is not None:
        response.state(messages_key, cleared)
    return result
