"""Defer-dispatch directives embedded in step output."""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TypeVar

from comanda.errors import UnknownDeferredStepError

_FENCED_JSON = re.compile(r"^```(?:json)?\s*(\{.*\})\s*```$", re.DOTALL | re.IGNORECASE)

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class DeferDirective:
    """Request to run a deferred step, optionally overriding its input."""

    step: str
    input: str | None = None


def parse_defer_directive(output: str) -> DeferDirective | None:
    """Return the directive encoded in ``output``, or None for ordinary text.

    The whole output (optionally wrapped in one fenced code block) must be a
    JSON object with a non-empty string ``step``. ``input`` is optional;
    non-string values are serialized back to JSON text.
    """

    text = output.strip()
    if not text.startswith(("{", "```")):
        return None
    fenced = _FENCED_JSON.match(text)
    if fenced is not None:
        text = fenced.group(1)
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None

    step = payload.get("step")
    if not isinstance(step, str) or not step.strip():
        return None

    raw_input = payload.get("input")
    if raw_input is None:
        step_input = None
    elif isinstance(raw_input, str):
        step_input = raw_input
    else:
        step_input = json.dumps(raw_input, ensure_ascii=False)
    return DeferDirective(step=step.strip(), input=step_input)


def lookup_deferred(directive: DeferDirective, deferred: Mapping[str, T]) -> T:
    """Return the deferred step the directive names."""

    try:
        return deferred[directive.step]
    except KeyError as error:
        raise UnknownDeferredStepError(directive.step) from error
