"""Pipeline description data model consumed by the step executor."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from comanda.errors import ConfigurationError

NO_INPUT = "NA"
PREVIOUS_OUTPUT = "STDIN"
STDOUT = "STDOUT"
RESPONSES_STEP_TYPE = "openai-responses"


def normalize_values(value: Any, *, field_name: str = "value") -> tuple[str, ...]:
    """Normalize a single-or-list field into an ordered tuple of strings.

    ``None`` yields an empty tuple; scalars yield a one-element tuple; lists
    keep declaration order.
    """

    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if isinstance(value, (list, tuple)):
        items: list[str] = []
        for item in value:
            if isinstance(item, (dict, list, tuple)):
                raise ConfigurationError(
                    f"Invalid {field_name} entry: {item!r}. Expected a string.",
                )
            if item is None:
                continue
            items.append(str(item))
        return tuple(items)
    if isinstance(value, dict):
        raise ConfigurationError(f"Invalid {field_name}: {value!r}. Expected a string or list.")
    return (str(value),)


def is_no_input(value: str) -> bool:
    return value.strip().upper() == NO_INPUT


def is_previous_output(value: str) -> bool:
    return value.strip().upper() == PREVIOUS_OUTPUT


def is_stdout(value: str) -> bool:
    return value.strip().upper() == STDOUT


@dataclass(slots=True, frozen=True)
class StepConfig:
    """One step: which model(s) to call, with what input, and where output goes."""

    model: tuple[str, ...]
    input: tuple[str, ...] = ()
    action: tuple[str, ...] = ()
    output: tuple[str, ...] = ()
    next: tuple[str, ...] = ()
    type: str = ""
    instructions: str = ""
    previous_response_id: str = ""
    max_output_tokens: int = 0
    temperature: float | None = None
    top_p: float | None = None
    stream: bool = False
    tools: tuple[dict[str, Any], ...] = ()
    response_format: dict[str, Any] | None = None

    @property
    def inputs(self) -> tuple[str, ...]:
        """Declared inputs without the "no input" sentinel."""

        return tuple(value for value in self.input if not is_no_input(value))

    @property
    def action_text(self) -> str:
        return "\n".join(part for part in self.action if part.strip())

    @property
    def uses_responses(self) -> bool:
        return self.type.strip().lower() == RESPONSES_STEP_TYPE


@dataclass(slots=True, frozen=True)
class Step:
    name: str
    config: StepConfig


class EntryKind(str, Enum):
    """Kinds of entries in the top-level progression order."""

    STEP = "step"
    PARALLEL_GROUP = "parallel_group"


@dataclass(slots=True, frozen=True)
class SequenceEntry:
    kind: EntryKind
    name: str


@dataclass(slots=True)
class PipelineDescription:
    """Parsed workflow: sequential steps, parallel groups and deferred steps.

    ``sequence`` fixes the progression order of sequential steps and parallel
    groups. When empty, groups run first and then sequential steps in
    declaration order.
    """

    steps: dict[str, StepConfig] = field(default_factory=dict)
    parallel_groups: dict[str, list[Step]] = field(default_factory=dict)
    deferred: dict[str, StepConfig] = field(default_factory=dict)
    sequence: list[SequenceEntry] = field(default_factory=list)

    def progression(self) -> list[SequenceEntry]:
        if self.sequence:
            return list(self.sequence)
        return [
            *(SequenceEntry(EntryKind.PARALLEL_GROUP, name) for name in self.parallel_groups),
            *(SequenceEntry(EntryKind.STEP, name) for name in self.steps),
        ]

    def iter_steps(self) -> Iterator[Step]:
        """Every step across all three namespaces."""

        for name, config in self.steps.items():
            yield Step(name=name, config=config)
        for members in self.parallel_groups.values():
            yield from members
        for name, config in self.deferred.items():
            yield Step(name=name, config=config)
