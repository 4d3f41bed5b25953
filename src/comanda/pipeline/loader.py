"""Build and validate a ``PipelineDescription`` from a parsed workflow document."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from comanda.errors import ConfigurationError
from comanda.pipeline.models import (
    EntryKind,
    PipelineDescription,
    SequenceEntry,
    Step,
    StepConfig,
    normalize_values,
)

logger = logging.getLogger(__name__)

PARALLEL_KEY = "parallel-process"
DEFER_KEY = "defer"

_STEP_KEYS = frozenset(
    {
        "model",
        "input",
        "action",
        "output",
        "next",
        "next-action",
        "next_action",
        "type",
        "instructions",
        "previous_response_id",
        "max_output_tokens",
        "temperature",
        "top_p",
        "stream",
        "tools",
        "response_format",
    },
)
_STEP_MARKER_KEYS = frozenset({"model", "action", "input", "output"})


def load_pipeline(path: str | Path) -> PipelineDescription:
    """Read a YAML workflow file and parse it."""

    file_path = Path(path)
    try:
        raw = file_path.read_text("utf-8")
    except OSError as error:
        raise ConfigurationError(f"Cannot read workflow file {file_path}: {error}") from error
    try:
        document = yaml.safe_load(raw)
    except yaml.YAMLError as error:
        raise ConfigurationError(f"Invalid YAML in workflow file {file_path}: {error}") from error
    return parse_pipeline(document, source=str(file_path))


def parse_pipeline(document: Any, *, source: str | None = None) -> PipelineDescription:
    """Parse a workflow mapping into a validated ``PipelineDescription``.

    Top-level keys are step names, except ``parallel-process`` (parallel
    groups) and ``defer`` (deferred steps). Document order defines the
    progression order.
    """

    where = f" in {source}" if source else ""
    if not isinstance(document, Mapping):
        raise ConfigurationError(f"Workflow document{where} must be a mapping of steps.")

    pipeline = PipelineDescription()
    for key, value in document.items():
        name = str(key)
        if name == PARALLEL_KEY:
            for group_name, members in _parse_parallel_block(value, where).items():
                if group_name in pipeline.parallel_groups:
                    raise ConfigurationError(f"Duplicate parallel group {group_name!r}{where}.")
                pipeline.parallel_groups[group_name] = members
                pipeline.sequence.append(SequenceEntry(EntryKind.PARALLEL_GROUP, group_name))
        elif name == DEFER_KEY:
            if not isinstance(value, Mapping):
                raise ConfigurationError(f"'{DEFER_KEY}' block{where} must be a mapping of steps.")
            for step_name, config in value.items():
                pipeline.deferred[str(step_name)] = parse_step_config(
                    str(step_name),
                    config,
                    where=where,
                )
        else:
            pipeline.steps[name] = parse_step_config(name, value, where=where)
            pipeline.sequence.append(SequenceEntry(EntryKind.STEP, name))

    validate_pipeline(pipeline, source=source)
    return pipeline


def parse_step_config(name: str, raw: Any, *, where: str = "") -> StepConfig:
    if not isinstance(raw, Mapping):
        raise ConfigurationError(f"Step {name!r}{where} must be a mapping, got {raw!r}.")

    unknown = sorted(str(key) for key in raw if key not in _STEP_KEYS)
    if unknown:
        logger.warning("Ignoring unsupported keys for step %s%s: %s", name, where, unknown)

    model = normalize_values(raw.get("model"), field_name=f"{name}.model")
    model = tuple(value.strip() for value in model if value.strip())
    if not model:
        raise ConfigurationError(f"Step {name!r}{where} must declare at least one model.")

    next_raw = raw.get("next", raw.get("next-action", raw.get("next_action")))
    step_type = str(raw.get("type") or "").strip()
    instructions = str(raw.get("instructions") or "")
    action = normalize_values(raw.get("action"), field_name=f"{name}.action")
    if not any(part.strip() for part in action) and not instructions.strip():
        raise ConfigurationError(f"Step {name!r}{where} must declare an action.")

    tools = raw.get("tools") or []
    if not isinstance(tools, list) or not all(isinstance(tool, Mapping) for tool in tools):
        raise ConfigurationError(f"Step {name!r}{where}: tools must be a list of mappings.")
    response_format = raw.get("response_format")
    if response_format is not None and not isinstance(response_format, Mapping):
        raise ConfigurationError(f"Step {name!r}{where}: response_format must be a mapping.")

    return StepConfig(
        model=model,
        input=normalize_values(raw.get("input"), field_name=f"{name}.input"),
        action=action,
        output=normalize_values(raw.get("output"), field_name=f"{name}.output"),
        next=normalize_values(next_raw, field_name=f"{name}.next"),
        type=step_type,
        instructions=instructions,
        previous_response_id=str(raw.get("previous_response_id") or ""),
        max_output_tokens=_as_int(raw.get("max_output_tokens"), f"{name}.max_output_tokens"),
        temperature=_as_float(raw.get("temperature"), f"{name}.temperature"),
        top_p=_as_float(raw.get("top_p"), f"{name}.top_p"),
        stream=_as_bool(raw.get("stream"), f"{name}.stream"),
        tools=tuple(dict(tool) for tool in tools),
        response_format=dict(response_format) if response_format is not None else None,
    )


def validate_pipeline(pipeline: PipelineDescription, *, source: str | None = None) -> None:
    """Check name uniqueness, non-emptiness and ``next`` pointer targets."""

    where = f" in {source}" if source else ""
    if not pipeline.steps and not pipeline.parallel_groups:
        raise ConfigurationError(f"Workflow{where} declares no executable steps.")

    seen: set[str] = set()
    for step in pipeline.iter_steps():
        if step.name in seen:
            raise ConfigurationError(f"Duplicate step name {step.name!r}{where}.")
        seen.add(step.name)

    positions = {
        entry.name: index
        for index, entry in enumerate(pipeline.progression())
        if entry.kind is EntryKind.STEP
    }
    for name, config in pipeline.steps.items():
        for target in config.next:
            target_index = positions.get(target)
            if target_index is None:
                raise ConfigurationError(
                    f"Step {name!r}{where} points next to unknown sequential step {target!r}.",
                )
            if target_index <= positions[name]:
                raise ConfigurationError(
                    f"Step {name!r}{where} may only point next to a later step, got {target!r}.",
                )
    for step in pipeline.iter_steps():
        if step.config.next and step.name not in pipeline.steps:
            logger.warning("Ignoring next pointer on non-sequential step %s%s", step.name, where)


def _parse_parallel_block(value: Any, where: str) -> dict[str, list[Step]]:
    if not isinstance(value, Mapping) or not value:
        raise ConfigurationError(f"'{PARALLEL_KEY}' block{where} must be a non-empty mapping.")
    # Flat form: the block itself is one group of steps.
    if all(_looks_like_step(config) for config in value.values()):
        return {PARALLEL_KEY: _parse_group_members(PARALLEL_KEY, value, where)}
    return {
        str(group_name): _parse_group_members(str(group_name), members, where)
        for group_name, members in value.items()
    }


def _parse_group_members(group_name: str, members: Any, where: str) -> list[Step]:
    items: list[tuple[str, Any]] = []
    if isinstance(members, Mapping):
        items = [(str(name), config) for name, config in members.items()]
    elif isinstance(members, list):
        for member in members:
            if not isinstance(member, Mapping) or len(member) != 1:
                raise ConfigurationError(
                    f"Parallel group {group_name!r}{where} entries must be single-key mappings.",
                )
            ((name, config),) = member.items()
            items.append((str(name), config))
    else:
        raise ConfigurationError(f"Parallel group {group_name!r}{where} must list steps.")
    if not items:
        raise ConfigurationError(f"Parallel group {group_name!r}{where} is empty.")
    return [
        Step(name=name, config=parse_step_config(name, config, where=where))
        for name, config in items
    ]


def _looks_like_step(value: Any) -> bool:
    return isinstance(value, Mapping) and any(key in value for key in _STEP_MARKER_KEYS)


def _as_int(value: Any, label: str) -> int:
    if value is None:
        return 0
    try:
        return int(value)
    except (TypeError, ValueError) as error:
        raise ConfigurationError(f"Invalid integer for {label}: {value!r}") from error


def _as_float(value: Any, label: str) -> float | None:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError) as error:
        raise ConfigurationError(f"Invalid number for {label}: {value!r}") from error


def _as_bool(value: Any, label: str) -> bool:
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "on"}:
            return True
        if normalized in {"0", "false", "no", "off"}:
            return False
    raise ConfigurationError(f"Invalid boolean for {label}: {value!r}")
