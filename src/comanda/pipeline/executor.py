"""Step executor: sequential steps, parallel groups and deferred dispatch."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol
from uuid import uuid4

from comanda.config import ExecutorSettings
from comanda.errors import (
    InvocationError,
    ResolutionError,
    StepExecutionError,
    UnknownDeferredStepError,
)
from comanda.pipeline.dispatch import lookup_deferred, parse_defer_directive
from comanda.pipeline.models import (
    EntryKind,
    PipelineDescription,
    Step,
    StepConfig,
    is_previous_output,
    is_stdout,
)
from comanda.providers.base import (
    FileInput,
    Provider,
    ResponsesConfig,
    ResponsesProvider,
    TextCollector,
    compose_file_prompt,
)

logger = logging.getLogger(__name__)


class Resolver(Protocol):
    def resolve(self, model_name: str) -> Provider: ...


@dataclass(slots=True)
class StepResult:
    """Outcome of one executed step."""

    step_name: str
    status: str
    output: str | None = None
    providers: list[str] = field(default_factory=list)
    error: str | None = None
    group: str | None = None
    deferred: bool = False
    triggered_by: str | None = None
    elapsed_seconds: float = 0.0


@dataclass(slots=True)
class PipelineRunResult:
    """Result of one pipeline run; outputs survive a failed step."""

    run_id: str
    source: str | None = None
    steps: list[StepResult] = field(default_factory=list)
    outputs: dict[str, str] = field(default_factory=dict)
    last_output: str = ""
    status: str = "running"
    error: str | None = None

    @property
    def failed_steps(self) -> list[StepResult]:
        return [step for step in self.steps if step.status == "failed"]


@dataclass(slots=True)
class _Inputs:
    texts: list[str]
    files: list[Path]


class StepExecutor:
    """Execute a ``PipelineDescription`` against resolved provider capabilities.

    Sequential steps run in order on the calling thread. A parallel group's
    members run on a thread pool and the group completes only after every
    member has finished. After each step the output is checked for a defer
    directive; a valid one runs the named deferred step before progression
    resumes.
    """

    def __init__(  # noqa: PLR0913
        self,
        pipeline: PipelineDescription,
        *,
        resolver: Resolver,
        settings: ExecutorSettings | None = None,
        source: str | None = None,
        on_progress: Callable[[str], None] | None = None,
        on_output: Callable[[str, str], None] | None = None,
    ) -> None:
        self._pipeline = pipeline
        self._resolver = resolver
        self._settings = settings or ExecutorSettings()
        self._source = source
        self._on_progress = on_progress or (lambda _msg: None)
        self._on_output = on_output

    def run(self, initial_input: str = "") -> PipelineRunResult:
        """Execute the pipeline; never raises for step failures."""

        result = PipelineRunResult(run_id=str(uuid4()), source=self._source)
        result.last_output = initial_input
        run_start = time.monotonic()
        progression = self._pipeline.progression()
        positions = {
            entry.name: index
            for index, entry in enumerate(progression)
            if entry.kind is EntryKind.STEP
        }
        self._emit(f"Pipeline {result.run_id[:12]} started: {len(progression)} entries")

        try:
            index = 0
            while index < len(progression):
                entry = progression[index]
                if entry.kind is EntryKind.PARALLEL_GROUP:
                    self._run_group(entry.name, self._pipeline.parallel_groups[entry.name], result)
                    index += 1
                    continue

                config = self._pipeline.steps[entry.name]
                step_result = self._run_recorded(entry.name, config, result)
                self._dispatch_deferred(step_result, result, depth=0)
                index = positions[config.next[0]] if config.next else index + 1

            result.status = "completed"
            elapsed = time.monotonic() - run_start
            self._emit(f"Pipeline {result.run_id[:12]} completed in {elapsed:.1f}s")
        except StepExecutionError as exc:
            result.status = "failed"
            result.error = str(exc)
            logger.error("Pipeline %s failed: %s", result.run_id, exc)
        except Exception as exc:  # noqa: BLE001
            result.status = "failed"
            result.error = f"Unexpected error: {exc}"
            logger.exception("Pipeline %s unexpected error", result.run_id)
        return result

    def _run_recorded(  # noqa: PLR0913
        self,
        name: str,
        config: StepConfig,
        result: PipelineRunResult,
        *,
        input_override: str | None = None,
        triggered_by: str | None = None,
    ) -> StepResult:
        try:
            step_result = self._execute_step(
                name,
                config,
                outputs=result.outputs,
                last_output=result.last_output,
                input_override=input_override,
            )
        except StepExecutionError as exc:
            result.steps.append(
                StepResult(
                    step_name=name,
                    status="failed",
                    error=str(exc),
                    deferred=triggered_by is not None,
                    triggered_by=triggered_by,
                ),
            )
            raise
        step_result.deferred = triggered_by is not None
        step_result.triggered_by = triggered_by
        _record(result, step_result)
        return step_result

    def _run_group(self, group_name: str, members: list[Step], result: PipelineRunResult) -> None:
        self._emit(f"[{group_name}] Starting parallel group: {len(members)} steps")
        outputs = dict(result.outputs)
        last_output = result.last_output
        completed: dict[str, StepResult] = {}
        workers = min(self._settings.max_parallel_workers, len(members))

        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {
                pool.submit(
                    self._execute_step,
                    member.name,
                    member.config,
                    outputs=outputs,
                    last_output=last_output,
                ): member.name
                for member in members
            }
            for future in as_completed(futures):
                name = futures[future]
                try:
                    completed[name] = future.result()
                except StepExecutionError as exc:
                    logger.warning("Parallel step %s failed: %s", name, exc)
                    completed[name] = StepResult(step_name=name, status="failed", error=str(exc))
                except Exception as exc:  # noqa: BLE001
                    logger.exception("Parallel step %s unexpected error", name)
                    completed[name] = StepResult(
                        step_name=name,
                        status="failed",
                        error=f"Unexpected error: {exc}",
                    )

        succeeded: list[StepResult] = []
        failed: list[str] = []
        for member in members:
            step_result = completed[member.name]
            step_result.group = group_name
            if step_result.status == "completed":
                _record(result, step_result)
                succeeded.append(step_result)
            else:
                result.steps.append(step_result)
                failed.append(member.name)

        if succeeded:
            result.last_output = "\n\n".join(step.output or "" for step in succeeded)
        for step_result in succeeded:
            self._dispatch_deferred(step_result, result, depth=0)

        if failed:
            raise StepExecutionError(
                group_name,
                f"{len(failed)} of {len(members)} parallel steps failed: {', '.join(failed)}",
                file=self._source,
            )
        self._emit(f"[{group_name}] Parallel group completed")

    def _dispatch_deferred(
        self,
        origin: StepResult,
        result: PipelineRunResult,
        *,
        depth: int,
    ) -> None:
        directive = parse_defer_directive(origin.output or "")
        if directive is None:
            return
        try:
            config = lookup_deferred(directive, self._pipeline.deferred)
        except UnknownDeferredStepError as exc:
            logger.debug("Treating output of %s as plain text: %s", origin.step_name, exc)
            return
        if depth >= self._settings.max_defer_depth:
            logger.warning(
                "Not dispatching %s from %s: defer depth limit %d reached",
                directive.step,
                origin.step_name,
                self._settings.max_defer_depth,
            )
            return

        self._emit(f"[{origin.step_name}] Dispatching deferred step {directive.step}")
        deferred_result = self._run_recorded(
            directive.step,
            config,
            result,
            input_override=directive.input,
            triggered_by=origin.step_name,
        )
        self._dispatch_deferred(deferred_result, result, depth=depth + 1)

    def _execute_step(  # noqa: PLR0913
        self,
        name: str,
        config: StepConfig,
        *,
        outputs: Mapping[str, str],
        last_output: str,
        input_override: str | None = None,
    ) -> StepResult:
        self._emit(f"[{name}] Starting: models={list(config.model)}")
        step_start = time.monotonic()
        inputs = self._gather_inputs(name, config, outputs, last_output, input_override)
        prompt = _build_prompt(config.action_text, inputs.texts)

        texts: list[tuple[str, str]] = []
        providers: list[str] = []
        for model in config.model:
            try:
                provider = self._resolver.resolve(model)
            except ResolutionError as exc:
                raise StepExecutionError(name, str(exc), file=self._source) from exc
            providers.append(provider.name)
            try:
                text = self._invoke(provider, model, config, prompt, inputs.files)
            except InvocationError as exc:
                raise StepExecutionError(name, str(exc), file=self._source) from exc
            except OSError as exc:
                raise StepExecutionError(
                    name,
                    f"cannot read input file: {exc}",
                    file=self._source,
                ) from exc
            texts.append((model, text))

        output = _combine_outputs(texts)
        self._write_outputs(name, config, output)
        elapsed = time.monotonic() - step_start
        self._emit(f"[{name}] Completed in {elapsed:.1f}s")
        return StepResult(
            step_name=name,
            status="completed",
            output=output,
            providers=providers,
            elapsed_seconds=elapsed,
        )

    def _invoke(
        self,
        provider: Provider,
        model: str,
        config: StepConfig,
        prompt: str,
        files: list[Path],
    ) -> str:
        if config.uses_responses and isinstance(provider, ResponsesProvider):
            responses_input = prompt
            for path in files:
                responses_input = compose_file_prompt(responses_input, FileInput.from_path(path))
            responses_config = ResponsesConfig(
                model=model,
                input=responses_input,
                instructions=config.instructions,
                previous_response_id=config.previous_response_id,
                max_output_tokens=config.max_output_tokens,
                temperature=config.temperature,
                top_p=config.top_p,
                stream=config.stream,
                tools=[dict(tool) for tool in config.tools],
                response_format=config.response_format,
            )
            if not config.stream:
                return provider.send_prompt_with_responses(responses_config)
            collector = TextCollector()
            provider.send_prompt_with_responses_stream(responses_config, collector)
            return collector.text

        if config.uses_responses:
            logger.debug(
                "Provider %s lacks the Responses protocol, sending plain prompt",
                provider.name,
            )
        if not files:
            return provider.send_prompt(model, prompt)
        return "\n\n".join(
            provider.send_prompt_with_file(model, prompt, FileInput.from_path(path))
            for path in files
        )

    def _gather_inputs(  # noqa: PLR0913
        self,
        name: str,
        config: StepConfig,
        outputs: Mapping[str, str],
        last_output: str,
        input_override: str | None,
    ) -> _Inputs:
        if input_override is not None:
            return _Inputs(texts=[input_override], files=[])

        texts: list[str] = []
        files: list[Path] = []
        for value in config.inputs:
            if is_previous_output(value):
                if last_output:
                    texts.append(last_output)
                continue
            if value in outputs:
                texts.append(outputs[value])
                continue
            path = self._resolve_path(value)
            if not path.is_file():
                raise StepExecutionError(name, f"input file not found: {path}", file=self._source)
            files.append(path)
        return _Inputs(texts=texts, files=files)

    def _write_outputs(self, name: str, config: StepConfig, output: str) -> None:
        for target in config.output:
            if is_stdout(target):
                if self._on_output is not None:
                    self._on_output(name, output)
                else:
                    logger.info("[%s] Output:\n%s", name, output)
                continue
            path = self._resolve_path(target)
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(output, "utf-8")
            except OSError as exc:
                raise StepExecutionError(
                    name,
                    f"cannot write output file {path}: {exc}",
                    file=self._source,
                ) from exc
            self._emit(f"[{name}] Wrote output to {path}")

    def _resolve_path(self, value: str) -> Path:
        path = Path(value.strip()).expanduser()
        if path.is_absolute() or self._settings.runtime_dir is None:
            return path
        return self._settings.runtime_dir / path

    def _emit(self, msg: str) -> None:
        """Log and notify progress callback."""
        logger.info(msg)
        self._on_progress(msg)


def run_pipeline(  # noqa: PLR0913
    pipeline: PipelineDescription,
    *,
    resolver: Resolver,
    initial_input: str = "",
    settings: ExecutorSettings | None = None,
    source: str | None = None,
    on_progress: Callable[[str], None] | None = None,
    on_output: Callable[[str, str], None] | None = None,
) -> PipelineRunResult:
    """Convenience wrapper around ``StepExecutor.run``."""

    return StepExecutor(
        pipeline,
        resolver=resolver,
        settings=settings,
        source=source,
        on_progress=on_progress,
        on_output=on_output,
    ).run(initial_input)


def _record(result: PipelineRunResult, step_result: StepResult) -> None:
    result.steps.append(step_result)
    output = step_result.output or ""
    result.outputs[step_result.step_name] = output
    result.last_output = output


def _build_prompt(action: str, texts: list[str]) -> str:
    if not texts:
        return action
    joined = "\n\n".join(texts)
    if not action:
        return joined
    return f"Input:\n{joined}\n\nAction: {action}"


def _combine_outputs(texts: list[tuple[str, str]]) -> str:
    if len(texts) == 1:
        return texts[0][1]
    return "\n\n".join(f"=== {model} ===\n{text}" for model, text in texts)

