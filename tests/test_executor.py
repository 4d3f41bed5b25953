from __future__ import annotations

import json
from pathlib import Path

import allure
from fakes import FakeProvider, FakeResolver

from comanda.config import ExecutorSettings
from comanda.errors import InvocationError
from comanda.pipeline.executor import StepExecutor, run_pipeline
from comanda.pipeline.loader import parse_pipeline
from comanda.providers.base import ResponsesConfig

pytestmark = [
    allure.epic("Workflow Core"),
    allure.feature("Step Execution"),
]


def _failing(model: str, _prompt: str) -> str:
    raise InvocationError("quota exhausted", provider="fake", model=model, transient=True)


def test_sequential_steps_chain_through_previous_output(echo_resolver, echo_provider) -> None:
    pipeline = parse_pipeline(
        {
            "write": {"model": "gpt-4o", "input": "NA", "action": "Write a haiku"},
            "count": {"model": "gpt-4o", "input": "STDIN", "action": "Count syllables"},
        },
    )

    result = run_pipeline(pipeline, resolver=echo_resolver)

    assert result.status == "completed"
    assert echo_provider.calls == [
        ("gpt-4o", "Write a haiku"),
        ("gpt-4o", "Input:\ngpt-4o: Write a haiku\n\nAction: Count syllables"),
    ]
    assert result.last_output == result.outputs["count"]
    assert [step.step_name for step in result.steps] == ["write", "count"]


def test_initial_input_feeds_first_previous_output(echo_resolver, echo_provider) -> None:
    pipeline = parse_pipeline({"shout": {"model": "m", "input": "STDIN", "action": "Uppercase"}})

    run_pipeline(pipeline, resolver=echo_resolver, initial_input="piped text")

    assert echo_provider.calls == [("m", "Input:\npiped text\n\nAction: Uppercase")]


def test_step_name_input_reads_that_steps_output(echo_resolver, echo_provider) -> None:
    pipeline = parse_pipeline(
        {
            "a": {"model": "m", "action": "first"},
            "b": {"model": "m", "action": "second"},
            "c": {"model": "m", "input": "a", "action": "third"},
        },
    )

    result = run_pipeline(pipeline, resolver=echo_resolver)

    assert result.status == "completed"
    assert echo_provider.calls[-1] == ("m", "Input:\nm: first\n\nAction: third")


def test_deferred_step_runs_with_directive_input() -> None:
    directive = json.dumps({"step": "analyze_haiku", "input": "five-seven-five"})

    def _respond(model: str, prompt: str) -> str:
        if prompt == "Write a haiku":
            return directive
        return f"analysis of [{prompt}]"

    provider = FakeProvider(responder=_respond)
    pipeline = parse_pipeline(
        {
            "write_haiku": {"model": "m", "input": "NA", "action": "Write a haiku"},
            "defer": {
                "analyze_haiku": {"model": "m", "input": "STDIN", "action": "Analyze"},
            },
        },
    )

    result = run_pipeline(pipeline, resolver=FakeResolver({"m": provider}))

    assert result.status == "completed"
    assert provider.calls[1] == ("m", "Input:\nfive-seven-five\n\nAction: Analyze")
    deferred = result.steps[1]
    assert deferred.step_name == "analyze_haiku"
    assert deferred.deferred is True
    assert deferred.triggered_by == "write_haiku"
    assert result.outputs["write_haiku"] == directive
    assert result.last_output == result.outputs["analyze_haiku"]


def test_prose_output_does_not_branch() -> None:
    provider = FakeProvider(responder=lambda _model, _prompt: "An old silent pond")
    pipeline = parse_pipeline(
        {
            "write_haiku": {"model": "m", "action": "Write a haiku"},
            "defer": {"analyze_haiku": {"model": "m", "input": "STDIN", "action": "Analyze"}},
        },
    )

    result = run_pipeline(pipeline, resolver=FakeResolver({"m": provider}))

    assert [step.step_name for step in result.steps] == ["write_haiku"]
    assert len(provider.calls) == 1


def test_unknown_deferred_target_is_plain_text() -> None:
    provider = FakeProvider(responder=lambda _model, _prompt: '{"step": "nowhere"}')
    pipeline = parse_pipeline(
        {
            "route": {"model": "m", "action": "Route"},
            "defer": {"somewhere": {"model": "m", "action": "Run"}},
        },
    )

    result = run_pipeline(pipeline, resolver=FakeResolver({"m": provider}))

    assert result.status == "completed"
    assert [step.step_name for step in result.steps] == ["route"]


def test_deferred_chains_stop_at_depth_limit() -> None:
    provider = FakeProvider(responder=lambda _model, _prompt: '{"step": "again"}')
    pipeline = parse_pipeline(
        {
            "start": {"model": "m", "action": "Begin"},
            "defer": {"again": {"model": "m", "input": "STDIN", "action": "Loop"}},
        },
    )

    result = run_pipeline(
        pipeline,
        resolver=FakeResolver({"m": provider}),
        settings=ExecutorSettings(max_defer_depth=3),
    )

    assert result.status == "completed"
    assert [step.step_name for step in result.steps] == ["start", "again", "again", "again"]


def test_deferred_step_resumes_at_triggering_steps_next() -> None:
    provider = FakeProvider(
        responder=lambda _model, prompt: '{"step": "d"}' if prompt == "A" else prompt.lower(),
    )
    pipeline = parse_pipeline(
        {
            "a": {"model": "m", "input": "NA", "action": "A", "next": "c"},
            "b": {"model": "m", "input": "NA", "action": "B"},
            "c": {"model": "m", "input": "NA", "action": "C"},
            "defer": {"d": {"model": "m", "input": "NA", "action": "D", "next": "b"}},
        },
    )

    result = run_pipeline(pipeline, resolver=FakeResolver({"m": provider}))

    assert result.status == "completed"
    assert [step.step_name for step in result.steps] == ["a", "d", "c"]
    assert "b" not in result.outputs


def test_parallel_group_runs_every_member_before_continuing(echo_resolver) -> None:
    pipeline = parse_pipeline(
        {
            "seed": {"model": "m", "action": "Seed"},
            "parallel-process": {
                "left": {"model": "m", "input": "STDIN", "action": "Left"},
                "right": {"model": "m", "input": "STDIN", "action": "Right"},
            },
            "merge": {"model": "m", "input": ["left", "right"], "action": "Merge"},
        },
    )

    result = run_pipeline(pipeline, resolver=echo_resolver)

    assert result.status == "completed"
    assert [step.step_name for step in result.steps] == ["seed", "left", "right", "merge"]
    assert result.steps[1].group == "parallel-process"
    assert result.outputs["left"] == "m: Input:\nm: Seed\n\nAction: Left"
    assert result.outputs["merge"].endswith("Action: Merge")


def test_parallel_partial_failure_keeps_successful_outputs() -> None:
    good = FakeProvider(name="good")
    bad = FakeProvider(name="bad", responder=_failing)
    pipeline = parse_pipeline(
        {
            "parallel-process": {
                "ok": {"model": "good-model", "action": "Works"},
                "broken": {"model": "bad-model", "action": "Fails"},
            },
            "after": {"model": "good-model", "input": "STDIN", "action": "Never"},
        },
    )

    result = run_pipeline(
        pipeline,
        resolver=FakeResolver({"good-model": good, "bad-model": bad}),
        source="flow.yaml",
    )

    assert result.status == "failed"
    assert "1 of 2 parallel steps failed: broken" in (result.error or "")
    assert result.error.startswith("flow.yaml: ")
    assert result.outputs == {"ok": "good-model: Works"}
    assert [step.step_name for step in result.failed_steps] == ["broken"]
    assert good.calls == [("good-model", "Works")]


def test_invocation_failure_preserves_earlier_outputs() -> None:
    good = FakeProvider(name="good")
    bad = FakeProvider(name="bad", responder=_failing)
    pipeline = parse_pipeline(
        {
            "first": {"model": "good-model", "action": "One"},
            "second": {"model": "bad-model", "input": "STDIN", "action": "Two"},
            "third": {"model": "good-model", "action": "Three"},
        },
    )

    result = run_pipeline(pipeline, resolver=FakeResolver({"good-model": good, "bad-model": bad}))

    assert result.status == "failed"
    assert "Step second failed" in (result.error or "")
    assert "quota exhausted" in (result.error or "")
    assert result.outputs == {"first": "good-model: One"}
    assert [step.status for step in result.steps] == ["completed", "failed"]


def test_unresolvable_model_fails_the_step() -> None:
    pipeline = parse_pipeline({"only": {"model": "mystery", "action": "Hi"}})

    result = run_pipeline(pipeline, resolver=FakeResolver({}))

    assert result.status == "failed"
    assert "No provider found for model 'mystery'" in (result.error or "")


def test_next_pointer_skips_intermediate_steps(echo_resolver, echo_provider) -> None:
    pipeline = parse_pipeline(
        {
            "a": {"model": "m", "action": "A", "next": "c"},
            "b": {"model": "m", "action": "B"},
            "c": {"model": "m", "action": "C"},
        },
    )

    result = run_pipeline(pipeline, resolver=echo_resolver)

    assert [step.step_name for step in result.steps] == ["a", "c"]
    assert [prompt for _model, prompt in echo_provider.calls] == ["A", "C"]


def test_multiple_models_are_labelled_in_output(echo_resolver) -> None:
    pipeline = parse_pipeline({"compare": {"model": ["m1", "m2"], "action": "Hi"}})

    result = run_pipeline(pipeline, resolver=echo_resolver)

    assert result.outputs["compare"] == "=== m1 ===\nm1: Hi\n\n=== m2 ===\nm2: Hi"


def test_file_inputs_and_outputs_resolve_against_runtime_dir(
    tmp_path: Path,
    echo_resolver,
    echo_provider,
) -> None:
    (tmp_path / "notes.txt").write_text("buy milk", "utf-8")
    pipeline = parse_pipeline(
        {
            "summarize": {
                "model": "m",
                "input": "notes.txt",
                "action": "Summarize",
                "output": ["out/summary.txt", "STDOUT"],
            },
        },
    )
    printed: list[tuple[str, str]] = []

    result = run_pipeline(
        pipeline,
        resolver=echo_resolver,
        settings=ExecutorSettings(runtime_dir=tmp_path),
        on_output=lambda step, text: printed.append((step, text)),
    )

    assert result.status == "completed"
    assert echo_provider.files[0].path == tmp_path / "notes.txt"
    written = (tmp_path / "out" / "summary.txt").read_text("utf-8")
    assert written == "m: Summarize\n[notes.txt]"
    assert printed == [("summarize", written)]


def test_missing_input_file_fails_the_step(tmp_path: Path, echo_resolver) -> None:
    pipeline = parse_pipeline({"read": {"model": "m", "input": "absent.txt", "action": "Read"}})

    result = run_pipeline(
        pipeline,
        resolver=echo_resolver,
        settings=ExecutorSettings(runtime_dir=tmp_path),
    )

    assert result.status == "failed"
    assert "input file not found" in (result.error or "")


class _ResponsesFake(FakeProvider):
    def __init__(self) -> None:
        super().__init__(name="openai")
        self.configs: list[ResponsesConfig] = []

    def send_prompt_with_responses(self, config: ResponsesConfig) -> str:
        self.configs.append(config)
        return '{"answer": 42}'

    def send_prompt_with_responses_stream(self, config: ResponsesConfig, handler) -> None:
        self.configs.append(config)
        handler.on_response_created({"id": "resp_1"})
        for index, delta in enumerate(["str", "eam", "ed"]):
            handler.on_output_text_delta("item_1", 0, index, delta)
        handler.on_response_completed({"id": "resp_1"})


def test_responses_steps_use_structured_protocol() -> None:
    provider = _ResponsesFake()
    pipeline = parse_pipeline(
        {
            "structured": {
                "type": "openai-responses",
                "model": "gpt-4o",
                "instructions": "Reply in JSON",
                "action": "What is the answer?",
                "response_format": {"type": "json_object"},
            },
            "streamed": {
                "type": "openai-responses",
                "model": "gpt-4o",
                "instructions": "Stream it",
                "input": "STDIN",
                "stream": True,
            },
        },
    )

    result = run_pipeline(pipeline, resolver=FakeResolver({"gpt-4o": provider}))

    assert result.status == "completed"
    assert provider.calls == []
    assert provider.configs[0].instructions == "Reply in JSON"
    assert provider.configs[0].input == "What is the answer?"
    assert provider.configs[0].response_format == {"type": "json_object"}
    assert provider.configs[1].input == '{"answer": 42}'
    assert result.outputs["streamed"] == "streamed"


def test_responses_type_falls_back_to_plain_prompt(echo_resolver, echo_provider) -> None:
    pipeline = parse_pipeline(
        {"plain": {"type": "openai-responses", "model": "m", "action": "Hello"}},
    )

    result = run_pipeline(pipeline, resolver=echo_resolver)

    assert result.status == "completed"
    assert echo_provider.calls == [("m", "Hello")]


def test_progress_callback_receives_step_events(echo_resolver) -> None:
    pipeline = parse_pipeline({"only": {"model": "m", "action": "Hi"}})
    events: list[str] = []

    StepExecutor(pipeline, resolver=echo_resolver, on_progress=events.append).run()

    assert any("[only] Starting" in event for event in events)
    assert any("completed" in event for event in events)
