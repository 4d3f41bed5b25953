"""Pipeline description, loading and step execution."""

from comanda.pipeline.dispatch import DeferDirective, parse_defer_directive
from comanda.pipeline.executor import PipelineRunResult, StepExecutor, StepResult, run_pipeline
from comanda.pipeline.loader import load_pipeline, parse_pipeline
from comanda.pipeline.models import PipelineDescription, Step, StepConfig, normalize_values

__all__ = [
    "DeferDirective",
    "PipelineDescription",
    "PipelineRunResult",
    "Step",
    "StepConfig",
    "StepExecutor",
    "StepResult",
    "load_pipeline",
    "normalize_values",
    "parse_defer_directive",
    "parse_pipeline",
    "run_pipeline",
]
