"""Error taxonomy shared by the chunker, provider layer and step executor."""

from __future__ import annotations


class ComandaError(RuntimeError):
    """Base class for all workflow-core failures."""


class ConfigurationError(ComandaError, ValueError):
    """Invalid chunk configuration, settings value or pipeline description."""


class LimitExceededError(ComandaError):
    """Operation would exceed a configured ceiling."""

    def __init__(self, message: str, *, total_chunks: int, max_chunks: int) -> None:
        super().__init__(message)
        self.total_chunks = total_chunks
        self.max_chunks = max_chunks


class ResolutionError(ComandaError):
    """No provider capability accepts the requested model name."""

    def __init__(self, model: str) -> None:
        super().__init__(f"No provider found for model {model!r}")
        self.model = model


class InvocationError(ComandaError):
    """Provider call failed, with retryability hint."""

    def __init__(self, message: str, *, provider: str, model: str, transient: bool) -> None:
        super().__init__(message)
        self.provider = provider
        self.model = model
        self.transient = transient


class UnknownDeferredStepError(ComandaError):
    """Defer directive names a step absent from the deferred namespace."""

    def __init__(self, step: str) -> None:
        super().__init__(f"Deferred step not found: {step!r}")
        self.step = step


class StepExecutionError(ComandaError):
    """Pipeline step failure."""

    def __init__(self, step: str, message: str, *, file: str | None = None) -> None:
        location = f"{file}: " if file else ""
        super().__init__(f"{location}Step {step} failed: {message}")
        self.step = step
        self.file = file
