"""Controllers for CLI commands: workflow processing, chunking and model listing."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from comanda.chunker import ChunkConfig, split_file
from comanda.config import Settings
from comanda.errors import ConfigurationError, LimitExceededError
from comanda.pipeline.executor import Resolver, StepExecutor
from comanda.pipeline.loader import load_pipeline
from comanda.providers.registry import DEFAULT_FAMILIES, ModelRegistry
from comanda.providers.resolver import ProviderResolver

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ProcessCommand:
    """CLI input for workflow processing."""

    files: tuple[Path, ...]
    runtime_dir: Path | None = None
    stdin_data: str = ""
    verbose: bool = False


@dataclass(slots=True)
class ChunkCommand:
    """CLI input for file chunking."""

    file: Path
    by: str | None = None
    size: int | None = None
    overlap: int | None = None
    max_chunks: int | None = None


@dataclass(slots=True)
class CommandResult:
    lines: list[str]
    success: bool


class CliController:
    """Coordinates workflow processing, chunking and registry listing."""

    def __init__(
        self,
        resolver_factory: Callable[[Settings, ModelRegistry], Resolver] | None = None,
    ) -> None:
        self._resolver_factory = resolver_factory or _default_resolver

    def process(self, command: ProcessCommand) -> CommandResult:
        """Run each workflow file in turn; one file's failure does not stop the rest."""

        try:
            settings = Settings.from_env(runtime_dir=command.runtime_dir)
            settings.verbose = settings.verbose or command.verbose
            settings.validate()
        except ConfigurationError as error:
            return CommandResult(lines=[f"Configuration error: {error}"], success=False)

        resolver = self._resolver_factory(settings, ModelRegistry.seeded())
        lines: list[str] = []
        success = True
        for file in command.files:
            lines.append(f"Processing workflow file: {file}")
            try:
                pipeline = load_pipeline(file)
            except ConfigurationError as error:
                lines.append(f"Error parsing workflow file {file}: {error}")
                success = False
                continue

            executor = StepExecutor(
                pipeline,
                resolver=resolver,
                settings=settings.executor,
                source=str(file),
                on_output=lambda _step, text: lines.append(text),
            )
            result = executor.run(command.stdin_data)
            if result.status != "completed":
                logger.warning("Workflow %s failed: %s", file, result.error)
                lines.append(f"Error processing workflow file {file}: {result.error}")
                success = False
                continue
            lines.append(
                f"Completed {file}: run_id={result.run_id} steps={len(result.steps)}",
            )
        return CommandResult(lines=lines, success=success)

    def chunk(self, command: ChunkCommand) -> CommandResult:
        try:
            defaults = Settings.from_env().chunking
            config = ChunkConfig(
                by=command.by or defaults.by,
                size=_pick(command.size, defaults.size),
                overlap=_pick(command.overlap, defaults.overlap),
                max_chunks=_pick(command.max_chunks, defaults.max_chunks),
            )
            result = split_file(command.file, config)
        except (ConfigurationError, LimitExceededError) as error:
            return CommandResult(lines=[f"Chunking failed: {error}"], success=False)
        except OSError as error:
            return CommandResult(lines=[f"Cannot read {command.file}: {error}"], success=False)
        lines = [f"Created {result.total_chunks} chunks in {result.temp_dir}"]
        lines.extend(str(path) for path in result.chunk_paths)
        return CommandResult(lines=lines, success=True)

    def list_models(self, provider: str | None = None) -> list[str]:
        registry = ModelRegistry.seeded()
        known = set(registry.get_all_models()) | set(DEFAULT_FAMILIES)
        providers = [provider] if provider else sorted(known)
        lines: list[str] = []
        for name in providers:
            families = registry.get_families(name)
            lines.append(f"{name}:")
            lines.extend(f"  - {model}" for model in registry.get_models(name))
            if families:
                lines.append(f"  families: {', '.join(families)}")
        return lines


def _default_resolver(settings: Settings, registry: ModelRegistry) -> Resolver:
    return ProviderResolver.from_settings(settings, registry=registry)


def _pick(value: int | None, default: int) -> int:
    return default if value is None else value
