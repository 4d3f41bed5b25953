"""Runtime configuration for providers, step execution and chunking."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse

from comanda.errors import ConfigurationError

PROVIDER_KEY_ENV = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "xai": "XAI_API_KEY",
    "deepseek": "DEEPSEEK_API_KEY",
    "google": "GOOGLE_API_KEY",
    "moonshot": "MOONSHOT_API_KEY",
}


@dataclass(slots=True)
class OllamaSettings:
    """Local inference endpoint settings."""

    base_url: str = "http://localhost:11434"
    probe_timeout_seconds: float = 5.0
    request_timeout_seconds: float = 300.0


@dataclass(slots=True)
class ProviderSettings:
    """Hosted provider credentials and transport settings."""

    api_keys: dict[str, str] = field(default_factory=dict)
    request_timeout_seconds: float = 120.0
    max_retries: int = 2


@dataclass(slots=True)
class ExecutorSettings:
    """Step executor tunables."""

    max_parallel_workers: int = 4
    max_defer_depth: int = 8
    runtime_dir: Path | None = None


@dataclass(slots=True)
class ChunkSettings:
    """Defaults for the chunk command."""

    by: str = "lines"
    size: int = 1000
    overlap: int = 0
    max_chunks: int = 100


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    ollama: OllamaSettings = field(default_factory=OllamaSettings)
    providers: ProviderSettings = field(default_factory=ProviderSettings)
    executor: ExecutorSettings = field(default_factory=ExecutorSettings)
    chunking: ChunkSettings = field(default_factory=ChunkSettings)
    verbose: bool = False

    @classmethod
    def from_env(cls, runtime_dir: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local use."""

        runtime_dir_raw = os.getenv("COMANDA_RUNTIME_DIR", "").strip()
        return cls(
            ollama=OllamaSettings(
                base_url=os.getenv("COMANDA_OLLAMA_BASE_URL", "http://localhost:11434").rstrip(
                    "/",
                ),
                probe_timeout_seconds=_env_float("COMANDA_OLLAMA_PROBE_TIMEOUT_SECONDS", 5.0),
                request_timeout_seconds=_env_float(
                    "COMANDA_OLLAMA_REQUEST_TIMEOUT_SECONDS",
                    300.0,
                ),
            ),
            providers=ProviderSettings(
                api_keys=_collect_api_keys(),
                request_timeout_seconds=_env_float(
                    "COMANDA_PROVIDER_REQUEST_TIMEOUT_SECONDS",
                    120.0,
                ),
                max_retries=_env_int("COMANDA_PROVIDER_MAX_RETRIES", 2),
            ),
            executor=ExecutorSettings(
                max_parallel_workers=_env_int("COMANDA_MAX_PARALLEL_WORKERS", 4),
                max_defer_depth=_env_int("COMANDA_MAX_DEFER_DEPTH", 8),
                runtime_dir=runtime_dir or (Path(runtime_dir_raw) if runtime_dir_raw else None),
            ),
            chunking=ChunkSettings(
                by=os.getenv("COMANDA_CHUNK_BY", "lines"),
                size=_env_int("COMANDA_CHUNK_SIZE", 1000),
                overlap=_env_int("COMANDA_CHUNK_OVERLAP", 0),
                max_chunks=_env_int("COMANDA_CHUNK_MAX_CHUNKS", 100),
            ),
            verbose=_env_bool("COMANDA_VERBOSE", default=False),
        )

    def validate(self) -> None:
        """Raise configuration error for out-of-range values."""

        parsed = urlparse(self.ollama.base_url)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ConfigurationError(
                "Invalid COMANDA_OLLAMA_BASE_URL: "
                f"{self.ollama.base_url!r}. Expected an absolute http(s) URL.",
            )
        if self.ollama.probe_timeout_seconds <= 0:
            raise ConfigurationError("COMANDA_OLLAMA_PROBE_TIMEOUT_SECONDS must be > 0.")
        if self.providers.request_timeout_seconds <= 0:
            raise ConfigurationError("COMANDA_PROVIDER_REQUEST_TIMEOUT_SECONDS must be > 0.")
        if self.providers.max_retries < 0:
            raise ConfigurationError("COMANDA_PROVIDER_MAX_RETRIES must be >= 0.")
        if self.executor.max_parallel_workers <= 0:
            raise ConfigurationError("COMANDA_MAX_PARALLEL_WORKERS must be a positive integer.")
        if self.executor.max_defer_depth <= 0:
            raise ConfigurationError("COMANDA_MAX_DEFER_DEPTH must be a positive integer.")


def _collect_api_keys() -> dict[str, str]:
    keys: dict[str, str] = {}
    for provider, env_name in PROVIDER_KEY_ENV.items():
        value = os.getenv(env_name, "").strip()
        if value:
            keys[provider] = value
    return keys


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as error:
        raise ConfigurationError(f"Invalid integer value for {name}: {raw!r}") from error


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as error:
        raise ConfigurationError(f"Invalid numeric value for {name}: {raw!r}") from error


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ConfigurationError(f"Invalid boolean value for {name}: {value!r}")
