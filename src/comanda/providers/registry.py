"""Catalog of known model names and model-family prefixes per provider."""

from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

DEFAULT_MODELS: dict[str, tuple[str, ...]] = {
    "anthropic": (
        "claude-3-5-sonnet-20241022",
        "claude-3-5-sonnet-latest",
        "claude-3-5-haiku-latest",
        "claude-3-7-sonnet-20250219",
        "claude-3-7-sonnet-latest",
        "claude-3-5-haiku-20241022",
        "claude-opus-4-20250514",
        "claude-sonnet-4-20250514",
    ),
    "openai": (
        "gpt-4o",
        "gpt-4o-audio-preview",
        "o1",
        "o3-mini",
        "o1-pro",
        "o4-mini",
        "gpt-4.1",
        "o3-pro",
        "o3",
        "chatgpt-4o-latest",
    ),
    "xai": (
        "grok-beta",
        "grok-vision-beta",
        "grok-4",
        "grok-4-heavy",
    ),
    "deepseek": (
        "deepseek-chat",
        "deepseek-coder",
        "deepseek-vision",
        "deepseek-reasoner",
    ),
    "google": (
        "gemini-2.5-pro",
        "gemini-2.5-flash",
        "gemini-2.5-flash-lite",
        "gemini-1.5-flash",
        "gemini-1.5-pro",
        "gemini-1.0-pro",
        "aqa",
    ),
    "moonshot": (
        "moonshot-v1-8k",
        "moonshot-v1-32k",
        "moonshot-v1-128k",
        "moonshot-v1-auto",
    ),
}

DEFAULT_FAMILIES: dict[str, tuple[str, ...]] = {
    "anthropic": (
        "claude-3-5-sonnet",
        "claude-3-5-haiku",
        "claude-3-7-sonnet",
        "claude-opus-4",
        "claude-sonnet-4",
    ),
    "google": (
        "gemini-1.5",
        "gemini-2.5",
    ),
    "moonshot": ("moonshot-",),
    "openai": (
        "gpt-",
        "chatgpt-",
        "o1-",
        "o3-",
        "o4-",
    ),
    "xai": ("grok-",),
    "ollama": (
        "llama",
        "mistral",
        "mixtral",
        "gemma",
        "qwen",
        "phi",
        "codellama",
        "deepseek-r1",
        "gpt-oss",
        "nomic",
        "tinyllama",
    ),
}


class _ReadWriteLock:
    """Many concurrent readers or one exclusive writer."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class ModelRegistry:
    """Thread-safe registry of exact model names and family prefixes per provider.

    Lookups are case-insensitive and whitespace-trimmed. A name is supported
    by a provider when it equals a registered name or starts with one of the
    provider's registered family prefixes. Registration appends without
    deduplication.
    """

    def __init__(self) -> None:
        self._models: dict[str, list[str]] = {}
        self._families: dict[str, list[str]] = {}
        self._lock = _ReadWriteLock()

    @classmethod
    def seeded(cls) -> ModelRegistry:
        """Registry pre-populated with the default catalog."""

        registry = cls()
        for provider, models in DEFAULT_MODELS.items():
            registry.register_models(provider, models)
        for provider, families in DEFAULT_FAMILIES.items():
            registry.register_families(provider, families)
        return registry

    def register_models(self, provider: str, models: Iterable[str]) -> None:
        with self._lock.write():
            self._models.setdefault(provider, []).extend(_normalize(m) for m in models)

    def register_families(self, provider: str, families: Iterable[str]) -> None:
        with self._lock.write():
            self._families.setdefault(provider, []).extend(_normalize(f) for f in families)

    def get_models(self, provider: str) -> list[str]:
        with self._lock.read():
            return list(self._models.get(provider, ()))

    def get_families(self, provider: str) -> list[str]:
        with self._lock.read():
            return list(self._families.get(provider, ()))

    def validate_model(self, provider: str, model_name: str) -> bool:
        """Return True when ``provider`` supports ``model_name``."""

        normalized = _normalize(model_name)
        if not normalized:
            return False
        with self._lock.read():
            if normalized in self._models.get(provider, ()):
                return True
            return any(
                family and normalized.startswith(family)
                for family in self._families.get(provider, ())
            )

    def get_all_models(self) -> dict[str, list[str]]:
        """Snapshot of every provider's exact model names."""

        with self._lock.read():
            return {provider: list(models) for provider, models in self._models.items()}

    def get_all_models_list(self) -> list[str]:
        with self._lock.read():
            return [model for models in self._models.values() for model in models]


def default_registry() -> ModelRegistry:
    """Return a freshly seeded registry instance."""

    return ModelRegistry.seeded()


def _normalize(value: str) -> str:
    return value.strip().lower()
