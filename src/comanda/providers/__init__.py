"""Provider capabilities, model registry and resolution."""

from comanda.providers.base import (
    FileInput,
    ModelConfig,
    Provider,
    ResponsesConfig,
    ResponsesProvider,
    ResponsesStreamHandler,
    TextCollector,
)
from comanda.providers.registry import ModelRegistry, default_registry
from comanda.providers.resolver import ProviderResolver

__all__ = [
    "FileInput",
    "ModelConfig",
    "ModelRegistry",
    "Provider",
    "ProviderResolver",
    "ResponsesConfig",
    "ResponsesProvider",
    "ResponsesStreamHandler",
    "TextCollector",
    "default_registry",
]
