"""Map a free-form model name onto the provider capability that serves it."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from functools import partial

import httpx

from comanda.config import Settings
from comanda.errors import ResolutionError
from comanda.providers.base import Provider
from comanda.providers.hosted import HOSTED_PROVIDER_ORDER
from comanda.providers.ollama import OllamaProvider, is_model_available_locally
from comanda.providers.registry import ModelRegistry
from comanda.providers.transport import HttpProvider

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[], Provider]
LocalProbe = Callable[[str], bool]


class ProviderResolver:
    """Resolve model names with local-first precedence.

    1. The local capability wins when it supports the name and the model is
       actually present on the local server.
    2. Otherwise hosted capabilities are tried in ``hosted_factories`` order,
       most name-specific first.
    3. Otherwise the local capability is returned unconditionally; invoking
       it surfaces the failure if it cannot serve the model.
    """

    def __init__(
        self,
        *,
        local_factory: ProviderFactory | None,
        hosted_factories: Sequence[ProviderFactory],
        local_probe: LocalProbe,
    ) -> None:
        self._local_factory = local_factory
        self._hosted_factories = tuple(hosted_factories)
        self._local_probe = local_probe

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        registry: ModelRegistry | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> ProviderResolver:
        """Build the default resolver: Ollama locally, six hosted backends."""

        registry = registry or ModelRegistry.seeded()

        def _local() -> Provider:
            provider = OllamaProvider(
                registry=registry,
                base_url=settings.ollama.base_url,
                timeout_seconds=settings.ollama.request_timeout_seconds,
                max_retries=0,
                transport=transport,
            )
            provider.set_verbose(settings.verbose)
            return provider

        def _hosted(provider_cls: type[HttpProvider]) -> Provider:
            provider = provider_cls(
                registry=registry,
                timeout_seconds=settings.providers.request_timeout_seconds,
                max_retries=settings.providers.max_retries,
                transport=transport,
            )
            api_key = settings.providers.api_keys.get(provider.name)
            if api_key:
                provider.configure(api_key)
            provider.set_verbose(settings.verbose)
            return provider

        return cls(
            local_factory=_local,
            hosted_factories=[
                partial(_hosted, provider_cls) for provider_cls in HOSTED_PROVIDER_ORDER
            ],
            local_probe=partial(
                is_model_available_locally,
                base_url=settings.ollama.base_url,
                timeout_seconds=settings.ollama.probe_timeout_seconds,
                transport=transport,
            ),
        )

    def resolve(self, model_name: str) -> Provider:
        if not model_name or not model_name.strip():
            raise ResolutionError(model_name)
        logger.debug("Resolving provider for model %s", model_name)

        local = self._local_factory() if self._local_factory is not None else None
        if local is not None and local.supports_model(model_name) and self._local_probe(model_name):
            logger.debug("Using local provider %s for model %s", local.name, model_name)
            return local

        for factory in self._hosted_factories:
            provider = factory()
            if provider.supports_model(model_name):
                logger.debug("Found provider %s for model %s", provider.name, model_name)
                return provider

        if local is None:
            raise ResolutionError(model_name)
        logger.debug(
            "No hosted provider found, using %s as fallback for model %s",
            local.name,
            model_name,
        )
        return local
