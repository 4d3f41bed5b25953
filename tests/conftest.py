"""Shared test fixtures."""

from __future__ import annotations

import pytest
from fakes import FakeProvider

from comanda.config import PROVIDER_KEY_ENV
from comanda.errors import ResolutionError


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    """Keep developer credentials and COMANDA_* overrides out of tests."""

    for env_name in PROVIDER_KEY_ENV.values():
        monkeypatch.delenv(env_name, raising=False)
    for env_name in (
        "COMANDA_RUNTIME_DIR",
        "COMANDA_OLLAMA_BASE_URL",
        "COMANDA_VERBOSE",
        "COMANDA_CHUNK_BY",
        "COMANDA_CHUNK_SIZE",
        "COMANDA_CHUNK_OVERLAP",
        "COMANDA_CHUNK_MAX_CHUNKS",
        "COMANDA_MAX_PARALLEL_WORKERS",
        "COMANDA_MAX_DEFER_DEPTH",
    ):
        monkeypatch.delenv(env_name, raising=False)


@pytest.fixture()
def echo_provider() -> FakeProvider:
    return FakeProvider(name="echo")


@pytest.fixture()
def echo_resolver(echo_provider: FakeProvider):
    """Resolver that sends every model name to the same echo provider."""

    class _Resolver:
        def resolve(self, model_name: str) -> FakeProvider:
            if not model_name.strip():
                raise ResolutionError(model_name)
            return echo_provider

    return _Resolver()
