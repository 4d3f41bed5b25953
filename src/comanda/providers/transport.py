"""Shared httpx plumbing for provider capabilities."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import httpx

from comanda.errors import InvocationError
from comanda.providers.base import ModelConfig
from comanda.providers.registry import ModelRegistry

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 120.0
DEFAULT_MAX_RETRIES = 2

_TRANSIENT_STATUS_CODES = frozenset({408, 409, 425, 429, 500, 502, 503, 504, 529})


class HttpProvider:
    """Base for providers that talk JSON over HTTP.

    Subclasses set ``provider_name`` and ``base_url`` and build request
    payloads; this class owns credentials, verbosity, sampling config and
    the mapping of transport failures onto ``InvocationError``.
    """

    provider_name = ""
    base_url = ""
    requires_api_key = True

    def __init__(
        self,
        *,
        registry: ModelRegistry | None = None,
        base_url: str | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._registry = registry or ModelRegistry.seeded()
        if base_url is not None:
            self.base_url = base_url.rstrip("/")
        self._timeout = httpx.Timeout(timeout_seconds, connect=10.0)
        self._max_retries = max_retries
        self._transport = transport
        self._api_key = ""
        self._verbose = False
        self._config = self.default_config()

    @property
    def name(self) -> str:
        return self.provider_name

    def default_config(self) -> ModelConfig:
        return ModelConfig()

    def get_config(self) -> ModelConfig:
        return self._config

    def set_config(self, config: ModelConfig) -> None:
        self._config = config

    def supports_model(self, model_name: str) -> bool:
        return self._registry.validate_model(self.provider_name, model_name)

    def configure(self, api_key: str) -> None:
        self._api_key = api_key.strip()

    def set_verbose(self, verbose: bool) -> None:
        self._verbose = verbose

    def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}"}

    def _client(self) -> httpx.Client:
        transport = self._transport or httpx.HTTPTransport(retries=self._max_retries)
        return httpx.Client(timeout=self._timeout, transport=transport)

    def _log(self, message: str, *args: object) -> None:
        logger.log(logging.INFO if self._verbose else logging.DEBUG, message, *args)

    def _require_api_key(self, model_name: str) -> None:
        if self.requires_api_key and not self._api_key:
            raise InvocationError(
                f"{self.provider_name} API key is not configured",
                provider=self.provider_name,
                model=model_name,
                transient=False,
            )

    def post_json(
        self,
        path: str,
        payload: dict[str, Any],
        *,
        model_name: str,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """POST ``payload`` and return the decoded JSON object."""

        self._require_api_key(model_name)
        url = f"{self.base_url}{path}"
        self._log("[%s] POST %s model=%s", self.provider_name, url, model_name)
        try:
            with self._client() as client:
                response = client.post(
                    url,
                    json=payload,
                    headers=self.auth_headers(),
                    params=params,
                )
        except httpx.TimeoutException as error:
            raise self._error(f"request timed out: {error}", model_name, transient=True) from error
        except httpx.HTTPError as error:
            raise self._error(f"transport error: {error}", model_name, transient=True) from error
        self._raise_for_status(response, model_name)
        try:
            body = response.json()
        except ValueError as error:
            raise self._error("response is not valid JSON", model_name, transient=False) from error
        if not isinstance(body, dict):
            raise self._error("response JSON is not an object", model_name, transient=False)
        return body

    @contextmanager
    def stream_lines(
        self,
        path: str,
        payload: dict[str, Any],
        *,
        model_name: str,
    ) -> Iterator[Iterator[str]]:
        """POST ``payload`` and yield an iterator over response lines."""

        self._require_api_key(model_name)
        url = f"{self.base_url}{path}"
        self._log("[%s] POST (stream) %s model=%s", self.provider_name, url, model_name)
        try:
            with (
                self._client() as client,
                client.stream("POST", url, json=payload, headers=self.auth_headers()) as response,
            ):
                if not response.is_success:
                    response.read()
                self._raise_for_status(response, model_name)
                yield response.iter_lines()
        except httpx.TimeoutException as error:
            raise self._error(f"stream timed out: {error}", model_name, transient=True) from error
        except httpx.HTTPError as error:
            raise self._error(f"transport error: {error}", model_name, transient=True) from error

    def _raise_for_status(self, response: httpx.Response, model_name: str) -> None:
        if response.is_success:
            return
        detail = response.text.strip()[:500]
        raise self._error(
            f"HTTP {response.status_code}: {detail}",
            model_name,
            transient=response.status_code in _TRANSIENT_STATUS_CODES,
        )

    def _error(self, message: str, model_name: str, *, transient: bool) -> InvocationError:
        return InvocationError(
            f"{self.provider_name} call for model {model_name!r} failed: {message}",
            provider=self.provider_name,
            model=model_name,
            transient=transient,
        )

    def _empty_response(self, model_name: str) -> InvocationError:
        return self._error("empty response", model_name, transient=False)
