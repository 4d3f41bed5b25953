"""Local-inference capability served by an Ollama endpoint."""

from __future__ import annotations

import base64
import logging
from typing import Any

import httpx

from comanda.providers.base import FileInput, compose_file_prompt
from comanda.providers.transport import HttpProvider

logger = logging.getLogger(__name__)

OLLAMA_PROVIDER = "ollama"
DEFAULT_OLLAMA_URL = "http://localhost:11434"
DEFAULT_PROBE_TIMEOUT_SECONDS = 5.0


class OllamaProvider(HttpProvider):
    """Send prompts to a local Ollama server; no credentials required."""

    provider_name = OLLAMA_PROVIDER
    base_url = DEFAULT_OLLAMA_URL
    requires_api_key = False

    def auth_headers(self) -> dict[str, str]:
        return {}

    def send_prompt(self, model_name: str, prompt: str) -> str:
        return self._generate(model_name, prompt)

    def send_prompt_with_file(self, model_name: str, prompt: str, file: FileInput) -> str:
        if file.mime_type.startswith("image/"):
            encoded = base64.b64encode(file.path.read_bytes()).decode("ascii")
            return self._generate(model_name, prompt, images=[encoded])
        return self._generate(model_name, compose_file_prompt(prompt, file))

    def _generate(self, model_name: str, prompt: str, images: list[str] | None = None) -> str:
        payload: dict[str, Any] = {
            "model": model_name,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": self._config.temperature,
                "top_p": self._config.top_p,
                "num_predict": self._config.max_tokens,
            },
        }
        if images:
            payload["images"] = images
        body = self.post_json("/api/generate", payload, model_name=model_name)
        text = body.get("response")
        if not isinstance(text, str) or not text.strip():
            raise self._empty_response(model_name)
        return text


def is_model_available_locally(
    model_name: str,
    *,
    base_url: str = DEFAULT_OLLAMA_URL,
    timeout_seconds: float = DEFAULT_PROBE_TIMEOUT_SECONDS,
    transport: httpx.BaseTransport | None = None,
) -> bool:
    """Return True when the local server lists ``model_name``.

    Any transport error, non-success status or malformed payload counts as
    "not available".
    """

    url = f"{base_url.rstrip('/')}/api/tags"
    try:
        with httpx.Client(timeout=timeout_seconds, transport=transport) as client:
            response = client.get(url)
    except httpx.HTTPError as error:
        logger.debug("Failed to connect to Ollama at %s: %s", url, error)
        return False

    if response.status_code != httpx.codes.OK:
        logger.debug("Ollama API returned status %d", response.status_code)
        return False

    try:
        payload = response.json()
    except ValueError as error:
        logger.debug("Failed to parse Ollama response: %s", error)
        return False

    names = _tag_names(payload)
    if names is None:
        logger.debug("Unexpected Ollama tags payload shape")
        return False

    wanted = model_name.strip().lower()
    if not wanted:
        return False
    for local_name in names:
        if local_model_matches(wanted, local_name):
            logger.debug("Found local model: %s -> %s", model_name, local_name)
            return True
    logger.debug("Model %s not found locally", model_name)
    return False


def local_model_matches(requested: str, local_name: str) -> bool:
    """Match exact names, ``name:tag`` bases and ``name.``/``name:`` prefixes."""

    wanted = requested.strip().lower()
    full = local_name.strip().lower()
    if not wanted:
        return False
    if full == wanted:
        return True
    if ":" in full and full.split(":", 1)[0] == wanted:
        return True
    if full.startswith(wanted):
        rest = full[len(wanted) :]
        return rest.startswith((":", "."))
    return False


def _tag_names(payload: Any) -> list[str] | None:
    if not isinstance(payload, dict):
        return None
    models = payload.get("models")
    if not isinstance(models, list):
        return None
    names: list[str] = []
    for entry in models:
        if isinstance(entry, dict) and isinstance(entry.get("name"), str):
            names.append(entry["name"])
    return names
