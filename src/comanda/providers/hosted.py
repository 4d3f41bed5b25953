"""Hosted provider capabilities.

Each class adapts the shared ``send_prompt``/``send_prompt_with_file``
contract onto one vendor API. Payloads are kept to the fields the workflow
core needs; anything richer belongs to the vendor SDKs.
"""

from __future__ import annotations

import base64
import json
import logging
from typing import Any

from comanda.errors import InvocationError
from comanda.providers.base import (
    FileInput,
    ModelConfig,
    ResponsesConfig,
    ResponsesStreamHandler,
    compose_file_prompt,
)
from comanda.providers.transport import HttpProvider

logger = logging.getLogger(__name__)


def _b64(file: FileInput) -> str:
    return base64.b64encode(file.path.read_bytes()).decode("ascii")


def _data_url(file: FileInput) -> str:
    return f"data:{file.mime_type};base64,{_b64(file)}"


class OpenAICompatibleProvider(HttpProvider):
    """Chat-completions API shared by several vendors."""

    def send_prompt(self, model_name: str, prompt: str) -> str:
        return self._chat(model_name, [{"role": "user", "content": prompt}])

    def send_prompt_with_file(self, model_name: str, prompt: str, file: FileInput) -> str:
        if file.mime_type.startswith("image/"):
            content: Any = [
                {"type": "text", "text": prompt},
                {"type": "image_url", "image_url": {"url": _data_url(file)}},
            ]
        else:
            content = compose_file_prompt(prompt, file)
        return self._chat(model_name, [{"role": "user", "content": content}])

    def create_chat_completion_request(
        self,
        model_name: str,
        messages: list[dict[str, Any]] | None,
    ) -> dict[str, Any]:
        return {
            "model": model_name,
            "messages": messages or [],
            "temperature": self._config.temperature,
            "top_p": self._config.top_p,
            "max_tokens": self._config.max_tokens,
        }

    def _chat(self, model_name: str, messages: list[dict[str, Any]]) -> str:
        request = self.create_chat_completion_request(model_name, messages)
        body = self.post_json("/chat/completions", request, model_name=model_name)
        choices = body.get("choices")
        if not isinstance(choices, list) or not choices:
            raise self._empty_response(model_name)
        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        text = message.get("content") if isinstance(message, dict) else None
        if not isinstance(text, str) or not text.strip():
            raise self._empty_response(model_name)
        return text


class OpenAIProvider(OpenAICompatibleProvider):
    """OpenAI chat completions plus the structured Responses protocol."""

    provider_name = "openai"
    base_url = "https://api.openai.com/v1"

    def create_chat_completion_request(
        self,
        model_name: str,
        messages: list[dict[str, Any]] | None,
    ) -> dict[str, Any]:
        if not _is_reasoning_model(model_name):
            return super().create_chat_completion_request(model_name, messages)
        return {
            "model": model_name,
            "messages": messages or [],
            "max_completion_tokens": self._config.max_completion_tokens,
        }

    def send_prompt_with_responses(self, config: ResponsesConfig) -> str:
        body = self.post_json(
            "/responses",
            self._responses_payload(config, stream=False),
            model_name=config.model,
        )
        text = _responses_output_text(body)
        if not text.strip():
            raise self._empty_response(config.model)
        return text

    def send_prompt_with_responses_stream(
        self,
        config: ResponsesConfig,
        handler: ResponsesStreamHandler,
    ) -> None:
        payload = self._responses_payload(config, stream=True)
        try:
            with self.stream_lines("/responses", payload, model_name=config.model) as lines:
                for line in lines:
                    event = _parse_sse_data(line)
                    if event is not None:
                        self._dispatch_stream_event(event, handler, config.model)
        except InvocationError as error:
            handler.on_error(error)
            raise

    def _dispatch_stream_event(
        self,
        event: dict[str, Any],
        handler: ResponsesStreamHandler,
        model_name: str,
    ) -> None:
        event_type = event.get("type")
        if event_type == "response.created":
            handler.on_response_created(event.get("response") or {})
        elif event_type == "response.in_progress":
            handler.on_response_in_progress(event.get("response") or {})
        elif event_type == "response.output_item.added":
            handler.on_output_item_added(
                int(event.get("output_index", 0)),
                event.get("item") or {},
            )
        elif event_type == "response.output_text.delta":
            handler.on_output_text_delta(
                str(event.get("item_id", "")),
                int(event.get("output_index", 0)),
                int(event.get("content_index", 0)),
                str(event.get("delta", "")),
            )
        elif event_type == "response.completed":
            handler.on_response_completed(event.get("response") or {})
        elif event_type in {"error", "response.failed"}:
            detail = event.get("message") or event.get("error") or event.get("response")
            raise self._error(f"stream error: {detail}", model_name, transient=False)

    def _responses_payload(self, config: ResponsesConfig, *, stream: bool) -> dict[str, Any]:
        payload: dict[str, Any] = {"model": config.model, "input": config.input}
        if config.instructions:
            payload["instructions"] = config.instructions
        if config.previous_response_id:
            payload["previous_response_id"] = config.previous_response_id
        if config.max_output_tokens > 0:
            payload["max_output_tokens"] = config.max_output_tokens
        if config.temperature is not None:
            payload["temperature"] = config.temperature
        if config.top_p is not None:
            payload["top_p"] = config.top_p
        if config.tools:
            payload["tools"] = config.tools
        if config.response_format:
            payload["text"] = {"format": config.response_format}
        if stream:
            payload["stream"] = True
        return payload


class XAIProvider(OpenAICompatibleProvider):
    provider_name = "xai"
    base_url = "https://api.x.ai/v1"


class DeepseekProvider(OpenAICompatibleProvider):
    provider_name = "deepseek"
    base_url = "https://api.deepseek.com/v1"


class MoonshotProvider(OpenAICompatibleProvider):
    """Moonshot accepts temperatures in [0, 1] only."""

    provider_name = "moonshot"
    base_url = "https://api.moonshot.cn/v1"

    def default_config(self) -> ModelConfig:
        return ModelConfig(temperature=0.3, max_tokens=2000, max_completion_tokens=2000)

    def create_chat_completion_request(
        self,
        model_name: str,
        messages: list[dict[str, Any]] | None,
    ) -> dict[str, Any]:
        request = super().create_chat_completion_request(model_name, messages)
        request["temperature"] = min(max(request["temperature"], 0.0), 1.0)
        return request


class AnthropicProvider(HttpProvider):
    provider_name = "anthropic"
    base_url = "https://api.anthropic.com/v1"
    api_version = "2023-06-01"

    def auth_headers(self) -> dict[str, str]:
        return {"x-api-key": self._api_key, "anthropic-version": self.api_version}

    def send_prompt(self, model_name: str, prompt: str) -> str:
        return self._messages(model_name, [{"type": "text", "text": prompt}])

    def send_prompt_with_file(self, model_name: str, prompt: str, file: FileInput) -> str:
        if file.mime_type.startswith("image/"):
            block: dict[str, Any] = {
                "type": "image",
                "source": {"type": "base64", "media_type": file.mime_type, "data": _b64(file)},
            }
        elif file.mime_type == "application/pdf":
            block = {
                "type": "document",
                "source": {"type": "base64", "media_type": file.mime_type, "data": _b64(file)},
            }
        else:
            return self.send_prompt(model_name, compose_file_prompt(prompt, file))
        return self._messages(model_name, [block, {"type": "text", "text": prompt}])

    def _messages(self, model_name: str, content: list[dict[str, Any]]) -> str:
        payload = {
            "model": model_name,
            "max_tokens": self._config.max_tokens,
            "temperature": self._config.temperature,
            "messages": [{"role": "user", "content": content}],
        }
        body = self.post_json("/messages", payload, model_name=model_name)
        blocks = body.get("content")
        text = ""
        if isinstance(blocks, list):
            text = "".join(
                block.get("text", "")
                for block in blocks
                if isinstance(block, dict) and block.get("type") == "text"
            )
        if not text.strip():
            raise self._empty_response(model_name)
        return text


class GoogleProvider(HttpProvider):
    provider_name = "google"
    base_url = "https://generativelanguage.googleapis.com/v1beta"

    def auth_headers(self) -> dict[str, str]:
        return {"x-goog-api-key": self._api_key}

    def send_prompt(self, model_name: str, prompt: str) -> str:
        return self._generate(model_name, [{"text": prompt}])

    def send_prompt_with_file(self, model_name: str, prompt: str, file: FileInput) -> str:
        if file.is_text:
            return self.send_prompt(model_name, compose_file_prompt(prompt, file))
        parts = [
            {"inline_data": {"mime_type": file.mime_type, "data": _b64(file)}},
            {"text": prompt},
        ]
        return self._generate(model_name, parts)

    def _generate(self, model_name: str, parts: list[dict[str, Any]]) -> str:
        payload = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "temperature": self._config.temperature,
                "topP": self._config.top_p,
                "maxOutputTokens": self._config.max_tokens,
            },
        }
        body = self.post_json(
            f"/models/{model_name.strip()}:generateContent",
            payload,
            model_name=model_name,
        )
        text = ""
        candidates = body.get("candidates")
        if isinstance(candidates, list) and candidates and isinstance(candidates[0], dict):
            content = candidates[0].get("content") or {}
            text = "".join(
                part.get("text", "")
                for part in content.get("parts", [])
                if isinstance(part, dict)
            )
        if not text.strip():
            raise self._empty_response(model_name)
        return text


HOSTED_PROVIDER_ORDER: tuple[type[HttpProvider], ...] = (
    GoogleProvider,
    AnthropicProvider,
    XAIProvider,
    DeepseekProvider,
    MoonshotProvider,
    OpenAIProvider,
)


def _is_reasoning_model(model_name: str) -> bool:
    return model_name.strip().lower().startswith(("o1", "o3", "o4"))


def _responses_output_text(body: dict[str, Any]) -> str:
    direct = body.get("output_text")
    if isinstance(direct, str):
        return direct
    chunks: list[str] = []
    for item in body.get("output") or []:
        if not isinstance(item, dict) or item.get("type") != "message":
            continue
        for content in item.get("content") or []:
            if isinstance(content, dict) and content.get("type") == "output_text":
                chunks.append(str(content.get("text", "")))
    return "".join(chunks)


def _parse_sse_data(line: str) -> dict[str, Any] | None:
    if not line.startswith("data:"):
        return None
    raw = line[len("data:") :].strip()
    if not raw or raw == "[DONE]":
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.debug("Skipping malformed stream line: %s", raw[:200])
        return None
    return parsed if isinstance(parsed, dict) else None
