"""Provider capability contracts shared by all model backends."""

from __future__ import annotations

import mimetypes
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol, runtime_checkable


@dataclass(slots=True)
class ModelConfig:
    """Sampling options applied to every call a provider makes."""

    temperature: float = 0.7
    max_tokens: int = 2000
    max_completion_tokens: int = 2000
    top_p: float = 1.0


@dataclass(slots=True)
class FileInput:
    """A file attached to a prompt."""

    path: Path
    mime_type: str

    @classmethod
    def from_path(cls, path: str | Path) -> FileInput:
        resolved = Path(path)
        guessed, _ = mimetypes.guess_type(resolved.name)
        return cls(path=resolved, mime_type=guessed or "text/plain")

    @property
    def is_text(self) -> bool:
        return self.mime_type.startswith("text/") or self.mime_type in {
            "application/json",
            "application/xml",
            "application/x-yaml",
            "application/yaml",
        }


@dataclass(slots=True)
class ResponsesConfig:
    """Request options for the structured Responses protocol."""

    model: str
    input: str
    instructions: str = ""
    previous_response_id: str = ""
    max_output_tokens: int = 0
    temperature: float | None = None
    top_p: float | None = None
    stream: bool = False
    tools: list[dict[str, Any]] = field(default_factory=list)
    response_format: dict[str, Any] | None = None


class ResponsesStreamHandler(Protocol):
    """Callbacks for streamed Responses events."""

    def on_response_created(self, response: dict[str, Any]) -> None: ...

    def on_response_in_progress(self, response: dict[str, Any]) -> None: ...

    def on_output_item_added(self, index: int, item: dict[str, Any]) -> None: ...

    def on_output_text_delta(
        self,
        item_id: str,
        index: int,
        content_index: int,
        delta: str,
    ) -> None: ...

    def on_response_completed(self, response: dict[str, Any]) -> None: ...

    def on_error(self, error: Exception) -> None: ...


class TextCollector:
    """Stream handler that accumulates text deltas and forwards them."""

    def __init__(self, on_delta: Callable[[str], None] | None = None) -> None:
        self._parts: list[str] = []
        self._on_delta = on_delta
        self.response_id = ""
        self.error: Exception | None = None

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def on_response_created(self, response: dict[str, Any]) -> None:
        self.response_id = str(response.get("id", ""))

    def on_response_in_progress(self, response: dict[str, Any]) -> None:
        pass

    def on_output_item_added(self, index: int, item: dict[str, Any]) -> None:
        pass

    def on_output_text_delta(
        self,
        item_id: str,
        index: int,
        content_index: int,
        delta: str,
    ) -> None:
        self._parts.append(delta)
        if self._on_delta is not None:
            self._on_delta(delta)

    def on_response_completed(self, response: dict[str, Any]) -> None:
        self.response_id = str(response.get("id", self.response_id))

    def on_error(self, error: Exception) -> None:
        self.error = error


@runtime_checkable
class Provider(Protocol):
    """Uniform invocation contract for one LLM backend."""

    @property
    def name(self) -> str: ...

    def supports_model(self, model_name: str) -> bool: ...

    def send_prompt(self, model_name: str, prompt: str) -> str: ...

    def send_prompt_with_file(self, model_name: str, prompt: str, file: FileInput) -> str: ...

    def configure(self, api_key: str) -> None: ...

    def set_verbose(self, verbose: bool) -> None: ...


@runtime_checkable
class ResponsesProvider(Provider, Protocol):
    """Provider extended with the structured Responses protocol."""

    def send_prompt_with_responses(self, config: ResponsesConfig) -> str: ...

    def send_prompt_with_responses_stream(
        self,
        config: ResponsesConfig,
        handler: ResponsesStreamHandler,
    ) -> None: ...


def read_file_text(file: FileInput) -> str:
    """Read an attached text file for inlining into a prompt."""

    return file.path.read_text("utf-8", errors="replace")


def compose_file_prompt(prompt: str, file: FileInput) -> str:
    """Inline a text attachment ahead of the prompt."""

    return f"File: {file.path.name}\n\n{read_file_text(file)}\n\n{prompt}"
