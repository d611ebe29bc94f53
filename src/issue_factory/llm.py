from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, TypeVar

from dotenv import load_dotenv
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI
from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_DEFAULT_TIMEOUT: int = 120
_DEFAULT_MAX_RETRIES: int = 3


class MalformedResponseError(RuntimeError):
    """Raised when a text-generation response holds no usable JSON object."""


class SupportsInvoke(Protocol):
    """Protocol for any LangChain-compatible runnable that supports invoke."""

    def invoke(self, input: Any) -> Any:  # noqa: ANN401 - external runnable protocol.
        ...


class TextGenerator(Protocol):
    """Two-method contract the orchestration core depends on."""

    def invoke(self, prompt: str) -> str:
        ...

    def invoke_for_json(self, prompt: str) -> dict[str, Any]:
        ...


@dataclass(slots=True)
class ChatTextGenerator:
    """Adapter exposing a LangChain chat model through the ``TextGenerator`` contract."""

    runnable: SupportsInvoke
    system_prompt: str | None = None

    def invoke(self, prompt: str) -> str:
        if self.system_prompt:
            payload: Any = [SystemMessage(content=self.system_prompt), HumanMessage(content=prompt)]
        else:
            payload = prompt
        response = self.runnable.invoke(payload)
        return content_to_text(getattr(response, "content", response))

    def invoke_for_json(self, prompt: str) -> dict[str, Any]:
        text = self.invoke(f"{prompt}\n\nRespond ONLY with a single valid JSON object. No commentary.")
        return extract_json_payload(text)


def ensure_openai_api_key(repo_root: Path | None = None) -> str:
    """Load OPENAI_API_KEY from environment or .env and return it.

    Searches the environment first, then falls back to a ``.env`` file at the
    given ``repo_root`` (or cwd if not specified).

    Raises:
        RuntimeError: If OPENAI_API_KEY is unavailable after all sources are checked.
    """
    repo = repo_root if repo_root is not None else Path.cwd()
    env_path = repo / ".env"
    if env_path.is_file():
        load_dotenv(env_path)

    key = os.getenv("OPENAI_API_KEY", "").strip()
    if not key:
        raise RuntimeError("OPENAI_API_KEY is required for text generation")
    return key


def get_chat_model(
    *,
    model_name: str,
    temperature: float = 0.0,
    timeout: int = _DEFAULT_TIMEOUT,
    max_retries: int = _DEFAULT_MAX_RETRIES,
    max_completion_tokens: int | None = None,
    repo_root: Path | None = None,
) -> ChatOpenAI:
    """Construct a ChatOpenAI instance with validated API key and production defaults.

    Args:
        model_name: OpenAI model identifier (e.g. 'gpt-4o', 'gpt-4o-mini').
        temperature: Sampling temperature.
        timeout: Request timeout in seconds.
        max_retries: Maximum number of retry attempts on transient failures.
        max_completion_tokens: Maximum tokens for the completion response.
            When None, the model default is used.
        repo_root: Optional repo root for .env file resolution.

    Raises:
        RuntimeError: If OPENAI_API_KEY is not available.
    """
    if not model_name or not model_name.strip():
        raise ValueError("model_name must be a non-empty string")
    ensure_openai_api_key(repo_root=repo_root)
    kwargs: dict[str, Any] = {
        "model": model_name,
        "temperature": temperature,
        "timeout": timeout,
        "max_retries": max_retries,
    }
    if max_completion_tokens is not None:
        kwargs["max_completion_tokens"] = max_completion_tokens
    return ChatOpenAI(**kwargs)


def get_text_generator(
    *,
    model_name: str,
    temperature: float = 0.0,
    max_completion_tokens: int | None = None,
    system_prompt: str | None = None,
    repo_root: Path | None = None,
) -> ChatTextGenerator:
    model = get_chat_model(
        model_name=model_name,
        temperature=temperature,
        max_completion_tokens=max_completion_tokens,
        repo_root=repo_root,
    )
    return ChatTextGenerator(runnable=model, system_prompt=system_prompt)


def content_to_text(content: Any) -> str:
    """Recursively extract plain text from heterogeneous LLM response content.

    Handles strings, lists of text/dict items, and nested content structures
    produced by various LLM response formats.
    """
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        chunks: list[str] = []
        for item in content:
            if isinstance(item, str):
                chunks.append(item)
                continue
            if isinstance(item, dict):
                text_value = item.get("text")
                if isinstance(text_value, str):
                    chunks.append(text_value)
                    continue
                nested = item.get("content")
                if nested is not None:
                    chunks.append(content_to_text(nested))
                    continue
                chunks.append(json.dumps(item, sort_keys=True))
                continue
            chunks.append(str(item))
        return "\n".join(chunk for chunk in chunks if chunk.strip())
    if isinstance(content, dict):
        if "content" in content:
            return content_to_text(content["content"])
        return json.dumps(content, sort_keys=True)
    return str(content)


def extract_json_payload(text: str) -> dict[str, Any]:
    """Extract a JSON object from generated text.

    Attempts parsing in order: direct JSON, fenced code block, first/last brace extraction.

    Raises:
        MalformedResponseError: If no valid JSON object can be extracted from the text.
    """
    body = text.strip()
    if not body:
        raise MalformedResponseError("Response was empty; expected a JSON object")

    try:
        parsed = json.loads(body)
    except json.JSONDecodeError:
        parsed = None
    if isinstance(parsed, dict):
        return parsed

    fenced = re.search(r"```(?:json)?\s*(\{.*?\})\s*```", body, flags=re.DOTALL)
    if fenced is not None:
        try:
            payload = json.loads(fenced.group(1))
        except json.JSONDecodeError as exc:
            raise MalformedResponseError(f"Failed to parse fenced JSON payload: {exc}") from exc
        if isinstance(payload, dict):
            return payload

    start = body.find("{")
    end = body.rfind("}")
    if start != -1 and end != -1 and end > start:
        candidate = body[start : end + 1]
        try:
            payload = json.loads(candidate)
        except json.JSONDecodeError as exc:
            raise MalformedResponseError(f"Failed to parse extracted JSON payload: {exc}") from exc
        if isinstance(payload, dict):
            return payload

    preview = body[:220].replace("\n", " ")
    raise MalformedResponseError(f"Response did not contain a JSON object: {preview}")


def parse_payload(payload: dict[str, Any], schema: type[ModelT]) -> ModelT:
    """Validate a decoded JSON payload against ``schema``.

    Raises:
        MalformedResponseError: If the payload does not satisfy the schema.
    """
    try:
        return schema.model_validate(payload)
    except ValidationError as exc:
        raise MalformedResponseError(f"Response validation failed for {schema.__name__}: {exc}") from exc
