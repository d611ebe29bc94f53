from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest
from langchain_core.messages import HumanMessage, SystemMessage

from issue_factory.llm import (
    ChatTextGenerator,
    MalformedResponseError,
    content_to_text,
    ensure_openai_api_key,
    extract_json_payload,
    parse_payload,
)
from issue_factory.models import ResearchFindings


class _Runnable:
    def __init__(self, content: Any) -> None:
        self.content = content
        self.inputs: list[Any] = []

    def invoke(self, input: Any) -> Any:  # noqa: A002
        self.inputs.append(input)
        return SimpleNamespace(content=self.content)


def test_extract_json_payload_accepts_plain_json() -> None:
    assert extract_json_payload('{"a": 1}') == {"a": 1}


def test_extract_json_payload_reads_fenced_block() -> None:
    text = 'Here you go:\n```json\n{"files": []}\n```\nDone.'
    assert extract_json_payload(text) == {"files": []}


def test_extract_json_payload_reads_embedded_object() -> None:
    assert extract_json_payload('Result: {"score": 3} as requested') == {"score": 3}


@pytest.mark.parametrize("text", ["", "   ", "no json here", "[1, 2, 3]", "{not: valid}"])
def test_extract_json_payload_rejects_unusable_text(text: str) -> None:
    with pytest.raises(MalformedResponseError):
        extract_json_payload(text)


def test_parse_payload_wraps_validation_errors() -> None:
    with pytest.raises(MalformedResponseError, match="ResearchFindings"):
        parse_payload({"confidence": 7}, ResearchFindings)
    assert parse_payload({"confidence": 0.4}, ResearchFindings).confidence == pytest.approx(0.4)


def test_content_to_text_flattens_content_blocks() -> None:
    content = [{"type": "text", "text": "first"}, "second", {"content": "third"}]
    assert content_to_text(content) == "first\nsecond\nthird"


def test_chat_text_generator_wraps_prompt_with_system_message() -> None:
    runnable = _Runnable([{"type": "text", "text": '{"ok": true}'}])
    generator = ChatTextGenerator(runnable=runnable, system_prompt="Be terse.")
    assert generator.invoke_for_json("Check it") == {"ok": True}

    messages = runnable.inputs[0]
    assert isinstance(messages[0], SystemMessage)
    assert isinstance(messages[1], HumanMessage)
    assert "Respond ONLY with a single valid JSON object" in messages[1].content


def test_chat_text_generator_passes_bare_prompt_without_system_message() -> None:
    runnable = _Runnable("plain answer")
    assert ChatTextGenerator(runnable=runnable).invoke("question") == "plain answer"
    assert runnable.inputs == ["question"]


def test_ensure_openai_api_key_requires_a_key(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(RuntimeError, match="OPENAI_API_KEY"):
        ensure_openai_api_key(repo_root=tmp_path)


def test_ensure_openai_api_key_loads_dotenv(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    (tmp_path / ".env").write_text("OPENAI_API_KEY=sk-from-dotenv\n", encoding="utf-8")
    assert ensure_openai_api_key(repo_root=tmp_path) == "sk-from-dotenv"
