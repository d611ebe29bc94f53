from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from issue_factory.checkpoint import ScriptedCheckpointGate
from issue_factory.events import RecordingEventSink
from issue_factory.llm import extract_json_payload
from issue_factory.loops import WorkflowOrchestrator
from issue_factory.models import CheckpointDecision, IssueTicket, TicketPriority, TicketType
from issue_factory.settings import RuntimeSettings
from issue_factory.staging import StagingManager
from issue_factory.supervisors import DevelopmentSupervisor, ResearchSupervisor

PLAN_TEXT = """### IMPLEMENTATION APPROACH
- Wrap `sync/client.py` fetch calls in a retry helper
- Reuse the backoff pattern from the uploader

### KEY FILES
- `sync/client.py`

### RISK FACTORS
- Retrying non-idempotent requests

### ESTIMATED COMPLEXITY
medium
"""

BASE_CODE = 'def fetch_with_retry():\n    """Retry failed requests."""\n    return 1\n'
HARDENED_CODE = (
    'def fetch_with_retry():\n    """Retry failed requests."""\n'
    "    try:\n        return 1\n    except OSError:\n        return None\n"
)


def _code_generation(prompt: str) -> dict[str, Any]:
    content = HARDENED_CODE if "add error handling" in prompt else BASE_CODE
    return {
        "files": [{"relative_path": "sync/client.py", "content": content, "classification": "source"}],
        "summary": "Retry wrapper for the sync client",
    }


def default_responses() -> dict[str, Any]:
    return {
        "documentation search": {
            "documentation_references": [{"url": "https://docs.example.org/sync", "title": "Sync guide"}],
            "suggested_approaches": ["Wrap calls in a retry helper"],
            "confidence": 0.8,
        },
        "context analysis": {
            "similar_contexts": ["retry in uploader"],
            "reusable_patterns": [{"pattern": "backoff", "description": "exponential backoff"}],
            "recommendations": ["Reuse the backoff helper"],
        },
        "plan generation": PLAN_TEXT,
        "code generation": _code_generation,
        "test environment": {
            "configs": [{"type": "unit", "framework": "pytest"}],
            "files": [{"relative_path": "tests/test_client.py", "content": "def test_fetch():\n    assert True\n"}],
            "fixtures": [{"relative_path": "tests/fixtures/payload.json", "content": '{"id": 1}\n'}],
        },
        "validation": {
            "requirements_met": [{"requirement": "Retry failed requests", "met": True}],
            "acceptance_criteria_passed": [{"criterion": "Failed requests are retried", "passed": True}],
            "overall_score": 85,
            "recommendations": [],
        },
    }


class FakeTextGenerator:
    """Answer prompts by their ``## Task: <name>`` marker."""

    def __init__(self, responses: dict[str, Any] | None = None) -> None:
        self.responses = default_responses()
        self.responses.update(responses or {})
        self.prompts: list[str] = []

    def prompts_for(self, task: str) -> list[str]:
        return [prompt for prompt in self.prompts if f"## Task: {task}" in prompt]

    def _respond(self, prompt: str) -> Any:
        self.prompts.append(prompt)
        for task, response in self.responses.items():
            if f"## Task: {task}" not in prompt:
                continue
            if isinstance(response, Exception):
                raise response
            if callable(response):
                response = response(prompt)
            return response
        raise AssertionError(f"Unexpected prompt: {prompt[:120]}")

    def invoke(self, prompt: str) -> str:
        response = self._respond(prompt)
        return response if isinstance(response, str) else json.dumps(response)

    def invoke_for_json(self, prompt: str) -> dict[str, Any]:
        response = self._respond(prompt)
        if isinstance(response, str):
            return extract_json_payload(response)
        return dict(response)


@pytest.fixture
def issue() -> IssueTicket:
    return IssueTicket(
        title="Add retry to the sync client",
        type=TicketType.FEATURE,
        priority=TicketPriority.MEDIUM,
        domain="data-sync",
        description="Transient network failures abort the sync.",
        components=["sync/client.py"],
        requirements=["Retry failed requests"],
        acceptance_criteria=["Failed requests are retried"],
        documentation=["https://docs.example.org/retry"],
    )


@pytest.fixture
def fake_llm() -> FakeTextGenerator:
    return FakeTextGenerator()


@pytest.fixture
def events() -> RecordingEventSink:
    return RecordingEventSink()


@pytest.fixture
def target_root(tmp_path: Path) -> Path:
    root = tmp_path / "target"
    root.mkdir()
    return root


@pytest.fixture
def staging(tmp_path: Path, events: RecordingEventSink) -> StagingManager:
    return StagingManager(prefix="test-staging", temp_root=tmp_path / "staging", events=events)


OrchestratorFactory = Callable[..., WorkflowOrchestrator]


@pytest.fixture
def make_orchestrator(
    fake_llm: FakeTextGenerator,
    staging: StagingManager,
    events: RecordingEventSink,
) -> OrchestratorFactory:
    def _make(
        research: list[CheckpointDecision] | None = None,
        development: list[CheckpointDecision] | None = None,
        settings: RuntimeSettings | None = None,
    ) -> WorkflowOrchestrator:
        return WorkflowOrchestrator(
            research_supervisor=ResearchSupervisor(fake_llm, events=events),
            development_supervisor=DevelopmentSupervisor(fake_llm, events=events),
            gate=ScriptedCheckpointGate(research or [CheckpointDecision.approve()]),
            development_gate=ScriptedCheckpointGate(development or [CheckpointDecision.approve()]),
            staging=staging,
            settings=settings or RuntimeSettings(),
            events=events,
        )

    return _make
