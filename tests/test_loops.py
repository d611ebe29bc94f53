from __future__ import annotations

from pathlib import Path

import pytest

from conftest import BASE_CODE, HARDENED_CODE, FakeTextGenerator, OrchestratorFactory
from issue_factory.events import EventKind, RecordingEventSink
from issue_factory.loops import (
    IterationController,
    IterationStatus,
    MissingResearchDataError,
    build_development_input,
)
from issue_factory.models import (
    CheckpointDecision,
    DevelopmentPhase,
    IssueTicket,
    MessageRole,
    ResearchPhase,
    ResearchState,
    WorkflowMessage,
)
from issue_factory.rendering import render_workflow_summary
from issue_factory.settings import RuntimeSettings
from issue_factory.staging import StagingManager


def _controller(
    issue: IssueTicket,
    decisions: list[CheckpointDecision],
    *,
    max_attempts: int,
    events: RecordingEventSink | None = None,
) -> tuple[IterationController[ResearchState], list[str | None], list[int]]:
    contexts: list[str | None] = []
    rejected: list[int] = []
    remaining = list(decisions)

    def run_attempt(attempt: int, additional_context: str | None) -> ResearchState:
        contexts.append(additional_context)
        message = WorkflowMessage(role=MessageRole.ASSISTANT, content=f"attempt {attempt}")
        return ResearchState(issue=issue, messages=[message])

    def review(attempt: int, record: ResearchState) -> CheckpointDecision:
        return remaining.pop(0) if len(remaining) > 1 else remaining[0]

    controller = IterationController(
        name="research",
        run_attempt=run_attempt,
        review=review,
        on_rejected=lambda attempt, record: rejected.append(attempt),
        max_attempts=max_attempts,
        events=events,
    )
    return controller, contexts, rejected


@pytest.mark.parametrize("max_attempts", [1, 2, 3, 5])
def test_always_reject_uses_exactly_the_budget(issue: IssueTicket, max_attempts: int) -> None:
    events = RecordingEventSink()
    controller, contexts, rejected = _controller(
        issue, [CheckpointDecision.reject("not yet")], max_attempts=max_attempts, events=events
    )

    outcome = controller.run()

    assert not outcome.approved
    assert outcome.status == IterationStatus.EXHAUSTED
    assert outcome.attempts == max_attempts
    assert len(contexts) == max_attempts
    assert rejected == list(range(1, max_attempts + 1))
    assert outcome.record.messages[0].content == f"attempt {max_attempts}"
    assert events.kinds().count(EventKind.ITERATION_EXHAUSTED) == 1


def test_approval_returns_the_approved_attempt(issue: IssueTicket) -> None:
    decisions = [
        CheckpointDecision.reject("cover the timeout path"),
        CheckpointDecision.reject("also log retries"),
        CheckpointDecision.approve(),
    ]
    controller, contexts, rejected = _controller(issue, decisions, max_attempts=5)

    outcome = controller.run()

    assert outcome.approved
    assert outcome.status == IterationStatus.APPROVED
    assert outcome.attempts == 3
    assert outcome.record.messages[0].content == "attempt 3"
    assert contexts == [None, "cover the timeout path", "also log retries"]
    assert rejected == [1, 2]
    assert outcome.feedback_history == ["cover the timeout path", "also log retries"]


def test_controller_rejects_empty_budget(issue: IssueTicket) -> None:
    with pytest.raises(ValueError):
        _controller(issue, [CheckpointDecision.approve()], max_attempts=0)


def test_full_workflow_applies_second_development_attempt(
    make_orchestrator: OrchestratorFactory,
    fake_llm: FakeTextGenerator,
    events: RecordingEventSink,
    staging: StagingManager,
    issue: IssueTicket,
    target_root: Path,
) -> None:
    orchestrator = make_orchestrator(
        development=[CheckpointDecision.reject("add error handling"), CheckpointDecision.approve()],
    )

    result = orchestrator.run(issue, target_root)

    assert result.approved
    assert result.errors == []
    assert result.research.attempts == 1
    assert result.research.record.current_phase == ResearchPhase.COMPLETE
    development = result.development
    assert development is not None
    assert development.attempts == 2
    assert development.record.current_phase == DevelopmentPhase.COMPLETE
    assert development.applied_files == [
        "sync/client.py",
        "tests/test_client.py",
        "tests/fixtures/payload.json",
    ]
    assert (target_root / "sync/client.py").read_text(encoding="utf-8") == HARDENED_CODE

    code_prompts = fake_llm.prompts_for("code generation")
    assert len(code_prompts) == 2
    assert "add error handling" not in code_prompts[0]
    assert "add error handling" in code_prompts[1]

    staging_kinds = [event.kind for event in events.events if event.source == "staging"]
    assert staging_kinds == [
        EventKind.SESSION_CREATED,
        EventKind.SESSION_WRITTEN,
        EventKind.SESSION_DISCARDED,
        EventKind.SESSION_CREATED,
        EventKind.SESSION_WRITTEN,
        EventKind.FILES_APPLIED,
        EventKind.SESSION_DISCARDED,
    ]
    assert staging.active_session is None
    assert list(staging.temp_root.iterdir()) == []


def test_rejected_development_never_touches_target(
    make_orchestrator: OrchestratorFactory,
    staging: StagingManager,
    issue: IssueTicket,
    target_root: Path,
) -> None:
    orchestrator = make_orchestrator(
        development=[CheckpointDecision.reject("no")],
        settings=RuntimeSettings(max_development_iterations=2),
    )

    result = orchestrator.run(issue, target_root)

    assert not result.approved
    assert result.development is not None
    assert result.development.status == IterationStatus.EXHAUSTED
    assert result.development.attempts == 2
    assert result.development.applied_files == []
    assert list(target_root.iterdir()) == []
    assert list(staging.temp_root.iterdir()) == []


def test_unapproved_research_halts_before_development(
    make_orchestrator: OrchestratorFactory,
    fake_llm: FakeTextGenerator,
    events: RecordingEventSink,
    issue: IssueTicket,
    target_root: Path,
) -> None:
    orchestrator = make_orchestrator(
        research=[CheckpointDecision.reject("dig deeper")],
        settings=RuntimeSettings(max_research_iterations=2),
    )

    result = orchestrator.run(issue, target_root)

    assert result.development is None
    assert result.research.attempts == 2
    assert fake_llm.prompts_for("code generation") == []
    assert EventKind.SESSION_CREATED not in events.kinds()
    assert EventKind.WORKFLOW_HALTED in events.kinds()


def test_research_failures_cascade_softly(
    make_orchestrator: OrchestratorFactory,
    fake_llm: FakeTextGenerator,
    issue: IssueTicket,
) -> None:
    fake_llm.responses["documentation search"] = "no json in this reply"
    orchestrator = make_orchestrator()

    outcome = orchestrator.run_research(issue)
    record = outcome.record

    assert record.current_phase == ResearchPhase.PLAN_GENERATION
    assert not record.is_error
    assert record.research_findings is None
    assert record.context_analysis is not None
    assert record.orchestration_plan is None
    assert record.errors[0].startswith("Documentation search failed:")
    assert record.errors[1] == "Missing required data for plan generation: research_findings"


def test_approved_but_incomplete_research_reports_missing_fields(
    make_orchestrator: OrchestratorFactory,
    fake_llm: FakeTextGenerator,
    issue: IssueTicket,
    target_root: Path,
) -> None:
    fake_llm.responses["plan generation"] = ""
    orchestrator = make_orchestrator()

    result = orchestrator.run(issue, target_root)

    assert result.development is None
    assert len(result.errors) == 1
    assert "orchestration_plan" in result.errors[0]


def test_build_development_input_names_every_missing_field(issue: IssueTicket) -> None:
    with pytest.raises(MissingResearchDataError) as excinfo:
        build_development_input(ResearchState(issue=issue), "")
    assert excinfo.value.missing == [
        "orchestration_plan",
        "research_findings",
        "context_analysis",
        "target_root",
    ]


def test_partial_apply_is_reported_and_session_discarded(
    make_orchestrator: OrchestratorFactory,
    staging: StagingManager,
    issue: IssueTicket,
    target_root: Path,
) -> None:
    (target_root / "tests/test_client.py").mkdir(parents=True)
    orchestrator = make_orchestrator()

    result = orchestrator.run(issue, target_root)

    assert result.development is not None
    assert result.development.status == IterationStatus.FAILED
    assert not result.development.approved
    assert result.development.attempts == 1
    assert result.development.applied_files == ["sync/client.py"]
    assert len(result.errors) == 1
    assert result.errors[0] == result.development.error
    assert "Failed to apply tests/test_client.py" in result.errors[0]
    assert "Development: failed after 1 attempt(s)" in render_workflow_summary(result)
    assert (target_root / "sync/client.py").read_text(encoding="utf-8") == BASE_CODE
    assert staging.active_session is None
    assert list(staging.temp_root.iterdir()) == []


def test_existing_target_file_is_staged_as_modification(
    make_orchestrator: OrchestratorFactory,
    issue: IssueTicket,
    target_root: Path,
) -> None:
    (target_root / "sync").mkdir()
    (target_root / "sync/client.py").write_text("def fetch():\n    return 1\n", encoding="utf-8")
    orchestrator = make_orchestrator()
    research = orchestrator.run_research(issue)

    outcome = orchestrator.run_development(research.record, target_root)

    assert outcome.approved
    source = outcome.record.candidate_files()[0]
    assert source.action.value == "modify"
    assert source.original_content == "def fetch():\n    return 1\n"
    assert (target_root / "sync/client.py").read_text(encoding="utf-8") == BASE_CODE
