from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Generic, TypedDict, TypeVar

from langgraph.graph import END, START, StateGraph

from .checkpoint import CheckpointGate, CheckpointKind, CheckpointRequest
from .diffing import generate_diffs
from .events import EventKind, EventSink, LoggingEventSink, WorkflowEvent
from .llm import get_text_generator
from .models import (
    CheckpointDecision,
    DevelopmentInput,
    DevelopmentState,
    FileDiffReport,
    IssueTicket,
    ResearchState,
    WorkflowStateRecord,
)
from .settings import RuntimeSettings
from .staging import PartialApplyError, StagingError, StagingManager, StagingSession
from .supervisors import DevelopmentSupervisor, ResearchSupervisor

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=WorkflowStateRecord)


class MissingResearchDataError(ValueError):
    """Raised when an approved research record cannot seed development."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = list(missing)
        super().__init__(f"Research record is missing required data for development: {', '.join(self.missing)}")


class IterationStatus(str, Enum):
    APPROVED = "approved"
    EXHAUSTED = "exhausted"
    FAILED = "failed"


@dataclass(frozen=True)
class IterationOutcome(Generic[RecordT]):
    approved: bool
    record: RecordT
    attempts: int
    status: IterationStatus
    feedback_history: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class DevelopmentOutcome(IterationOutcome[DevelopmentState]):
    applied_files: list[str] = field(default_factory=list)
    error: str | None = None


@dataclass(frozen=True)
class FullWorkflowResult:
    research: IterationOutcome[ResearchState]
    development: DevelopmentOutcome | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def approved(self) -> bool:
        return self.research.approved and self.development is not None and self.development.approved


class IterationGraphState(TypedDict, total=False):
    attempt: int
    additional_context: str | None
    record: Any
    decision: CheckpointDecision
    feedback_history: list[str]
    status: str


class IterationController(Generic[RecordT]):
    """Bounded review loop: run -> checkpoint -> approve | retry | exhaust.

    Each attempt starts from a fresh record seeded by ``run_attempt`` with the
    feedback of the latest rejection. ``on_rejected`` runs for every rejection,
    including the final one, before the loop moves on.
    """

    def __init__(
        self,
        *,
        name: str,
        run_attempt: Callable[[int, str | None], RecordT],
        review: Callable[[int, RecordT], CheckpointDecision],
        on_approved: Callable[[int, RecordT], None] | None = None,
        on_rejected: Callable[[int, RecordT], None] | None = None,
        max_attempts: int = 3,
        events: EventSink | None = None,
        recursion_limit: int = 100,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got: {max_attempts}")
        self.name = name
        self.run_attempt = run_attempt
        self.review = review
        self.on_approved = on_approved
        self.on_rejected = on_rejected
        self.max_attempts = max_attempts
        self.events = events if events is not None else LoggingEventSink()
        self.recursion_limit = recursion_limit
        self.graph = self._build_graph().compile()

    def _build_graph(self) -> StateGraph:
        graph = StateGraph(IterationGraphState)
        graph.add_node("run", self._run_node)
        graph.add_node("checkpoint", self._checkpoint_node)
        graph.add_node("approve", self._approve_node)
        graph.add_node("retry", self._retry_node)
        graph.add_node("exhaust", self._exhaust_node)

        graph.add_edge(START, "run")
        graph.add_edge("run", "checkpoint")
        graph.add_conditional_edges(
            "checkpoint",
            self._checkpoint_route,
            {
                "approve": "approve",
                "retry": "retry",
                "exhaust": "exhaust",
            },
        )
        graph.add_edge("retry", "run")
        graph.add_edge("approve", END)
        graph.add_edge("exhaust", END)
        return graph

    def _emit(self, kind: EventKind, message: str, attempt: int, **payload: object) -> None:
        self.events.emit(
            WorkflowEvent(kind=kind, source=self.name, message=message, attempt=attempt, payload=dict(payload))
        )

    def _run_node(self, state: IterationGraphState) -> dict[str, Any]:
        attempt = int(state.get("attempt", 0)) + 1
        self._emit(EventKind.ITERATION_STARTED, f"attempt {attempt} of {self.max_attempts}", attempt)
        record = self.run_attempt(attempt, state.get("additional_context"))
        return {"attempt": attempt, "record": record}

    def _checkpoint_node(self, state: IterationGraphState) -> dict[str, Any]:
        attempt = state["attempt"]
        self._emit(EventKind.CHECKPOINT_REQUESTED, "awaiting review", attempt)
        decision = self.review(attempt, state["record"])
        self._emit(
            EventKind.CHECKPOINT_DECIDED,
            "approved" if decision.approved else "rejected",
            attempt,
            approved=decision.approved,
            feedback=decision.feedback,
        )
        history = list(state.get("feedback_history", []))
        if not decision.approved and decision.feedback:
            history.append(decision.feedback)
        return {"decision": decision, "feedback_history": history}

    def _checkpoint_route(self, state: IterationGraphState) -> str:
        if state["decision"].approved:
            return "approve"
        if state["attempt"] < self.max_attempts:
            return "retry"
        return "exhaust"

    def _approve_node(self, state: IterationGraphState) -> dict[str, Any]:
        if self.on_approved is not None:
            self.on_approved(state["attempt"], state["record"])
        return {"status": IterationStatus.APPROVED.value}

    def _retry_node(self, state: IterationGraphState) -> dict[str, Any]:
        if self.on_rejected is not None:
            self.on_rejected(state["attempt"], state["record"])
        return {"additional_context": state["decision"].feedback}

    def _exhaust_node(self, state: IterationGraphState) -> dict[str, Any]:
        if self.on_rejected is not None:
            self.on_rejected(state["attempt"], state["record"])
        self._emit(
            EventKind.ITERATION_EXHAUSTED,
            f"no approval after {state['attempt']} attempt(s)",
            state["attempt"],
        )
        return {"status": IterationStatus.EXHAUSTED.value}

    def run(self) -> IterationOutcome[RecordT]:
        result = self.graph.invoke(
            {"attempt": 0, "additional_context": None, "feedback_history": []},
            config={"recursion_limit": max(self.recursion_limit, 3 * self.max_attempts + 2)},
        )
        status = IterationStatus(result["status"])
        return IterationOutcome(
            approved=status == IterationStatus.APPROVED,
            record=result["record"],
            attempts=result["attempt"],
            status=status,
            feedback_history=list(result.get("feedback_history", [])),
        )


class ResearchLoop:
    """Research phase group behind a reviewer checkpoint."""

    def __init__(
        self,
        issue: IssueTicket,
        *,
        supervisor: ResearchSupervisor,
        gate: CheckpointGate,
        max_attempts: int = 3,
        events: EventSink | None = None,
        recursion_limit: int = 100,
    ) -> None:
        self.issue = issue
        self.supervisor = supervisor
        self.gate = gate
        self.max_attempts = max_attempts
        self.controller: IterationController[ResearchState] = IterationController(
            name="research",
            run_attempt=self._run_attempt,
            review=self._review,
            max_attempts=max_attempts,
            events=events,
            recursion_limit=recursion_limit,
        )

    def _run_attempt(self, attempt: int, additional_context: str | None) -> ResearchState:
        return self.supervisor.research(self.issue, additional_context)

    def _review(self, attempt: int, record: ResearchState) -> CheckpointDecision:
        return self.gate.review(
            CheckpointRequest(
                kind=CheckpointKind.RESEARCH,
                attempt=attempt,
                max_attempts=self.max_attempts,
                record=record,
            )
        )

    def run(self) -> IterationOutcome[ResearchState]:
        return self.controller.run()


class DevelopmentLoop:
    """Development phase group: generate, stage, diff, review, then apply or discard.

    Every attempt owns one staging session. A rejected attempt discards its
    session before the next attempt creates a new one; an approved attempt
    copies the staged files into the target and then discards the session.
    """

    def __init__(
        self,
        dev_input: DevelopmentInput,
        *,
        supervisor: DevelopmentSupervisor,
        gate: CheckpointGate,
        staging: StagingManager,
        max_attempts: int = 3,
        events: EventSink | None = None,
        recursion_limit: int = 100,
    ) -> None:
        self.dev_input = dev_input
        self.target_root = Path(dev_input.target_root)
        self.supervisor = supervisor
        self.gate = gate
        self.staging = staging
        self.max_attempts = max_attempts
        self.applied_files: list[str] = []
        self._session: StagingSession | None = None
        self._diffs: list[FileDiffReport] = []
        self._attempt = 0
        self._record: DevelopmentState | None = None
        self._feedback: list[str] = []
        self.controller: IterationController[DevelopmentState] = IterationController(
            name="development",
            run_attempt=self._run_attempt,
            review=self._review,
            on_approved=self._apply,
            on_rejected=self._discard,
            max_attempts=max_attempts,
            events=events,
            recursion_limit=recursion_limit,
        )

    def _run_attempt(self, attempt: int, additional_context: str | None) -> DevelopmentState:
        record = self.supervisor.develop(self.dev_input, additional_context)
        self._attempt, self._record = attempt, record
        session = self.staging.create_session()
        self._session = session
        candidates = record.candidate_files()
        self.staging.write_candidates(session, candidates)
        self._diffs = generate_diffs(candidates, staging=self.staging, session=session, target_root=self.target_root)
        return record

    def _review(self, attempt: int, record: DevelopmentState) -> CheckpointDecision:
        decision = self.gate.review(
            CheckpointRequest(
                kind=CheckpointKind.DEVELOPMENT,
                attempt=attempt,
                max_attempts=self.max_attempts,
                record=record,
                candidates=record.candidate_files(),
                diffs=list(self._diffs),
            )
        )
        if not decision.approved and decision.feedback:
            self._feedback.append(decision.feedback)
        return decision

    def _apply(self, attempt: int, record: DevelopmentState) -> None:
        session = self._require_session()
        try:
            self.applied_files = self.staging.apply_session(session, self.target_root)
        finally:
            self._discard(attempt, record)

    def _discard(self, attempt: int, record: DevelopmentState) -> None:
        session = self._require_session()
        self.staging.discard(session)
        self._session = None
        self._diffs = []

    def _require_session(self) -> StagingSession:
        if self._session is None:
            raise StagingError("No staging session is open for the current development attempt")
        return self._session

    def run(self) -> DevelopmentOutcome:
        """Run the loop to approval, exhaustion or failure.

        A staging error raised once an attempt has produced a record ends the
        loop with a ``FAILED`` outcome carrying that attempt and its record.
        """
        try:
            outcome = self.controller.run()
        except StagingError as exc:
            if self._record is None:
                raise
            logger.error("Development attempt %d failed while staging or applying: %s", self._attempt, exc)
            if isinstance(exc, PartialApplyError):
                self.applied_files = list(exc.applied)
            return DevelopmentOutcome(
                approved=False,
                record=self._record,
                attempts=self._attempt,
                status=IterationStatus.FAILED,
                feedback_history=list(self._feedback),
                applied_files=list(self.applied_files),
                error=str(exc),
            )
        finally:
            if self._session is not None and self._session.live:
                logger.warning("Discarding staging session left open by a failed attempt: %s", self._session.root)
                self.staging.discard(self._session)
                self._session = None
        return DevelopmentOutcome(
            approved=outcome.approved,
            record=outcome.record,
            attempts=outcome.attempts,
            status=outcome.status,
            feedback_history=outcome.feedback_history,
            applied_files=list(self.applied_files),
        )


def build_development_input(record: ResearchState, target_root: str | Path) -> DevelopmentInput:
    """Project an approved research record into development input.

    Raises:
        MissingResearchDataError: Naming every required field the record lacks.
    """
    missing = [
        name
        for name in ("orchestration_plan", "research_findings", "context_analysis")
        if getattr(record, name) is None
    ]
    root = str(target_root).strip()
    if not root:
        missing.append("target_root")
    if missing:
        raise MissingResearchDataError(missing)
    return DevelopmentInput(
        issue=record.issue,
        orchestration_plan=record.orchestration_plan,
        research_findings=record.research_findings,
        context_analysis=record.context_analysis,
        target_root=root,
    )


class OuterGraphState(TypedDict, total=False):
    issue: IssueTicket
    target_root: str
    research: IterationOutcome[ResearchState]
    dev_input: DevelopmentInput
    development: DevelopmentOutcome
    errors: list[str]


class WorkflowOrchestrator:
    """Outer graph: Research Loop -> handoff -> Development Loop."""

    def __init__(
        self,
        *,
        research_supervisor: ResearchSupervisor,
        development_supervisor: DevelopmentSupervisor,
        gate: CheckpointGate,
        development_gate: CheckpointGate | None = None,
        staging: StagingManager | None = None,
        settings: RuntimeSettings | None = None,
        events: EventSink | None = None,
    ) -> None:
        self.settings = settings if settings is not None else RuntimeSettings()
        self.events = events if events is not None else LoggingEventSink()
        self.research_supervisor = research_supervisor
        self.development_supervisor = development_supervisor
        self.research_gate = gate
        self.development_gate = development_gate if development_gate is not None else gate
        self.staging = staging if staging is not None else StagingManager(
            prefix=self.settings.staging_prefix,
            events=self.events,
        )
        self.graph = self._build_graph().compile()

    @classmethod
    def from_settings(
        cls,
        settings: RuntimeSettings,
        *,
        gate: CheckpointGate,
        events: EventSink | None = None,
        repo_root: Path | None = None,
    ) -> "WorkflowOrchestrator":
        """Wire supervisors to OpenAI chat models configured by ``settings``."""
        sink = events if events is not None else LoggingEventSink()
        research_llm = get_text_generator(
            model_name=settings.model_research,
            temperature=settings.temperature,
            max_completion_tokens=settings.max_completion_tokens,
            repo_root=repo_root,
        )
        development_llm = get_text_generator(
            model_name=settings.model_development,
            temperature=settings.temperature,
            max_completion_tokens=settings.max_completion_tokens,
            repo_root=repo_root,
        )
        return cls(
            research_supervisor=ResearchSupervisor(research_llm, events=sink),
            development_supervisor=DevelopmentSupervisor(development_llm, events=sink),
            gate=gate,
            settings=settings,
            events=sink,
        )

    def _build_graph(self) -> StateGraph:
        graph = StateGraph(OuterGraphState)
        graph.add_node("research_loop", self._research_node)
        graph.add_node("handoff", self._handoff_node)
        graph.add_node("development_loop", self._development_node)

        graph.add_edge(START, "research_loop")
        graph.add_conditional_edges(
            "research_loop",
            self._research_route,
            {
                "handoff": "handoff",
                "end": END,
            },
        )
        graph.add_conditional_edges(
            "handoff",
            self._handoff_route,
            {
                "development_loop": "development_loop",
                "end": END,
            },
        )
        graph.add_edge("development_loop", END)
        return graph

    def _emit(self, kind: EventKind, message: str) -> None:
        self.events.emit(WorkflowEvent(kind=kind, source="workflow", message=message))

    def _research_node(self, state: OuterGraphState) -> dict[str, Any]:
        return {"research": self.run_research(state["issue"])}

    def _research_route(self, state: OuterGraphState) -> str:
        research = state["research"]
        if research.approved:
            return "handoff"
        self._emit(EventKind.WORKFLOW_HALTED, f"research not approved after {research.attempts} attempt(s)")
        return "end"

    def _handoff_node(self, state: OuterGraphState) -> dict[str, Any]:
        try:
            dev_input = build_development_input(state["research"].record, state.get("target_root", ""))
        except MissingResearchDataError as exc:
            self._emit(EventKind.WORKFLOW_HALTED, str(exc))
            return {"errors": [*state.get("errors", []), str(exc)]}
        self._emit(EventKind.WORKFLOW_HANDOFF, f"development starts for target {dev_input.target_root}")
        return {"dev_input": dev_input}

    def _handoff_route(self, state: OuterGraphState) -> str:
        return "development_loop" if state.get("dev_input") is not None else "end"

    def _development_node(self, state: OuterGraphState) -> dict[str, Any]:
        try:
            development = self.run_development(state["dev_input"])
        except StagingError as exc:
            logger.error("Development loop failed: %s", exc)
            self._emit(EventKind.WORKFLOW_HALTED, str(exc))
            return {"errors": [*state.get("errors", []), str(exc)]}
        if development.error is not None:
            self._emit(EventKind.WORKFLOW_HALTED, development.error)
            return {"development": development, "errors": [*state.get("errors", []), development.error]}
        return {"development": development}

    def run_research(self, issue: IssueTicket) -> IterationOutcome[ResearchState]:
        loop = ResearchLoop(
            issue,
            supervisor=self.research_supervisor,
            gate=self.research_gate,
            max_attempts=self.settings.max_research_iterations,
            events=self.events,
            recursion_limit=self.settings.recursion_limit,
        )
        return loop.run()

    def run_development(
        self,
        source: DevelopmentInput | ResearchState,
        target_root: str | Path | None = None,
    ) -> DevelopmentOutcome:
        """Run the development loop from a development input or an existing research record."""
        if isinstance(source, ResearchState):
            root = target_root if target_root is not None else self.settings.target_root
            dev_input = build_development_input(source, root or "")
        else:
            dev_input = source
        loop = DevelopmentLoop(
            dev_input,
            supervisor=self.development_supervisor,
            gate=self.development_gate,
            staging=self.staging,
            max_attempts=self.settings.max_development_iterations,
            events=self.events,
            recursion_limit=self.settings.recursion_limit,
        )
        return loop.run()

    def run(self, issue: IssueTicket, target_root: str | Path | None = None) -> FullWorkflowResult:
        root = target_root if target_root is not None else self.settings.target_root
        result = self.graph.invoke(
            {"issue": issue, "target_root": str(root or ""), "errors": []},
            config={"recursion_limit": self.settings.recursion_limit},
        )
        return FullWorkflowResult(
            research=result["research"],
            development=result.get("development"),
            errors=list(result.get("errors", [])),
        )
