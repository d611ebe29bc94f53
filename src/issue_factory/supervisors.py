"""Research and development phase groups as ordered stage lists.

Every stage wrapper checks its prerequisites on the incoming record and turns
collaborator failures into stage failures, so one failing stage leaves the
remaining stages free to run and report on their own.
"""

from __future__ import annotations

import logging
from pathlib import Path

from .agents import (
    CodeGenerationAgent,
    ContextAnalysisAgent,
    DocumentationSearchAgent,
    ImplementationValidator,
    PlanGenerator,
    TestEnvironmentAgent,
)
from .events import EventSink
from .executor import NamedStage, PhaseExecutor
from .llm import TextGenerator
from .models import (
    DevelopmentInput,
    DevelopmentPhase,
    DevelopmentState,
    IssueTicket,
    MessageRole,
    ResearchPhase,
    ResearchState,
    StageResult,
    WorkflowMessage,
)

logger = logging.getLogger(__name__)



def seed_messages(opening: str, additional_context: str | None) -> list[WorkflowMessage]:
    messages = [WorkflowMessage(role=MessageRole.USER, content=opening)]
    if additional_context:
        messages.append(
            WorkflowMessage(
                role=MessageRole.SYSTEM,
                content=f"Additional context from human feedback: {additional_context}",
            )
        )
    return messages


def _missing(label: str, **required: object) -> StageResult | None:
    absent = [name for name, value in required.items() if value is None]
    if not absent:
        return None
    return StageResult.failure(label, f"Missing required data for {label.replace('-', ' ')}: {', '.join(absent)}")


class ResearchSupervisor:
    """Documentation search, context analysis, plan generation."""

    def __init__(
        self,
        llm: TextGenerator,
        *,
        events: EventSink | None = None,
        documentation_agent: DocumentationSearchAgent | None = None,
        context_agent: ContextAnalysisAgent | None = None,
        planner: PlanGenerator | None = None,
    ) -> None:
        self.documentation_agent = documentation_agent or DocumentationSearchAgent(llm)
        self.context_agent = context_agent or ContextAnalysisAgent(llm)
        self.planner = planner or PlanGenerator(llm)
        self.executor: PhaseExecutor[ResearchState] = PhaseExecutor(
            [
                NamedStage("documentation_search", self._documentation_search_stage),
                NamedStage("context_analysis", self._context_analysis_stage),
                NamedStage("plan_generation", self._plan_generation_stage),
            ],
            events=events,
            source="research",
        )

    @staticmethod
    def initial_state(issue: IssueTicket, additional_context: str | None = None) -> ResearchState:
        return ResearchState(issue=issue, messages=seed_messages(f"Research issue: {issue.title}", additional_context))

    def research(self, issue: IssueTicket, additional_context: str | None = None) -> ResearchState:
        return self.executor.run(self.initial_state(issue, additional_context), issue, additional_context)

    def _documentation_search_stage(
        self, issue: IssueTicket, state: ResearchState, additional_context: str | None
    ) -> StageResult:
        try:
            findings = self.documentation_agent.search(issue, additional_context)
        except Exception as exc:  # noqa: BLE001
            return StageResult.failure(ResearchPhase.DOC_SEARCH, f"Documentation search failed: {exc}")
        return StageResult.success(
            ResearchPhase.DOC_SEARCH,
            message=f"Documentation search completed. Found {len(findings.documentation_references)} references.",
            research_findings=findings,
        )

    def _context_analysis_stage(
        self, issue: IssueTicket, state: ResearchState, additional_context: str | None
    ) -> StageResult:
        try:
            analysis = self.context_agent.analyze(issue, state.research_findings, additional_context)
        except Exception as exc:  # noqa: BLE001
            return StageResult.failure(ResearchPhase.CONTEXT_ANALYSIS, f"Context analysis failed: {exc}")
        return StageResult.success(
            ResearchPhase.CONTEXT_ANALYSIS,
            message=f"Context analysis completed. Found {len(analysis.similar_contexts)} similar contexts.",
            context_analysis=analysis,
        )

    def _plan_generation_stage(
        self, issue: IssueTicket, state: ResearchState, additional_context: str | None
    ) -> StageResult:
        missing = _missing(
            ResearchPhase.PLAN_GENERATION.value,
            research_findings=state.research_findings,
            context_analysis=state.context_analysis,
        )
        if missing is not None:
            return missing
        try:
            plan = self.planner.generate(issue, state.research_findings, state.context_analysis, additional_context)
        except Exception as exc:  # noqa: BLE001
            return StageResult.failure(ResearchPhase.PLAN_GENERATION, f"Plan generation failed: {exc}")
        return StageResult.success(
            ResearchPhase.PLAN_GENERATION,
            message="Orchestration plan generated successfully.",
            orchestration_plan=plan,
        )


class DevelopmentSupervisor:
    """Code generation, test environment setup, validation."""

    def __init__(
        self,
        llm: TextGenerator,
        *,
        events: EventSink | None = None,
        code_agent: CodeGenerationAgent | None = None,
        test_agent: TestEnvironmentAgent | None = None,
        validator: ImplementationValidator | None = None,
    ) -> None:
        self.code_agent = code_agent or CodeGenerationAgent(llm)
        self.test_agent = test_agent or TestEnvironmentAgent(llm)
        self.validator = validator or ImplementationValidator(llm)
        self.executor: PhaseExecutor[DevelopmentState] = PhaseExecutor(
            [
                NamedStage("code_generation", self._code_generation_stage),
                NamedStage("test_environment", self._test_environment_stage),
                NamedStage("validation", self._validation_stage),
            ],
            events=events,
            source="development",
        )

    @staticmethod
    def initial_state(dev_input: DevelopmentInput, additional_context: str | None = None) -> DevelopmentState:
        return DevelopmentState(
            issue=dev_input.issue,
            orchestration_plan=dev_input.orchestration_plan,
            research_findings=dev_input.research_findings,
            context_analysis=dev_input.context_analysis,
            target_root=dev_input.target_root,
            messages=seed_messages(f"Develop implementation for: {dev_input.issue.title}", additional_context),
        )

    def develop(self, dev_input: DevelopmentInput, additional_context: str | None = None) -> DevelopmentState:
        return self.executor.run(self.initial_state(dev_input, additional_context), dev_input.issue, additional_context)

    def _code_generation_stage(
        self, issue: IssueTicket, state: DevelopmentState, additional_context: str | None
    ) -> StageResult:
        missing = _missing(
            DevelopmentPhase.CODE_GENERATION.value,
            orchestration_plan=state.orchestration_plan,
            research_findings=state.research_findings,
            context_analysis=state.context_analysis,
            target_root=state.target_root or None,
        )
        if missing is not None:
            return missing
        try:
            result = self.code_agent.generate(
                issue,
                state.orchestration_plan,
                state.research_findings,
                state.context_analysis,
                target_root=Path(state.target_root),
                additional_context=additional_context,
            )
        except Exception as exc:  # noqa: BLE001
            return StageResult.failure(DevelopmentPhase.CODE_GENERATION, f"Code generation failed: {exc}")
        return StageResult.success(
            DevelopmentPhase.CODE_GENERATION,
            message=(
                f"Code generation completed. Generated {len(result.files)} files "
                f"with {result.confidence:.0%} confidence."
            ),
            code_generation=result,
        )

    def _test_environment_stage(
        self, issue: IssueTicket, state: DevelopmentState, additional_context: str | None
    ) -> StageResult:
        missing = _missing(
            DevelopmentPhase.TEST_SETUP.value,
            orchestration_plan=state.orchestration_plan,
            code_generation=state.code_generation,
        )
        if missing is not None:
            return missing
        try:
            result = self.test_agent.setup(
                issue,
                state.orchestration_plan,
                state.code_generation,
                target_root=Path(state.target_root),
                additional_context=additional_context,
            )
        except Exception as exc:  # noqa: BLE001
            return StageResult.failure(DevelopmentPhase.TEST_SETUP, f"Test environment setup failed: {exc}")
        return StageResult.success(
            DevelopmentPhase.TEST_SETUP,
            message=(
                f"Test environment setup completed. Generated {len(result.test_files)} test files "
                f"with estimated {result.estimated_coverage:.0f}% coverage."
            ),
            test_environment=result,
        )

    def _validation_stage(
        self, issue: IssueTicket, state: DevelopmentState, additional_context: str | None
    ) -> StageResult:
        missing = _missing(DevelopmentPhase.VALIDATION.value, code_generation=state.code_generation)
        if missing is not None:
            return missing
        try:
            validation = self.validator.validate(issue, state.code_generation, state.test_environment)
        except Exception as exc:  # noqa: BLE001
            return StageResult.failure(DevelopmentPhase.VALIDATION, f"Validation failed: {exc}")
        return StageResult.success(
            DevelopmentPhase.VALIDATION,
            message=f"Validation completed. Overall score: {validation.overall_score}%",
            validation_result=validation,
        )
