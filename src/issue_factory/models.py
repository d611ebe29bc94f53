from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    return datetime.now(UTC)


class TicketType(str, Enum):
    FEATURE = "feature"
    BUG = "bug"
    ENHANCEMENT = "enhancement"


class TicketPriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Complexity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class FileClassification(str, Enum):
    SOURCE = "source"
    TEST = "test"
    CONFIG = "config"
    DOCUMENTATION = "documentation"
    FIXTURE = "fixture"


class FileAction(str, Enum):
    CREATE = "create"
    MODIFY = "modify"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class ResearchPhase(str, Enum):
    INIT = "init"
    DOC_SEARCH = "doc-search"
    CONTEXT_ANALYSIS = "context-analysis"
    PLAN_GENERATION = "plan-generation"
    COMPLETE = "complete"
    ERROR = "error"


class DevelopmentPhase(str, Enum):
    INIT = "init"
    CODE_GENERATION = "code-generation"
    TEST_SETUP = "test-setup"
    VALIDATION = "validation"
    COMPLETE = "complete"
    ERROR = "error"


class IssueTicket(BaseModel):
    """Externally parsed work ticket. Opaque to the orchestration core."""

    model_config = ConfigDict(frozen=True)

    title: str
    type: TicketType
    priority: TicketPriority
    domain: str
    description: str = ""
    components: list[str] = Field(default_factory=list)
    existing_references: list[str] = Field(default_factory=list)
    requirements: list[str] = Field(default_factory=list)
    acceptance_criteria: list[str] = Field(default_factory=list)
    constraints: list[str] = Field(default_factory=list)
    similar_implementations: list[str] = Field(default_factory=list)
    documentation: list[str] = Field(default_factory=list)

    @field_validator("title", "domain")
    @classmethod
    def _require_text(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must be non-empty")
        return stripped


# ---------------------------------------------------------------------------
# Research slot payloads
# ---------------------------------------------------------------------------

class DocumentationReference(BaseModel):
    url: str
    title: str
    topics: list[str] = Field(default_factory=list)
    relevant_sections: list[str] = Field(default_factory=list)


class ResearchFindings(BaseModel):
    documentation_references: list[DocumentationReference] = Field(default_factory=list)
    relevant_examples: list[str] = Field(default_factory=list)
    suggested_approaches: list[str] = Field(default_factory=list)
    related_domains: list[str] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    source: str = "text-generation"


class CodePattern(BaseModel):
    pattern: str
    description: str = ""
    example: str = ""
    frequency: int = Field(default=1, ge=0)


class ContextAnalysisResult(BaseModel):
    similar_contexts: list[str] = Field(default_factory=list)
    reusable_patterns: list[CodePattern] = Field(default_factory=list)
    design_decisions: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    historical_success_rate: float | None = Field(default=None, ge=0.0, le=1.0)
    related_domains: list[str] = Field(default_factory=list)


class PlanPhase(BaseModel):
    name: str
    description: str = ""
    estimated_complexity: Complexity = Complexity.MEDIUM
    suggested_components: list[str] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)


class OrchestrationPlan(BaseModel):
    summary: str
    key_findings: list[str] = Field(default_factory=list)
    recommended_approach: str = ""
    estimated_complexity: Complexity = Complexity.MEDIUM
    phases: list[PlanPhase] = Field(default_factory=list)
    risk_factors: list[str] = Field(default_factory=list)
    estimated_effort: str = ""


# ---------------------------------------------------------------------------
# Development slot payloads
# ---------------------------------------------------------------------------

class CandidateFile(BaseModel):
    """A generated artifact that has not been applied to the target tree."""

    model_config = ConfigDict(frozen=True)

    relative_path: str
    content: str
    classification: FileClassification = FileClassification.SOURCE
    action: FileAction = FileAction.CREATE
    language: str = "text"
    description: str = ""
    original_content: str | None = None

    @field_validator("relative_path")
    @classmethod
    def _relative_only(cls, value: str) -> str:
        normalized = value.strip().replace("\\", "/")
        if not normalized:
            raise ValueError("relative_path must be non-empty")
        path = PurePosixPath(normalized)
        if path.is_absolute():
            raise ValueError(f"relative_path must be relative, got: {value!r}")
        if ".." in path.parts:
            raise ValueError(f"relative_path must not traverse upwards, got: {value!r}")
        return str(path)


class CodeGenerationResult(BaseModel):
    files: list[CandidateFile] = Field(default_factory=list)
    summary: str = ""
    implemented_requirements: list[str] = Field(default_factory=list)
    pending_requirements: list[str] = Field(default_factory=list)
    notes: list[str] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)


class TestEnvironmentConfig(BaseModel):
    type: str = "unit"
    framework: str = ""
    setup_commands: list[str] = Field(default_factory=list)
    teardown_commands: list[str] = Field(default_factory=list)
    dependencies: list[str] = Field(default_factory=list)


class TestEnvironmentResult(BaseModel):
    configs: list[TestEnvironmentConfig] = Field(default_factory=list)
    test_files: list[CandidateFile] = Field(default_factory=list)
    test_data_files: list[CandidateFile] = Field(default_factory=list)
    setup_instructions: list[str] = Field(default_factory=list)
    estimated_coverage: float = Field(default=0.0, ge=0.0, le=100.0)


class RequirementCheck(BaseModel):
    requirement: str
    met: bool
    notes: str = ""


class CriterionCheck(BaseModel):
    criterion: str
    passed: bool
    notes: str = ""


class ImplementationValidation(BaseModel):
    requirements_met: list[RequirementCheck] = Field(default_factory=list)
    acceptance_criteria_passed: list[CriterionCheck] = Field(default_factory=list)
    overall_score: int = Field(default=0, ge=0, le=100)
    recommendations: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# State records
# ---------------------------------------------------------------------------

class WorkflowMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str
    timestamp: datetime = Field(default_factory=utc_now)


class WorkflowStateRecord(BaseModel):
    """Accumulated output of one Phase Executor run.

    Records are frozen; the executor derives a new record for every merged
    stage result, so a record handed back to a caller never changes.
    """

    model_config = ConfigDict(frozen=True)

    PHASE_ENUM: ClassVar[type[Enum]]
    RESULT_SLOTS: ClassVar[tuple[str, ...]] = ()

    messages: list[WorkflowMessage] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    @classmethod
    def error_phase(cls) -> Enum:
        return cls.PHASE_ENUM("error")

    @property
    def is_complete(self) -> bool:
        return getattr(self, "current_phase").value == "complete"

    @property
    def is_error(self) -> bool:
        return getattr(self, "current_phase").value == "error"


class ResearchState(WorkflowStateRecord):
    PHASE_ENUM: ClassVar[type[Enum]] = ResearchPhase
    RESULT_SLOTS: ClassVar[tuple[str, ...]] = ("research_findings", "context_analysis", "orchestration_plan")

    issue: IssueTicket
    research_findings: ResearchFindings | None = None
    context_analysis: ContextAnalysisResult | None = None
    orchestration_plan: OrchestrationPlan | None = None
    current_phase: ResearchPhase = ResearchPhase.INIT


class DevelopmentInput(BaseModel):
    """Projection of an approved research record that seeds the development loop."""

    model_config = ConfigDict(frozen=True)

    issue: IssueTicket
    orchestration_plan: OrchestrationPlan
    research_findings: ResearchFindings
    context_analysis: ContextAnalysisResult
    target_root: str


class DevelopmentState(WorkflowStateRecord):
    PHASE_ENUM: ClassVar[type[Enum]] = DevelopmentPhase
    RESULT_SLOTS: ClassVar[tuple[str, ...]] = ("code_generation", "test_environment", "validation_result")

    issue: IssueTicket
    orchestration_plan: OrchestrationPlan | None = None
    research_findings: ResearchFindings | None = None
    context_analysis: ContextAnalysisResult | None = None
    target_root: str = ""
    code_generation: CodeGenerationResult | None = None
    test_environment: TestEnvironmentResult | None = None
    validation_result: ImplementationValidation | None = None
    current_phase: DevelopmentPhase = DevelopmentPhase.INIT

    def candidate_files(self) -> list[CandidateFile]:
        """Return every generated file: code, then tests, then test data.

        A path emitted more than once keeps its first position and the content
        of its last emission.
        """
        files: list[CandidateFile] = []
        if self.code_generation is not None:
            files.extend(self.code_generation.files)
        if self.test_environment is not None:
            files.extend(self.test_environment.test_files)
            files.extend(self.test_environment.test_data_files)
        by_path: dict[str, CandidateFile] = {}
        for candidate in files:
            by_path[candidate.relative_path] = candidate
        return list(by_path.values())


class StageResult(BaseModel):
    """Partial update produced by one stage invocation."""

    model_config = ConfigDict(frozen=True)

    phase: str
    updates: dict[str, Any] = Field(default_factory=dict)
    messages: list[WorkflowMessage] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    @property
    def failed(self) -> bool:
        return bool(self.errors)

    @classmethod
    def success(cls, phase: Enum | str, *, message: str, **updates: Any) -> "StageResult":
        return cls(
            phase=_phase_value(phase),
            updates=updates,
            messages=[WorkflowMessage(role=MessageRole.ASSISTANT, content=message)],
        )

    @classmethod
    def failure(cls, phase: Enum | str, error: str) -> "StageResult":
        return cls(phase=_phase_value(phase), errors=[error])


def _phase_value(phase: Enum | str) -> str:
    return phase.value if isinstance(phase, Enum) else str(phase)


# ---------------------------------------------------------------------------
# Checkpoint and diff records
# ---------------------------------------------------------------------------

class CheckpointDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    approved: bool
    feedback: str | None = None
    timestamp: datetime = Field(default_factory=utc_now)

    @classmethod
    def approve(cls) -> "CheckpointDecision":
        return cls(approved=True)

    @classmethod
    def reject(cls, feedback: str | None = None) -> "CheckpointDecision":
        text = feedback.strip() if feedback else ""
        return cls(approved=False, feedback=text or None)


class DiffHunk(BaseModel):
    model_config = ConfigDict(frozen=True)

    original_start: int
    original_count: int
    candidate_start: int
    candidate_count: int
    lines: list[str] = Field(default_factory=list)

    @property
    def header(self) -> str:
        return (
            f"@@ -{self.original_start},{self.original_count} "
            f"+{self.candidate_start},{self.candidate_count} @@"
        )


class FileDiffReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    relative_path: str
    action: FileAction
    additions: int = 0
    deletions: int = 0
    hunks: list[DiffHunk] = Field(default_factory=list)
    diff: str = ""

    @property
    def has_changes(self) -> bool:
        return bool(self.hunks)
