from importlib.metadata import PackageNotFoundError, version

from .checkpoint import (
    CheckpointGate,
    CheckpointKind,
    CheckpointRequest,
    ConsoleCheckpointGate,
    ScriptedCheckpointGate,
    ask_for_feedback,
    ask_yes_no,
    normalize_yes_no,
)
from .diffing import DiffSummary, compute_file_diff, generate_diffs, summarize_diffs
from .events import EventKind, EventSink, LoggingEventSink, RecordingEventSink, WorkflowEvent
from .executor import NamedStage, PhaseExecutor, merge_stage_result
from .llm import ChatTextGenerator, MalformedResponseError, TextGenerator, extract_json_payload
from .loops import (
    DevelopmentLoop,
    DevelopmentOutcome,
    FullWorkflowResult,
    IterationController,
    IterationOutcome,
    IterationStatus,
    MissingResearchDataError,
    ResearchLoop,
    WorkflowOrchestrator,
    build_development_input,
)
from .models import (
    CandidateFile,
    CheckpointDecision,
    DevelopmentInput,
    DevelopmentPhase,
    DevelopmentState,
    FileAction,
    FileClassification,
    FileDiffReport,
    IssueTicket,
    ResearchPhase,
    ResearchState,
    StageResult,
    WorkflowStateRecord,
)
from .settings import RuntimeSettings
from .staging import (
    PartialApplyError,
    StagingCreateError,
    StagingDiscardError,
    StagingError,
    StagingManager,
    StagingSession,
    StagingSessionActiveError,
    StagingWriteError,
)
from .supervisors import DevelopmentSupervisor, ResearchSupervisor
from .tickets import TicketParseError, find_ticket_files, parse_ticket, parse_ticket_file


def get_version() -> str:
    try:
        return version("issue-factory")
    except PackageNotFoundError:
        return "0.0.0"


__all__ = [
    "CandidateFile",
    "ChatTextGenerator",
    "CheckpointDecision",
    "CheckpointGate",
    "CheckpointKind",
    "CheckpointRequest",
    "ConsoleCheckpointGate",
    "DevelopmentInput",
    "DevelopmentLoop",
    "DevelopmentOutcome",
    "DevelopmentPhase",
    "DevelopmentState",
    "DevelopmentSupervisor",
    "DiffSummary",
    "EventKind",
    "EventSink",
    "FileAction",
    "FileClassification",
    "FileDiffReport",
    "FullWorkflowResult",
    "IssueTicket",
    "IterationController",
    "IterationOutcome",
    "IterationStatus",
    "LoggingEventSink",
    "MalformedResponseError",
    "MissingResearchDataError",
    "NamedStage",
    "PartialApplyError",
    "PhaseExecutor",
    "RecordingEventSink",
    "ResearchLoop",
    "ResearchPhase",
    "ResearchState",
    "ResearchSupervisor",
    "RuntimeSettings",
    "ScriptedCheckpointGate",
    "StageResult",
    "StagingCreateError",
    "StagingDiscardError",
    "StagingError",
    "StagingManager",
    "StagingSession",
    "StagingSessionActiveError",
    "StagingWriteError",
    "TextGenerator",
    "TicketParseError",
    "WorkflowEvent",
    "WorkflowOrchestrator",
    "WorkflowStateRecord",
    "ask_for_feedback",
    "ask_yes_no",
    "build_development_input",
    "compute_file_diff",
    "extract_json_payload",
    "find_ticket_files",
    "generate_diffs",
    "get_version",
    "merge_stage_result",
    "normalize_yes_no",
    "parse_ticket",
    "parse_ticket_file",
    "summarize_diffs",
]
