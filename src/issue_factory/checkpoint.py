"""Human review gate between a phase group and anything that follows it."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from .models import (
    CandidateFile,
    CheckpointDecision,
    DevelopmentState,
    FileDiffReport,
    ResearchState,
    WorkflowStateRecord,
    utc_now,
)
from .rendering import render_development_results, render_diffs, render_file_summary, render_research_results

logger = logging.getLogger(__name__)

InputFn = Callable[[str], str]
OutputFn = Callable[[str], None]

_YES = frozenset({"y", "yes"})
_NO = frozenset({"n", "no"})


class CheckpointKind(str, Enum):
    RESEARCH = "research"
    DEVELOPMENT = "development"


@dataclass(frozen=True)
class CheckpointRequest:
    kind: CheckpointKind
    attempt: int
    max_attempts: int
    record: WorkflowStateRecord
    candidates: list[CandidateFile] = field(default_factory=list)
    diffs: list[FileDiffReport] = field(default_factory=list)


class CheckpointGate(Protocol):
    def review(self, request: CheckpointRequest) -> CheckpointDecision:
        ...


def normalize_yes_no(answer: str) -> bool | None:
    """Map a free-form answer to True/False, or None when it is neither."""
    value = answer.strip().lower()
    if value in _YES:
        return True
    if value in _NO:
        return False
    return None


def ask_yes_no(question: str, *, input_fn: InputFn = input, output: OutputFn = print) -> bool:
    while True:
        decision = normalize_yes_no(input_fn(f"{question} [yes/no]: "))
        if decision is not None:
            return decision
        output('Please answer "yes" or "no"')


def ask_for_feedback(prompt: str, *, input_fn: InputFn = input, output: OutputFn = print) -> str:
    """Collect multi-line feedback terminated by an empty line."""
    output(prompt)
    output("(Press Enter on an empty line to finish)")
    lines: list[str] = []
    while True:
        line = input_fn("")
        if not line.strip():
            break
        lines.append(line)
    return "\n".join(lines).strip()


class ConsoleCheckpointGate:
    """Interactive reviewer on a terminal. Waits for an answer without a timeout."""

    def __init__(
        self,
        *,
        input_fn: InputFn = input,
        output: OutputFn = print,
        preview_lines: int = 50,
        color: bool = True,
    ) -> None:
        self.input_fn = input_fn
        self.output = output
        self.preview_lines = preview_lines
        self.color = color

    def review(self, request: CheckpointRequest) -> CheckpointDecision:
        self.output(f"\n=== {request.kind.value.title()} checkpoint (attempt {request.attempt}/{request.max_attempts}) ===")
        if request.kind == CheckpointKind.RESEARCH:
            if not isinstance(request.record, ResearchState):
                raise TypeError(f"Research checkpoint expects ResearchState, got {type(request.record).__name__}")
            self.output(render_research_results(request.record))
            question = "Do you approve the research results and want to proceed to development?"
        else:
            if not isinstance(request.record, DevelopmentState):
                raise TypeError(f"Development checkpoint expects DevelopmentState, got {type(request.record).__name__}")
            self.output(render_development_results(request.record))
            self.output(render_file_summary(request.candidates))
            self.output(render_diffs(request.diffs, max_lines=self.preview_lines, color=self.color))
            question = "Do you approve these changes and want to write them to the target directory?"

        if ask_yes_no(question, input_fn=self.input_fn, output=self.output):
            return CheckpointDecision.approve()
        feedback = ask_for_feedback(
            "What should change in the next attempt?",
            input_fn=self.input_fn,
            output=self.output,
        )
        return CheckpointDecision.reject(feedback)


class ScriptedCheckpointGate:
    """Replay a fixed list of decisions; the last one repeats once the list is used up."""

    def __init__(self, decisions: Iterable[CheckpointDecision]) -> None:
        self._decisions = list(decisions)
        if not self._decisions:
            raise ValueError("ScriptedCheckpointGate requires at least one decision")
        self.requests: list[CheckpointRequest] = []

    @classmethod
    def always(cls, approved: bool, feedback: str | None = None) -> "ScriptedCheckpointGate":
        decision = CheckpointDecision.approve() if approved else CheckpointDecision.reject(feedback)
        return cls([decision])

    def review(self, request: CheckpointRequest) -> CheckpointDecision:
        index = min(len(self.requests), len(self._decisions) - 1)
        self.requests.append(request)
        decision = self._decisions[index]
        logger.info(
            "Scripted %s checkpoint attempt %d: %s",
            request.kind.value,
            request.attempt,
            "approve" if decision.approved else "reject",
        )
        return decision.model_copy(update={"timestamp": utc_now()})
