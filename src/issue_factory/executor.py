"""Ordered stage execution over an accumulating, immutable state record."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Generic, TypeVar

from .events import EventKind, EventSink, LoggingEventSink, WorkflowEvent
from .models import IssueTicket, MessageRole, StageResult, WorkflowMessage, WorkflowStateRecord

logger = logging.getLogger(__name__)

StateT = TypeVar("StateT", bound=WorkflowStateRecord)

StageFunc = Callable[[IssueTicket, StateT, "str | None"], StageResult]


@dataclass(frozen=True)
class NamedStage(Generic[StateT]):
    name: str
    func: StageFunc


def merge_stage_result(state: StateT, result: StageResult) -> StateT:
    """Fold one stage result into ``state`` and return the derived record.

    Messages and errors are appended, slots holding a value replace the prior
    slot, and the phase tag is converted through the record's phase enum.

    Raises:
        ValueError: If the result names an unknown slot or phase.
    """
    record_type = type(state)
    unknown = sorted(set(result.updates) - set(record_type.RESULT_SLOTS))
    if unknown:
        raise ValueError(f"{record_type.__name__} has no result slot(s): {', '.join(unknown)}")

    update: dict[str, object] = {key: value for key, value in result.updates.items() if value is not None}
    update["current_phase"] = record_type.PHASE_ENUM(result.phase)
    update["messages"] = [*state.messages, *result.messages]
    update["errors"] = [*state.errors, *result.errors]
    return state.model_copy(update=update)


def stage_failure(state: StateT, stage_name: str, exc: BaseException) -> StateT:
    """Derive the terminal ``error`` record for an exception that escaped a stage."""
    message = f"Stage '{stage_name}' raised {type(exc).__name__}: {exc}"
    return state.model_copy(
        update={
            "current_phase": type(state).error_phase(),
            "errors": [*state.errors, message],
            "messages": [*state.messages, WorkflowMessage(role=MessageRole.SYSTEM, content=message)],
        }
    )


class PhaseExecutor(Generic[StateT]):
    """Run named stages strictly in sequence, threading the state record.

    A stage that reports a failure does not stop the sequence; later stages see
    the record and check their own prerequisites. An exception escaping a stage
    forces the ``error`` phase and halts immediately. When every stage ran
    without reporting an error the record ends in ``complete``.
    """

    def __init__(
        self,
        stages: Sequence[NamedStage],
        *,
        events: EventSink | None = None,
        source: str = "executor",
    ) -> None:
        if not stages:
            raise ValueError("PhaseExecutor requires at least one stage")
        names = [stage.name for stage in stages]
        if len(set(names)) != len(names):
            raise ValueError(f"Stage names must be unique, got: {names}")
        self.stages = tuple(stages)
        self.events = events if events is not None else LoggingEventSink()
        self.source = source

    @property
    def stage_names(self) -> list[str]:
        return [stage.name for stage in self.stages]

    def run(self, initial: StateT, issue: IssueTicket, additional_context: str | None = None) -> StateT:
        state = initial
        for stage in self.stages:
            self._emit(EventKind.STAGE_STARTED, f"running {stage.name}", stage=stage.name)
            try:
                result = stage.func(issue, state, additional_context)
                state = merge_stage_result(state, result)
            except Exception as exc:  # noqa: BLE001
                logger.exception("Stage %s raised; halting %s", stage.name, self.source)
                state = stage_failure(state, stage.name, exc)
                self._emit(EventKind.EXECUTOR_FAILED, str(exc), stage=stage.name)
                return state

            if result.failed:
                self._emit(EventKind.STAGE_FAILED, "; ".join(result.errors), stage=stage.name)
            else:
                self._emit(EventKind.STAGE_COMPLETED, f"{stage.name} produced a result", stage=stage.name)

        if not state.errors:
            state = state.model_copy(update={"current_phase": type(state).PHASE_ENUM("complete")})
        return state

    def _emit(self, kind: EventKind, message: str, **payload: object) -> None:
        self.events.emit(WorkflowEvent(kind=kind, source=self.source, message=message, payload=dict(payload)))
