"""Structured workflow events.

The orchestration core never prints. Every observable step (stage boundaries,
checkpoint traffic, staging lifecycle) is emitted as a ``WorkflowEvent`` into an
``EventSink``. The CLI installs ``LoggingEventSink``; tests use
``RecordingEventSink`` and assert on the captured sequence.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol

from .models import utc_now

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    STAGE_STARTED = "stage_started"
    STAGE_COMPLETED = "stage_completed"
    STAGE_FAILED = "stage_failed"
    EXECUTOR_FAILED = "executor_failed"
    ITERATION_STARTED = "iteration_started"
    CHECKPOINT_REQUESTED = "checkpoint_requested"
    CHECKPOINT_DECIDED = "checkpoint_decided"
    ITERATION_EXHAUSTED = "iteration_exhausted"
    SESSION_CREATED = "session_created"
    SESSION_WRITTEN = "session_written"
    SESSION_DISCARDED = "session_discarded"
    FILES_APPLIED = "files_applied"
    WORKFLOW_HANDOFF = "workflow_handoff"
    WORKFLOW_HALTED = "workflow_halted"


_WARNING_KINDS = frozenset(
    {
        EventKind.STAGE_FAILED,
        EventKind.ITERATION_EXHAUSTED,
        EventKind.WORKFLOW_HALTED,
    }
)


@dataclass(frozen=True)
class WorkflowEvent:
    kind: EventKind
    source: str
    message: str
    attempt: int | None = None
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utc_now)


class EventSink(Protocol):
    def emit(self, event: WorkflowEvent) -> None:
        ...


class LoggingEventSink:
    """Forward events to the ``logging`` module."""

    def __init__(self, target: logging.Logger | None = None) -> None:
        self._logger = target if target is not None else logger

    def emit(self, event: WorkflowEvent) -> None:
        if event.kind == EventKind.EXECUTOR_FAILED:
            level = logging.ERROR
        elif event.kind in _WARNING_KINDS:
            level = logging.WARNING
        else:
            level = logging.INFO
        attempt = f" attempt={event.attempt}" if event.attempt is not None else ""
        self._logger.log(level, "[%s] %s%s: %s", event.source, event.kind.value, attempt, event.message)


class RecordingEventSink:
    """Keep every emitted event in memory."""

    def __init__(self) -> None:
        self.events: list[WorkflowEvent] = []

    def emit(self, event: WorkflowEvent) -> None:
        self.events.append(event)

    def kinds(self) -> list[EventKind]:
        return [event.kind for event in self.events]

    def of_kind(self, kind: EventKind) -> list[WorkflowEvent]:
        return [event for event in self.events if event.kind == kind]
