"""Isolated staging directories for generated files awaiting review.

Generated files are written under a per-iteration temp directory and only
reach the target tree through ``StagingManager.apply_session`` after a
reviewer approved them. One session may be live at a time; the previous
session must be discarded before the next one is created.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
import time
from dataclasses import dataclass, field
from pathlib import Path

from .events import EventKind, EventSink, LoggingEventSink, WorkflowEvent
from .models import CandidateFile

logger = logging.getLogger(__name__)

_CREATE_ATTEMPTS = 5


class StagingError(RuntimeError):
    """Base class for staging and filesystem failures."""


class StagingCreateError(StagingError):
    pass


class StagingWriteError(StagingError):
    pass


class StagingDiscardError(StagingError):
    pass


class StagingSessionActiveError(StagingError):
    """Raised when a session is created while another one is still live."""


class PartialApplyError(StagingError):
    """Copying staged files into the target stopped part way through.

    Files listed in ``applied`` were already written to the target tree and are
    not rolled back.
    """

    def __init__(self, applied: list[str], failed_path: str, reason: str) -> None:
        self.applied = list(applied)
        self.failed_path = failed_path
        applied_text = ", ".join(self.applied) if self.applied else "none"
        super().__init__(f"Failed to apply {failed_path}: {reason} (already applied: {applied_text})")


@dataclass
class StagingSession:
    session_id: str
    root: Path
    written: list[str] = field(default_factory=list)
    discarded: bool = False

    @property
    def live(self) -> bool:
        return not self.discarded


def contained_path(root: Path, relative_path: str) -> Path:
    """Resolve ``relative_path`` under ``root``, refusing paths that escape it."""
    if os.path.isabs(relative_path):
        raise StagingWriteError(f"Path must be relative: {relative_path}")
    base = os.path.realpath(root)
    resolved = os.path.realpath(os.path.join(base, relative_path))
    if not resolved.startswith(base + os.sep):
        raise StagingWriteError(f"Path escapes directory {root}: {relative_path}")
    return Path(resolved)


class StagingManager:
    def __init__(
        self,
        *,
        prefix: str = "issue-factory-staging",
        temp_root: Path | None = None,
        events: EventSink | None = None,
    ) -> None:
        self.prefix = prefix
        self.temp_root = Path(temp_root) if temp_root is not None else Path(tempfile.gettempdir())
        self.events = events if events is not None else LoggingEventSink()
        self._active: StagingSession | None = None

    @property
    def active_session(self) -> StagingSession | None:
        return self._active

    def create_session(self) -> StagingSession:
        """Create a uniquely named staging directory under the temp root.

        Raises:
            StagingSessionActiveError: If the previous session was not discarded.
            StagingCreateError: If the directory cannot be created.
        """
        if self._active is not None and self._active.live:
            raise StagingSessionActiveError(
                f"Staging session {self._active.session_id} must be discarded before creating another"
            )
        try:
            self.temp_root.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StagingCreateError(f"Cannot prepare temp root {self.temp_root}: {exc}") from exc

        for _ in range(_CREATE_ATTEMPTS):
            session_id = f"{self.prefix}-{time.time_ns()}"
            root = self.temp_root / session_id
            try:
                root.mkdir()
            except FileExistsError:
                continue
            except OSError as exc:
                raise StagingCreateError(f"Cannot create staging directory {root}: {exc}") from exc
            session = StagingSession(session_id=session_id, root=root)
            self._active = session
            self._emit(EventKind.SESSION_CREATED, f"created {root}", session_id=session_id)
            return session
        raise StagingCreateError(f"Could not find a free staging directory name under {self.temp_root}")

    def write_candidates(self, session: StagingSession, files: list[CandidateFile]) -> list[str]:
        """Write candidate content verbatim into the session and return the written paths."""
        self._require_live(session)
        written: list[str] = []
        for candidate in files:
            destination = contained_path(session.root, candidate.relative_path)
            try:
                destination.parent.mkdir(parents=True, exist_ok=True)
                destination.write_text(candidate.content, encoding="utf-8", newline="")
            except OSError as exc:
                raise StagingWriteError(f"Cannot stage {candidate.relative_path}: {exc}") from exc
            written.append(candidate.relative_path)
            if candidate.relative_path not in session.written:
                session.written.append(candidate.relative_path)
        self._emit(
            EventKind.SESSION_WRITTEN,
            f"staged {len(written)} file(s)",
            session_id=session.session_id,
            paths=list(written),
        )
        return written

    def read_staged(self, session: StagingSession, relative_path: str) -> str | None:
        """Return staged content, or None when the session holds no such file."""
        path = contained_path(session.root, relative_path)
        if not path.is_file():
            return None
        with path.open(encoding="utf-8", errors="replace", newline="") as handle:
            return handle.read()

    def discard(self, session: StagingSession) -> None:
        """Remove the session directory. Removing an already missing directory succeeds."""
        try:
            shutil.rmtree(session.root)
        except FileNotFoundError:
            logger.debug("Staging directory already removed: %s", session.root)
        except OSError as exc:
            raise StagingDiscardError(f"Cannot remove staging directory {session.root}: {exc}") from exc
        session.discarded = True
        if self._active is session:
            self._active = None
        self._emit(EventKind.SESSION_DISCARDED, f"discarded {session.root}", session_id=session.session_id)

    def apply_session(self, session: StagingSession, target_root: Path) -> list[str]:
        """Copy every staged path into ``target_root`` file by file.

        Raises:
            PartialApplyError: If a copy fails. Files copied before the failure stay in place.
        """
        self._require_live(session)
        applied: list[str] = []
        for relative_path in session.written:
            try:
                source = contained_path(session.root, relative_path)
                destination = contained_path(target_root, relative_path)
                destination.parent.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(source, destination)
            except (OSError, StagingWriteError) as exc:
                raise PartialApplyError(applied, relative_path, str(exc)) from exc
            applied.append(relative_path)
        self._emit(
            EventKind.FILES_APPLIED,
            f"applied {len(applied)} file(s) to {target_root}",
            session_id=session.session_id,
            paths=list(applied),
        )
        return applied

    def _require_live(self, session: StagingSession) -> None:
        if not session.live:
            raise StagingError(f"Staging session {session.session_id} was already discarded")

    def _emit(self, kind: EventKind, message: str, **payload: object) -> None:
        self.events.emit(WorkflowEvent(kind=kind, source="staging", message=message, payload=dict(payload)))
