from __future__ import annotations

import shutil
from pathlib import Path

import pytest

from issue_factory.events import EventKind, RecordingEventSink
from issue_factory.models import CandidateFile
from issue_factory.staging import (
    PartialApplyError,
    StagingCreateError,
    StagingDiscardError,
    StagingError,
    StagingManager,
    StagingSessionActiveError,
    StagingWriteError,
    contained_path,
)


def _files() -> list[CandidateFile]:
    return [
        CandidateFile(relative_path="pkg/a.py", content="A = 1\n"),
        CandidateFile(relative_path="pkg/nested/b.py", content="B = 2\r\nC = 3\r\n"),
    ]


def test_create_session_uses_prefix_under_temp_root(staging: StagingManager, tmp_path: Path) -> None:
    session = staging.create_session()
    assert session.root.is_dir()
    assert session.root.parent == tmp_path / "staging"
    assert session.session_id.startswith("test-staging-")
    assert staging.active_session is session


def test_create_session_requires_previous_discard(staging: StagingManager) -> None:
    first = staging.create_session()
    with pytest.raises(StagingSessionActiveError):
        staging.create_session()

    staging.discard(first)
    second = staging.create_session()
    assert second.session_id != first.session_id
    assert not first.root.exists()


def test_create_session_reports_unusable_temp_root(tmp_path: Path) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x", encoding="utf-8")
    manager = StagingManager(prefix="p", temp_root=blocker, events=RecordingEventSink())
    with pytest.raises(StagingCreateError):
        manager.create_session()


def test_write_candidates_stores_content_verbatim(staging: StagingManager, target_root: Path) -> None:
    session = staging.create_session()
    written = staging.write_candidates(session, _files())

    assert written == ["pkg/a.py", "pkg/nested/b.py"]
    assert (session.root / "pkg/nested/b.py").read_bytes() == b"B = 2\r\nC = 3\r\n"
    assert staging.read_staged(session, "pkg/a.py") == "A = 1\n"
    assert staging.read_staged(session, "pkg/nested/b.py") == "B = 2\r\nC = 3\r\n"
    assert staging.read_staged(session, "pkg/missing.py") is None
    assert list(target_root.iterdir()) == []


def test_discard_is_idempotent(staging: StagingManager, events: RecordingEventSink) -> None:
    session = staging.create_session()
    staging.discard(session)
    staging.discard(session)
    assert not session.live
    assert staging.active_session is None
    assert events.kinds().count(EventKind.SESSION_DISCARDED) == 2


def test_discard_surfaces_removal_failures(staging: StagingManager, monkeypatch: pytest.MonkeyPatch) -> None:
    session = staging.create_session()

    def _deny(path: Path) -> None:
        raise PermissionError("read-only filesystem")

    monkeypatch.setattr(shutil, "rmtree", _deny)
    with pytest.raises(StagingDiscardError, match="read-only filesystem"):
        staging.discard(session)
    assert session.live


def test_discarded_session_rejects_writes(staging: StagingManager) -> None:
    session = staging.create_session()
    staging.discard(session)
    with pytest.raises(StagingError):
        staging.write_candidates(session, _files())


def test_apply_session_copies_into_target(staging: StagingManager, target_root: Path) -> None:
    session = staging.create_session()
    staging.write_candidates(session, _files())

    applied = staging.apply_session(session, target_root)

    assert applied == ["pkg/a.py", "pkg/nested/b.py"]
    assert (target_root / "pkg/a.py").read_text(encoding="utf-8") == "A = 1\n"
    assert (target_root / "pkg/nested/b.py").read_bytes() == b"B = 2\r\nC = 3\r\n"


def test_apply_session_reports_partial_progress(staging: StagingManager, target_root: Path) -> None:
    session = staging.create_session()
    staging.write_candidates(session, _files())
    (target_root / "pkg/nested/b.py").mkdir(parents=True)

    with pytest.raises(PartialApplyError) as excinfo:
        staging.apply_session(session, target_root)

    assert excinfo.value.applied == ["pkg/a.py"]
    assert excinfo.value.failed_path == "pkg/nested/b.py"
    assert (target_root / "pkg/a.py").is_file()


def test_contained_path_rejects_escape(tmp_path: Path) -> None:
    with pytest.raises(StagingWriteError):
        contained_path(tmp_path, "../outside.txt")
    with pytest.raises(StagingWriteError):
        contained_path(tmp_path, "/etc/passwd")
    assert contained_path(tmp_path, "inside/file.txt") == (tmp_path / "inside/file.txt").resolve()


def test_candidate_file_rejects_traversal() -> None:
    with pytest.raises(ValueError):
        CandidateFile(relative_path="../escape.py", content="")
    assert CandidateFile(relative_path="pkg\\win.py", content="").relative_path == "pkg/win.py"
