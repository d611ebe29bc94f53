"""Positional line diff between staged candidates and the target tree.

Content is split on "\n" only, so a carriage return or a final newline is part of
the compared text. Lines are aligned by index, not by edit distance: an insertion
near the top of a file reports every following line as changed. Reports are
computed against one session and one target state and are not cached.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from .models import CandidateFile, DiffHunk, FileAction, FileDiffReport
from .staging import StagingManager, StagingSession, contained_path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiffSummary:
    created: int
    modified: int
    additions: int
    deletions: int

    @property
    def files(self) -> int:
        return self.created + self.modified


def compute_file_diff(relative_path: str, original: str | None, candidate: str) -> FileDiffReport:
    """Compare ``candidate`` with ``original`` (None when the target file is absent)."""
    new_lines = candidate.split("\n")
    if original is None:
        hunks: list[DiffHunk] = [
            DiffHunk(
                original_start=0,
                original_count=0,
                candidate_start=1,
                candidate_count=len(new_lines),
                lines=[f"+{line}" for line in new_lines],
            )
        ]
        return _report(relative_path, FileAction.CREATE, hunks, header_from="/dev/null")

    old_lines = original.split("\n")
    hunks = []
    start: int | None = None
    buffered: list[str] = []
    deletions = additions = 0

    def close() -> None:
        nonlocal start, buffered, deletions, additions
        if start is None:
            return
        hunks.append(
            DiffHunk(
                original_start=start + 1,
                original_count=deletions,
                candidate_start=start + 1,
                candidate_count=additions,
                lines=buffered,
            )
        )
        start, buffered, deletions, additions = None, [], 0, 0

    for index in range(max(len(old_lines), len(new_lines))):
        old = old_lines[index] if index < len(old_lines) else None
        new = new_lines[index] if index < len(new_lines) else None
        if old == new:
            close()
            continue
        if start is None:
            start = index
        if old is not None:
            buffered.append(f"-{old}")
            deletions += 1
        if new is not None:
            buffered.append(f"+{new}")
            additions += 1
    close()

    return _report(relative_path, FileAction.MODIFY, hunks, header_from=f"a/{relative_path}")


def _report(relative_path: str, action: FileAction, hunks: list[DiffHunk], *, header_from: str) -> FileDiffReport:
    additions = sum(hunk.candidate_count for hunk in hunks)
    deletions = sum(hunk.original_count for hunk in hunks)
    text = ""
    if hunks:
        lines = [f"--- {header_from}", f"+++ b/{relative_path}"]
        for hunk in hunks:
            lines.append(hunk.header)
            lines.extend(hunk.lines)
        text = "\n".join(lines)
    return FileDiffReport(
        relative_path=relative_path,
        action=action,
        additions=additions,
        deletions=deletions,
        hunks=hunks,
        diff=text,
    )


def read_target(target_root: Path, relative_path: str) -> str | None:
    path = contained_path(target_root, relative_path)
    if not path.is_file():
        return None
    with path.open(encoding="utf-8", errors="replace", newline="") as handle:
        return handle.read()


def generate_diffs(
    files: list[CandidateFile],
    *,
    staging: StagingManager,
    session: StagingSession,
    target_root: Path,
) -> list[FileDiffReport]:
    """Diff every staged candidate against the current target tree.

    Candidates missing from the session are skipped.
    """
    reports: list[FileDiffReport] = []
    for candidate in files:
        staged = staging.read_staged(session, candidate.relative_path)
        if staged is None:
            logger.warning("Skipping diff for %s: not present in staging session", candidate.relative_path)
            continue
        original = read_target(target_root, candidate.relative_path)
        reports.append(compute_file_diff(candidate.relative_path, original, staged))
    return reports


def summarize_diffs(reports: list[FileDiffReport]) -> DiffSummary:
    return DiffSummary(
        created=sum(1 for report in reports if report.action == FileAction.CREATE),
        modified=sum(1 for report in reports if report.action == FileAction.MODIFY),
        additions=sum(report.additions for report in reports),
        deletions=sum(report.deletions for report in reports),
    )
