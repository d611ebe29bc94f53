from __future__ import annotations

from pathlib import Path

from issue_factory.diffing import compute_file_diff, generate_diffs, read_target, summarize_diffs
from issue_factory.models import CandidateFile, FileAction
from issue_factory.staging import StagingManager


def test_new_file_is_one_create_hunk() -> None:
    report = compute_file_diff("pkg/new.py", None, "a\nb\nc")

    assert report.action == FileAction.CREATE
    assert report.additions == 3
    assert report.deletions == 0
    assert [hunk.header for hunk in report.hunks] == ["@@ -0,0 +1,3 @@"]
    assert report.diff.splitlines()[:3] == ["--- /dev/null", "+++ b/pkg/new.py", "@@ -0,0 +1,3 @@"]


def test_empty_new_file_is_a_single_empty_line() -> None:
    report = compute_file_diff("empty.txt", None, "")
    assert report.action == FileAction.CREATE
    assert [hunk.header for hunk in report.hunks] == ["@@ -0,0 +1,1 @@"]
    assert report.hunks[0].lines == ["+"]
    assert report.additions == 1


def test_identical_content_reports_no_changes() -> None:
    report = compute_file_diff("same.py", "x = 1\ny = 2\n", "x = 1\ny = 2\n")
    assert report.action == FileAction.MODIFY
    assert (report.additions, report.deletions) == (0, 0)
    assert report.diff == ""


def test_changed_line_yields_paired_hunk() -> None:
    report = compute_file_diff("mod.py", "a\nb\nc\n", "a\nB\nc\n")

    assert report.diff.splitlines() == ["--- a/mod.py", "+++ b/mod.py", "@@ -2,1 +2,1 @@", "-b", "+B"]


def test_appended_lines_are_additions_only() -> None:
    report = compute_file_diff("grow.py", "a", "a\nb\nc")
    assert [hunk.header for hunk in report.hunks] == ["@@ -2,0 +2,2 @@"]
    assert (report.additions, report.deletions) == (2, 0)


def test_separate_changes_produce_separate_hunks() -> None:
    report = compute_file_diff("two.py", "a\nb\nc\nd\n", "A\nb\nc\nD\n")
    assert [hunk.header for hunk in report.hunks] == ["@@ -1,1 +1,1 @@", "@@ -4,1 +4,1 @@"]


def test_insertion_at_top_reports_every_following_line() -> None:
    report = compute_file_diff("shift.py", "a\nb\nc", "x\na\nb\nc")
    assert report.additions == 4
    assert report.deletions == 3
    assert len(report.hunks) == 1


def test_generate_diffs_reads_current_session_only(staging: StagingManager, target_root: Path) -> None:
    (target_root / "pkg").mkdir()
    (target_root / "pkg/existing.py").write_text("old\nkeep\n", encoding="utf-8")

    first = staging.create_session()
    staging.write_candidates(first, [CandidateFile(relative_path="pkg/stale.py", content="stale\n")])
    staging.discard(first)

    candidates = [
        CandidateFile(relative_path="pkg/existing.py", content="new\nkeep\n"),
        CandidateFile(relative_path="pkg/fresh.py", content="one\ntwo\n"),
        CandidateFile(relative_path="pkg/stale.py", content="stale\n"),
    ]
    session = staging.create_session()
    staging.write_candidates(session, candidates[:2])

    reports = generate_diffs(candidates, staging=staging, session=session, target_root=target_root)

    assert [report.relative_path for report in reports] == ["pkg/existing.py", "pkg/fresh.py"]
    assert reports[0].action == FileAction.MODIFY
    assert (reports[0].additions, reports[0].deletions) == (1, 1)
    assert reports[1].action == FileAction.CREATE

    summary = summarize_diffs(reports)
    assert (summary.created, summary.modified, summary.files) == (1, 1, 2)
    assert (summary.additions, summary.deletions) == (4, 1)


def test_trailing_newline_is_a_change() -> None:
    report = compute_file_diff("f.py", "x", "x\n")
    assert report.has_changes
    assert [hunk.header for hunk in report.hunks] == ["@@ -2,0 +2,1 @@"]
    assert (report.additions, report.deletions) == (1, 0)


def test_line_ending_change_is_a_change() -> None:
    report = compute_file_diff("f.py", "a\r\nb\r\n", "a\nb\n")
    assert (report.additions, report.deletions) == (2, 2)
    assert report.hunks[0].lines == ["-a\r", "+a", "-b\r", "+b"]


def test_generate_diffs_keeps_target_line_endings(staging: StagingManager, target_root: Path) -> None:
    (target_root / "crlf.txt").write_bytes(b"one\r\ntwo\r\n")
    candidate = CandidateFile(relative_path="crlf.txt", content="one\ntwo\n")
    session = staging.create_session()
    staging.write_candidates(session, [candidate])

    reports = generate_diffs([candidate], staging=staging, session=session, target_root=target_root)

    assert reports[0].action == FileAction.MODIFY
    assert (reports[0].additions, reports[0].deletions) == (2, 2)


def test_read_target_replaces_undecodable_bytes(target_root: Path) -> None:
    (target_root / "latin.py").write_bytes(b"# caf\xe9\n")
    assert read_target(target_root, "latin.py") == "# caf\ufffd\n"
    assert read_target(target_root, "absent.py") is None
