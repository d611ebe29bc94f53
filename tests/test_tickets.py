from __future__ import annotations

from pathlib import Path

import pytest

from issue_factory.models import TicketPriority, TicketType
from issue_factory.tickets import (
    TicketParseError,
    find_ticket_files,
    parse_ticket,
    parse_ticket_file,
    split_frontmatter,
)

TICKET = """---
title: Add retry to the sync client
type: Feature
priority: HIGH
domain: data-sync
---

## Description
Transient network failures abort the whole sync run.

## Technical Context
- `sync/client.py`
- `sync/scheduler.py`

**Existing References:**
- `sync/retry.py`

## Requirements
- Retry failed requests
* Cap the number of attempts
1. Log every retry

## Acceptance Criteria
- Failed requests are retried

## Constraints
- No new runtime dependencies

## References
**Similar Implementations:**
- [uploader retry](https://git.example.org/uploader/retry)

**Documentation:**
- https://docs.example.org/retry
"""


def test_parse_ticket_reads_frontmatter_and_sections() -> None:
    ticket = parse_ticket(TICKET)

    assert ticket.title == "Add retry to the sync client"
    assert ticket.type == TicketType.FEATURE
    assert ticket.priority == TicketPriority.HIGH
    assert ticket.domain == "data-sync"
    assert ticket.description == "Transient network failures abort the whole sync run."
    assert ticket.components == ["sync/client.py", "sync/scheduler.py"]
    assert ticket.existing_references == ["sync/retry.py"]
    assert ticket.requirements == ["Retry failed requests", "Cap the number of attempts", "Log every retry"]
    assert ticket.acceptance_criteria == ["Failed requests are retried"]
    assert ticket.constraints == ["No new runtime dependencies"]
    assert ticket.similar_implementations == ["https://git.example.org/uploader/retry"]
    assert ticket.documentation == ["https://docs.example.org/retry"]


def test_missing_sections_become_empty() -> None:
    ticket = parse_ticket("---\ntitle: Bare\ntype: bug\npriority: low\ndomain: core\n---\n")
    assert ticket.description == ""
    assert ticket.requirements == []
    assert ticket.documentation == []


@pytest.mark.parametrize(
    ("content", "message"),
    [
        ("## Description\nNo header\n", "'title'"),
        ("---\ntitle: T\ntype: bug\npriority: low\n---\n", "'domain'"),
        ("---\ntitle: T\ntype: chore\npriority: low\ndomain: d\n---\n", "invalid type"),
        ("---\ntitle: T\ntype: bug\npriority: urgent\ndomain: d\n---\n", "invalid priority"),
        ("---\ntitle: [unclosed\ntype: bug\n---\n", "Invalid YAML"),
        ("---\n- just\n- a list\n---\n", "mapping"),
    ],
)
def test_parse_ticket_rejects_invalid_tickets(content: str, message: str) -> None:
    with pytest.raises(TicketParseError, match=message):
        parse_ticket(content)


def test_split_frontmatter_without_closing_marker() -> None:
    assert split_frontmatter("---\ntitle: T\n") == ({}, "---\ntitle: T\n")


def test_parse_ticket_file_reports_missing_file(tmp_path: Path) -> None:
    with pytest.raises(TicketParseError, match="not found"):
        parse_ticket_file(tmp_path / "missing.md")


def test_find_ticket_files_skips_readme(tmp_path: Path) -> None:
    for name in ("b.md", "a.md", "README.md", "notes.txt"):
        (tmp_path / name).write_text(TICKET, encoding="utf-8")
    assert [path.name for path in find_ticket_files(tmp_path)] == ["a.md", "b.md"]
    assert parse_ticket_file(tmp_path / "a.md").title == "Add retry to the sync client"
    assert find_ticket_files(tmp_path / "absent") == []
