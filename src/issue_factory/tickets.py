"""Markdown ticket files with a YAML frontmatter header.

A ticket looks like::

    ---
    title: Add retry to the sync client
    type: feature
    priority: high
    domain: data-sync
    ---

    ## Description
    ...

    ## Technical Context
    - `sync/client.py`
    **Existing References:**
    - sync/retry.py

    ## Requirements
    - ...

Metadata lives in the frontmatter; everything else comes from the sections.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path

import yaml
from pydantic import ValidationError

from .models import IssueTicket, TicketPriority, TicketType

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("title", "type", "priority", "domain")

_BULLET_RE = re.compile(r"^(?:[-*]|\d+\.)\s+(.*)$")
_CODE_ITEM_RE = re.compile(r"`([^`]+)`")
_MARKDOWN_LINK_RE = re.compile(r"\[[^\]]+\]\(([^)]+)\)")
_PLAIN_URL_RE = re.compile(r"https?://[^\s)]+")


class TicketParseError(ValueError):
    """Raised when a ticket file is missing, malformed or fails validation."""


def split_frontmatter(content: str) -> tuple[dict[str, str], str]:
    """Return (metadata, markdown body). Content without a closed header has no metadata."""
    lines = content.splitlines()
    if not lines or lines[0].strip() != "---":
        return {}, content
    for index in range(1, len(lines)):
        if lines[index].strip() == "---":
            header = "\n".join(lines[1:index])
            body = "\n".join(lines[index + 1 :])
            break
    else:
        return {}, content

    try:
        parsed = yaml.safe_load(header)
    except yaml.YAMLError as exc:
        raise TicketParseError(f"Invalid YAML frontmatter: {exc}") from exc
    if parsed is None:
        return {}, body
    if not isinstance(parsed, dict):
        raise TicketParseError("Frontmatter must be a mapping of key: value pairs")
    metadata = {str(key): "" if value is None else str(value).strip() for key, value in parsed.items()}
    return metadata, body


def extract_section(markdown: str, title: str) -> str:
    match = re.search(rf"^##\s+{re.escape(title)}\s*\n(.*?)(?=^##\s|\Z)", markdown, flags=re.IGNORECASE | re.DOTALL | re.MULTILINE)
    return match.group(1).strip() if match else ""


def extract_labelled_block(section: str, label: str) -> str:
    """Return the text after a ``**Label:**`` marker up to the next bold marker."""
    match = re.search(rf"\*\*{re.escape(label)}:\*\*(.*?)(?=\n\*\*|\Z)", section, flags=re.IGNORECASE | re.DOTALL)
    return match.group(1).strip() if match else ""


def extract_bullets(text: str) -> list[str]:
    items: list[str] = []
    for line in text.splitlines():
        match = _BULLET_RE.match(line.strip())
        if match and match.group(1).strip():
            items.append(match.group(1).strip())
    return items


def extract_code_items(text: str) -> list[str]:
    """Bullet items, unwrapping a leading backtick span when present."""
    items: list[str] = []
    for item in extract_bullets(text):
        code = _CODE_ITEM_RE.match(item)
        items.append(code.group(1) if code else item)
    return items


def extract_urls(text: str) -> list[str]:
    urls = _MARKDOWN_LINK_RE.findall(text)
    for url in _PLAIN_URL_RE.findall(text):
        if url not in urls:
            urls.append(url)
    return urls


def parse_ticket(content: str, *, source: str = "<ticket>") -> IssueTicket:
    metadata, markdown = split_frontmatter(content)
    for name in REQUIRED_FIELDS:
        if not metadata.get(name):
            raise TicketParseError(f"{source}: ticket must have a {name!r} in frontmatter")

    ticket_type = metadata["type"].lower()
    if ticket_type not in {member.value for member in TicketType}:
        allowed = ", ".join(member.value for member in TicketType)
        raise TicketParseError(f"{source}: invalid type {metadata['type']!r}. Must be one of: {allowed}")
    priority = metadata["priority"].lower()
    if priority not in {member.value for member in TicketPriority}:
        allowed = ", ".join(member.value for member in TicketPriority)
        raise TicketParseError(f"{source}: invalid priority {metadata['priority']!r}. Must be one of: {allowed}")

    technical = extract_section(markdown, "Technical Context")
    components_text = re.split(r"\*\*Existing References:\*\*", technical, maxsplit=1, flags=re.IGNORECASE)[0]
    references = extract_section(markdown, "References")

    try:
        ticket = IssueTicket(
            title=metadata["title"],
            type=TicketType(ticket_type),
            priority=TicketPriority(priority),
            domain=metadata["domain"],
            description=extract_section(markdown, "Description"),
            components=extract_code_items(components_text),
            existing_references=extract_code_items(extract_labelled_block(technical, "Existing References")),
            requirements=extract_bullets(extract_section(markdown, "Requirements")),
            acceptance_criteria=extract_bullets(extract_section(markdown, "Acceptance Criteria")),
            constraints=extract_bullets(extract_section(markdown, "Constraints")),
            similar_implementations=extract_urls(extract_labelled_block(references, "Similar Implementations")),
            documentation=extract_urls(extract_labelled_block(references, "Documentation")),
        )
    except ValidationError as exc:
        raise TicketParseError(f"{source}: {exc}") from exc

    logger.info(
        "Parsed ticket %r: %d requirement(s), %d acceptance criteria",
        ticket.title,
        len(ticket.requirements),
        len(ticket.acceptance_criteria),
    )
    return ticket


def parse_ticket_file(path: Path) -> IssueTicket:
    if not path.is_file():
        raise TicketParseError(f"Ticket file not found: {path}")
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise TicketParseError(f"Cannot read ticket file {path}: {exc}") from exc
    return parse_ticket(content, source=str(path))


def find_ticket_files(directory: Path) -> list[Path]:
    """Markdown files in ``directory``, excluding READMEs, sorted by name."""
    if not directory.is_dir():
        return []
    return sorted(
        path for path in directory.glob("*.md") if path.is_file() and path.name.lower() != "readme.md"
    )
