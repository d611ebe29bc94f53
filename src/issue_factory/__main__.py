"""Entry point for `python -m issue_factory` and the `issue-factory` CLI script."""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

from issue_factory.checkpoint import CheckpointGate, ConsoleCheckpointGate, ScriptedCheckpointGate
from issue_factory.loops import WorkflowOrchestrator
from issue_factory.rendering import render_research_results, render_workflow_summary
from issue_factory.settings import RuntimeSettings
from issue_factory.tickets import parse_ticket_file


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Research and implement a markdown ticket with human checkpoints")
    parser.add_argument("ticket", type=Path, help="Path to the markdown ticket file")
    parser.add_argument(
        "--mode",
        type=lambda value: value.lower(),
        default="full",
        choices=["research", "full"],
        help="Stop after research, or continue into development",
    )
    parser.add_argument(
        "--target-root",
        type=Path,
        default=None,
        help="Directory approved files are written into (default: ISSUE_FACTORY_TARGET_ROOT)",
    )
    parser.add_argument(
        "--approval-action",
        type=lambda value: value.upper(),
        default="PROMPT",
        choices=["PROMPT", "APPROVE", "REJECT"],
        help="Ask a reviewer on the terminal, or answer every checkpoint non-interactively",
    )
    parser.add_argument("--approval-feedback", default=None, help="Feedback attached to REJECT decisions")
    parser.add_argument("--no-color", action="store_true", help="Disable ANSI colours in diff output")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity",
    )
    return parser.parse_args(argv)


def build_gate(action: str, feedback: str | None, *, preview_lines: int, color: bool) -> CheckpointGate:
    if action == "APPROVE":
        return ScriptedCheckpointGate.always(True)
    if action == "REJECT":
        return ScriptedCheckpointGate.always(False, feedback)
    return ConsoleCheckpointGate(preview_lines=preview_lines, color=color)


def resolve_target_root(explicit: Path | None, settings: RuntimeSettings) -> Path:
    target_root = explicit if explicit is not None else settings.target_root_path
    if target_root is None:
        raise ValueError("A target root is required in full mode (--target-root or ISSUE_FACTORY_TARGET_ROOT)")
    if not target_root.exists():
        raise FileNotFoundError(f"Target root does not exist: {target_root}")
    if not target_root.is_dir():
        raise ValueError(f"Target root is not a directory: {target_root}")
    return target_root.resolve()


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = RuntimeSettings.from_env()
        ticket = parse_ticket_file(args.ticket)
        target_root = resolve_target_root(args.target_root, settings) if args.mode == "full" else None
        gate = build_gate(
            args.approval_action,
            args.approval_feedback,
            preview_lines=settings.diff_preview_lines,
            color=not args.no_color and sys.stdout.isatty(),
        )
        orchestrator = WorkflowOrchestrator.from_settings(settings, gate=gate)
    except (OSError, ValueError, RuntimeError) as exc:
        logging.error("Unable to start workflow: %s", exc)
        return 1

    if args.mode == "research":
        outcome = orchestrator.run_research(ticket)
        print(render_research_results(outcome.record))
        print(f"research_approved={outcome.approved} attempts={outcome.attempts}")
        return 0

    result = orchestrator.run(ticket, target_root)
    print(render_workflow_summary(result))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
