"""Plain-text renderers for reviewers and the CLI."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .diffing import summarize_diffs
from .models import CandidateFile, DevelopmentState, FileClassification, FileDiffReport, ResearchState

if TYPE_CHECKING:
    from .loops import FullWorkflowResult

GREEN = "\x1b[32m"
RED = "\x1b[31m"
CYAN = "\x1b[36m"
BOLD = "\x1b[1m"
RESET = "\x1b[0m"

_CLASSIFICATION_ORDER = (
    (FileClassification.SOURCE, "Source files"),
    (FileClassification.TEST, "Test files"),
    (FileClassification.CONFIG, "Config files"),
    (FileClassification.FIXTURE, "Fixtures"),
    (FileClassification.DOCUMENTATION, "Documentation"),
)


def _paint(text: str, code: str, color: bool) -> str:
    return f"{code}{text}{RESET}" if color else text


def _bullets(items: list[str], indent: str = "  ") -> list[str]:
    return [f"{indent}- {item}" for item in items]


def render_research_results(state: ResearchState) -> str:
    lines = [f"Research results for: {state.issue.title}", f"Phase: {state.current_phase.value}"]

    findings = state.research_findings
    if findings is not None:
        lines.append("")
        lines.append(f"Documentation findings (confidence {findings.confidence:.0%}):")
        for reference in findings.documentation_references:
            lines.append(f"  - {reference.title} <{reference.url}>")
        if findings.suggested_approaches:
            lines.append("  Suggested approaches:")
            lines.extend(_bullets(findings.suggested_approaches, indent="    "))

    analysis = state.context_analysis
    if analysis is not None:
        lines.append("")
        lines.append("Context analysis:")
        if analysis.similar_contexts:
            lines.append(f"  Similar contexts: {', '.join(analysis.similar_contexts)}")
        for pattern in analysis.reusable_patterns:
            lines.append(f"  - pattern {pattern.pattern}: {pattern.description}")
        lines.extend(_bullets(analysis.recommendations))

    plan = state.orchestration_plan
    if plan is not None:
        lines.append("")
        lines.append("Orchestration plan:")
        lines.append(f"  Summary: {plan.summary}")
        if plan.recommended_approach:
            lines.append(f"  Approach: {plan.recommended_approach}")
        lines.append(f"  Complexity: {plan.estimated_complexity.value}  Effort: {plan.estimated_effort or 'unknown'}")
        for index, phase in enumerate(plan.phases, start=1):
            lines.append(f"  {index}. {phase.name} ({phase.estimated_complexity.value})")
        if plan.risk_factors:
            lines.append("  Risks:")
            lines.extend(_bullets(plan.risk_factors, indent="    "))

    if state.errors:
        lines.append("")
        lines.append("Errors:")
        lines.extend(_bullets(state.errors))
    return "\n".join(lines)


def render_development_results(state: DevelopmentState) -> str:
    lines = [f"Development results for: {state.issue.title}", f"Phase: {state.current_phase.value}"]
    if state.code_generation is not None:
        lines.append(f"Code: {state.code_generation.summary or 'no summary'}")
        lines.append(f"  Files generated: {len(state.code_generation.files)}")
    if state.test_environment is not None:
        lines.append(
            f"Tests: {len(state.test_environment.test_files)} file(s), "
            f"estimated coverage {state.test_environment.estimated_coverage:.0f}%"
        )
    validation = state.validation_result
    if validation is not None:
        met = sum(1 for check in validation.requirements_met if check.met)
        passed = sum(1 for check in validation.acceptance_criteria_passed if check.passed)
        lines.append(f"Validation score: {validation.overall_score}/100")
        lines.append(f"  Requirements met: {met}/{len(validation.requirements_met)}")
        lines.append(f"  Acceptance criteria passed: {passed}/{len(validation.acceptance_criteria_passed)}")
        lines.extend(_bullets(validation.recommendations))
    if state.errors:
        lines.append("Errors:")
        lines.extend(_bullets(state.errors))
    return "\n".join(lines)


def render_file_summary(files: list[CandidateFile]) -> str:
    lines = ["Generated files:"]
    for classification, heading in _CLASSIFICATION_ORDER:
        group = [candidate for candidate in files if candidate.classification == classification]
        if not group:
            continue
        lines.append(f"  {heading} ({len(group)}):")
        for candidate in group:
            lines.append(f"    [{candidate.action.value}] {candidate.relative_path}")
    if len(lines) == 1:
        lines.append("  (none)")
    return "\n".join(lines)


def render_diff_summary(reports: list[FileDiffReport]) -> str:
    summary = summarize_diffs(reports)
    return (
        f"{summary.created} new files, {summary.modified} modified files\n"
        f"+{summary.additions} -{summary.deletions}"
    )


def render_diff(report: FileDiffReport, *, max_lines: int = 50, color: bool = True) -> str:
    if not report.has_changes:
        return f"{report.relative_path}: no changes"
    diff_lines = report.diff.splitlines()
    lines: list[str] = []
    for line in diff_lines[:max_lines]:
        if line.startswith(("---", "+++")):
            lines.append(_paint(line, BOLD, color))
        elif line.startswith("@@"):
            lines.append(_paint(line, CYAN, color))
        elif line.startswith("+"):
            lines.append(_paint(line, GREEN, color))
        elif line.startswith("-"):
            lines.append(_paint(line, RED, color))
        else:
            lines.append(line)
    hidden = len(diff_lines) - max_lines
    if hidden > 0:
        lines.append(f"... {hidden} more line(s) not shown")
    return "\n".join(lines)


def render_diffs(reports: list[FileDiffReport], *, max_lines: int = 50, color: bool = True) -> str:
    sections = [render_diff_summary(reports)]
    sections.extend(render_diff(report, max_lines=max_lines, color=color) for report in reports)
    return "\n\n".join(sections)


def render_workflow_summary(result: FullWorkflowResult) -> str:
    research = result.research
    lines = [
        "Workflow summary",
        f"  Research: {'approved' if research.approved else 'not approved'} after {research.attempts} attempt(s)",
    ]
    development = result.development
    if development is None:
        lines.append("  Development: not started")
    else:
        if development.error is not None:
            status = "failed"
        else:
            status = "approved" if development.approved else "not approved"
        lines.append(f"  Development: {status} after {development.attempts} attempt(s)")
        if development.applied_files:
            lines.append(f"  Applied {len(development.applied_files)} file(s):")
            lines.extend(_bullets(development.applied_files, indent="    "))
    if result.errors:
        lines.append("  Errors:")
        lines.extend(_bullets(result.errors, indent="    "))
    return "\n".join(lines)
