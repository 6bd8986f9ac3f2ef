from __future__ import annotations

from typing import Any, Iterable, List, Optional, Sequence

from core.models import BootstrapOutcome, StepResult, StepStatus

_STATUS_MARKS = {
    StepStatus.COMPLETED: "✅",
    StepStatus.SKIPPED: "⏭️",
    StepStatus.DECLINED: "✋",
    StepStatus.FAILED: "❌",
}


def _cell(value: Any) -> str:
    return "" if value is None else str(value)


def _rule(widths: List[int], left: str, middle: str, right: str) -> str:
    return left + middle.join("─" * (w + 2) for w in widths) + right


def _line(cells: Sequence[str], widths: List[int]) -> str:
    return "│ " + " │ ".join(cell.ljust(widths[i]) for i, cell in enumerate(cells)) + " │"


def format_table(
    headers: Sequence[str],
    rows: Iterable[Sequence[Any]],
    *,
    empty_message: str = "(none)",
) -> str:
    """Render a box-drawn table as a string."""
    header_cells = [_cell(h) for h in headers]
    if not header_cells:
        raise ValueError("Table must contain at least one header column")

    body = [[_cell(c) for c in row] for row in rows]
    for idx, row in enumerate(body):
        if len(row) != len(header_cells):
            raise ValueError(f"Row {idx} has {len(row)} cells but expected {len(header_cells)}")
    if not body:
        body = [[empty_message] + [""] * (len(header_cells) - 1)]

    widths = [max(len(row[i]) for row in [header_cells] + body) for i in range(len(header_cells))]

    lines = [_rule(widths, "┌", "┬", "┐"), _line(header_cells, widths), _rule(widths, "├", "┼", "┤")]
    lines.extend(_line(row, widths) for row in body)
    lines.append(_rule(widths, "└", "┴", "┘"))
    return "\n".join(lines)


def format_step_results(steps: Sequence[StepResult]) -> str:
    rows = [
        (f"{_STATUS_MARKS.get(step.status, '')} {step.name}".strip(), step.status.value, step.detail)
        for step in steps
    ]
    return format_table(("Step", "Status", "Details"), rows, empty_message="No steps run")


def format_outcome(outcome: BootstrapOutcome, title: Optional[str] = None) -> str:
    """Summary printed at the end of a run."""
    lines = [title or "BOOTSTRAP RESULTS", format_step_results(outcome.context.steps)]
    lines.append(f"Outcome: {outcome.kind.value}")
    if outcome.reason:
        lines.append(f"Reason: {outcome.reason}")
    repo = outcome.context.created_repository
    if repo is not None and repo.link:
        lines.append(f"Environment repository: {repo.link}")
    if outcome.context.change_request_link:
        lines.append(f"Pull Request: {outcome.context.change_request_link}")
    return "\n".join(lines)
