"""Console rendering of workflow snapshots."""

from __future__ import annotations

from typing import Callable, Dict, List, Optional, Tuple

import typer

from ..models import Snapshot, StageDefinition, StageState
from ..registry import StageRegistry

STATUS_COLORS = {
    "pending": typer.colors.BRIGHT_BLACK,
    "processing": typer.colors.BLUE,
    "completed": typer.colors.GREEN,
    "connectivity_errored": typer.colors.YELLOW,
    "errored": typer.colors.RED,
}

STATUS_LABELS = {
    "pending": "pending",
    "processing": "running",
    "completed": "done",
    "connectivity_errored": "connection lost",
    "errored": "error",
}

Line = Tuple[str, Optional[str]]


def format_stage_line(definition: StageDefinition, state: StageState) -> Line:
    label = STATUS_LABELS[state.status]
    return (
        f"[{definition.index + 1}] {definition.name}: {label}",
        STATUS_COLORS[state.status],
    )


def format_outcome(snapshot: Snapshot) -> List[Line]:
    """Lines describing how the run ended."""
    if snapshot.result is not None:
        result = snapshot.result
        return [
            (f"Recommendation: {result.action}", typer.colors.GREEN),
            (result.raw_text, None),
            (result.explanation, None),
            (f"Total time: {result.total_time_ms}ms", typer.colors.BRIGHT_BLACK),
        ]
    if snapshot.failure is not None:
        failure = snapshot.failure
        color = typer.colors.YELLOW if failure.recoverable else typer.colors.RED
        hint = "You can try again." if failure.recoverable else ""
        lines = [(f"Workflow failed ({failure.kind}): {failure.message}", color)]
        if hint:
            lines.append((hint, None))
        return lines
    return [(f"Workflow {snapshot.status}", typer.colors.BRIGHT_BLACK)]


def format_snapshot(
    registry: StageRegistry, snapshot: Snapshot, show_output: bool = False
) -> List[Line]:
    lines: List[Line] = []
    for definition, state in zip(registry, snapshot.stages):
        lines.append(format_stage_line(definition, state))
        if show_output and snapshot.outputs[definition.index].text:
            for text_line in snapshot.outputs[definition.index].text.splitlines():
                lines.append((f"    {text_line}", None))
    lines.extend(format_outcome(snapshot))
    return lines


def echo_lines(lines: List[Line]) -> None:
    for text, color in lines:
        typer.secho(text, fg=color)


class SnapshotRenderer:
    """Subscriber that prints stage transitions and the final outcome.

    Never mutates the snapshots it receives.
    """

    def __init__(
        self,
        registry: StageRegistry,
        show_output: bool = False,
        emit: Callable[[List[Line]], None] = echo_lines,
    ) -> None:
        self._registry = registry
        self._show_output = show_output
        self._emit = emit
        self._seen: Dict[int, str] = {}
        self._finished = False

    def __call__(self, snapshot: Snapshot) -> None:
        lines: List[Line] = []
        for definition, state in zip(self._registry, snapshot.stages):
            if self._seen.get(definition.index, "pending") == state.status:
                continue
            self._seen[definition.index] = state.status
            lines.append(format_stage_line(definition, state))
            text = snapshot.outputs[definition.index].text
            if self._show_output and text:
                lines.extend((f"    {t}", None) for t in text.splitlines())
        if snapshot.is_terminal and not self._finished:
            self._finished = True
            lines.extend(format_outcome(snapshot))
        if lines:
            self._emit(lines)
