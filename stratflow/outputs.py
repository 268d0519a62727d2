"""Per-stage narrative output and the text shown while a run progresses."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, Optional, Tuple

from .models import ClassifiedError, FinalRecommendation, StageOutput
from .registry import StageRegistry

logger = logging.getLogger(__name__)

CONNECTION_LOST_TEXT = "Connection lost during processing"


def _clock(ts: datetime) -> str:
    return ts.astimezone().strftime("%H:%M:%S")


def placeholder_text(message: str, timestamp: datetime) -> str:
    """Text shown while a stage is running and no progress has arrived."""
    return f"{message or 'Running...'}\n\nStarted at: {_clock(timestamp)}"


def completion_summary(message: str, step_time_ms: int, timestamp: datetime) -> str:
    return (
        f"{message or 'Completed'}\n\n"
        f"Execution time: {step_time_ms}ms\n"
        f"Completed at: {_clock(timestamp)}"
    )


def failure_text(error: ClassifiedError) -> str:
    if error.kind == "connectivity":
        return CONNECTION_LOST_TEXT
    return f"Agent Error: {error.message}"


def recommendation_text(result: FinalRecommendation, stage_count: int) -> str:
    """Narrative for the deciding stage once the final recommendation is in."""
    return (
        f"Final Recommendation: {result.raw_text}\n\n"
        f"Investment Decision Summary:\n{result.explanation}\n\n"
        f"Total analysis completed in {result.total_time_ms}ms "
        f"using {stage_count} AI agents."
    )


class OutputAggregator:
    """Holds the latest narrative text for each stage.

    The server sends whole-text snapshots, so every update replaces the
    previous text instead of appending to it.
    """

    def __init__(self, registry: StageRegistry) -> None:
        self._registry = registry
        self._outputs: Dict[int, StageOutput] = {}
        self.reset()

    def reset(self) -> None:
        self._outputs = {d.index: StageOutput(index=d.index) for d in self._registry}

    def _replace(self, index: int, text: str, timestamp: Optional[datetime]) -> bool:
        if index not in self._outputs:
            logger.warning(f"Ignoring output for unknown stage index {index}")
            return False
        self._outputs[index] = StageOutput(
            index=index, text=text, last_updated_at=timestamp
        )
        return True

    def on_partial_output(self, index: int, text: str, timestamp: datetime) -> bool:
        return self._replace(index, text, timestamp)

    def on_final_output(self, index: int, text: str, timestamp: datetime) -> bool:
        return self._replace(index, text, timestamp)

    def on_failure_output(self, index: int, text: str, timestamp: datetime) -> bool:
        return self._replace(index, text, timestamp)

    def text_of(self, index: int) -> str:
        return self._outputs[index].text

    def snapshot(self) -> Tuple[StageOutput, ...]:
        return tuple(self._outputs[i] for i in sorted(self._outputs))
