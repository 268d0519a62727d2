"""Stage lifecycle tracking for a single run."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, Optional, Tuple

from .models import ErrorKind, StageState, StageStatus
from .registry import StageRegistry

logger = logging.getLogger(__name__)


class StageLifecycleTracker:
    """Keeps the status and timestamps of every stage in the registry.

    Stages only move forward: ``pending -> processing -> completed`` or
    ``processing -> errored | connectivity_errored``. Anything else is logged
    and ignored, which makes duplicate or late events harmless.
    """

    def __init__(self, registry: StageRegistry) -> None:
        self._registry = registry
        self._stages: Dict[int, StageState] = {}
        self.reset()

    def reset(self) -> None:
        """Put every stage back to ``pending``."""
        self._stages = {d.index: StageState(index=d.index) for d in self._registry}

    def _current(self, index: int) -> Optional[StageState]:
        state = self._stages.get(index)
        if state is None:
            logger.warning(f"Ignoring event for unknown stage index {index}")
        return state

    def on_stage_start(self, index: int, timestamp: datetime) -> bool:
        state = self._current(index)
        if state is None:
            return False
        if state.status != "pending":
            logger.debug(f"Stage {index} already {state.status}; start ignored")
            return False
        self._stages[index] = state.model_copy(
            update={"status": "processing", "started_at": timestamp}
        )
        return True

    def on_stage_complete(self, index: int, timestamp: datetime) -> bool:
        state = self._current(index)
        if state is None:
            return False
        if state.status != "processing":
            logger.warning(
                f"Stage {index} completed while {state.status}; completion ignored"
            )
            return False
        self._stages[index] = state.model_copy(
            update={"status": "completed", "completed_at": timestamp}
        )
        return True

    def on_stage_fail(
        self, index: Optional[int], kind: ErrorKind, timestamp: datetime
    ) -> Tuple[int, ...]:
        """Abort every stage that is still processing.

        ``index`` names the stage that reported the failure, if any; it gets no
        special treatment because a single failure aborts the whole pipeline.
        Returns the indices that were marked as failed.
        """
        if index is not None:
            self._current(index)
        status: StageStatus = (
            "connectivity_errored" if kind == "connectivity" else "errored"
        )
        failed = []
        for i, state in self._stages.items():
            if state.status == "processing":
                self._stages[i] = state.model_copy(
                    update={"status": status, "completed_at": timestamp}
                )
                failed.append(i)
        return tuple(failed)

    def status_of(self, index: int) -> StageStatus:
        return self._stages[index].status

    def in_flight(self) -> Tuple[int, ...]:
        return tuple(i for i, s in self._stages.items() if s.status == "processing")

    def snapshot(self) -> Tuple[StageState, ...]:
        return tuple(self._stages[i] for i in sorted(self._stages))
