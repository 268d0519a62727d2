"""Event dispatch for a single workflow run."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Optional

from .classifier import classify
from .contracts import (
    BaseEvent,
    InitEvent,
    StepCompleteEvent,
    StepProgressEvent,
    StepStartEvent,
    WorkflowCompleteEvent,
    WorkflowErrorEvent,
    WorkflowStartEvent,
    parse_event,
)
from .finalizer import RunFinalizer
from .models import ClassifiedError, Snapshot, WorkflowRun
from .outputs import (
    OutputAggregator,
    completion_summary,
    failure_text,
    placeholder_text,
    recommendation_text,
)
from .registry import StageRegistry
from .tracker import StageLifecycleTracker

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RunDispatcher:
    """Applies events to one :class:`WorkflowRun` and its stage state.

    The dispatcher owns a fresh tracker, aggregator and finalizer, so nothing
    leaks from one run into the next. It performs no I/O: the engine feeds it
    events and publishes the resulting snapshots.
    """

    def __init__(
        self,
        registry: StageRegistry,
        subject_id: str,
        run_id: Optional[str] = None,
        step_base: int = 1,
    ) -> None:
        self.registry = registry
        self.step_base = step_base
        self.run = WorkflowRun(
            run_id=run_id or str(uuid.uuid4()),
            subject_id=subject_id,
            started_at=_utcnow(),
        )
        self.tracker = StageLifecycleTracker(registry)
        self.outputs = OutputAggregator(registry)
        self.finalizer = RunFinalizer()
        self._handlers: Dict[str, Callable[[Any], None]] = {
            "init": self._on_init,
            "workflow_start": self._on_workflow_start,
            "step_start": self._on_step_start,
            "step_progress": self._on_step_progress,
            "step_complete": self._on_step_complete,
            "workflow_complete": self._on_workflow_complete,
            "workflow_error": self._on_workflow_error,
        }

    @property
    def is_terminal(self) -> bool:
        return self.run.is_terminal

    def apply(self, event: BaseEvent) -> bool:
        """Apply ``event`` to the run.

        Returns ``False`` when the event was ignored because the run already
        ended or the event type is unknown.
        """
        if self.run.is_terminal:
            logger.debug(
                f"Run {self.run.run_id} already {self.run.status}; "
                f"ignoring {getattr(event, 'type', event)}"
            )
            return False
        handler = self._handlers.get(getattr(event, "type", None))
        if handler is None:
            logger.warning(
                f"Unknown event type {getattr(event, 'type', None)!r} "
                f"for run {self.run.run_id}; ignoring"
            )
            return False
        if self.run.status == "idle":
            self.run.status = "running"
        handler(event)
        return True

    def fail(self, signal: Any, timestamp: Optional[datetime] = None) -> ClassifiedError:
        """Classify ``signal`` and abort every in-flight stage."""
        timestamp = timestamp or _utcnow()
        error = classify(signal)
        failed = self.tracker.on_stage_fail(None, error.kind, timestamp)
        text = failure_text(error)
        for index in failed:
            self.outputs.on_failure_output(index, text, timestamp)
        self.run.failure = error
        self.run.status = "failed"
        self.run.ended_at = timestamp
        logger.error(
            f"Run {self.run.run_id} failed ({error.kind}): {error.message}"
        )
        return error

    def snapshot(self) -> Snapshot:
        return Snapshot(
            run_id=self.run.run_id,
            subject_id=self.run.subject_id,
            status=self.run.status,
            stages=self.tracker.snapshot(),
            outputs=self.outputs.snapshot(),
            result=self.run.result,
            failure=self.run.failure,
            started_at=self.run.started_at,
            ended_at=self.run.ended_at,
        )

    # ------------------------------------------------------------------
    # Event handlers

    def _stage_index(self, step: int) -> Optional[int]:
        index = step - self.step_base
        if index not in self.registry:
            logger.warning(
                f"Step {step} is outside the {len(self.registry)}-stage pipeline; ignoring"
            )
            return None
        return index

    def _on_init(self, event: InitEvent) -> None:
        logger.debug(f"Workflow initialized: {event.message}")

    def _on_workflow_start(self, event: WorkflowStartEvent) -> None:
        if event.total_steps is not None and event.total_steps != len(self.registry):
            logger.warning(
                f"Server announced {event.total_steps} steps but the registry "
                f"defines {len(self.registry)}"
            )
        logger.debug(f"Workflow starting: {event.message}")

    def _on_step_start(self, event: StepStartEvent) -> None:
        index = self._stage_index(event.step)
        if index is None:
            return
        if self.tracker.on_stage_start(index, event.timestamp):
            self.outputs.on_partial_output(
                index, placeholder_text(event.message, event.timestamp), event.timestamp
            )
            logger.info(f"Step {event.step} started: {self.registry.get(index).name}")

    def _on_step_progress(self, event: StepProgressEvent) -> None:
        index = self._stage_index(event.step)
        if index is None:
            return
        if self.tracker.status_of(index) != "processing":
            logger.debug(f"Progress for step {event.step} outside processing; ignoring")
            return
        self.outputs.on_partial_output(index, event.body, event.timestamp)

    def _on_step_complete(self, event: StepCompleteEvent) -> None:
        index = self._stage_index(event.step)
        if index is None:
            return
        if self.tracker.on_stage_complete(index, event.timestamp):
            self.outputs.on_final_output(
                index,
                completion_summary(event.message, event.step_time, event.timestamp),
                event.timestamp,
            )
            logger.info(f"Step {event.step} completed in {event.step_time}ms")

    def _on_workflow_complete(self, event: WorkflowCompleteEvent) -> None:
        result = self.finalizer.finalize(
            event.recommendation.recommendation,
            event.recommendation.explanation,
            event.total_time,
            event.timestamp,
        )
        for index in self.tracker.in_flight():
            self.tracker.on_stage_complete(index, event.timestamp)
        last = len(self.registry) - 1
        if self.tracker.status_of(last) == "completed":
            self.outputs.on_final_output(
                last, recommendation_text(result, len(self.registry)), event.timestamp
            )
        else:
            logger.warning(
                f"Workflow completed before stage {last} ran; "
                "recommendation not attached to its output"
            )
        self.run.result = result
        self.run.status = "completed"
        self.run.ended_at = event.timestamp
        logger.info(f"Workflow completed for run {self.run.run_id}")

    def _on_workflow_error(self, event: WorkflowErrorEvent) -> None:
        self.fail(event, event.timestamp)


def reduce(
    registry: StageRegistry,
    events: Iterable[Any],
    subject_id: str = "replay",
    step_base: int = 1,
) -> Snapshot:
    """Fold ``events`` into the snapshot a live run would end up with."""
    dispatcher = RunDispatcher(registry, subject_id, step_base=step_base)
    for event in events:
        dispatcher.apply(parse_event(event))
    return dispatcher.snapshot()
