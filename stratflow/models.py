"""State models for a workflow run and the snapshots published to subscribers."""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

StageStatus = Literal[
    "pending", "processing", "completed", "errored", "connectivity_errored"
]
RunStatus = Literal["idle", "running", "completed", "failed"]
ErrorKind = Literal[
    "connectivity", "rate_limited", "unauthorized", "server_logic", "transport_closed"
]
Action = Literal["HOLD", "SWAP"]

TERMINAL_STAGE_STATUSES = ("completed", "errored", "connectivity_errored")
TERMINAL_RUN_STATUSES = ("completed", "failed")


class StageDefinition(BaseModel):
    """One named stage of the pipeline."""

    model_config = ConfigDict(frozen=True)

    index: int = Field(..., ge=0)
    name: str
    description: str = ""


class StageState(BaseModel):
    """Lifecycle state of a single stage."""

    model_config = ConfigDict(frozen=True)

    index: int
    status: StageStatus = "pending"
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class StageOutput(BaseModel):
    """Narrative text shown for a stage."""

    model_config = ConfigDict(frozen=True)

    index: int
    text: str = ""
    last_updated_at: Optional[datetime] = None


class ClassifiedError(BaseModel):
    """A failure normalised into one of the known error kinds."""

    model_config = ConfigDict(frozen=True)

    kind: ErrorKind
    message: str
    recoverable: bool

    @property
    def ends_session(self) -> bool:
        return self.kind == "unauthorized"


class FinalRecommendation(BaseModel):
    """The result of a successful run."""

    model_config = ConfigDict(frozen=True)

    action: Action
    raw_text: str
    explanation: str = ""
    total_time_ms: int = 0
    produced_at: datetime


class Snapshot(BaseModel):
    """Immutable point-in-time view of a run."""

    model_config = ConfigDict(frozen=True)

    run_id: Optional[str] = None
    subject_id: Optional[str] = None
    status: RunStatus = "idle"
    stages: Tuple[StageState, ...] = ()
    outputs: Tuple[StageOutput, ...] = ()
    result: Optional[FinalRecommendation] = None
    failure: Optional[ClassifiedError] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RUN_STATUSES

    def stage(self, index: int) -> StageState:
        return self.stages[index]

    def output(self, index: int) -> StageOutput:
        return self.outputs[index]


class WorkflowRun(BaseModel):
    """Aggregate root for one run, owned by the engine.

    Stage and output state live in the tracker and aggregator; the run only
    keeps identity, lifecycle status and the terminal outcome.
    """

    run_id: str
    subject_id: str
    status: RunStatus = "idle"
    result: Optional[FinalRecommendation] = None
    failure: Optional[ClassifiedError] = None
    started_at: datetime
    ended_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RUN_STATUSES
