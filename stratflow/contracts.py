"""Wire contracts: workflow events pushed by the server and failure signals."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)


class RecommendationPayload(_WireModel):
    """Recommendation body carried by ``workflow_complete``."""

    recommendation: str
    explanation: str = ""


class BaseEvent(_WireModel):
    """Fields shared by every event on the stream."""

    timestamp: datetime = Field(default_factory=_utcnow)
    message: str = ""


class InitEvent(BaseEvent):
    type: Literal["init"] = "init"


class WorkflowStartEvent(BaseEvent):
    type: Literal["workflow_start"] = "workflow_start"
    step: int = 0
    total_steps: Optional[int] = Field(default=None, alias="totalSteps")


class StepStartEvent(BaseEvent):
    type: Literal["step_start"] = "step_start"
    step: int
    total_steps: Optional[int] = Field(default=None, alias="totalSteps")


class StepProgressEvent(BaseEvent):
    """Whole-text update of a running stage's narrative."""

    type: Literal["step_progress"] = "step_progress"
    step: int
    text: Optional[str] = None

    @property
    def body(self) -> str:
        return self.text if self.text is not None else self.message


class StepCompleteEvent(BaseEvent):
    type: Literal["step_complete"] = "step_complete"
    step: int
    total_steps: Optional[int] = Field(default=None, alias="totalSteps")
    step_time: int = Field(default=0, alias="stepTime")


class WorkflowCompleteEvent(BaseEvent):
    type: Literal["workflow_complete"] = "workflow_complete"
    recommendation: RecommendationPayload
    total_time: int = Field(default=0, alias="totalTime")


class WorkflowErrorEvent(BaseEvent):
    type: Literal["workflow_error"] = "workflow_error"
    error: Optional[str] = None
    error_type: Optional[str] = Field(default=None, alias="errorType")
    http_status: Optional[int] = Field(default=None, alias="httpStatus")

    def to_signal(self) -> "FailureSignal":
        """Convert the event into the signal understood by the classifier."""
        if self.http_status == 401:
            return AuthorizationFailure(message=self.message or self.error or "")
        return ServerErrorPayload(
            error_type=self.error_type, message=self.message, error=self.error
        )


class UnknownEvent(BaseEvent):
    """Event with a type this client does not understand."""

    type: str
    payload: Dict[str, Any] = Field(default_factory=dict)


WorkflowEvent = Annotated[
    Union[
        InitEvent,
        WorkflowStartEvent,
        StepStartEvent,
        StepProgressEvent,
        StepCompleteEvent,
        WorkflowCompleteEvent,
        WorkflowErrorEvent,
    ],
    Field(discriminator="type"),
]

_EVENT_ADAPTER: TypeAdapter = TypeAdapter(WorkflowEvent)

KNOWN_EVENT_TYPES = frozenset(
    {
        "init",
        "workflow_start",
        "step_start",
        "step_progress",
        "step_complete",
        "workflow_complete",
        "workflow_error",
    }
)

TERMINAL_EVENT_TYPES = frozenset({"workflow_complete", "workflow_error"})


def parse_event(data: Union[str, bytes, Mapping[str, Any], BaseEvent]) -> BaseEvent:
    """Build a typed event from a JSON string or decoded mapping.

    Events with an unrecognised ``type`` become :class:`UnknownEvent` so that
    newer servers do not break older clients. Malformed events of a known
    type raise ``pydantic.ValidationError``.
    """
    if isinstance(data, BaseEvent):
        return data
    if isinstance(data, (str, bytes)):
        data = json.loads(data)
    if not isinstance(data, Mapping):
        raise ValueError(f"Event must be a JSON object, got {type(data).__name__}")

    event_type = data.get("type")
    if event_type not in KNOWN_EVENT_TYPES:
        fields = {k: data[k] for k in ("timestamp", "message") if k in data}
        return UnknownEvent(type=str(event_type), payload=dict(data), **fields)
    return _EVENT_ADAPTER.validate_python(dict(data))


# ----------------------------------------------------------------------
# Failure signals


class TransportDisconnect(_WireModel):
    """The connection dropped before a terminal event arrived."""

    signal: Literal["transport_disconnect"] = "transport_disconnect"
    message: str = ""


class ChannelClosed(_WireModel):
    """The server closed the stream cleanly without a terminal event."""

    signal: Literal["channel_closed"] = "channel_closed"
    message: str = ""


class ServerErrorPayload(_WireModel):
    """Structured error reported by the server."""

    signal: Literal["server_error"] = "server_error"
    error_type: Optional[str] = Field(default=None, alias="errorType")
    message: str = ""
    error: Optional[str] = None


class AuthorizationFailure(_WireModel):
    """The request was rejected as unauthorized (HTTP 401)."""

    signal: Literal["authorization_failure"] = "authorization_failure"
    status_code: int = 401
    message: str = ""


FailureSignal = Union[
    TransportDisconnect, ChannelClosed, ServerErrorPayload, AuthorizationFailure
]
