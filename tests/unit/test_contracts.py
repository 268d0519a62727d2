"""Wire contract parsing tests."""

import json
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from stratflow.contracts import (
    AuthorizationFailure,
    ServerErrorPayload,
    StepCompleteEvent,
    StepProgressEvent,
    StepStartEvent,
    UnknownEvent,
    WorkflowCompleteEvent,
    WorkflowErrorEvent,
    parse_event,
)

from conftest import step_complete, workflow_complete


def test_parse_step_complete_uses_wire_aliases():
    event = parse_event(step_complete(1, 10, step_time=2300))

    assert isinstance(event, StepCompleteEvent)
    assert event.step == 1
    assert event.total_steps == 2
    assert event.step_time == 2300
    assert event.timestamp == datetime(2025, 1, 1, 10, 0, 10, tzinfo=timezone.utc)


def test_parse_from_json_string_and_bytes():
    raw = json.dumps({"type": "step_start", "step": 2, "message": "Running step 2..."})

    assert isinstance(parse_event(raw), StepStartEvent)
    assert isinstance(parse_event(raw.encode()), StepStartEvent)


def test_parse_workflow_complete():
    event = parse_event(workflow_complete("Hold ETH", total_time=900))

    assert isinstance(event, WorkflowCompleteEvent)
    assert event.recommendation.recommendation == "Hold ETH"
    assert event.total_time == 900


def test_missing_timestamp_defaults_to_now():
    before = datetime.now(timezone.utc)
    event = parse_event({"type": "init"})

    assert event.timestamp >= before


def test_unknown_type_is_preserved():
    event = parse_event({"type": "heartbeat", "message": "ping", "seq": 3})

    assert isinstance(event, UnknownEvent)
    assert event.type == "heartbeat"
    assert event.message == "ping"
    assert event.payload["seq"] == 3


def test_extra_fields_are_ignored():
    event = parse_event({"type": "init", "message": "hi", "serverVersion": "2"})

    assert event.message == "hi"


def test_malformed_known_event_raises():
    with pytest.raises(ValidationError):
        parse_event({"type": "step_start"})


def test_non_object_payload_raises():
    with pytest.raises(ValueError):
        parse_event("[1, 2, 3]")


def test_parse_event_passes_events_through():
    event = StepProgressEvent(step=1, text="partial")

    assert parse_event(event) is event
    assert event.body == "partial"
    assert StepProgressEvent(step=1, message="from message").body == "from message"


def test_workflow_error_signal_conversion():
    auth = WorkflowErrorEvent(message="Unauthorized", http_status=401).to_signal()
    tagged = parse_event(
        {"type": "workflow_error", "errorType": "rate_limit", "message": "slow down"}
    ).to_signal()

    assert isinstance(auth, AuthorizationFailure)
    assert isinstance(tagged, ServerErrorPayload)
    assert tagged.error_type == "rate_limit"
    assert tagged.message == "slow down"
