"""End-to-end engine tests over the in-memory transport."""

import asyncio

import pytest

from stratflow.config import EngineConfig
from stratflow.contracts import parse_event
from stratflow.engine import WorkflowEngine
from stratflow.errors import AlreadyRunningError, InvalidStateError
from stratflow.session import InMemorySessionStore
from stratflow.transports import InMemoryTransport

from conftest import (
    HOLD_TEXT,
    SWAP_TEXT,
    step_complete,
    step_start,
    successful_run,
    workflow_complete,
)


def _engine(transport, grace_delay=4.0, session=None, on_session_end=None):
    return WorkflowEngine(
        transport,
        session=session,
        config=EngineConfig(session_grace_delay=grace_delay),
        on_session_end=on_session_end,
    )


@pytest.mark.asyncio
async def test_successful_run_end_to_end():
    """A full event stream ends with a SWAP recommendation and a closed channel."""
    transport = InMemoryTransport()
    engine = _engine(transport)
    snapshots = []
    engine.subscribe(snapshots.append)

    run_id = await engine.start_run("strategy-1")
    handle = transport.last_handle
    transport.feed(handle, successful_run(SWAP_TEXT))

    snapshot = engine.snapshot
    assert snapshot.run_id == run_id
    assert snapshot.subject_id == "strategy-1"
    assert snapshot.status == "completed"
    assert snapshot.result.action == "SWAP"
    assert [s.status for s in snapshot.stages] == ["completed", "completed"]
    assert handle.closed
    assert not engine.is_running
    # initial publish plus one per event
    assert len(snapshots) == 1 + len(successful_run())
    assert snapshots[0].status == "idle"

    await engine.dispose()


@pytest.mark.asyncio
async def test_scripted_run_and_wait_closed():
    transport = InMemoryTransport()
    transport.script("strategy-1", successful_run(HOLD_TEXT))
    engine = _engine(transport)

    await engine.start_run("strategy-1")
    snapshot = await asyncio.wait_for(engine.wait_closed(), timeout=1)

    assert snapshot.status == "completed"
    assert snapshot.result.action == "HOLD"
    await engine.dispose()


@pytest.mark.asyncio
async def test_disconnect_marks_connectivity_failure():
    transport = InMemoryTransport()
    engine = _engine(transport)
    await engine.start_run("strategy-1")
    handle = transport.last_handle
    transport.feed(handle, [step_start(1, 1), step_complete(1, 5), step_start(2, 6)])

    transport.disconnect(handle, clean=False)

    snapshot = engine.snapshot
    assert snapshot.status == "failed"
    assert snapshot.failure.kind == "connectivity"
    assert snapshot.failure.recoverable
    assert snapshot.stage(0).status == "completed"
    assert snapshot.stage(1).status == "connectivity_errored"
    assert snapshot.output(1).text == "Connection lost during processing"
    await engine.dispose()


@pytest.mark.asyncio
async def test_clean_close_without_terminal_event():
    transport = InMemoryTransport()
    engine = _engine(transport)
    await engine.start_run("strategy-1")
    transport.feed(transport.last_handle, [step_start(1)])

    transport.disconnect(transport.last_handle, clean=True)

    snapshot = engine.snapshot
    assert snapshot.failure.kind == "transport_closed"
    assert snapshot.stage(0).status == "errored"
    await engine.dispose()


@pytest.mark.asyncio
async def test_second_start_while_running_is_rejected():
    transport = InMemoryTransport()
    engine = _engine(transport)
    await engine.start_run("strategy-1")
    transport.emit(transport.last_handle, step_start(1))
    before = engine.snapshot

    with pytest.raises(AlreadyRunningError):
        await engine.start_run("strategy-2")

    assert engine.snapshot is before
    assert len(transport.handles) == 1
    await engine.dispose()


@pytest.mark.asyncio
async def test_new_run_after_completion_starts_clean():
    transport = InMemoryTransport()
    engine = _engine(transport)
    first = await engine.start_run("strategy-1")
    transport.feed(transport.last_handle, successful_run())

    second = await engine.start_run("strategy-2")

    snapshot = engine.snapshot
    assert second != first
    assert snapshot.subject_id == "strategy-2"
    assert snapshot.status == "idle"
    assert snapshot.result is None
    assert [s.status for s in snapshot.stages] == ["pending", "pending"]
    assert [o.text for o in snapshot.outputs] == ["", ""]
    await engine.dispose()


@pytest.mark.asyncio
async def test_events_on_old_channel_are_ignored():
    transport = InMemoryTransport()
    engine = _engine(transport)
    await engine.start_run("strategy-1")
    old = transport.last_handle
    transport.disconnect(old, clean=False)
    await engine.start_run("strategy-1")

    old.on_event(parse_event(step_start(1)))

    assert engine.snapshot.stage(0).status == "pending"
    await engine.dispose()


@pytest.mark.asyncio
async def test_unauthorized_ends_session_after_grace_delay():
    transport = InMemoryTransport()
    session = InMemorySessionStore(token="expired", user={"id": 7})
    ended = []
    engine = _engine(
        transport, grace_delay=0.05, session=session, on_session_end=lambda: ended.append(True)
    )

    await engine.start_run("strategy-1")
    assert transport.tokens[transport.last_handle.channel_id] == "expired"
    transport.emit(
        transport.last_handle,
        {"type": "workflow_error", "httpStatus": 401, "message": "Token expired"},
    )

    assert engine.snapshot.failure.kind == "unauthorized"
    assert engine.snapshot.failure.ends_session
    assert not session.ended

    await asyncio.sleep(0.1)

    assert session.ended
    assert session.token is None
    assert ended == [True]
    await engine.dispose()
    assert ended == [True]


@pytest.mark.asyncio
async def test_dispose_flushes_pending_session_teardown():
    transport = InMemoryTransport()
    session = InMemorySessionStore(token="expired")
    engine = _engine(transport, grace_delay=60, session=session)
    await engine.start_run("strategy-1")
    transport.emit(transport.last_handle, {"type": "workflow_error", "errorType": "auth"})

    await engine.dispose()

    assert session.ended


@pytest.mark.asyncio
async def test_rate_limit_does_not_end_session():
    transport = InMemoryTransport()
    session = InMemorySessionStore(token="abc")
    engine = _engine(transport, grace_delay=0, session=session)
    await engine.start_run("strategy-1")
    transport.emit(
        transport.last_handle, {"type": "workflow_error", "errorType": "rate_limit"}
    )

    await asyncio.sleep(0.01)

    assert engine.snapshot.failure.kind == "rate_limited"
    assert not session.ended
    await engine.dispose()


@pytest.mark.asyncio
async def test_dispose_stops_dispatch():
    transport = InMemoryTransport()
    engine = _engine(transport)
    snapshots = []
    engine.subscribe(snapshots.append)
    await engine.start_run("strategy-1")
    handle = transport.last_handle

    await engine.dispose()
    engine.dispatch(step_start(1))
    handle.on_event(parse_event(step_start(1)))

    assert handle.closed
    assert engine.disposed
    assert len(snapshots) == 1
    assert engine.snapshot.stage(0).status == "pending"
    await engine.dispose()


@pytest.mark.asyncio
async def test_start_after_dispose_raises():
    engine = _engine(InMemoryTransport())
    await engine.dispose()

    with pytest.raises(InvalidStateError):
        await engine.start_run("strategy-1")


def test_dispatch_without_run_raises():
    engine = _engine(InMemoryTransport())

    with pytest.raises(InvalidStateError):
        engine.dispatch(step_start(1))


@pytest.mark.asyncio
async def test_open_failure_becomes_connectivity_failure():
    transport = InMemoryTransport()
    transport.fail_on_open = ConnectionError("refused")
    engine = _engine(transport)

    await engine.start_run("strategy-1")

    snapshot = await asyncio.wait_for(engine.wait_closed(), timeout=1)
    assert snapshot.status == "failed"
    assert snapshot.failure.kind == "connectivity"
    assert "refused" in snapshot.failure.message
    assert not engine.is_running
    await engine.dispose()


@pytest.mark.asyncio
async def test_raising_subscriber_does_not_block_others():
    transport = InMemoryTransport()
    engine = _engine(transport)
    received = []

    def broken(snapshot):
        raise RuntimeError("subscriber bug")

    engine.subscribe(broken)
    engine.subscribe(received.append)

    await engine.start_run("strategy-1")
    transport.emit(transport.last_handle, step_start(1))

    assert len(received) == 2
    assert received[-1].stage(0).status == "processing"
    await engine.dispose()


@pytest.mark.asyncio
async def test_unsubscribe_stops_delivery():
    transport = InMemoryTransport()
    engine = _engine(transport)
    received = []
    unsubscribe = engine.subscribe(received.append)

    await engine.start_run("strategy-1")
    unsubscribe()
    transport.emit(transport.last_handle, step_start(1))

    assert len(received) == 1
    await engine.dispose()


@pytest.mark.asyncio
async def test_unknown_event_is_ignored():
    transport = InMemoryTransport()
    engine = _engine(transport)
    await engine.start_run("strategy-1")

    transport.emit(transport.last_handle, {"type": "heartbeat"})

    assert engine.snapshot.status == "idle"
    assert engine.is_running
    await engine.dispose()


@pytest.mark.asyncio
async def test_dispatch_feeds_active_run():
    transport = InMemoryTransport()
    engine = _engine(transport)
    await engine.start_run("strategy-1")

    snapshot = engine.dispatch(step_start(1))

    assert snapshot.stage(0).status == "processing"
    assert snapshot is engine.snapshot
    await engine.dispose()


@pytest.mark.asyncio
@pytest.mark.parametrize("preset", ["four_stage", "five_stage"])
async def test_longer_pipelines_complete(preset):
    transport = InMemoryTransport()
    engine = WorkflowEngine(transport, config=EngineConfig(preset=preset))
    count = len(engine.registry)
    events = []
    for step in range(1, count + 1):
        events += [step_start(step, step), step_complete(step, step + 10)]
    transport.script("strategy-1", events + [workflow_complete(HOLD_TEXT)])

    await engine.start_run("strategy-1")
    snapshot = await asyncio.wait_for(engine.wait_closed(), timeout=1)

    assert snapshot.status == "completed"
    assert len(snapshot.stages) == count
    assert all(s.status == "completed" for s in snapshot.stages)
    assert snapshot.result.action == "HOLD"
    await engine.dispose()
