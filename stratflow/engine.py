"""Workflow engine: owns one run at a time and publishes its snapshots."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Set

from .config import EngineConfig
from .contracts import ChannelClosed, TransportDisconnect, parse_event
from .dispatch import RunDispatcher
from .errors import AlreadyRunningError, InvalidStateError
from .models import Snapshot, StageOutput, StageState
from .registry import StageRegistry
from .session import SessionStore
from .transports.base import BaseTransport, ChannelHandle

logger = logging.getLogger(__name__)

Subscriber = Callable[[Snapshot], None]


def registry_from_config(config: EngineConfig) -> StageRegistry:
    """Build the stage registry described by ``config``."""
    if config.stages:
        return StageRegistry.from_config(config.stages)
    return StageRegistry.from_preset(config.preset)


class WorkflowEngine:
    """Streams one workflow run for a subject and tracks its progress.

    ``start_run`` opens a channel through the injected transport. Every event
    the transport delivers is applied synchronously, in arrival order, and a
    new immutable :class:`Snapshot` is pushed to subscribers afterwards. A
    terminal event or a disconnect closes the channel and freezes the run.
    """

    def __init__(
        self,
        transport: BaseTransport,
        registry: Optional[StageRegistry] = None,
        session: Optional[SessionStore] = None,
        config: Optional[EngineConfig] = None,
        on_session_end: Optional[Callable[[], None]] = None,
    ) -> None:
        self._config = config or EngineConfig()
        self._registry = registry or registry_from_config(self._config)
        self._transport = transport
        self._session = session
        self._on_session_end = on_session_end
        self._subscribers: List[Subscriber] = []
        self._current: Optional[RunDispatcher] = None
        self._handle: Optional[ChannelHandle] = None
        self._closing: Set[asyncio.Task] = set()
        self._teardown: Optional[asyncio.TimerHandle] = None
        self._done: Optional[asyncio.Event] = None
        self._disposed = False
        self._snapshot = Snapshot(
            stages=tuple(StageState(index=d.index) for d in self._registry),
            outputs=tuple(StageOutput(index=d.index) for d in self._registry),
        )

    # ------------------------------------------------------------------
    # Public API

    @property
    def registry(self) -> StageRegistry:
        return self._registry

    @property
    def snapshot(self) -> Snapshot:
        return self._snapshot

    @property
    def is_running(self) -> bool:
        return self._current is not None and not self._current.is_terminal

    @property
    def disposed(self) -> bool:
        return self._disposed

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register ``callback`` for snapshots; returns an unsubscribe function."""
        self._subscribers.append(callback)
        return lambda: self.unsubscribe(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    async def start_run(self, subject_id: str) -> str:
        """Start a new run for ``subject_id`` and return its run id.

        Raises:
            AlreadyRunningError: If a run is still active.
            InvalidStateError: If the engine has been disposed.
        """
        if self._disposed:
            raise InvalidStateError("Engine has been disposed")
        if self.is_running:
            raise AlreadyRunningError(
                f"Run {self._current.run.run_id} for subject "
                f"{self._current.run.subject_id} is still active"
            )

        current = RunDispatcher(
            self._registry, subject_id, step_base=self._config.step_base
        )
        self._current = current
        self._done = asyncio.Event()
        run_id = current.run.run_id
        logger.info(f"Starting run {run_id} for subject {subject_id}")
        self._publish(current)

        token = self._session.get_token() if self._session is not None else None
        try:
            handle = await self._transport.open(
                subject_id,
                lambda event: self._on_event(current, event),
                lambda clean: self._on_disconnect(current, clean),
                token=token,
            )
        except Exception as e:
            logger.exception(f"Failed to open channel for subject {subject_id}")
            current.fail(TransportDisconnect(message=f"Failed to connect to AI service: {e}"))
            self._publish(current)
            self._finish(current)
            return run_id

        if self._disposed or current is not self._current or current.is_terminal:
            # The run ended (or the engine went away) while the channel opened.
            await self._transport.close(handle)
        else:
            self._handle = handle
        return run_id

    def dispatch(self, event: Any) -> Snapshot:
        """Apply ``event`` to the active run and publish the new snapshot.

        Events arriving after ``dispose`` are ignored.
        """
        if self._disposed:
            logger.debug("Engine disposed; event ignored")
            return self._snapshot
        if self._current is None:
            raise InvalidStateError("No run has been started")
        self._on_event(self._current, parse_event(event))
        return self._snapshot

    def handle_disconnect(self, clean: bool = False) -> Snapshot:
        """Report that the channel of the active run went away."""
        if self._current is not None:
            self._on_disconnect(self._current, clean)
        return self._snapshot

    async def wait_closed(self) -> Snapshot:
        """Wait until the active run ends or the engine is disposed."""
        if self._done is not None:
            await self._done.wait()
        return self._snapshot

    async def dispose(self) -> None:
        """Close the channel and stop dispatching. Safe to call twice."""
        if self._disposed:
            return
        self._disposed = True
        handle, self._handle = self._handle, None
        if handle is not None:
            await self._transport.close(handle)
        if self._teardown is not None:
            self._teardown.cancel()
            self._end_session()
        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)
        if self._done is not None:
            self._done.set()
        logger.debug("Workflow engine disposed")

    # ------------------------------------------------------------------
    # Transport callbacks

    def _on_event(self, current: RunDispatcher, event: Any) -> None:
        if self._disposed or current is not self._current:
            return
        if current.is_terminal:
            logger.debug(f"Run {current.run.run_id} already ended; event ignored")
            return
        current.apply(event)
        self._publish(current)
        if current.is_terminal:
            self._finish(current)

    def _on_disconnect(self, current: RunDispatcher, clean: bool) -> None:
        if self._disposed or current is not self._current or current.is_terminal:
            return
        signal = (
            ChannelClosed(message="Stream closed by server before the workflow finished.")
            if clean
            else TransportDisconnect(message="Connection to server lost. Please try again.")
        )
        current.fail(signal, datetime.now(timezone.utc))
        self._publish(current)
        self._finish(current)

    # ------------------------------------------------------------------
    # Internals

    def _publish(self, current: RunDispatcher) -> None:
        snapshot = current.snapshot()
        self._snapshot = snapshot
        for callback in list(self._subscribers):
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Snapshot subscriber raised; continuing")

    def _finish(self, current: RunDispatcher) -> None:
        self._close_channel()
        failure = current.run.failure
        if failure is not None and failure.ends_session:
            self._schedule_session_teardown()
        if self._done is not None:
            self._done.set()

    def _close_channel(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        handle.closed = True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        task = loop.create_task(self._transport.close(handle))
        self._closing.add(task)
        task.add_done_callback(self._closing.discard)

    def _schedule_session_teardown(self) -> None:
        delay = self._config.session_grace_delay
        logger.warning(f"Authorization failed; ending session in {delay}s")
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._end_session()
            return
        if self._teardown is not None:
            self._teardown.cancel()
        self._teardown = loop.call_later(delay, self._end_session)

    def _end_session(self) -> None:
        self._teardown = None
        if self._session is not None:
            self._session.end_session()
        if self._on_session_end is not None:
            self._on_session_end()
        logger.info("Session ended")
