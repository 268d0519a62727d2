"""In-memory transport for testing and replaying recorded runs."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from ..contracts import BaseEvent, parse_event
from .base import BaseTransport, ChannelHandle, DisconnectCallback, EventCallback

EventLike = Union[BaseEvent, Mapping[str, Any], str]


class InMemoryTransport(BaseTransport):
    """Channels driven directly by the caller.

    Tests push events with :meth:`emit` or :meth:`feed`. Events queued with
    :meth:`script` before a channel opens are delivered on the next loop
    iteration after it opens.
    """

    def __init__(self) -> None:
        self.handles: List[ChannelHandle] = []
        self.tokens: Dict[str, Optional[str]] = {}
        self._scripts: Dict[str, List[EventLike]] = {}
        self._disconnect_after_script: Dict[str, Optional[bool]] = {}
        self.fail_on_open: Optional[Exception] = None

    def script(
        self,
        subject_id: str,
        events: Iterable[EventLike],
        disconnect: Optional[bool] = None,
    ) -> None:
        """Queue events for the next channel opened for ``subject_id``.

        ``disconnect`` set to ``True``/``False`` ends the channel after the
        script with a clean close or a broken connection.
        """
        self._scripts[subject_id] = list(events)
        self._disconnect_after_script[subject_id] = disconnect

    async def open(
        self,
        subject_id: str,
        on_event: EventCallback,
        on_disconnect: DisconnectCallback,
        token: Optional[str] = None,
    ) -> ChannelHandle:
        if self.fail_on_open is not None:
            raise self.fail_on_open
        handle = ChannelHandle(
            subject_id=subject_id, on_event=on_event, on_disconnect=on_disconnect
        )
        self.handles.append(handle)
        self.tokens[handle.channel_id] = token
        if subject_id in self._scripts:
            asyncio.get_running_loop().call_soon(self.flush, handle)
        return handle

    def flush(self, handle: ChannelHandle) -> None:
        """Deliver any scripted events for the handle's subject."""
        events = self._scripts.pop(handle.subject_id, [])
        disconnect = self._disconnect_after_script.pop(handle.subject_id, None)
        self.feed(handle, events)
        if disconnect is not None:
            self.disconnect(handle, clean=disconnect)

    @property
    def last_handle(self) -> Optional[ChannelHandle]:
        return self.handles[-1] if self.handles else None

    def emit(self, handle: ChannelHandle, event: EventLike) -> None:
        """Deliver a single event on ``handle``."""
        handle.deliver(parse_event(event))

    def feed(self, handle: ChannelHandle, events: Iterable[EventLike]) -> None:
        for event in events:
            self.emit(handle, event)

    def disconnect(self, handle: ChannelHandle, clean: bool = False) -> None:
        handle.report_disconnect(clean)
        handle.closed = True

    async def close(self, handle: ChannelHandle) -> None:
        handle.closed = True
