"""Base transport interface for workflow event channels."""

from __future__ import annotations

import abc
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from ..contracts import BaseEvent

EventCallback = Callable[[BaseEvent], None]
DisconnectCallback = Callable[[bool], None]


@dataclass
class ChannelHandle:
    """Opaque reference to an open channel.

    ``on_disconnect`` receives ``True`` when the server ended the stream
    cleanly and ``False`` when the connection broke.
    """

    subject_id: str
    on_event: EventCallback
    on_disconnect: DisconnectCallback
    channel_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    closed: bool = False
    state: Any = None

    def deliver(self, event: BaseEvent) -> None:
        if not self.closed:
            self.on_event(event)

    def report_disconnect(self, clean: bool) -> None:
        if not self.closed:
            self.on_disconnect(clean)


class BaseTransport(metaclass=abc.ABCMeta):
    """Abstract server-push channel opener.

    Implementations deliver already-parsed events one at a time, in the order
    the server emitted them, and must stop calling back once ``close`` has
    been called for the handle.
    """

    @abc.abstractmethod
    async def open(
        self,
        subject_id: str,
        on_event: EventCallback,
        on_disconnect: DisconnectCallback,
        token: Optional[str] = None,
    ) -> ChannelHandle:
        """Open a channel for ``subject_id`` and start delivering events."""
        raise NotImplementedError

    @abc.abstractmethod
    async def close(self, handle: ChannelHandle) -> None:
        """Close the channel. Must be idempotent."""
        raise NotImplementedError
