"""Redis pub/sub transport for workflow events relayed by a worker."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Set

try:
    import redis.asyncio as redis
except ImportError:
    redis = None

from ..constants import REDIS_CHANNEL_PREFIX
from ..contracts import parse_event
from .base import BaseTransport, ChannelHandle, DisconnectCallback, EventCallback

logger = logging.getLogger(__name__)


class RedisTransport(BaseTransport):
    """Redis-based transport: one pub/sub channel per subject.

    The client connection is opened with the first channel and closed again
    once the last open channel is closed.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
    ) -> None:
        if redis is None:
            raise ImportError("redis package is required for RedisTransport")

        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self._redis: Optional[Any] = None
        self._channels: Set[str] = set()

    @staticmethod
    def channel_name(subject_id: str) -> str:
        return f"{REDIS_CHANNEL_PREFIX}{subject_id}"

    async def connect(self) -> None:
        """Connect to Redis."""
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        # Test connection
        await self._redis.ping()

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def open(
        self,
        subject_id: str,
        on_event: EventCallback,
        on_disconnect: DisconnectCallback,
        token: Optional[str] = None,
    ) -> ChannelHandle:
        if not self._redis:
            await self.connect()
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(self.channel_name(subject_id))
        except redis.RedisError:
            if not self._channels:
                await self.disconnect()
            raise
        handle = ChannelHandle(
            subject_id=subject_id, on_event=on_event, on_disconnect=on_disconnect
        )
        handle.state = (pubsub, asyncio.create_task(self._listen(handle, pubsub)))
        self._channels.add(handle.channel_id)
        return handle

    async def _listen(self, handle: ChannelHandle, pubsub: Any) -> None:
        try:
            async for message in pubsub.listen():
                if handle.closed:
                    return
                if message.get("type") != "message":
                    continue
                try:
                    event = parse_event(message["data"])
                except ValueError as e:
                    logger.warning(f"Failed to parse message: {e}")
                    continue
                handle.deliver(event)
        except redis.RedisError as e:
            logger.warning(f"Redis subscription for {handle.subject_id} failed: {e}")
            handle.report_disconnect(False)

    async def close(self, handle: ChannelHandle) -> None:
        if handle.state is None:
            return
        handle.closed = True
        (pubsub, task), handle.state = handle.state, None
        if not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        try:
            await pubsub.unsubscribe()
            await pubsub.aclose()
        finally:
            self._channels.discard(handle.channel_id)
            if not self._channels:
                await self.disconnect()
