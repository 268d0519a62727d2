"""Server-sent events transport over httpx."""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Optional

import httpx

from ..constants import DEFAULT_BASE_URL, DEFAULT_STREAM_PATH
from ..contracts import WorkflowErrorEvent, parse_event
from .base import BaseTransport, ChannelHandle, DisconnectCallback, EventCallback

logger = logging.getLogger(__name__)


async def iter_sse_data(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    """Yield the ``data`` payload of each SSE frame.

    Multi-line data fields are joined with newlines. Comments and the
    ``event``/``id``/``retry`` fields are ignored; the event type travels
    inside the JSON payload.
    """
    buffer: list[str] = []
    async for line in lines:
        if line == "":
            if buffer:
                yield "\n".join(buffer)
                buffer = []
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        if name == "data":
            buffer.append(value[1:] if value.startswith(" ") else value)
    if buffer:
        yield "\n".join(buffer)


class SSETransport(BaseTransport):
    """Stream workflow events from the recommendation endpoint."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        stream_path: str = DEFAULT_STREAM_PATH,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.stream_path = stream_path
        self.timeout = timeout
        self._client = client

    def stream_url(self, subject_id: str) -> str:
        return self.base_url + self.stream_path.format(subject_id=subject_id)

    async def open(
        self,
        subject_id: str,
        on_event: EventCallback,
        on_disconnect: DisconnectCallback,
        token: Optional[str] = None,
    ) -> ChannelHandle:
        handle = ChannelHandle(
            subject_id=subject_id, on_event=on_event, on_disconnect=on_disconnect
        )
        handle.state = asyncio.create_task(self._consume(handle, token))
        logger.debug(f"Opened SSE channel {handle.channel_id} for {subject_id}")
        return handle

    async def _consume(self, handle: ChannelHandle, token: Optional[str]) -> None:
        url = self.stream_url(handle.subject_id)
        params = {"token": token} if token else None
        client = self._client or httpx.AsyncClient(timeout=self.timeout)
        try:
            async with client.stream(
                "GET", url, params=params, headers={"Accept": "text/event-stream"}
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    handle.deliver(self._error_event(response))
                    return
                async for data in iter_sse_data(response.aiter_lines()):
                    if handle.closed:
                        return
                    try:
                        event = parse_event(data)
                    except ValueError as e:
                        logger.warning(f"Failed to parse event on {url}: {e}")
                        continue
                    handle.deliver(event)
            handle.report_disconnect(True)
        except httpx.HTTPError as e:
            logger.warning(f"SSE connection to {url} failed: {e}")
            handle.report_disconnect(False)
        finally:
            if self._client is None:
                await client.aclose()

    @staticmethod
    def _error_event(response: httpx.Response) -> WorkflowErrorEvent:
        message = f"Server responded with status {response.status_code}"
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and isinstance(body.get("message"), str):
            message = body["message"]
        if response.status_code == 401:
            return WorkflowErrorEvent(
                message=message, error_type="auth", http_status=401
            )
        error_type = body.get("errorType") if isinstance(body, dict) else None
        return WorkflowErrorEvent(
            message=message,
            error_type=error_type,
            http_status=response.status_code,
        )

    async def close(self, handle: ChannelHandle) -> None:
        handle.closed = True
        task = handle.state
        if (
            isinstance(task, asyncio.Task)
            and not task.done()
            and task is not asyncio.current_task()
        ):
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
