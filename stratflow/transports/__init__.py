"""Transport factory and initialization."""

from __future__ import annotations

import os
from typing import Optional

from ..config import StratflowConfig, load_config
from .base import BaseTransport, ChannelHandle
from .inmemory import InMemoryTransport
from .sse import SSETransport


def get_transport(
    backend: Optional[str] = None, config: Optional[StratflowConfig] = None
) -> BaseTransport:
    """Factory function to get the configured transport."""

    config = config or load_config()
    backend = (
        backend
        or os.getenv("STRATFLOW_TRANSPORT")
        or config.transport.backend
    ).lower()

    if backend == "inmemory":
        return InMemoryTransport()
    elif backend == "sse":
        sse_conf = config.transport.sse
        return SSETransport(
            base_url=sse_conf.base_url,
            stream_path=sse_conf.stream_path,
            timeout=sse_conf.timeout,
        )
    elif backend == "redis":
        from .redis import RedisTransport

        redis_conf = config.transport.redis
        return RedisTransport(
            host=redis_conf.host,
            port=redis_conf.port,
            db=redis_conf.db,
            password=redis_conf.password,
        )
    else:
        raise ValueError(f"Unsupported transport backend: {backend}")


__all__ = [
    "BaseTransport",
    "ChannelHandle",
    "InMemoryTransport",
    "SSETransport",
    "get_transport",
]
