from __future__ import annotations

import os
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from .constants import (
    DEFAULT_BASE_URL,
    DEFAULT_PRESET,
    DEFAULT_SESSION_GRACE_DELAY,
    DEFAULT_STEP_BASE,
    DEFAULT_STREAM_PATH,
)
from .errors import ConfigurationError


class SSEConfig(BaseModel):
    """Configuration for the server-sent events transport."""

    base_url: str = DEFAULT_BASE_URL
    stream_path: str = DEFAULT_STREAM_PATH
    timeout: Optional[float] = None


class RedisConfig(BaseModel):
    """Configuration for Redis transport."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None


class TransportConfig(BaseModel):
    """Transport configuration settings."""

    backend: Literal["inmemory", "sse", "redis"] = "sse"
    sse: SSEConfig = SSEConfig()
    redis: RedisConfig = RedisConfig()


class EngineConfig(BaseModel):
    """Settings for the workflow engine."""

    preset: str = DEFAULT_PRESET
    stages: Optional[List[Dict[str, Any]]] = None
    step_base: int = Field(default=DEFAULT_STEP_BASE, ge=0)
    session_grace_delay: float = Field(default=DEFAULT_SESSION_GRACE_DELAY, ge=0)


class StratflowConfig(BaseModel):
    """Top-level configuration model."""

    transport: TransportConfig = TransportConfig()
    engine: EngineConfig = EngineConfig()
    session_file: str = "~/.stratflow/session.json"
    log_level: str = "INFO"


def load_config(path: Optional[str] = None) -> StratflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to STRATFLOW_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("STRATFLOW_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        try:
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
            config = StratflowConfig(**data)
        except (yaml.YAMLError, ValidationError, TypeError) as e:
            raise ConfigurationError(f"Invalid config file {config_path}: {e}") from e
    else:
        config = StratflowConfig()

    env_base_url = os.getenv("STRATFLOW_BASE_URL")
    if env_base_url:
        config.transport.sse.base_url = env_base_url
    env_session_file = os.getenv("STRATFLOW_TOKEN_FILE")
    if env_session_file:
        config.session_file = env_session_file
    env_log_level = os.getenv("STRATFLOW_LOG_LEVEL")
    if env_log_level:
        config.log_level = env_log_level
    return config
