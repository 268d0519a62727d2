"""Stratflow: live progress tracking for streamed recommendation workflows."""

from .classifier import classify
from .contracts import parse_event
from .dispatch import RunDispatcher, reduce
from .engine import WorkflowEngine
from .errors import (
    AlreadyRunningError,
    ConfigurationError,
    InvalidStateError,
    StratflowError,
)
from .finalizer import RunFinalizer, classify_action
from .models import ClassifiedError, FinalRecommendation, Snapshot
from .registry import StageRegistry
from .session import FileSessionStore, InMemorySessionStore
from .transports import get_transport

__version__ = "0.1.0"
__all__ = [
    "AlreadyRunningError",
    "ClassifiedError",
    "ConfigurationError",
    "FileSessionStore",
    "FinalRecommendation",
    "InMemorySessionStore",
    "InvalidStateError",
    "RunDispatcher",
    "RunFinalizer",
    "Snapshot",
    "StageRegistry",
    "StratflowError",
    "WorkflowEngine",
    "classify",
    "classify_action",
    "get_transport",
    "parse_event",
    "reduce",
]
