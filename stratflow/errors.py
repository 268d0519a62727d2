"""Exception hierarchy for stratflow."""

from __future__ import annotations


class StratflowError(Exception):
    """Base class for all stratflow errors."""


class ConfigurationError(StratflowError):
    """Raised when a registry or configuration file is invalid."""


class AlreadyRunningError(StratflowError):
    """Raised when ``start_run`` is called while a run is still active."""


class InvalidStateError(StratflowError):
    """Raised when an operation is not allowed in the current state."""
