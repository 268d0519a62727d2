"""Map raw failure signals onto the error kinds the engine understands."""

from __future__ import annotations

from typing import Any, Mapping, Optional

from .contracts import (
    AuthorizationFailure,
    ChannelClosed,
    ServerErrorPayload,
    TransportDisconnect,
    WorkflowErrorEvent,
)
from .models import ClassifiedError, ErrorKind

DEFAULT_MESSAGES = {
    "connectivity": "Connection to server lost. Please try again.",
    "rate_limited": (
        "AI service temporarily unavailable due to high demand. "
        "Please try again in a few minutes."
    ),
    "unauthorized": "Authentication failed. Please log in again.",
    "server_logic": "AI analysis failed.",
    "transport_closed": "Stream closed by server before the workflow finished.",
}

RECOVERABLE_KINDS = frozenset({"connectivity", "rate_limited"})

_TAG_KINDS = {
    "connectivity": "connectivity",
    "connectivity_error": "connectivity",
    "rate_limit": "rate_limited",
    "rate_limit_error": "rate_limited",
    "rate_limited": "rate_limited",
    "auth": "unauthorized",
    "auth_error": "unauthorized",
    "unauthorized": "unauthorized",
}

# Substrings the backend uses when it reports a failure without a tag.
_MESSAGE_HINTS = (
    (
        "connectivity",
        ("no content received", "api response", "network", "connection", "timeout"),
    ),
    ("unauthorized", ("api key", "authorization")),
    ("rate_limited", ("rate limit", "quota")),
)

_AUTH_STATUS_KEYS = ("httpStatus", "http_status", "status_code", "status")


def _kind_from_tag(tag: Any) -> Optional[ErrorKind]:
    if not isinstance(tag, str):
        return None
    return _TAG_KINDS.get(tag.strip().lower())


def _kind_from_text(text: Optional[str]) -> Optional[ErrorKind]:
    if not text:
        return None
    lowered = text.lower()
    for kind, hints in _MESSAGE_HINTS:
        if any(hint in lowered for hint in hints):
            return kind
    return None


def _build(kind: ErrorKind, message: Optional[str] = None) -> ClassifiedError:
    return ClassifiedError(
        kind=kind,
        message=message or DEFAULT_MESSAGES[kind],
        recoverable=kind in RECOVERABLE_KINDS,
    )


def _classify_mapping(data: Mapping[str, Any]) -> ClassifiedError:
    message = data.get("message") or data.get("error")
    message = message if isinstance(message, str) else None

    if any(data.get(key) == 401 for key in _AUTH_STATUS_KEYS):
        return _build("unauthorized", message)

    for key in ("errorType", "error_type", "type"):
        kind = _kind_from_tag(data.get(key))
        if kind is not None:
            return _build(kind, message)

    if data.get("type") == "workflow_error":
        kind = _kind_from_text(data.get("error")) or _kind_from_text(message)
        return _build(kind or "server_logic", message)

    return _build("server_logic", message)


def classify(signal: Any) -> ClassifiedError:
    """Return the :class:`ClassifiedError` for ``signal``.

    Accepts the typed signals from :mod:`stratflow.contracts`, a
    ``workflow_error`` event, or a raw decoded mapping. Never raises; anything
    unrecognised is treated as a ``server_logic`` failure.
    """
    if isinstance(signal, TransportDisconnect):
        return _build("connectivity", signal.message)
    if isinstance(signal, ChannelClosed):
        return _build("transport_closed", signal.message)
    if isinstance(signal, AuthorizationFailure):
        return _build("unauthorized", signal.message)
    if isinstance(signal, WorkflowErrorEvent):
        signal = signal.to_signal()
        if isinstance(signal, AuthorizationFailure):
            return _build("unauthorized", signal.message)
    if isinstance(signal, ServerErrorPayload):
        kind = (
            _kind_from_tag(signal.error_type)
            or _kind_from_text(signal.error)
            or _kind_from_text(signal.message)
            or "server_logic"
        )
        return _build(kind, signal.message or signal.error)
    if isinstance(signal, Mapping):
        return _classify_mapping(signal)
    if isinstance(signal, BaseException):
        return _build("server_logic", str(signal) or None)
    return _build("server_logic")


__all__ = ["DEFAULT_MESSAGES", "RECOVERABLE_KINDS", "classify"]
