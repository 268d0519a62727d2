"""Session store abstraction used to read the auth token and end a session."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

logger = logging.getLogger(__name__)


class SessionStore(Protocol):
    """Protocol for where the client keeps its auth token."""

    def get_token(self) -> Optional[str]:
        """Return the current token, if any."""

    def end_session(self) -> None:
        """Forget the token and the user it belongs to."""


class InMemorySessionStore(SessionStore):
    """Keep the token in process memory. Useful for tests."""

    def __init__(self, token: Optional[str] = None, user: Optional[dict] = None) -> None:
        self.token = token
        self.user = user
        self.ended = False

    def get_token(self) -> Optional[str]:
        return self.token

    def end_session(self) -> None:
        self.token = None
        self.user = None
        self.ended = True


class FileSessionStore(SessionStore):
    """Persist the token and user as a small JSON document."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()

    def _read(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text() or "{}")
        except json.JSONDecodeError:
            logger.warning(f"Session file {self.path} is not valid JSON; ignoring it")
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2))

    def get_token(self) -> Optional[str]:
        return self._read().get("token")

    def save(self, token: str, user: Optional[dict] = None) -> None:
        data = self._read()
        data["token"] = token
        if user is not None:
            data["user"] = user
        self._write(data)

    def end_session(self) -> None:
        data = self._read()
        data.pop("token", None)
        data.pop("user", None)
        self._write(data)
        logger.info(f"Session cleared in {self.path}")
