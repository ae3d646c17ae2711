"""
Registry of live sessions, keyed by session id.
"""

from __future__ import annotations
import logging
import threading
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .ssh import Session

logger = logging.getLogger(__name__)


class SessionRegistry:
    """
    Thread-safe map of session id -> Session.

    Only the Connector adds entries. Pump threads may look sessions up
    concurrently with connect/disconnect on other threads.
    """

    def __init__(self):
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    def add(self, session: Session) -> None:
        """Register a freshly authenticated session."""
        with self._lock:
            if session.id in self._sessions:
                raise KeyError(f"Session id already registered: {session.id}")
            self._sessions[session.id] = session
        logger.debug(f"Registered session {session.id} ({session.profile.address})")

    def get(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(session_id)

    def remove(self, session_id: str) -> Optional[Session]:
        """Drop a session. Returns it, or None if it wasn't registered."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is not None:
            logger.debug(f"Removed session {session_id}")
        return session

    def all(self) -> list[Session]:
        """Snapshot of live sessions, in no particular order."""
        with self._lock:
            return list(self._sessions.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions
