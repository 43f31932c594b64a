"""In-memory registry of card editing sessions."""

from __future__ import annotations

import logging
import secrets
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from ..utils import utcnow
from .editor import CardEditor

logger = logging.getLogger("uvicorn.error")


@dataclass
class CardSession:
    id: str
    editor: CardEditor
    member_id: str | None = None
    created_at: datetime = field(default_factory=utcnow)
    last_used_at: datetime = field(default_factory=utcnow)

    def touch(self) -> None:
        self.last_used_at = utcnow()


class CardSessionStore:
    """Thread-safe map of session id to editor, expiring idle sessions."""

    def __init__(self, ttl: timedelta):
        self.ttl = ttl
        self._sessions: dict[str, CardSession] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def create(self, editor: CardEditor, *, member_id: str | None = None) -> CardSession:
        session = CardSession(
            id=secrets.token_urlsafe(16), editor=editor, member_id=member_id
        )
        with self._lock:
            self._sessions[session.id] = session
        return session

    def get(self, session_id: str) -> CardSession | None:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is not None:
            session.touch()
        return session

    def discard(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def purge_idle(self, *, now: datetime | None = None) -> int:
        cutoff = (now or utcnow()) - self.ttl
        with self._lock:
            expired = [
                key for key, s in self._sessions.items() if s.last_used_at < cutoff
            ]
            for key in expired:
                del self._sessions[key]
        if expired:
            logger.info("Purged %d idle card sessions", len(expired))
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()
