"""
Session manager: maps a sender to an agent session key with idle expiry.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from dingtalk_bridge.models.session import SessionInfo, UserSession

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TIMEOUT = 1800.0
SESSION_PREFIX = "dingtalk"
NEW_SESSION_COMMANDS = ("/new", "/reset", "/clear", "新会话", "重新开始", "清空对话")


def _key_of(session: Optional[UserSession]) -> Optional[str]:
    return session.session_id if session is not None else None


def _stamp_of(session_id: str) -> int:
    suffix = session_id.rsplit(":", 1)[-1]
    return int(suffix) if suffix.isdigit() else -1


class SessionManager:
    def __init__(self, timeout: float = DEFAULT_SESSION_TIMEOUT, clock: Callable[[], float] = time.time):
        self._timeout = timeout
        self._clock = clock
        self._sessions: dict[str, UserSession] = {}

    def resolve(self, sender_id: str, force_new: bool = False) -> SessionInfo:
        """Get or create the session key for a sender."""
        now = self._clock()
        existing = self._sessions.get(sender_id)

        if force_new:
            session_id = self._fresh_id(sender_id, now, existing)
            self._sessions[sender_id] = UserSession(session_id=session_id, last_activity=now)
            logger.info("Created new session for %s: %s", sender_id, session_id)
            return SessionInfo(session_key=session_id, is_new=True, previous_key=_key_of(existing))

        if existing is None:
            session_id = f"{SESSION_PREFIX}:{sender_id}"
            self._sessions[sender_id] = UserSession(session_id=session_id, last_activity=now)
            logger.info("Created initial session for %s: %s", sender_id, session_id)
            return SessionInfo(session_key=session_id, is_new=True)

        elapsed = now - existing.last_activity
        if elapsed > self._timeout:
            session_id = self._fresh_id(sender_id, now, existing)
            self._sessions[sender_id] = UserSession(session_id=session_id, last_activity=now)
            logger.info("Session timeout for %s (%ds), created new: %s", sender_id, int(elapsed), session_id)
            return SessionInfo(session_key=session_id, is_new=True, previous_key=existing.session_id)

        existing.last_activity = now
        return SessionInfo(session_key=existing.session_id, is_new=False)

    @staticmethod
    def _fresh_id(sender_id: str, now: float, existing: Optional[UserSession]) -> str:
        stamp = int(now * 1000)
        if existing is not None:
            # keys for one sender never repeat, even within the same millisecond
            stamp = max(stamp, _stamp_of(existing.session_id) + 1)
        return f"{SESSION_PREFIX}:{sender_id}:{stamp}"

    @staticmethod
    def is_new_session_command(text: str) -> bool:
        trimmed = text.strip().lower()
        return any(trimmed == cmd.lower() for cmd in NEW_SESSION_COMMANDS)

    def active_count(self) -> int:
        """Number of unexpired sessions; expired ones are purged."""
        now = self._clock()
        expired = [s for s, session in self._sessions.items() if now - session.last_activity > self._timeout]
        for sender_id in expired:
            del self._sessions[sender_id]
        return len(self._sessions)

    def clear(self) -> None:
        self._sessions.clear()
        logger.info("All sessions cleared")
