"""
In-memory chat session store. Keyed by session_id; history is not sent from frontend.

Each session keeps only its last SESSION_MAX_TURNS user/assistant turns, and the
store keeps at most SESSION_MAX_SESSIONS sessions (least recently used evicted first).
"""

import logging
import threading
from collections import OrderedDict, deque
from typing import Any

from app.core.config import SESSION_MAX_SESSIONS, SESSION_MAX_TURNS

logger = logging.getLogger(__name__)

ROLES = ("user", "assistant")


def _valid_session_id(session_id: Any) -> bool:
    return bool(session_id) and isinstance(session_id, str) and bool(session_id.strip())


class ConversationStore:
    """Bounded per-session message history. Safe to share across request threads."""

    def __init__(self, max_turns: int = SESSION_MAX_TURNS, max_sessions: int = SESSION_MAX_SESSIONS) -> None:
        if max_turns < 1:
            raise ValueError("max_turns must be >= 1")
        if max_sessions < 1:
            raise ValueError("max_sessions must be >= 1")
        self.max_turns = max_turns
        self.max_sessions = max_sessions
        # session_id -> deque of {"role": "user"|"assistant", "content": str}
        self._sessions: OrderedDict[str, deque[dict[str, str]]] = OrderedDict()
        self._lock = threading.Lock()

    def _touch(self, session_id: str) -> deque[dict[str, str]]:
        """Return the session's deque, creating it and evicting the LRU session if needed. Caller holds the lock."""
        messages = self._sessions.get(session_id)
        if messages is None:
            messages = deque(maxlen=self.max_turns * 2)
            self._sessions[session_id] = messages
            while len(self._sessions) > self.max_sessions:
                evicted, _ = self._sessions.popitem(last=False)
                logger.info("[session_store:evict] session_id=%s", evicted[:16])
        else:
            self._sessions.move_to_end(session_id)
        return messages

    def get_history(self, session_id: str) -> list[dict[str, str]]:
        """Return chat history for the session (copy so caller cannot mutate store)."""
        if not _valid_session_id(session_id):
            logger.info("[session_store:get_history] IN  session_id=%r -> empty", session_id)
            return []
        with self._lock:
            messages = self._sessions.get(session_id)
            if messages is not None:
                self._sessions.move_to_end(session_id)
            out = [dict(m) for m in messages] if messages else []
        logger.info("[session_store:get_history] IN  session_id=%s OUT messages=%d", session_id[:16], len(out))
        return out

    def append_message(self, session_id: str, role: str, content: str) -> None:
        """Append one message to the session's history."""
        if role not in ROLES:
            raise ValueError(f"role must be one of {ROLES}, got {role!r}")
        if not _valid_session_id(session_id):
            logger.info("[session_store:append_message] skip invalid session_id=%r", session_id)
            return
        with self._lock:
            self._touch(session_id).append({"role": role, "content": content or ""})
        logger.info("[session_store:append_message] session_id=%s role=%s content_len=%d", session_id[:16], role, len(content or ""))

    def append_turn(self, session_id: str, user: str, assistant: str) -> None:
        """Append a user question and the assistant answer together."""
        if not _valid_session_id(session_id):
            logger.info("[session_store:append_turn] skip invalid session_id=%r", session_id)
            return
        with self._lock:
            messages = self._touch(session_id)
            messages.append({"role": "user", "content": user or ""})
            messages.append({"role": "assistant", "content": assistant or ""})
        logger.info("[session_store:append_turn] session_id=%s answer_len=%d", session_id[:16], len(assistant or ""))

    def clear(self, session_id: str) -> bool:
        if not _valid_session_id(session_id):
            return False
        with self._lock:
            existed = self._sessions.pop(session_id, None) is not None
        logger.info("[session_store:clear] session_id=%s existed=%s", session_id[:16], existed)
        return existed

    def session_count(self) -> int:
        with self._lock:
            return len(self._sessions)


_store = ConversationStore()


def get_history(session_id: str) -> list[dict[str, Any]]:
    return _store.get_history(session_id)


def append_message(session_id: str, role: str, content: str) -> None:
    _store.append_message(session_id, role, content)


def append_turn(session_id: str, user: str, assistant: str) -> None:
    _store.append_turn(session_id, user, assistant)


def clear_session(session_id: str) -> bool:
    return _store.clear(session_id)
