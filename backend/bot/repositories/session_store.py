import logging
import threading
from collections import deque
from typing import Deque, Dict, List, Tuple


logger = logging.getLogger("SessionStore")


class SessionStore:
    """Per-chat conversation turns kept in memory, oldest dropped first."""

    def __init__(self, max_messages: int = 20) -> None:
        self.max_messages = max(0, int(max_messages))
        self._sessions: Dict[int, Deque[Tuple[str, str]]] = {}
        self._lock = threading.Lock()

    def append_message(self, session_id: int, role: str, text: str) -> None:
        if self.max_messages == 0:
            return
        with self._lock:
            turns = self._sessions.get(session_id)
            if turns is None:
                turns = deque(maxlen=self.max_messages)
                self._sessions[session_id] = turns
            turns.append((role, text))

    def get_recent_messages(self, session_id: int, limit: int = 20) -> List[Tuple[str, str]]:
        with self._lock:
            turns = list(self._sessions.get(session_id, ()))
        if limit <= 0:
            return []
        return turns[-limit:]

    def forget(self, session_id: int) -> bool:
        with self._lock:
            dropped = self._sessions.pop(session_id, None)
        if dropped is not None:
            logger.info("Dropped conversation state for session=%s (%d turns)", session_id, len(dropped))
        return dropped is not None
