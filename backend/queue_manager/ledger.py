"""
Position Ledger

Authoritative record of every outstanding request and how many requests are ahead of it.

- position 0 = running (or about to run), 1..k-1 = waiting
- positions always form the contiguous set 0..k-1
- entries change only through register / release
"""

import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from queue_manager.errors import LedgerInconsistencyError

logger = logging.getLogger("PositionLedger")


@dataclass(frozen=True)
class RequestID:
    """Chat + placeholder message pair identifying one in-flight request."""
    chat_id: int
    message_id: int

    @property
    def key(self) -> str:
        return f"{self.chat_id}:{self.message_id}"

    def __str__(self) -> str:
        return self.key


class PositionLedger:
    def __init__(self) -> None:
        self._positions: Dict[RequestID, int] = {}
        self._lock = threading.Lock()

    def register(self, request_id: RequestID) -> int:
        """Insert a new entry behind every outstanding request and return its position."""
        with self._lock:
            if request_id in self._positions:
                raise LedgerInconsistencyError(
                    f"request {request_id.key} is already registered"
                )
            position = len(self._positions)
            self._positions[request_id] = position
            return position

    def release(self, request_id: RequestID) -> bool:
        """
        Remove an entry and move everything behind it one place forward.

        Returns False (and logs) when the id is unknown; other entries are untouched.
        """
        with self._lock:
            released = self._positions.pop(request_id, None)
            if released is None:
                logger.error(
                    "❌ [Ledger] release of unknown request=%s (outstanding=%d)",
                    request_id.key, len(self._positions),
                )
                return False
            for key, position in self._positions.items():
                if position > released:
                    self._positions[key] = position - 1
            return True

    def snapshot(self) -> List[Tuple[RequestID, int]]:
        """Entries ordered by position, copied under the lock."""
        with self._lock:
            items = list(self._positions.items())
        return sorted(items, key=lambda item: item[1])

    def position(self, request_id: RequestID) -> Optional[int]:
        with self._lock:
            return self._positions.get(request_id)

    @property
    def running(self) -> int:
        with self._lock:
            return 1 if self._positions else 0

    @property
    def queued(self) -> int:
        with self._lock:
            return max(0, len(self._positions) - 1)

    def __len__(self) -> int:
        with self._lock:
            return len(self._positions)

    def __contains__(self, request_id: object) -> bool:
        with self._lock:
            return request_id in self._positions
