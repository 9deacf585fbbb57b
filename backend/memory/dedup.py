from __future__ import annotations

import logging
import threading

logger = logging.getLogger(__name__)


class DedupCache:
    """Best-effort record of webhook message ids that were already accepted.

    Once the set reaches ``max_size`` it is cleared wholesale before the next
    id is recorded, so an id absent from the cache is not proof it is new.
    """

    def __init__(self, max_size: int = 1000) -> None:
        self.max_size = max(1, max_size)
        self._lock = threading.Lock()
        self._seen: set[str] = set()

    def mark_if_new(self, message_id: str) -> bool:
        """Atomically record ``message_id``; False when it was already seen."""
        with self._lock:
            if message_id in self._seen:
                return False
            if len(self._seen) >= self.max_size:
                logger.info("dedup cache reset after %d ids", len(self._seen))
                self._seen.clear()
            self._seen.add(message_id)
            return True

    def __contains__(self, message_id: object) -> bool:
        with self._lock:
            return message_id in self._seen

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)
