from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta

from nidaan_core.models import SessionTurn

from .time_utils import utc_now

logger = logging.getLogger(__name__)


class SessionStore:
    """Rolling in-memory window of turns per sender, used only as reasoning context.

    Turns older than the expiry window are filtered out lazily on every read;
    a sender whose turns have all expired is dropped from the map.
    """

    MAX_TURNS = 20
    EXPIRY = timedelta(hours=24)

    def __init__(self, max_turns: int | None = None, expiry: timedelta | None = None) -> None:
        self.max_turns = max_turns or self.MAX_TURNS
        self.expiry = expiry or self.EXPIRY
        self._lock = threading.Lock()
        self._sessions: dict[str, list[SessionTurn]] = {}

    def _valid_turns(self, sender: str, now: datetime) -> list[SessionTurn]:
        turns = self._sessions.get(sender)
        if not turns:
            return []
        valid = [turn for turn in turns if now - turn.timestamp < self.expiry]
        if len(valid) != len(turns):
            if valid:
                self._sessions[sender] = valid
            else:
                del self._sessions[sender]
        return valid

    def turns(self, sender: str) -> list[SessionTurn]:
        with self._lock:
            return list(self._valid_turns(sender, utc_now()))

    def append(self, sender: str, turn: SessionTurn) -> None:
        with self._lock:
            turns = self._valid_turns(sender, utc_now())
            turns.append(turn)
            if len(turns) > self.max_turns:
                del turns[: len(turns) - self.max_turns]
            self._sessions[sender] = turns
            size = len(turns)
        logger.debug("session turn stored: role=%s total=%d", turn.role, size)

    def last_language(self, sender: str) -> str | None:
        for turn in reversed(self.turns(sender)):
            if turn.language:
                return turn.language
        return None

    def clear(self, sender: str) -> None:
        with self._lock:
            self._sessions.pop(sender, None)
