from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from .time_utils import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AudioBlob:
    data: bytes
    mime_type: str
    created_at: datetime = field(default_factory=utc_now)


class AudioStore:
    """Short-lived holding area for synthesized audio fetched by the channel."""

    TTL = timedelta(minutes=5)

    def __init__(self, ttl: timedelta | None = None) -> None:
        self.ttl = ttl or self.TTL
        self._lock = threading.Lock()
        self._entries: dict[str, AudioBlob] = {}

    def _evict_expired(self, now: datetime) -> None:
        expired = [key for key, blob in self._entries.items() if now - blob.created_at > self.ttl]
        for key in expired:
            del self._entries[key]

    def put(self, data: bytes, mime_type: str = "audio/mpeg") -> str:
        audio_id = uuid.uuid4().hex
        with self._lock:
            now = utc_now()
            self._evict_expired(now)
            self._entries[audio_id] = AudioBlob(data=data, mime_type=mime_type, created_at=now)
            total = len(self._entries)
        logger.info("audio stored: id=%s size=%d mime=%s entries=%d", audio_id, len(data), mime_type, total)
        return audio_id

    def get(self, audio_id: str) -> AudioBlob | None:
        with self._lock:
            self._evict_expired(utc_now())
            blob = self._entries.get(audio_id)
        if blob is None:
            logger.info("audio not found or expired: id=%s", audio_id)
        return blob

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
