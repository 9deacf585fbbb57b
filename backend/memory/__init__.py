from .audio_store import AudioBlob, AudioStore
from .conversation_db import ConversationLog, merge_status
from .database import SQLiteMemoryDB
from .dedup import DedupCache
from .session_store import SessionStore

__all__ = [
    "AudioBlob",
    "AudioStore",
    "ConversationLog",
    "DedupCache",
    "SQLiteMemoryDB",
    "SessionStore",
    "merge_status",
]
