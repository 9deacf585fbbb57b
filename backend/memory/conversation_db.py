from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from datetime import timedelta
from typing import Any

from nidaan_core.errors import PersistenceError
from nidaan_core.models import ConversationMessage, ConversationRecord, ConversationStatus

from .database import SQLiteMemoryDB
from .time_utils import to_iso, utc_now

logger = logging.getLogger(__name__)

_STATUS_RANK = {
    ConversationStatus.ACTIVE: 0,
    ConversationStatus.COMPLETED: 1,
    ConversationStatus.EMERGENCY: 2,
}
_OPEN_STATUSES = (ConversationStatus.ACTIVE, ConversationStatus.EMERGENCY)


def _json_dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def merge_status(existing: str | None, incoming: str | None) -> str:
    """Emergency is never downgraded and completed beats active."""
    current = existing if existing in _STATUS_RANK else ConversationStatus.ACTIVE
    if incoming not in _STATUS_RANK:
        return current
    return incoming if _STATUS_RANK[incoming] >= _STATUS_RANK[current] else current


def _row_to_record(row: sqlite3.Row) -> ConversationRecord:
    return ConversationRecord(
        id=row["id"],
        sender_id=row["phone_number"],
        display_name=row["contact_name"],
        messages=json.loads(row["messages_json"]),
        status=row["status"],
        detected_language=row["detected_language"],
        last_triage=json.loads(row["last_triage_json"]) if row["last_triage_json"] else None,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class ConversationLog:
    """Durable, dashboard-facing log of conversations, one open row per sender.

    A message is appended to the sender's newest ``active`` or ``emergency``
    row updated within the window; otherwise a new row is started.
    """

    WINDOW = timedelta(hours=24)
    DEFAULT_LANGUAGE = "en-IN"
    UNKNOWN_CONTACT = "Unknown"

    def __init__(self, db: SQLiteMemoryDB, window: timedelta | None = None) -> None:
        self._db = db
        self.window = window or self.WINDOW

    def upsert(
        self,
        *,
        sender_id: str,
        message: ConversationMessage,
        display_name: str | None = None,
        detected_language: str | None = None,
        triage: dict[str, Any] | None = None,
        status: str | None = None,
    ) -> str:
        try:
            return self._upsert(sender_id, message, display_name, detected_language, triage, status)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Conversation upsert failed: {exc}") from exc

    def _upsert(
        self,
        sender_id: str,
        message: ConversationMessage,
        display_name: str | None,
        detected_language: str | None,
        triage: dict[str, Any] | None,
        status: str | None,
    ) -> str:
        now = utc_now()
        window_start = to_iso(now - self.window)
        with self._db.write_lock, self._db.connection() as conn:
            existing = conn.execute(
                """
                SELECT id, messages_json, contact_name, status
                FROM conversations
                WHERE phone_number = ?
                  AND status IN (?, ?)
                  AND updated_at >= ?
                ORDER BY updated_at DESC
                LIMIT 1
                """,
                (sender_id, *_OPEN_STATUSES, window_start),
            ).fetchone()

            if existing:
                messages = json.loads(existing["messages_json"])
                messages.append(message.as_dict())
                contact_name = existing["contact_name"]
                if display_name and (not contact_name or contact_name == self.UNKNOWN_CONTACT):
                    contact_name = display_name
                conn.execute(
                    """
                    UPDATE conversations
                    SET messages_json = ?,
                        contact_name = ?,
                        status = ?,
                        detected_language = COALESCE(?, detected_language),
                        last_triage_json = COALESCE(?, last_triage_json),
                        updated_at = ?
                    WHERE id = ?
                    """,
                    (
                        _json_dumps(messages),
                        contact_name,
                        merge_status(existing["status"], status),
                        detected_language,
                        _json_dumps(triage) if triage else None,
                        to_iso(now),
                        existing["id"],
                    ),
                )
                logger.info("conversation updated: id=%s messages=%d", existing["id"], len(messages))
                return existing["id"]

            record_id = uuid.uuid4().hex
            conn.execute(
                """
                INSERT INTO conversations (
                  id, phone_number, contact_name, messages_json, status,
                  detected_language, last_triage_json, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record_id,
                    sender_id,
                    display_name or self.UNKNOWN_CONTACT,
                    _json_dumps([message.as_dict()]),
                    merge_status(None, status),
                    detected_language or self.DEFAULT_LANGUAGE,
                    _json_dumps(triage) if triage else None,
                    to_iso(now),
                    to_iso(now),
                ),
            )
            logger.info("conversation created: id=%s", record_id)
            return record_id

    def get(self, record_id: str) -> ConversationRecord | None:
        with self._db.connection() as conn:
            row = conn.execute("SELECT * FROM conversations WHERE id = ?", (record_id,)).fetchone()
        return _row_to_record(row) if row else None

    def list(self, *, status: str | None = None, limit: int = 50) -> list[ConversationRecord]:
        sql = "SELECT * FROM conversations"
        params: list[Any] = []
        if status:
            sql += " WHERE status = ?"
            params.append(status)
        sql += " ORDER BY updated_at DESC LIMIT ?"
        params.append(max(1, limit))
        with self._db.connection() as conn:
            rows = conn.execute(sql, tuple(params)).fetchall()
        return [_row_to_record(row) for row in rows]

    def stats(self, records: list[ConversationRecord]) -> dict[str, int]:
        return {
            "total": len(records),
            "active": sum(1 for record in records if record.status == ConversationStatus.ACTIVE),
            "completed": sum(1 for record in records if record.status == ConversationStatus.COMPLETED),
            "emergency": sum(1 for record in records if record.status == ConversationStatus.EMERGENCY),
            "total_messages": sum(len(record.messages) for record in records),
        }
