from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Union


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MessageKind:
    TEXT = "text"
    AUDIO = "audio"
    UNSUPPORTED = "unsupported"


class Role:
    USER = "user"
    ASSISTANT = "assistant"


class Severity:
    EMERGENCY = "emergency"
    URGENT = "urgent"
    ROUTINE = "routine"


class ConversationStatus:
    ACTIVE = "active"
    COMPLETED = "completed"
    EMERGENCY = "emergency"


SEVERITIES = {Severity.EMERGENCY, Severity.URGENT, Severity.ROUTINE}
CONVERSATION_STATUSES = {
    ConversationStatus.ACTIVE,
    ConversationStatus.COMPLETED,
    ConversationStatus.EMERGENCY,
}


@dataclass(frozen=True)
class InboundEnvelope:
    message_id: str
    sender: str
    kind: str
    display_name: str = ""
    text: str | None = None
    media_id: str | None = None
    mime_type: str | None = None
    raw_type: str = ""


@dataclass(frozen=True)
class InboundMessage:
    message_id: str
    sender: str
    kind: str
    display_name: str = ""
    text: str | None = None
    audio: bytes | None = None
    audio_mime_type: str | None = None
    media_url: str | None = None


@dataclass(frozen=True)
class Transcription:
    transcript: str
    language: str | None
    confidence: float | None = None


@dataclass(frozen=True)
class Question:
    message: str
    type: str = field(default="question", init=False)


@dataclass(frozen=True)
class Diagnosis:
    condition: str
    severity: str
    confidence: float
    recommended_action: str
    specialist_needed: str
    red_flags: list[str] = field(default_factory=list)
    home_care: str | None = None
    message: str = ""
    type: str = field(default="diagnosis", init=False)

    @property
    def is_emergency(self) -> bool:
        return self.severity == Severity.EMERGENCY

    def as_triage(self) -> dict[str, Any]:
        return {
            "condition": self.condition,
            "severity": self.severity,
            "confidence": self.confidence,
            "recommended_action": self.recommended_action,
            "specialist_needed": self.specialist_needed,
            "red_flags": list(self.red_flags),
            "home_care": self.home_care or "",
        }


ReasoningResult = Union[Question, Diagnosis]


@dataclass
class SessionTurn:
    role: str
    content: str
    timestamp: datetime = field(default_factory=_utc_now)
    language: str | None = None
    diagnosis: Diagnosis | None = None


@dataclass
class ConversationMessage:
    role: str
    content: str
    original_text: str | None = None
    english_text: str | None = None
    timestamp: str = field(default_factory=lambda: _utc_now().isoformat())
    language: str | None = None
    audio_url: str | None = None

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp,
        }
        for key in ("original_text", "english_text", "language", "audio_url"):
            value = getattr(self, key)
            if value is not None:
                payload[key] = value
        return payload


@dataclass
class ConversationRecord:
    id: str
    sender_id: str
    display_name: str
    messages: list[dict[str, Any]]
    status: str
    detected_language: str
    last_triage: dict[str, Any] | None
    created_at: str
    updated_at: str

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "phone_number": self.sender_id,
            "contact_name": self.display_name,
            "messages": self.messages,
            "status": self.status,
            "detected_language": self.detected_language,
            "last_triage": self.last_triage,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class TurnOutcome:
    message_id: str
    sender: str
    reply_language: str | None = None
    result_type: str | None = None
    status: str | None = None
    response_text: str = ""
    delivered_text: str = ""
    audio_url: str | None = None
    aborted_at: str | None = None

    @property
    def aborted(self) -> bool:
        return self.aborted_at is not None
