from __future__ import annotations

import hashlib
import hmac
import logging
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from memory import DedupCache

from .errors import MediaDownloadFailure
from .models import InboundEnvelope, InboundMessage, MessageKind
from .orchestrator import INBOUND_FAILURE_REPLY, ConversationOrchestrator

logger = logging.getLogger(__name__)

UNSUPPORTED_REPLY = (
    "Sorry, I can only understand text and voice messages for now. "
    "Please type your symptoms or send a voice note."
)
APOLOGY_REPLY = "Sorry, something went wrong on our side. Please try again in a moment."

_AUDIO_TYPES = {"audio", "voice"}

Scheduler = Callable[..., Any]


class MediaSource(Protocol):
    def download_media(self, media_id: str) -> tuple[bytes, str | None]: ...

    def media_url(self, media_id: str) -> str: ...

    def send_text(self, to: str, body: str) -> str | None: ...


@dataclass(frozen=True)
class Ack:
    status: str
    message_id: str | None = None

    def as_dict(self) -> dict[str, str]:
        payload = {"status": self.status}
        if self.message_id:
            payload["message_id"] = self.message_id
        return payload


def verify_signature(body: bytes, signature_header: str | None, app_secret: str) -> bool:
    """Check Meta's `X-Hub-Signature-256` header against the raw request body."""
    if not app_secret:
        return True
    if not signature_header or not signature_header.startswith("sha256="):
        return False
    expected = hmac.new(app_secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature_header[len("sha256=") :])


def _first(items: Any) -> dict[str, Any] | None:
    if isinstance(items, list) and items and isinstance(items[0], dict):
        return items[0]
    return None


def _dicts(items: Any) -> list[dict[str, Any]]:
    if not isinstance(items, list):
        return []
    return [item for item in items if isinstance(item, dict)]


def _object(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def decode_envelope(payload: Any) -> InboundEnvelope | None:
    """Pull the first message out of a WhatsApp Cloud API webhook payload.

    Returns None for payloads that carry no message, such as delivery-status
    callbacks, and for bodies whose shape does not match the Cloud API format.
    """
    if not isinstance(payload, dict):
        return None
    for entry in _dicts(payload.get("entry")):
        for change in _dicts(entry.get("changes")):
            value = change.get("value")
            if not isinstance(value, dict):
                continue
            message = _first(value.get("messages"))
            if message is None:
                continue
            message_id = str(message.get("id") or "").strip()
            sender = str(message.get("from") or "").strip()
            if not message_id or not sender:
                continue
            contact = _first(value.get("contacts")) or {}
            display_name = str(_object(contact.get("profile")).get("name") or "").strip()
            raw_type = str(message.get("type") or "")

            if raw_type == "text":
                text = message.get("text")
                if not isinstance(text, dict):
                    continue
                body = text.get("body")
                return InboundEnvelope(
                    message_id=message_id,
                    sender=sender,
                    kind=MessageKind.TEXT,
                    display_name=display_name,
                    text=str(body or ""),
                    raw_type=raw_type,
                )
            if raw_type in _AUDIO_TYPES:
                media = message.get(raw_type)
                if not isinstance(media, dict):
                    continue
                return InboundEnvelope(
                    message_id=message_id,
                    sender=sender,
                    kind=MessageKind.AUDIO,
                    display_name=display_name,
                    media_id=str(media.get("id") or "") or None,
                    mime_type=str(media.get("mime_type") or "") or None,
                    raw_type=raw_type,
                )
            return InboundEnvelope(
                message_id=message_id,
                sender=sender,
                kind=MessageKind.UNSUPPORTED,
                display_name=display_name,
                raw_type=raw_type,
            )
    return None


class WebhookIngress:
    """Acknowledges webhook deliveries and hands new messages to the background pipeline."""

    def __init__(
        self,
        *,
        dedup: DedupCache,
        orchestrator: ConversationOrchestrator,
        gateway: MediaSource,
    ) -> None:
        self.dedup = dedup
        self.orchestrator = orchestrator
        self.gateway = gateway

    def handle(self, payload: Any, schedule: Scheduler) -> Ack:
        envelope = decode_envelope(payload)
        if envelope is None:
            logger.debug("webhook without message ignored")
            return Ack("ignored")
        if not self.dedup.mark_if_new(envelope.message_id):
            logger.info("duplicate webhook delivery skipped: message_id=%s", envelope.message_id)
            return Ack("duplicate", envelope.message_id)
        if envelope.kind == MessageKind.UNSUPPORTED:
            logger.info("unsupported message kind: type=%s", envelope.raw_type)
            schedule(self.notify_unsupported, envelope)
            return Ack("unsupported", envelope.message_id)
        logger.info("webhook message accepted: message_id=%s kind=%s", envelope.message_id, envelope.kind)
        schedule(self.dispatch, envelope)
        return Ack("received", envelope.message_id)

    def _send_best_effort(self, sender: str, body: str) -> None:
        try:
            self.gateway.send_text(sender, body)
        except Exception:
            logger.warning("fallback reply could not be sent", exc_info=True)

    def notify_unsupported(self, envelope: InboundEnvelope) -> None:
        self._send_best_effort(envelope.sender, UNSUPPORTED_REPLY)

    def build_message(self, envelope: InboundEnvelope) -> InboundMessage:
        audio: bytes | None = None
        media_url: str | None = None
        mime_type = envelope.mime_type
        if envelope.kind == MessageKind.AUDIO:
            if not envelope.media_id:
                raise MediaDownloadFailure("Audio message has no media id.")
            audio, downloaded_mime = self.gateway.download_media(envelope.media_id)
            mime_type = mime_type or downloaded_mime
            media_url = self.gateway.media_url(envelope.media_id)
        return InboundMessage(
            message_id=envelope.message_id,
            sender=envelope.sender,
            kind=envelope.kind,
            display_name=envelope.display_name,
            text=envelope.text,
            audio=audio,
            audio_mime_type=mime_type,
            media_url=media_url,
        )

    def dispatch(self, envelope: InboundEnvelope) -> None:
        try:
            message = self.build_message(envelope)
        except MediaDownloadFailure as exc:
            logger.warning("voice note download failed: message_id=%s error=%s", envelope.message_id, exc)
            self._send_best_effort(envelope.sender, INBOUND_FAILURE_REPLY)
            return
        except Exception:
            logger.exception("inbound message could not be prepared: message_id=%s", envelope.message_id)
            self._send_best_effort(envelope.sender, APOLOGY_REPLY)
            return
        try:
            self.orchestrator.handle_turn(message)
        except Exception:
            logger.exception("turn failed: message_id=%s", envelope.message_id)
            self._send_best_effort(envelope.sender, APOLOGY_REPLY)
