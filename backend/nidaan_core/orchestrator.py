from __future__ import annotations

import logging
from typing import Any, Protocol

from memory import AudioStore, ConversationLog, SessionStore

from .audio_format import decode_audio_chunks, sniff_audio_format
from .errors import EmptyTranscript, LanguageBridgeError, ReasoningUnavailable
from .languages import AUTO, ENGLISH, contains_non_ascii, default_reply_language, is_english, normalize_language
from .models import (
    ConversationMessage,
    ConversationStatus,
    Diagnosis,
    InboundMessage,
    MessageKind,
    Role,
    SessionTurn,
    Transcription,
    TurnOutcome,
)
from .reasoning import ReasoningAdapter
from .sanitize import sanitize_for_speech, sanitize_json_leak
from .triage_format import format_triage_message

logger = logging.getLogger(__name__)

EMPTY_TRANSCRIPT_REPLY = (
    "Sorry, I could not hear that clearly. Please speak clearly and send the voice note again, "
    "or type your symptoms."
)
INBOUND_FAILURE_REPLY = (
    "Sorry, I could not understand your message right now. Please try sending it again in a moment."
)


class AudioDelivery:
    UPLOAD = "upload"
    LINK = "link"


class LanguageBridge(Protocol):
    def speech_to_text(
        self,
        audio: bytes,
        language_hint: str | None = None,
        mime_type: str | None = None,
    ) -> Transcription: ...

    def translate(self, text: str, source: str, target: str) -> str: ...

    def text_to_speech(self, text: str, target: str) -> list[str]: ...


class DeliveryGateway(Protocol):
    def send_text(self, to: str, body: str) -> str | None: ...

    def send_audio(self, to: str, *, media_id: str | None = None, link: str | None = None) -> str | None: ...

    def upload_media(self, data: bytes, mime_type: str, file_name: str) -> str: ...

    def media_url(self, media_id: str) -> str: ...


class ConversationOrchestrator:
    """Runs one inbound turn from understanding through delivery.

    Inbound understanding (speech-to-text, translation to English, reasoning)
    aborts the turn with a short retry message when it fails. Everything on the
    outbound side after reasoning degrades instead: an untranslated reply, no
    voice note, no durable record. The localized text is always sent last.
    """

    def __init__(
        self,
        *,
        bridge: LanguageBridge,
        reasoning: ReasoningAdapter,
        gateway: DeliveryGateway,
        sessions: SessionStore,
        audio_store: AudioStore,
        conversation_log: ConversationLog | None = None,
        audio_delivery: str = AudioDelivery.UPLOAD,
        public_base_url: str | None = None,
        default_language: str | None = None,
        voice_replies: bool = True,
    ) -> None:
        self.bridge = bridge
        self.reasoning = reasoning
        self.gateway = gateway
        self.sessions = sessions
        self.audio_store = audio_store
        self.conversation_log = conversation_log
        self.audio_delivery = audio_delivery
        self.public_base_url = (public_base_url or "").rstrip("/") or None
        self.default_language = normalize_language(default_language) or default_reply_language()
        self.voice_replies = voice_replies

    # Inbound understanding

    def choose_reply_language(self, sender: str, text: str) -> str:
        if not contains_non_ascii(text):
            return ENGLISH
        # Non-ASCII text is never answered in English.
        last = self.sessions.last_language(sender)
        if last and not is_english(last):
            return last
        return self.default_language

    def _understand(self, message: InboundMessage) -> tuple[str, str, str, str]:
        """Return (original_text, english_text, turn_language, reply_language)."""
        if message.kind == MessageKind.AUDIO:
            transcription = self.bridge.speech_to_text(message.audio or b"", None, message.audio_mime_type)
            detected = normalize_language(transcription.language)
            original = transcription.transcript.strip()
            if not original:
                raise EmptyTranscript("Transcript is empty.")
            if is_english(detected):
                english = original
            else:
                english = self.bridge.translate(original, detected or AUTO, ENGLISH)
            reply_language = detected or self.default_language
            logger.info("audio turn: detected_language=%s reply_language=%s", detected, reply_language)
            return original, english, reply_language, reply_language

        original = (message.text or "").strip()
        if not original:
            raise EmptyTranscript("Text message is empty.")
        english = self.bridge.translate(original, AUTO, ENGLISH)
        reply_language = self.choose_reply_language(message.sender, original)
        logger.info("text turn: reply_language=%s non_ascii=%s", reply_language, contains_non_ascii(original))
        return original, english, reply_language, reply_language

    # Outbound guards

    def _guard_localized_text(self, text: str) -> str:
        return sanitize_json_leak(text)

    def _guard_outbound_text(self, text: str) -> str:
        return sanitize_json_leak(text)

    def _localize(self, text: str, reply_language: str) -> str:
        if is_english(reply_language):
            return text
        try:
            return self.bridge.translate(text, ENGLISH, reply_language)
        except LanguageBridgeError as exc:
            logger.warning("outbound translation failed, sending English: %s", exc)
            return text

    def _should_speak(self, message: InboundMessage, reply_language: str) -> bool:
        if not self.voice_replies:
            return False
        return message.kind == MessageKind.AUDIO or not is_english(reply_language)

    def _synthesize(self, text: str, reply_language: str) -> bytes | None:
        speech_text = sanitize_for_speech(text)
        if not speech_text:
            return None
        try:
            return decode_audio_chunks(self.bridge.text_to_speech(speech_text, reply_language))
        except Exception as exc:
            logger.warning("speech synthesis failed, continuing with text only: %s", exc)
            return None

    def _deliver_audio(self, sender: str, audio: bytes) -> str | None:
        audio_format = sniff_audio_format(audio)
        audio_id = self.audio_store.put(audio, audio_format.mime)
        try:
            if self.audio_delivery == AudioDelivery.LINK and self.public_base_url:
                link = f"{self.public_base_url}/audio/{audio_id}"
                self.gateway.send_audio(sender, link=link)
                audio_url = link
            else:
                media_id = self.gateway.upload_media(audio, audio_format.mime, f"reply{audio_format.extension}")
                self.gateway.send_audio(sender, media_id=media_id)
                audio_url = self.gateway.media_url(media_id)
        except Exception as exc:
            logger.warning("audio delivery failed (format=%s): %s", audio_format.label, exc)
            return None
        logger.info("audio reply sent: format=%s size=%d", audio_format.label, len(audio))
        return audio_url

    def _record_safely(self, sender: str, message: ConversationMessage, **fields: Any) -> None:
        if self.conversation_log is None:
            return
        try:
            self.conversation_log.upsert(sender_id=sender, message=message, **fields)
        except Exception:
            logger.warning("conversation persistence failed for role=%s", message.role, exc_info=True)

    def _abort(self, outcome: TurnOutcome, stage: str, reply: str) -> TurnOutcome:
        outcome.aborted_at = stage
        outcome.delivered_text = reply
        self.gateway.send_text(outcome.sender, reply)
        return outcome

    def handle_turn(
        self,
        message: InboundMessage,
        patient_context: dict[str, Any] | None = None,
    ) -> TurnOutcome:
        sender = message.sender
        outcome = TurnOutcome(message_id=message.message_id, sender=sender)

        try:
            original, english, turn_language, reply_language = self._understand(message)
        except EmptyTranscript as exc:
            logger.info("turn aborted, nothing to understand: %s", exc)
            return self._abort(outcome, "transcription", EMPTY_TRANSCRIPT_REPLY)
        except LanguageBridgeError as exc:
            logger.warning("turn aborted, inbound language step failed: %s", exc)
            return self._abort(outcome, "understanding", INBOUND_FAILURE_REPLY)
        outcome.reply_language = reply_language

        prior_turns = self.sessions.turns(sender)
        self.sessions.append(sender, SessionTurn(role=Role.USER, content=english, language=turn_language))
        self._record_safely(
            sender,
            ConversationMessage(
                role=Role.USER,
                content=english,
                original_text=original,
                english_text=english,
                language=turn_language,
                audio_url=message.media_url,
            ),
            display_name=message.display_name or None,
            detected_language=reply_language,
        )

        try:
            result = self.reasoning.analyze(english, prior_turns, patient_context)
        except ReasoningUnavailable as exc:
            logger.warning("turn aborted, reasoning unavailable: %s", exc)
            return self._abort(outcome, "reasoning", INBOUND_FAILURE_REPLY)
        outcome.result_type = result.type

        diagnosis: Diagnosis | None = None
        if isinstance(result, Diagnosis):
            diagnosis = result
            response_text = format_triage_message(result)
            outcome.status = ConversationStatus.EMERGENCY if result.is_emergency else ConversationStatus.COMPLETED
        else:
            response_text = sanitize_json_leak(result.message)
            outcome.status = ConversationStatus.ACTIVE
        outcome.response_text = response_text

        self.sessions.append(
            sender,
            SessionTurn(role=Role.ASSISTANT, content=response_text, language=reply_language, diagnosis=diagnosis),
        )

        localized = self._guard_localized_text(self._localize(response_text, reply_language))

        if self._should_speak(message, reply_language):
            audio = self._synthesize(localized, reply_language)
            if audio:
                outcome.audio_url = self._deliver_audio(sender, audio)

        outbound = self._guard_outbound_text(localized)
        self.gateway.send_text(sender, outbound)
        outcome.delivered_text = outbound
        logger.info(
            "turn delivered: result=%s status=%s language=%s audio=%s",
            outcome.result_type,
            outcome.status,
            reply_language,
            outcome.audio_url is not None,
        )

        self._record_safely(
            sender,
            ConversationMessage(
                role=Role.ASSISTANT,
                content=response_text,
                english_text=response_text,
                original_text=outbound if outbound != response_text else None,
                language=reply_language,
                audio_url=outcome.audio_url,
            ),
            detected_language=reply_language,
            triage=diagnosis.as_triage() if diagnosis else None,
            status=outcome.status if diagnosis else None,
        )
        return outcome
