from __future__ import annotations

import logging
import os
import re
from typing import Any

import httpx

from nidaan_core.errors import (
    EmptyTranscript,
    SpeechSynthesisFailure,
    SpeechToTextFailure,
    TranslationFailure,
)
from nidaan_core.languages import AUTO, ENGLISH, normalize_language
from nidaan_core.models import Transcription

from .http_utils import provider_error_message, timeout

logger = logging.getLogger(__name__)

SARVAM_API_BASE = os.getenv("SARVAM_API_BASE_URL", "https://api.sarvam.ai").rstrip("/")
SARVAM_TTS_MAX_CHARS = 2500
SARVAM_TRANSLATE_MAX_CHARS = 1000

_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?।\n])\s+")


def split_for_translation(text: str, max_chars: int = SARVAM_TRANSLATE_MAX_CHARS) -> list[str]:
    if len(text) <= max_chars:
        return [text]
    chunks: list[str] = []
    current = ""
    for sentence in _SENTENCE_SPLIT_RE.split(text):
        while len(sentence) > max_chars:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(sentence[:max_chars])
            sentence = sentence[max_chars:]
        candidate = f"{current} {sentence}".strip() if current else sentence
        if len(candidate) > max_chars:
            chunks.append(current)
            current = sentence
        else:
            current = candidate
    if current:
        chunks.append(current)
    return chunks


class SarvamLanguageBridge:
    """Speech-to-text, translation and text-to-speech through Sarvam AI.

    Every call carries a bounded timeout; a timeout or transport error is
    raised as the failure type documented for that call so the caller can
    decide whether it is fatal for the turn.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str = SARVAM_API_BASE,
        stt_model: str | None = None,
        translate_model: str | None = None,
        tts_model: str | None = None,
        tts_speaker: str | None = None,
        timeout_seconds: float | None = None,
        stt_timeout_seconds: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_key = (api_key if api_key is not None else os.getenv("SARVAM_API_KEY") or "").strip()
        self.base_url = base_url.rstrip("/")
        self.stt_model = stt_model or os.getenv("SARVAM_STT_MODEL", "saarika:v2.5")
        self.translate_model = translate_model or os.getenv("SARVAM_TRANSLATE_MODEL", "mayura:v1")
        self.tts_model = tts_model or os.getenv("SARVAM_TTS_MODEL", "bulbul:v2")
        self.tts_speaker = tts_speaker or os.getenv("NIDAAN_TTS_SPEAKER", "anushka")
        self.timeout_seconds = timeout_seconds or float(os.getenv("NIDAAN_HTTP_TIMEOUT_SECONDS", "20"))
        self.stt_timeout_seconds = stt_timeout_seconds or float(os.getenv("NIDAAN_STT_TIMEOUT_SECONDS", "60"))
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        return {"api-subscription-key": self.api_key}

    def _client(self, seconds: float) -> httpx.Client:
        return httpx.Client(timeout=timeout(seconds), transport=self._transport)

    def _post_json(self, path: str, payload: dict[str, Any], failure: type[Exception]) -> dict[str, Any]:
        if not self.api_key:
            raise failure("Sarvam API key is not configured.")
        try:
            with self._client(self.timeout_seconds) as client:
                response = client.post(f"{self.base_url}{path}", headers=self._headers(), json=payload)
        except httpx.TimeoutException as exc:
            raise failure(f"Sarvam {path} timed out.") from exc
        except httpx.HTTPError as exc:
            raise failure(f"Failed to reach Sarvam {path}.") from exc
        if response.status_code >= 400:
            raise failure(f"Sarvam {path} failed ({response.status_code}): {provider_error_message(response)}")
        try:
            body = response.json()
        except ValueError as exc:
            raise failure(f"Sarvam {path} returned invalid JSON.") from exc
        if not isinstance(body, dict):
            raise failure(f"Sarvam {path} returned an unexpected payload.")
        return body

    def speech_to_text(
        self,
        audio: bytes,
        language_hint: str | None = None,
        mime_type: str | None = None,
    ) -> Transcription:
        if not self.api_key:
            raise SpeechToTextFailure("Sarvam API key is not configured.")
        data = {
            "model": self.stt_model,
            "language_code": normalize_language(language_hint) or "unknown",
        }
        files = {"file": ("voice-note.ogg", audio, mime_type or "audio/ogg")}
        try:
            with self._client(self.stt_timeout_seconds) as client:
                response = client.post(
                    f"{self.base_url}/speech-to-text",
                    headers=self._headers(),
                    data=data,
                    files=files,
                )
        except httpx.TimeoutException as exc:
            raise SpeechToTextFailure("Transcription provider timed out.") from exc
        except httpx.HTTPError as exc:
            raise SpeechToTextFailure("Failed to reach transcription provider.") from exc
        if response.status_code >= 400:
            raise SpeechToTextFailure(f"Transcription failed: {provider_error_message(response)}")
        try:
            body = response.json()
        except ValueError as exc:
            raise SpeechToTextFailure("Transcription provider returned invalid JSON.") from exc

        transcript = str(body.get("transcript") or "").strip() if isinstance(body, dict) else ""
        if not transcript:
            raise EmptyTranscript("Transcription provider returned empty text.")
        probability = body.get("language_probability")
        confidence = float(probability) if isinstance(probability, (int, float)) else None
        language = normalize_language(body.get("language_code")) or normalize_language(language_hint)
        logger.info(
            "speech-to-text: bytes=%d language=%s transcript_length=%d",
            len(audio),
            language,
            len(transcript),
        )
        return Transcription(transcript=transcript, language=language, confidence=confidence)

    def translate(self, text: str, source: str, target: str) -> str:
        target_code = normalize_language(target)
        if target_code is None:
            raise TranslationFailure(f"Unsupported target language: {target}")
        source_code = AUTO if (source or "").strip().lower() == AUTO else normalize_language(source)
        if source_code is None:
            raise TranslationFailure(f"Unsupported source language: {source}")
        if not (text or "").strip() or source_code == target_code:
            return text

        translated: list[str] = []
        for chunk in split_for_translation(text):
            body = self._post_json(
                "/translate",
                {
                    "input": chunk,
                    "source_language_code": source_code,
                    "target_language_code": target_code,
                    "model": self.translate_model,
                },
                TranslationFailure,
            )
            piece = body.get("translated_text")
            if not isinstance(piece, str) or not piece.strip():
                raise TranslationFailure("Translation provider returned empty text.")
            translated.append(piece.strip())
        logger.info("translate: %s -> %s length=%d", source_code, target_code, len(text))
        return " ".join(translated)

    def text_to_speech(self, text: str, target: str) -> list[str]:
        target_code = normalize_language(target) or ENGLISH
        cleaned = (text or "").strip()
        if not cleaned:
            raise SpeechSynthesisFailure("Nothing to synthesize.")
        if len(cleaned) > SARVAM_TTS_MAX_CHARS:
            logger.warning(
                "text-to-speech input truncated from %d to %d characters",
                len(cleaned),
                SARVAM_TTS_MAX_CHARS,
            )
            cleaned = cleaned[:SARVAM_TTS_MAX_CHARS]
        body = self._post_json(
            "/text-to-speech",
            {
                "text": cleaned,
                "target_language_code": target_code,
                "speaker": self.tts_speaker,
                "model": self.tts_model,
            },
            SpeechSynthesisFailure,
        )
        audios = body.get("audios")
        chunks = [item for item in audios if isinstance(item, str) and item] if isinstance(audios, list) else []
        if not chunks:
            raise SpeechSynthesisFailure("Speech provider returned no audio.")
        logger.info("text-to-speech: language=%s chunks=%d", target_code, len(chunks))
        return chunks
