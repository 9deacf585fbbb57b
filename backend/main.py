from __future__ import annotations

import json
import logging
import os
from datetime import timedelta
from typing import Any

from fastapi import BackgroundTasks, FastAPI, File, Form, HTTPException, Query, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from pydantic import BaseModel, Field

from memory import AudioStore, ConversationLog, DedupCache, SessionStore, SQLiteMemoryDB
from nidaan_core.config import RuntimeConfig, bootstrap_local_env
from nidaan_core.errors import EmptyTranscript, LanguageBridgeError, MediaDownloadFailure
from nidaan_core.ingress import WebhookIngress, verify_signature
from nidaan_core.languages import ENGLISH, is_english, normalize_language, short_code
from nidaan_core.models import CONVERSATION_STATUSES
from nidaan_core.orchestrator import ConversationOrchestrator, DeliveryGateway, LanguageBridge
from nidaan_core.reasoning import ReasoningAdapter, ReasoningEngine
from nidaan_providers import ProviderChainEngine, SarvamLanguageBridge, WhatsAppGateway

bootstrap_local_env()

logger = logging.getLogger("nidaan")

_MAX_AUDIO_BYTES = int(os.getenv("NIDAAN_MAX_AUDIO_BYTES", str(16 * 1024 * 1024)))


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


class WebhookAck(BaseModel):
    status: str
    message_id: str | None = None


class DashboardStats(BaseModel):
    total: int = 0
    active: int = 0
    completed: int = 0
    emergency: int = 0
    total_messages: int = 0


class DashboardPayload(BaseModel):
    conversations: list[dict[str, Any]] = Field(default_factory=list)
    stats: DashboardStats


class ProcessVoiceResult(BaseModel):
    transcript: str
    english_translation: str
    detected_language: str | None = None
    detected_language_code: str | None = None


class NidaanApp:
    """Runtime container: shared state plus the collaborators of the triage pipeline."""

    def __init__(
        self,
        config: RuntimeConfig | None = None,
        *,
        bridge: LanguageBridge | None = None,
        engine: ReasoningEngine | None = None,
        gateway: DeliveryGateway | None = None,
    ) -> None:
        self.config = config or RuntimeConfig.from_env()
        self.db = SQLiteMemoryDB(self.config.db_path)
        self.conversations = ConversationLog(self.db)
        self.sessions = SessionStore(
            max_turns=self.config.session_max_turns,
            expiry=timedelta(hours=self.config.session_ttl_hours),
        )
        self.dedup = DedupCache(max_size=self.config.dedup_max_ids)
        self.audio_store = AudioStore(ttl=timedelta(seconds=self.config.audio_ttl_seconds))

        self.bridge = bridge or SarvamLanguageBridge(
            timeout_seconds=self.config.http_timeout_seconds,
            stt_timeout_seconds=self.config.stt_timeout_seconds,
        )
        self.engine = engine or ProviderChainEngine(timeout_seconds=self.config.reasoning_timeout_seconds)
        self.gateway = gateway or WhatsAppGateway(timeout_seconds=self.config.http_timeout_seconds)

        self.orchestrator = ConversationOrchestrator(
            bridge=self.bridge,
            reasoning=ReasoningAdapter(self.engine),
            gateway=self.gateway,
            sessions=self.sessions,
            audio_store=self.audio_store,
            conversation_log=self.conversations,
            audio_delivery=self.config.audio_delivery,
            public_base_url=self.config.public_base_url,
            default_language=self.config.default_reply_language,
            voice_replies=self.config.voice_replies,
        )
        self.ingress = WebhookIngress(dedup=self.dedup, orchestrator=self.orchestrator, gateway=self.gateway)


_runtime_config = RuntimeConfig.from_env()
_configure_logging(_runtime_config.log_level)
container = NidaanApp(_runtime_config)
app = FastAPI(title="Nidaan Triage Backend")

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(_runtime_config.allowed_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health():
    return {"status": "ok"}


def _verify_subscription(mode: str | None, token: str | None, challenge: str | None) -> PlainTextResponse:
    expected = container.config.whatsapp_verify_token
    if mode == "subscribe" and expected and token == expected:
        logger.info("webhook verified")
        return PlainTextResponse(challenge or "")
    logger.warning("webhook verification rejected: mode=%s", mode)
    raise HTTPException(status_code=403, detail="Verification failed.")


@app.get("/webhook")
@app.get("/webhook/whatsapp")
def webhook_verify(
    hub_mode: str | None = Query(default=None, alias="hub.mode"),
    hub_verify_token: str | None = Query(default=None, alias="hub.verify_token"),
    hub_challenge: str | None = Query(default=None, alias="hub.challenge"),
):
    return _verify_subscription(hub_mode, hub_verify_token, hub_challenge)


@app.post("/webhook", response_model=WebhookAck, response_model_exclude_none=True)
@app.post("/webhook/whatsapp", response_model=WebhookAck, response_model_exclude_none=True)
async def webhook_receive(request: Request, background_tasks: BackgroundTasks):
    body = await request.body()
    if not verify_signature(body, request.headers.get("x-hub-signature-256"), container.config.whatsapp_app_secret):
        logger.warning("webhook signature mismatch")
        raise HTTPException(status_code=403, detail="Invalid signature.")
    try:
        payload: Any = json.loads(body or b"{}")
    except ValueError:
        logger.warning("webhook body is not JSON; acknowledged without processing")
        return {"status": "ignored"}
    try:
        ack = container.ingress.handle(payload, background_tasks.add_task)
    except Exception:
        logger.exception("webhook payload could not be handled; acknowledged without processing")
        return {"status": "ignored"}
    return ack.as_dict()


@app.get("/audio/{audio_id}")
def get_audio(audio_id: str):
    blob = container.audio_store.get(audio_id)
    if blob is None:
        raise HTTPException(status_code=404, detail="Audio not found or expired.")
    return Response(content=blob.data, media_type=blob.mime_type)


@app.get("/media")
async def proxy_media(url: str | None = None):
    if not url:
        raise HTTPException(status_code=400, detail="Missing url parameter.")
    if not container.gateway.owns_media_url(url):
        raise HTTPException(status_code=400, detail="Invalid media URL.")
    try:
        data, mime_type = await run_in_threadpool(container.gateway.fetch_media, url)
    except MediaDownloadFailure as exc:
        logger.warning("media proxy failed: %s", exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return Response(
        content=data,
        media_type=mime_type or "audio/ogg",
        headers={"Cache-Control": "public, max-age=3600"},
    )


def _validate_status(status: str | None) -> str | None:
    if status and status not in CONVERSATION_STATUSES:
        raise HTTPException(status_code=400, detail=f"Unknown status: {status}")
    return status or None


@app.get("/conversations")
def list_conversations(
    status: str | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    id: str | None = None,
):
    if id:
        record = container.conversations.get(id)
        if record is None:
            raise HTTPException(status_code=404, detail="Conversation not found.")
        return record.as_dict()
    records = container.conversations.list(status=_validate_status(status), limit=limit)
    return [record.as_dict() for record in records]


@app.get("/dashboard", response_model=DashboardPayload)
def dashboard(
    status: str | None = None,
    limit: int = Query(default=50, ge=1, le=200),
):
    records = container.conversations.list(status=_validate_status(status), limit=limit)
    return DashboardPayload(
        conversations=[record.as_dict() for record in records],
        stats=DashboardStats(**container.conversations.stats(records)),
    )


async def _read_upload_bytes(upload: UploadFile, *, max_bytes: int) -> bytes:
    raw = await upload.read(max_bytes + 1)
    if len(raw) > max_bytes:
        raise HTTPException(status_code=413, detail=f"Audio file exceeds {max_bytes // (1024 * 1024)}MB limit.")
    if not raw:
        raise HTTPException(status_code=400, detail="Uploaded file is empty.")
    return raw


@app.post("/process-voice", response_model=ProcessVoiceResult)
async def process_voice(
    audio: UploadFile = File(...),
    language_code: str | None = Form(default=None),
):
    audio_bytes = await _read_upload_bytes(audio, max_bytes=_MAX_AUDIO_BYTES)
    mime_type = (audio.content_type or "").lower().strip() or None
    bridge = container.bridge
    try:
        transcription = await run_in_threadpool(bridge.speech_to_text, audio_bytes, language_code, mime_type)
        detected = normalize_language(transcription.language) or normalize_language(language_code)
        english = transcription.transcript
        if not is_english(detected):
            english = await run_in_threadpool(bridge.translate, transcription.transcript, detected or "auto", ENGLISH)
    except EmptyTranscript as exc:
        return JSONResponse(status_code=422, content={"detail": str(exc) or "No speech detected."})
    except LanguageBridgeError as exc:
        logger.warning("process-voice failed: %s", exc)
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return ProcessVoiceResult(
        transcript=transcription.transcript,
        english_translation=english,
        detected_language=short_code(detected),
        detected_language_code=detected,
    )
