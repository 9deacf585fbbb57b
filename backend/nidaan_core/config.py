from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path

from .languages import default_reply_language

_ENV_KEY_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")
_TRUTHY = {"1", "true", "yes", "on"}


def load_local_env_file(path: Path) -> None:
    try:
        lines = path.read_text(encoding="utf-8").splitlines()
    except OSError:
        return
    for raw in lines:
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        if key.startswith("export "):
            key = key[len("export ") :].strip()
        if not _ENV_KEY_RE.fullmatch(key):
            continue
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
            value = value[1:-1]
        os.environ.setdefault(key, value)


def bootstrap_local_env(repo_root: Path | None = None) -> None:
    root = repo_root or Path(__file__).resolve().parents[2]
    for candidate in (root / ".env", root / "backend/.env"):
        if candidate.exists():
            load_local_env_file(candidate)


def _env_int(name: str, default: int) -> int:
    try:
        value = int(os.getenv(name, str(default)))
    except ValueError:
        return default
    return value if value > 0 else default


def _env_float(name: str, default: float) -> float:
    try:
        value = float(os.getenv(name, str(default)))
    except ValueError:
        return default
    return value if value > 0 else default


def _env_str(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


def _default_db_path() -> str:
    return str(Path(__file__).resolve().parents[1] / "nidaan.sqlite")


@dataclass(frozen=True)
class RuntimeConfig:
    db_path: str = field(default_factory=_default_db_path)
    whatsapp_verify_token: str = ""
    whatsapp_app_secret: str = ""
    http_timeout_seconds: float = 20.0
    stt_timeout_seconds: float = 60.0
    reasoning_timeout_seconds: float = 30.0
    session_max_turns: int = 20
    session_ttl_hours: int = 24
    dedup_max_ids: int = 1000
    audio_ttl_seconds: int = 300
    audio_delivery: str = "upload"
    voice_replies: bool = True
    public_base_url: str | None = None
    default_reply_language: str = "hi-IN"
    allowed_origins: tuple[str, ...] = ("http://localhost:3000",)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "RuntimeConfig":
        audio_delivery = _env_str("NIDAAN_AUDIO_DELIVERY", "upload").lower()
        if audio_delivery not in {"upload", "link"}:
            audio_delivery = "upload"
        origins = tuple(
            origin.strip()
            for origin in _env_str("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
            if origin.strip()
        )
        return cls(
            db_path=_env_str("NIDAAN_DB_PATH") or _default_db_path(),
            whatsapp_verify_token=_env_str("WHATSAPP_VERIFY_TOKEN"),
            whatsapp_app_secret=_env_str("WHATSAPP_APP_SECRET"),
            http_timeout_seconds=_env_float("NIDAAN_HTTP_TIMEOUT_SECONDS", 20.0),
            stt_timeout_seconds=_env_float("NIDAAN_STT_TIMEOUT_SECONDS", 60.0),
            reasoning_timeout_seconds=_env_float("NIDAAN_REASONING_TIMEOUT_SECONDS", 30.0),
            session_max_turns=_env_int("NIDAAN_SESSION_MAX_TURNS", 20),
            session_ttl_hours=_env_int("NIDAAN_SESSION_TTL_HOURS", 24),
            dedup_max_ids=_env_int("NIDAAN_DEDUP_MAX_IDS", 1000),
            audio_ttl_seconds=_env_int("NIDAAN_AUDIO_TTL_SECONDS", 300),
            audio_delivery=audio_delivery,
            voice_replies=_env_str("NIDAAN_VOICE_REPLIES", "true").lower() in _TRUTHY,
            public_base_url=_env_str("PUBLIC_BASE_URL").rstrip("/") or None,
            default_reply_language=default_reply_language(),
            allowed_origins=origins,
            log_level=_env_str("NIDAAN_LOG_LEVEL", "INFO").upper(),
        )
