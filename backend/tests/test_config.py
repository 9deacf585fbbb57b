from __future__ import annotations

import os

from nidaan_core.config import RuntimeConfig, load_local_env_file

_KEYS = (
    "NIDAAN_DB_PATH",
    "NIDAAN_SESSION_MAX_TURNS",
    "NIDAAN_DEDUP_MAX_IDS",
    "NIDAAN_AUDIO_DELIVERY",
    "NIDAAN_AUDIO_TTL_SECONDS",
    "NIDAAN_HTTP_TIMEOUT_SECONDS",
    "NIDAAN_DEFAULT_REPLY_LANGUAGE",
    "NIDAAN_VOICE_REPLIES",
    "PUBLIC_BASE_URL",
    "ALLOWED_ORIGINS",
    "WHATSAPP_VERIFY_TOKEN",
)


def _clear(monkeypatch) -> None:
    for key in _KEYS:
        monkeypatch.delenv(key, raising=False)


def test_defaults(monkeypatch):
    _clear(monkeypatch)
    config = RuntimeConfig.from_env()
    assert config.session_max_turns == 20
    assert config.session_ttl_hours == 24
    assert config.dedup_max_ids == 1000
    assert config.audio_ttl_seconds == 300
    assert config.audio_delivery == "upload"
    assert config.http_timeout_seconds == 20.0
    assert config.stt_timeout_seconds == 60.0
    assert config.default_reply_language == "hi-IN"
    assert config.public_base_url is None
    assert config.voice_replies is True
    assert config.db_path.endswith("nidaan.sqlite")


def test_overrides_and_invalid_values(monkeypatch):
    _clear(monkeypatch)
    monkeypatch.setenv("NIDAAN_SESSION_MAX_TURNS", "8")
    monkeypatch.setenv("NIDAAN_DEDUP_MAX_IDS", "not-a-number")
    monkeypatch.setenv("NIDAAN_AUDIO_DELIVERY", "LINK")
    monkeypatch.setenv("PUBLIC_BASE_URL", "https://nidaan.example.org/")
    monkeypatch.setenv("NIDAAN_DEFAULT_REPLY_LANGUAGE", "tamil")
    monkeypatch.setenv("NIDAAN_VOICE_REPLIES", "false")
    monkeypatch.setenv("ALLOWED_ORIGINS", "https://a.test, https://b.test,")

    config = RuntimeConfig.from_env()

    assert config.session_max_turns == 8
    assert config.dedup_max_ids == 1000
    assert config.audio_delivery == "link"
    assert config.public_base_url == "https://nidaan.example.org"
    assert config.default_reply_language == "ta-IN"
    assert config.voice_replies is False
    assert config.allowed_origins == ("https://a.test", "https://b.test")


def test_unknown_audio_delivery_falls_back_to_upload(monkeypatch):
    _clear(monkeypatch)
    monkeypatch.setenv("NIDAAN_AUDIO_DELIVERY", "carrier-pigeon")
    assert RuntimeConfig.from_env().audio_delivery == "upload"


def test_local_env_file_never_overrides_existing(tmp_path, monkeypatch):
    monkeypatch.setenv("WHATSAPP_VERIFY_TOKEN", "from-shell")
    monkeypatch.delenv("NIDAAN_TTS_SPEAKER", raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text(
        "# comment\nWHATSAPP_VERIFY_TOKEN=from-file\nexport NIDAAN_TTS_SPEAKER='meera'\nnot a pair\n",
        encoding="utf-8",
    )

    load_local_env_file(env_file)

    assert os.environ["WHATSAPP_VERIFY_TOKEN"] == "from-shell"
    assert os.environ["NIDAAN_TTS_SPEAKER"] == "meera"
