from __future__ import annotations

from fakes import text_webhook
from nidaan_core.errors import SpeechToTextFailure
from nidaan_core.models import Transcription


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_audio_endpoint_serves_stored_blob(client, container):
    audio_id = container.audio_store.put(b"OggS\x00\x02voice", "audio/ogg")

    response = client.get(f"/audio/{audio_id}")

    assert response.status_code == 200
    assert response.content == b"OggS\x00\x02voice"
    assert response.headers["content-type"].startswith("audio/ogg")


def test_audio_endpoint_unknown_id_is_404(client):
    assert client.get("/audio/does-not-exist").status_code == 404


def test_media_proxy_streams_graph_media(client, fake_gateway):
    fake_gateway.media["media-21"] = (b"OggS-user-voice", "audio/ogg")

    response = client.get("/media", params={"url": "https://graph.example.test/media-21"})

    assert response.status_code == 200
    assert response.content == b"OggS-user-voice"
    assert response.headers["content-type"].startswith("audio/ogg")
    assert response.headers["cache-control"] == "public, max-age=3600"
    assert fake_gateway.fetches == ["https://graph.example.test/media-21"]


def test_media_proxy_rejects_foreign_or_missing_urls(client, fake_gateway):
    assert client.get("/media").status_code == 400
    assert client.get("/media", params={"url": "https://evil.example.com/media-21"}).status_code == 400
    assert fake_gateway.fetches == []


def test_media_proxy_download_failure_is_502(client):
    response = client.get("/media", params={"url": "https://graph.example.test/gone"})
    assert response.status_code == 502


def test_conversations_and_dashboard(client, fake_engine):
    client.post("/webhook", json=text_webhook("wamid.C1", "919800000010", "fever"))
    fake_engine.script({"type": "diagnosis", "severity": "emergency", "condition": "Stroke"})
    client.post("/webhook", json=text_webhook("wamid.C2", "919800000011", "my face is drooping"))

    listing = client.get("/conversations")
    assert listing.status_code == 200
    rows = listing.json()
    assert [row["phone_number"] for row in rows] == ["919800000011", "919800000010"]

    emergencies = client.get("/conversations", params={"status": "emergency"}).json()
    assert [row["phone_number"] for row in emergencies] == ["919800000011"]
    assert emergencies[0]["last_triage"]["condition"] == "Stroke"

    single = client.get("/conversations", params={"id": rows[1]["id"]})
    assert single.status_code == 200
    assert single.json()["phone_number"] == "919800000010"
    assert len(single.json()["messages"]) == 2

    dashboard = client.get("/dashboard").json()
    assert dashboard["stats"] == {
        "total": 2,
        "active": 1,
        "completed": 0,
        "emergency": 1,
        "total_messages": 4,
    }


def test_conversation_lookup_errors(client):
    assert client.get("/conversations", params={"id": "missing"}).status_code == 404
    assert client.get("/conversations", params={"status": "archived"}).status_code == 400
    assert client.get("/dashboard", params={"limit": 0}).status_code == 422


def test_process_voice_transcribes_and_translates(client, fake_bridge):
    fake_bridge.translations = {"mujhe bukhar hai": "I have fever"}

    response = client.post(
        "/process-voice",
        files={"audio": ("note.ogg", b"OggS-voice", "audio/ogg")},
        data={"language_code": "hi-IN"},
    )

    assert response.status_code == 200
    assert response.json() == {
        "transcript": "mujhe bukhar hai",
        "english_translation": "I have fever",
        "detected_language": "hi",
        "detected_language_code": "hi-IN",
    }
    assert fake_bridge.stt_calls[0]["language_hint"] == "hi-IN"


def test_process_voice_empty_transcript_is_422(client, fake_bridge):
    fake_bridge.transcription = Transcription(transcript="", language=None)
    response = client.post("/process-voice", files={"audio": ("note.ogg", b"OggS", "audio/ogg")})
    assert response.status_code == 422


def test_process_voice_provider_failure_is_502(client, fake_bridge):
    fake_bridge.stt_error = SpeechToTextFailure("Transcription provider timed out.")
    response = client.post("/process-voice", files={"audio": ("note.ogg", b"OggS", "audio/ogg")})
    assert response.status_code == 502
    assert "timed out" in response.json()["detail"]


def test_process_voice_rejects_empty_upload(client):
    response = client.post("/process-voice", files={"audio": ("note.ogg", b"", "audio/ogg")})
    assert response.status_code == 400
