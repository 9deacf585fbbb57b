from __future__ import annotations

import importlib
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from fakes import FakeBridge, FakeEngine, FakeGateway  # noqa: E402
from memory import AudioStore, ConversationLog, SessionStore, SQLiteMemoryDB  # noqa: E402
from nidaan_core.orchestrator import ConversationOrchestrator  # noqa: E402
from nidaan_core.reasoning import ReasoningAdapter  # noqa: E402

QUESTION = {"type": "question", "message": "Any other symptoms?"}


@pytest.fixture
def fake_bridge() -> FakeBridge:
    return FakeBridge()


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine(QUESTION)


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def memory_db(tmp_path) -> SQLiteMemoryDB:
    return SQLiteMemoryDB(str(tmp_path / "nidaan-test.sqlite"))


@pytest.fixture
def conversation_log(memory_db) -> ConversationLog:
    return ConversationLog(memory_db)


@pytest.fixture
def orchestrator(fake_bridge, fake_engine, fake_gateway, conversation_log) -> ConversationOrchestrator:
    return ConversationOrchestrator(
        bridge=fake_bridge,
        reasoning=ReasoningAdapter(fake_engine),
        gateway=fake_gateway,
        sessions=SessionStore(),
        audio_store=AudioStore(),
        conversation_log=conversation_log,
        default_language="hi-IN",
    )


@pytest.fixture
def backend_module(tmp_path, monkeypatch):
    db_path = tmp_path / "nidaan-test.sqlite"
    monkeypatch.setenv("NIDAAN_DB_PATH", str(db_path))
    monkeypatch.setenv("WHATSAPP_VERIFY_TOKEN", "verify-me")
    monkeypatch.setenv("NIDAAN_DEFAULT_REPLY_LANGUAGE", "hi-IN")
    monkeypatch.delenv("WHATSAPP_APP_SECRET", raising=False)
    monkeypatch.delenv("NIDAAN_AUDIO_DELIVERY", raising=False)
    # Keep CI deterministic; provider tests inject their own transports.
    for key in ("ANTHROPIC_API_KEY", "CLAUDE_API_KEY", "OPENAI_API_KEY", "SARVAM_API_KEY"):
        monkeypatch.setenv(key, "")

    if "main" in sys.modules:
        module = importlib.reload(sys.modules["main"])
    else:
        module = importlib.import_module("main")
    return module


@pytest.fixture
def container(backend_module, monkeypatch, fake_bridge, fake_engine, fake_gateway):
    runtime = backend_module.NidaanApp(
        backend_module.RuntimeConfig.from_env(),
        bridge=fake_bridge,
        engine=fake_engine,
        gateway=fake_gateway,
    )
    monkeypatch.setattr(backend_module, "container", runtime)
    return runtime


@pytest.fixture
def client(backend_module, container):
    with TestClient(backend_module.app) as test_client:
        yield test_client
