from __future__ import annotations

import json

import httpx
import pytest

from nidaan_core.errors import ReasoningUnavailable
from nidaan_providers import ProviderCandidate, ProviderChainEngine, provider_candidates

ANTHROPIC = ProviderCandidate("anthropic", "https://anthropic.test/v1", "ak", "claude-test")
OPENAI = ProviderCandidate("openai", "https://openai.test/v1", "ok", "gpt-test")


def test_anthropic_payload_merges_roles_and_reads_text():
    captured: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(json.loads(request.content))
        assert request.headers["x-api-key"] == "ak"
        return httpx.Response(200, json={"content": [{"type": "text", "text": '{"type":"question"}'}]})

    engine = ProviderChainEngine([ANTHROPIC], timeout_seconds=5, transport=httpx.MockTransport(handler))
    text = engine.complete(
        "system",
        [
            {"role": "assistant", "content": "hello"},
            {"role": "user", "content": "fever"},
            {"role": "user", "content": "three days"},
        ],
    )
    assert text == '{"type":"question"}'
    assert captured[0]["system"] == "system"
    assert captured[0]["messages"] == [{"role": "user", "content": "fever\n\nthree days"}]


def test_chain_falls_back_to_next_provider():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "anthropic.test":
            return httpx.Response(529, json={"error": {"message": "overloaded"}})
        body = json.loads(request.content)
        assert body["messages"][0] == {"role": "system", "content": "system"}
        return httpx.Response(200, json={"choices": [{"message": {"content": "Any cough?"}}]})

    engine = ProviderChainEngine([ANTHROPIC, OPENAI], timeout_seconds=5, transport=httpx.MockTransport(handler))
    assert engine.complete("system", [{"role": "user", "content": "fever"}]) == "Any cough?"


def test_chain_raises_when_every_provider_fails():
    engine = ProviderChainEngine(
        [ANTHROPIC, OPENAI],
        timeout_seconds=5,
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"choices": [], "content": []})),
    )
    with pytest.raises(ReasoningUnavailable):
        engine.complete("system", [{"role": "user", "content": "fever"}])


def test_no_providers_is_unavailable():
    with pytest.raises(ReasoningUnavailable):
        ProviderChainEngine([]).complete("system", [{"role": "user", "content": "fever"}])


def test_provider_preference_orders_candidates(monkeypatch):
    monkeypatch.setenv("ANTHROPIC_API_KEY", "ak")
    monkeypatch.setenv("OPENAI_API_KEY", "ok")
    monkeypatch.setenv("NIDAAN_REASONING_PROVIDER", "openai")
    assert [candidate.provider for candidate in provider_candidates()] == ["openai", "anthropic"]
    monkeypatch.setenv("NIDAAN_REASONING_PROVIDER", "auto")
    assert [candidate.provider for candidate in provider_candidates()] == ["anthropic", "openai"]
