from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any

import httpx

from nidaan_core.errors import ReasoningUnavailable

from .http_utils import provider_error_message, timeout

logger = logging.getLogger(__name__)

_OPENAI_API_BASE = os.getenv("OPENAI_API_BASE_URL", "https://api.openai.com/v1").rstrip("/")
_ANTHROPIC_API_BASE = os.getenv("ANTHROPIC_API_BASE_URL", "https://api.anthropic.com/v1").rstrip("/")


@dataclass(frozen=True)
class ProviderCandidate:
    provider: str
    base_url: str
    api_key: str
    model: str


def provider_candidates() -> list[ProviderCandidate]:
    preference = (os.getenv("NIDAAN_REASONING_PROVIDER") or "auto").strip().lower()
    candidates: list[ProviderCandidate] = []

    anthropic_api_key = (os.getenv("ANTHROPIC_API_KEY") or os.getenv("CLAUDE_API_KEY") or "").strip()
    if anthropic_api_key:
        candidates.append(
            ProviderCandidate(
                provider="anthropic",
                base_url=_ANTHROPIC_API_BASE,
                api_key=anthropic_api_key,
                model=(os.getenv("ANTHROPIC_MODEL") or "claude-sonnet-4-20250514").strip(),
            )
        )

    openai_api_key = (os.getenv("OPENAI_API_KEY") or "").strip()
    if openai_api_key:
        candidates.append(
            ProviderCandidate(
                provider="openai",
                base_url=_OPENAI_API_BASE,
                api_key=openai_api_key,
                model=(os.getenv("NIDAAN_CHAT_MODEL") or "gpt-4o-mini").strip(),
            )
        )

    aliases = {"claude": "anthropic", "anthropic": "anthropic", "openai": "openai"}
    canonical = aliases.get(preference)
    if not canonical:
        return candidates
    preferred = [candidate for candidate in candidates if candidate.provider == canonical]
    others = [candidate for candidate in candidates if candidate.provider != canonical]
    return preferred + others


def _coerce_anthropic_text(response_json: dict[str, Any]) -> str:
    content = response_json.get("content")
    if not isinstance(content, list):
        return ""
    parts: list[str] = []
    for item in content:
        if not isinstance(item, dict) or item.get("type") != "text":
            continue
        text_value = item.get("text")
        if isinstance(text_value, str) and text_value.strip():
            parts.append(text_value.strip())
    return "\n".join(parts).strip()


def _coerce_completion_text(response_json: dict[str, Any]) -> str:
    choices = response_json.get("choices")
    if not isinstance(choices, list) or not choices:
        return ""
    message = choices[0].get("message", {})
    content = message.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [item.get("text") for item in content if isinstance(item, dict)]
        return "\n".join(part for part in parts if isinstance(part, str))
    return ""


def _merge_consecutive_roles(messages: list[dict[str, str]]) -> list[dict[str, str]]:
    merged: list[dict[str, str]] = []
    for message in messages:
        if merged and merged[-1]["role"] == message["role"]:
            merged[-1] = {"role": message["role"], "content": f"{merged[-1]['content']}\n\n{message['content']}"}
        else:
            merged.append(dict(message))
    while merged and merged[0]["role"] != "user":
        merged.pop(0)
    return merged


class ProviderChainEngine:
    """Reasoning engine that tries each configured chat provider in order."""

    def __init__(
        self,
        providers: list[ProviderCandidate] | None = None,
        *,
        timeout_seconds: float | None = None,
        max_tokens: int = 1024,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.providers = provider_candidates() if providers is None else providers
        self.timeout_seconds = timeout_seconds or float(os.getenv("NIDAAN_REASONING_TIMEOUT_SECONDS", "30"))
        self.max_tokens = max_tokens
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=timeout(self.timeout_seconds), transport=self._transport)

    def _anthropic(self, provider: ProviderCandidate, system_prompt: str, messages: list[dict[str, str]]) -> str:
        payload = {
            "model": provider.model,
            "max_tokens": self.max_tokens,
            "system": system_prompt,
            "messages": _merge_consecutive_roles(messages),
        }
        headers = {
            "x-api-key": provider.api_key,
            "anthropic-version": os.getenv("ANTHROPIC_API_VERSION", "2023-06-01"),
            "Content-Type": "application/json",
        }
        with self._client() as client:
            response = client.post(f"{provider.base_url}/messages", headers=headers, json=payload)
        if response.status_code >= 400:
            raise RuntimeError(provider_error_message(response))
        return _coerce_anthropic_text(response.json())

    def _openai_compatible(
        self,
        provider: ProviderCandidate,
        system_prompt: str,
        messages: list[dict[str, str]],
    ) -> str:
        payload = {
            "model": provider.model,
            "max_tokens": self.max_tokens,
            "messages": [{"role": "system", "content": system_prompt}, *messages],
        }
        headers = {
            "Authorization": f"Bearer {provider.api_key}",
            "Content-Type": "application/json",
        }
        with self._client() as client:
            response = client.post(f"{provider.base_url}/chat/completions", headers=headers, json=payload)
        if response.status_code >= 400:
            raise RuntimeError(provider_error_message(response))
        return _coerce_completion_text(response.json()).strip()

    def complete(self, system_prompt: str, messages: list[dict[str, str]]) -> str:
        if not self.providers:
            raise ReasoningUnavailable("No reasoning provider key found in runtime env.")
        for provider in self.providers:
            try:
                if provider.provider == "anthropic":
                    text = self._anthropic(provider, system_prompt, messages)
                else:
                    text = self._openai_compatible(provider, system_prompt, messages)
            except Exception as exc:
                logger.warning("reasoning provider failed (%s): %s", provider.provider, exc)
                continue
            if text:
                logger.info("reasoning provider used (%s)", provider.provider)
                return text
            logger.warning("reasoning provider empty response (%s)", provider.provider)
        raise ReasoningUnavailable("All reasoning providers failed.")
