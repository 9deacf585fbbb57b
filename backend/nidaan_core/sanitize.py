from __future__ import annotations

import json
import re
import unicodedata

_CODE_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```", re.IGNORECASE)
_MESSAGE_FIELD_RE = re.compile(r'"message"\s*:\s*"((?:[^"\\]|\\.)*)"', re.DOTALL)
_MARKDOWN_RE = re.compile(r"[*_`~#>|]+")
_BULLET_RE = re.compile(r"^\s*(?:[-•▪●◦]|\d+[.)])\s+", re.MULTILINE)
_SPACES_RE = re.compile(r"[ \t]+")
_BLANK_LINES_RE = re.compile(r"\n{3,}")
_DROPPED_CATEGORIES = {"So", "Cs", "Co", "Cn"}
_DROPPED_CHARS = {"\ufe0f", "\ufe0e", "\u20e3"}


def strip_code_fence(text: str) -> str:
    raw = (text or "").strip()
    match = _CODE_FENCE_RE.search(raw)
    if match:
        return match.group(1).strip()
    return raw


def looks_like_json_leak(text: str) -> bool:
    return "{" in (text or "") and "message" in (text or "")


def sanitize_json_leak(text: str) -> str:
    """Return the human message when structured reasoning output leaked into text.

    Text containing both ``{`` and ``message`` is parsed as JSON (fences
    stripped) and its ``message`` field returned; if that fails a regex pulls
    a ``"message": "..."`` pair out; otherwise the text passes unchanged.
    """
    if not looks_like_json_leak(text):
        return text
    try:
        payload = json.loads(strip_code_fence(text))
    except (json.JSONDecodeError, TypeError):
        payload = None
    if isinstance(payload, dict):
        message = payload.get("message")
        if isinstance(message, str) and message.strip():
            return message.strip()

    match = _MESSAGE_FIELD_RE.search(text)
    if match:
        try:
            extracted = json.loads(f'"{match.group(1)}"')
        except json.JSONDecodeError:
            extracted = match.group(1)
        if extracted.strip():
            return extracted.strip()
    return text


def sanitize_for_speech(text: str) -> str:
    """Drop emoji, pictographs and markdown that a voice would read out literally."""
    kept = [
        char
        for char in (text or "")
        if char not in _DROPPED_CHARS and unicodedata.category(char) not in _DROPPED_CATEGORIES
    ]
    cleaned = "".join(kept)
    cleaned = _BULLET_RE.sub("", cleaned)
    cleaned = _MARKDOWN_RE.sub("", cleaned)
    lines = [_SPACES_RE.sub(" ", line).strip() for line in cleaned.splitlines()]
    cleaned = "\n".join(lines)
    return _BLANK_LINES_RE.sub("\n\n", cleaned).strip()
