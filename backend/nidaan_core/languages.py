from __future__ import annotations

import os

ENGLISH = "en-IN"
AUTO = "auto"

SUPPORTED_LANGUAGES = (
    "hi-IN",
    "bn-IN",
    "ta-IN",
    "te-IN",
    "mr-IN",
    "gu-IN",
    "kn-IN",
    "ml-IN",
    "pa-IN",
    "od-IN",
    "en-IN",
)

_NAME_ALIASES = {
    "hindi": "hi-IN",
    "bengali": "bn-IN",
    "bangla": "bn-IN",
    "tamil": "ta-IN",
    "telugu": "te-IN",
    "marathi": "mr-IN",
    "gujarati": "gu-IN",
    "kannada": "kn-IN",
    "malayalam": "ml-IN",
    "punjabi": "pa-IN",
    "odia": "od-IN",
    "oriya": "od-IN",
    "english": "en-IN",
    "or": "od-IN",
}
_SHORT_CODES = {code.split("-", 1)[0]: code for code in SUPPORTED_LANGUAGES}


def normalize_language(value: str | None) -> str | None:
    """Map `hi`, `hi-in`, `hi_IN`, `Hindi` or `en-US` onto a supported code."""
    cleaned = (value or "").strip().replace("_", "-").lower()
    if not cleaned:
        return None
    if cleaned in _NAME_ALIASES:
        return _NAME_ALIASES[cleaned]
    base = cleaned.split("-", 1)[0]
    if base in _NAME_ALIASES:
        return _NAME_ALIASES[base]
    return _SHORT_CODES.get(base)


def short_code(value: str | None) -> str | None:
    code = normalize_language(value)
    return code.split("-", 1)[0] if code else None


def is_english(value: str | None) -> bool:
    return normalize_language(value) == ENGLISH


def contains_non_ascii(text: str) -> bool:
    return any(ord(char) > 127 for char in text or "")


def default_reply_language() -> str:
    return normalize_language(os.getenv("NIDAAN_DEFAULT_REPLY_LANGUAGE")) or "hi-IN"
