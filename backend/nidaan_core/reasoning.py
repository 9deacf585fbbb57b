from __future__ import annotations

import json
import logging
from typing import Any, Protocol, Sequence

from .models import Diagnosis, Question, ReasoningResult, Role, SessionTurn, SEVERITIES, Severity
from .sanitize import sanitize_json_leak, strip_code_fence

logger = logging.getLogger(__name__)

TRIAGE_SYSTEM_PROMPT = """You are Nidaan AI, a careful diagnostic assistant for patients who may have little access to doctors. You never rush to a diagnosis. You probe methodically like a good doctor would.

RULES:
1. In the first 2-3 messages ask SHORT, focused follow-up questions, one at a time. Examples:
   - "How many days has the fever lasted?"
   - "Is the pain sharp or dull?"
   - "Any vomiting or nausea?"
   - "Are you taking any medication?"
   - "How old are you?"
2. Keep responses to 1-2 sentences. No long explanations yet.
3. Only after gathering enough information (at least 3-4 exchanges) give a triage assessment.
4. ALWAYS respond with a single JSON object in this format:
{
  "type": "question" | "diagnosis",
  "message": "your short question or explanation",
  "condition": null | "condition name",
  "severity": null | "emergency" | "urgent" | "routine",
  "confidence": null | 0.0-1.0,
  "recommended_action": null | "what to do",
  "specialist_needed": null | "doctor type",
  "red_flags": [],
  "home_care": null | "advice"
}
5. If type is "question", only ask the follow-up; no diagnosis yet.
6. If type is "diagnosis", fill in the full triage.
7. Flag emergencies immediately regardless of how many questions were asked (chest pain, breathing difficulty, seizures, heavy bleeding).
8. Never prescribe medication.
9. Speak simply, as if talking to a village health worker.
10. Be warm and empathetic, but precise."""

DEFAULT_QUESTION = "Could you tell me more about your symptoms?"
DEFAULT_DIAGNOSIS_MESSAGE = "Based on the information you provided:"
DEFAULT_CONDITION = "Unknown"
DEFAULT_ACTION = "Visit your nearest health center."
DEFAULT_SPECIALIST = "General Physician"
DEFAULT_CONFIDENCE = 0.5


class ReasoningEngine(Protocol):
    def complete(self, system_prompt: str, messages: list[dict[str, str]]) -> str: ...


def _text_or_default(value: Any, default: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return default


def _clamp_confidence(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_CONFIDENCE
    if value != value:  # NaN
        return DEFAULT_CONFIDENCE
    return max(0.0, min(1.0, float(value)))


def _coerce_severity(value: Any) -> str:
    candidate = value.strip().lower() if isinstance(value, str) else ""
    return candidate if candidate in SEVERITIES else Severity.URGENT


def _coerce_red_flags(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if item is not None and str(item).strip()]


def parse_reasoning_output(raw_text: str) -> ReasoningResult:
    """Normalize raw engine output into a `Question` or a `Diagnosis`.

    Output that does not parse as a JSON object is returned verbatim as a
    question; a malformed diagnosis is never forwarded as structured data.
    """
    raw = (raw_text or "").strip()
    try:
        parsed = json.loads(strip_code_fence(raw))
    except (json.JSONDecodeError, TypeError):
        logger.warning("reasoning output is not JSON; treating as question (length=%d)", len(raw))
        return Question(message=raw_text or "")
    if not isinstance(parsed, dict):
        logger.warning("reasoning output JSON is not an object; treating as question")
        return Question(message=raw_text or "")

    if parsed.get("type") != "diagnosis":
        return Question(message=sanitize_json_leak(_text_or_default(parsed.get("message"), DEFAULT_QUESTION)))

    home_care = parsed.get("home_care")
    return Diagnosis(
        condition=_text_or_default(parsed.get("condition"), DEFAULT_CONDITION),
        severity=_coerce_severity(parsed.get("severity")),
        confidence=_clamp_confidence(parsed.get("confidence")),
        recommended_action=_text_or_default(parsed.get("recommended_action"), DEFAULT_ACTION),
        specialist_needed=_text_or_default(parsed.get("specialist_needed"), DEFAULT_SPECIALIST),
        red_flags=_coerce_red_flags(parsed.get("red_flags")),
        home_care=home_care.strip() if isinstance(home_care, str) and home_care.strip() else None,
        message=_text_or_default(parsed.get("message"), DEFAULT_DIAGNOSIS_MESSAGE),
    )


def build_user_message(message: str, patient_context: dict[str, Any] | None = None) -> str:
    context = patient_context or {}
    parts: list[str] = []
    if context.get("age"):
        parts.append(f"Age: {context['age']}")
    if context.get("gender"):
        parts.append(f"Gender: {context['gender']}")
    if not parts:
        return message
    return f"Patient: {', '.join(parts)}\nSymptoms: {message}"


class ReasoningAdapter:
    def __init__(self, engine: ReasoningEngine, system_prompt: str = TRIAGE_SYSTEM_PROMPT) -> None:
        self.engine = engine
        self.system_prompt = system_prompt

    def build_messages(
        self,
        message: str,
        prior_turns: Sequence[SessionTurn],
        patient_context: dict[str, Any] | None = None,
    ) -> list[dict[str, str]]:
        messages = [
            {"role": turn.role, "content": turn.content}
            for turn in prior_turns
            if turn.role in {Role.USER, Role.ASSISTANT} and turn.content.strip()
        ]
        messages.append({"role": Role.USER, "content": build_user_message(message, patient_context)})
        return messages

    def analyze(
        self,
        message: str,
        prior_turns: Sequence[SessionTurn],
        patient_context: dict[str, Any] | None = None,
    ) -> ReasoningResult:
        messages = self.build_messages(message, prior_turns, patient_context)
        logger.info(
            "reasoning request: history=%d input_length=%d has_context=%s",
            len(messages) - 1,
            len(message),
            bool(patient_context),
        )
        raw = self.engine.complete(self.system_prompt, messages)
        result = parse_reasoning_output(raw)
        if isinstance(result, Diagnosis):
            logger.info(
                "reasoning diagnosis: severity=%s confidence=%.2f",
                result.severity,
                result.confidence,
            )
        else:
            logger.info("reasoning follow-up question")
        return result
