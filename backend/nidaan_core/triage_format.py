from __future__ import annotations

from .models import Diagnosis, Severity

DISCLAIMER = "⚕️ This is AI-based guidance, not a medical diagnosis. Always consult a real doctor."


def _red_flag_clause(diagnosis: Diagnosis) -> str | None:
    if not diagnosis.red_flags:
        return None
    bullets = "\n".join(f"• {flag}" for flag in diagnosis.red_flags)
    return f"⚠️ Warning signs to watch for:\n{bullets}"


def format_triage_message(diagnosis: Diagnosis) -> str:
    """Render a diagnosis as the patient-facing triage message.

    Clause order is fixed per severity and the condition statement always
    comes first. The disclaimer is appended for every severity.
    """
    clauses: list[str | None]
    if diagnosis.severity == Severity.EMERGENCY:
        clauses = [
            f"🚨 EMERGENCY: This may be {diagnosis.condition}.",
            f"👉 {diagnosis.recommended_action}",
            f"🏥 Go to: {diagnosis.specialist_needed} / nearest emergency department now.",
            _red_flag_clause(diagnosis),
        ]
    elif diagnosis.severity == Severity.URGENT:
        clauses = [
            f"🟠 Possible condition: {diagnosis.condition}",
            diagnosis.message or None,
            f"👉 What to do: {diagnosis.recommended_action}",
            f"👨‍⚕️ Please see a {diagnosis.specialist_needed} within 24 hours.",
            _red_flag_clause(diagnosis),
        ]
    else:
        clauses = [
            f"🟢 Possible condition: {diagnosis.condition}",
            diagnosis.message or None,
            f"🏠 Home care: {diagnosis.home_care}" if diagnosis.home_care else None,
            f"👨‍⚕️ If symptoms continue, see a {diagnosis.specialist_needed} within the next few days.",
        ]
    clauses.append(DISCLAIMER)
    return "\n\n".join(clause for clause in clauses if clause)
