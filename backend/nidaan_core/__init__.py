from .audio_format import AudioFormat, decode_audio_chunks, sniff_audio_format
from .errors import (
    AudioSendFailure,
    AudioUploadFailure,
    DeliveryError,
    EmptyTranscript,
    LanguageBridgeError,
    MediaDownloadFailure,
    NidaanError,
    PersistenceError,
    ReasoningUnavailable,
    SpeechSynthesisFailure,
    SpeechToTextFailure,
    TranslationFailure,
)
from .models import (
    ConversationMessage,
    ConversationRecord,
    ConversationStatus,
    Diagnosis,
    InboundEnvelope,
    InboundMessage,
    MessageKind,
    Question,
    ReasoningResult,
    Role,
    SessionTurn,
    Severity,
    Transcription,
    TurnOutcome,
)
from .reasoning import ReasoningAdapter, parse_reasoning_output
from .sanitize import sanitize_for_speech, sanitize_json_leak
from .triage_format import DISCLAIMER, format_triage_message

__all__ = [
    "AudioFormat",
    "AudioSendFailure",
    "AudioUploadFailure",
    "ConversationMessage",
    "ConversationRecord",
    "ConversationStatus",
    "DISCLAIMER",
    "DeliveryError",
    "Diagnosis",
    "EmptyTranscript",
    "InboundEnvelope",
    "InboundMessage",
    "LanguageBridgeError",
    "MediaDownloadFailure",
    "MessageKind",
    "NidaanError",
    "PersistenceError",
    "Question",
    "ReasoningAdapter",
    "ReasoningResult",
    "ReasoningUnavailable",
    "Role",
    "SessionTurn",
    "Severity",
    "SpeechSynthesisFailure",
    "SpeechToTextFailure",
    "Transcription",
    "TranslationFailure",
    "TurnOutcome",
    "decode_audio_chunks",
    "format_triage_message",
    "parse_reasoning_output",
    "sanitize_for_speech",
    "sanitize_json_leak",
    "sniff_audio_format",
]
