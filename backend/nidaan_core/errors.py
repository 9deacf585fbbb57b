from __future__ import annotations


class NidaanError(Exception):
    pass


class LanguageBridgeError(NidaanError):
    pass


class EmptyTranscript(LanguageBridgeError):
    pass


class SpeechToTextFailure(LanguageBridgeError):
    pass


class TranslationFailure(LanguageBridgeError):
    pass


class SpeechSynthesisFailure(LanguageBridgeError):
    pass


class ReasoningUnavailable(NidaanError):
    pass


class DeliveryError(NidaanError):
    pass


class AudioUploadFailure(DeliveryError):
    pass


class AudioSendFailure(DeliveryError):
    pass


class MediaDownloadFailure(DeliveryError):
    pass


class PersistenceError(NidaanError):
    pass
