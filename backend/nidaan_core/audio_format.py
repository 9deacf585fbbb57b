from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass

from .errors import SpeechSynthesisFailure


@dataclass(frozen=True)
class AudioFormat:
    mime: str
    label: str
    extension: str


MP3_SYNC = AudioFormat("audio/mpeg", "MP3 (sync)", ".mp3")
MP3_ID3 = AudioFormat("audio/mpeg", "MP3 (ID3)", ".mp3")
WAV = AudioFormat("audio/wav", "WAV (RIFF)", ".wav")
OGG = AudioFormat("audio/ogg", "OGG", ".ogg")
UNKNOWN = AudioFormat("audio/mpeg", "unknown", ".mp3")

_ID3 = b"\x49\x44\x33"
_RIFF = b"\x52\x49\x46\x46"
_OGGS = b"\x4f\x67\x67\x53"


def sniff_audio_format(data: bytes) -> AudioFormat:
    """Guess the container of synthesized audio from its leading magic bytes.

    Unknown headers fall back to MP3, the speech provider's usual output. The
    result is a heuristic: callers uploading the audio must treat a provider
    rejection as a failed audio delivery, not as a broken turn.
    """
    head = bytes(data[:10])
    if len(head) >= 2 and head[0] == 0xFF and (head[1] & 0xE0) == 0xE0:
        return MP3_SYNC
    if head.startswith(_ID3):
        return MP3_ID3
    if head.startswith(_RIFF):
        return WAV
    if head.startswith(_OGGS):
        return OGG
    return UNKNOWN


def decode_audio_chunks(chunks: list[str]) -> bytes:
    try:
        return b"".join(base64.b64decode(chunk, validate=True) for chunk in chunks)
    except (binascii.Error, ValueError) as exc:
        raise SpeechSynthesisFailure("Speech provider returned undecodable audio.") from exc
