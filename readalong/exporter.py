"""Output formats: inline data URIs, NDJSON speech marks, and blob export."""

import base64
import binascii
import json
import logging

from readalong.assembly import AssembledAudio
from readalong.models import SpeechMark

logger = logging.getLogger(__name__)

MARK_TYPES = ("word", "sentence")


def to_data_uri(audio: bytes, audio_format: str = "mp3") -> str:
    """Encode audio as data:audio/<fmt>;base64,..."""
    return f"data:audio/{audio_format};base64,{base64.b64encode(audio).decode('ascii')}"


def from_data_uri(uri: str) -> tuple[bytes, str]:
    """Decode a data URI produced by to_data_uri. Returns (audio, format)."""
    header, sep, payload = uri.partition(",")
    if not sep or not header.startswith("data:audio/") or not header.endswith(";base64"):
        raise ValueError(f"Not an audio data URI: {uri[:40]!r}")
    audio_format = header[len("data:audio/"):-len(";base64")]
    try:
        return base64.b64decode(payload, validate=True), audio_format
    except binascii.Error as e:
        raise ValueError(f"Invalid base64 payload in data URI: {e}") from e


def dump_speech_marks(marks: list[SpeechMark]) -> str:
    """Serialize marks as NDJSON, one compact object per line."""
    return "".join(json.dumps(m.to_dict(), separators=(",", ":")) + "\n" for m in marks)


def parse_speech_marks(text: str) -> list[SpeechMark]:
    """Parse NDJSON speech marks.

    Reads both the persisted format and Polly's raw speech-mark output, which
    share field names. Blank lines, invalid JSON, and mark types other than
    word/sentence (e.g. ssml, viseme) are skipped.
    """
    marks = []
    for lineno, line in enumerate(text.splitlines(), 1):
        line = line.strip()
        if not line:
            continue
        try:
            data = json.loads(line)
            if data.get("type") not in MARK_TYPES:
                continue
            marks.append(SpeechMark.from_dict(data))
        except (ValueError, KeyError, TypeError, AttributeError):
            logger.warning("Skipping malformed speech mark on line %d", lineno)
    return marks


def export(assembled: AssembledAudio, marks: list[SpeechMark], doc_id: str, blobs) -> tuple[str, str | None]:
    """Upload assembled audio and speech marks for a document.

    Creates:
      - <doc_id>-audio.<fmt>
      - <doc_id>-speech-marks.jsonl (only when there are marks)

    Returns (audio_url, speech_marks_url or None).
    """
    fmt = assembled.audio_format
    audio_url = blobs.put(f"{doc_id}-audio.{fmt}", assembled.data, f"audio/{fmt}")

    marks_url = None
    if marks:
        marks_url = blobs.put(
            f"{doc_id}-speech-marks.jsonl",
            dump_speech_marks(marks).encode("utf-8"),
            "application/x-ndjson",
        )

    logger.info("Exported %s: %d bytes of audio, %d marks", doc_id, len(assembled.data), len(marks))
    return audio_url, marks_url
