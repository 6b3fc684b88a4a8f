"""Join per-chunk audio into one continuous file with a chunk time index."""

import io
import logging
from dataclasses import dataclass, field

import pydub
from pydub.exceptions import CouldntDecodeError

from readalong.errors import AssemblyError
from readalong.models import AudioSegment

logger = logging.getLogger(__name__)

DEFAULT_BYTES_PER_SECOND = 16000


@dataclass
class AssembledAudio:
    data: bytes
    audio_format: str
    cumulative_durations_sec: list[float] = field(default_factory=list)   # start of each chunk
    total_duration_sec: float = 0.0


def _decode(data: bytes, audio_format: str) -> pydub.AudioSegment:
    return pydub.AudioSegment.from_file(io.BytesIO(data), format=audio_format)


def probe_duration(data: bytes, audio_format: str) -> float | None:
    """Decoded length in seconds, or None when the bytes can't be decoded."""
    try:
        return len(_decode(data, audio_format)) / 1000
    except (CouldntDecodeError, OSError, IndexError, ValueError) as e:
        logger.debug("Could not probe %s duration: %s", audio_format, e)
        return None


def estimate_duration(data: bytes, bytes_per_second: int) -> float:
    return len(data) / bytes_per_second


def segment_duration(
    segment: AudioSegment,
    audio_format: str,
    bytes_per_second: int = DEFAULT_BYTES_PER_SECOND,
    probe: bool = True,
) -> float:
    """Provider-reported duration, else decoded length, else a byte-rate estimate."""
    if segment.duration_sec is not None:
        return segment.duration_sec
    if probe:
        probed = probe_duration(segment.data, audio_format)
        if probed is not None:
            return probed
    return estimate_duration(segment.data, bytes_per_second)


def _check_segments(segments: list[AudioSegment]) -> list[AudioSegment]:
    if not segments:
        raise AssemblyError("No audio segments to assemble")
    ordered = sorted(segments, key=lambda s: s.index)
    for expected, segment in enumerate(ordered):
        if segment.index != expected:
            raise AssemblyError(
                f"Segment indices must be contiguous from 0, got {[s.index for s in ordered]}"
            )
        if not segment.data:
            raise AssemblyError(f"Segment {segment.index} has no audio data")
    return ordered


def _concat_wav(segments: list[AudioSegment]) -> tuple[bytes, list[float]]:
    """Decode WAV segments, join them, and re-export as one WAV."""
    combined = None
    durations = []
    for segment in segments:
        try:
            audio = _decode(segment.data, "wav")
        except (CouldntDecodeError, OSError, IndexError, ValueError) as e:
            raise AssemblyError(f"Segment {segment.index} is not valid WAV audio: {e}") from e
        durations.append(len(audio) / 1000)
        combined = audio if combined is None else combined + audio

    buffer = io.BytesIO()
    combined.export(buffer, format="wav")
    return buffer.getvalue(), durations


def assemble(
    segments: list[AudioSegment],
    audio_format: str = "mp3",
    bytes_per_second: int = DEFAULT_BYTES_PER_SECOND,
    probe: bool = True,
) -> AssembledAudio:
    """Concatenate segments in index order.

    MP3 frames are self-delimiting, so MP3 segments are joined byte for byte.
    WAV segments each carry a header and are decoded and re-exported.

    cumulative_durations_sec[i] is the time at which segment i starts.
    """
    ordered = _check_segments(segments)

    if audio_format == "wav":
        data, decoded = _concat_wav(ordered)
        durations = [
            s.duration_sec if s.duration_sec is not None else d
            for s, d in zip(ordered, decoded)
        ]
    else:
        data = b"".join(s.data for s in ordered)
        durations = [segment_duration(s, audio_format, bytes_per_second, probe) for s in ordered]

    cumulative = []
    elapsed = 0.0
    for duration in durations:
        cumulative.append(elapsed)
        elapsed += duration

    logger.info("Assembled %d segments: %d bytes, %.1fs of %s", len(ordered), len(data), elapsed, audio_format)
    return AssembledAudio(
        data=data,
        audio_format=audio_format,
        cumulative_durations_sec=cumulative,
        total_duration_sec=elapsed,
    )
