"""Data models for speech synthesis and alignment."""

from dataclasses import dataclass, field
from enum import Enum

from readalong.constants import SPEAKING_RATE_MAX, SPEAKING_RATE_MIN, DEFAULT_SPEAKING_RATE


class Provider(str, Enum):
    OPENAI = "openai"
    AMAZON = "amazon"
    LEMONFOX = "lemonfox"
    VIBEVOICE = "vibevoice"


class JobState(str, Enum):
    DISPATCHED = "dispatched"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


class AudioGenerationStatus(str, Enum):
    IDLE = "idle"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class TextChunk:
    index: int
    text: str
    char_offset: int   # start position in the source document


@dataclass(frozen=True)
class VoiceSpec:
    provider: Provider
    voice_id: str
    speaking_rate: float = DEFAULT_SPEAKING_RATE

    def __post_init__(self):
        if not SPEAKING_RATE_MIN <= self.speaking_rate <= SPEAKING_RATE_MAX:
            raise ValueError(
                f"speaking rate {self.speaking_rate} outside "
                f"{SPEAKING_RATE_MIN}-{SPEAKING_RATE_MAX}"
            )

    @classmethod
    def parse(cls, name: str, speaking_rate: float = DEFAULT_SPEAKING_RATE) -> "VoiceSpec":
        """Parse a combined "provider/voice" identifier, e.g. "amazon/Joanna"."""
        provider_name, sep, voice_id = name.partition("/")
        if not sep or not voice_id:
            raise ValueError(f"Voice must look like 'provider/voice', got: {name!r}")
        try:
            provider = Provider(provider_name.lower())
        except ValueError:
            raise ValueError(f"Unsupported voice provider: {provider_name}") from None
        return cls(provider=provider, voice_id=voice_id, speaking_rate=speaking_rate)

    @property
    def name(self) -> str:
        return f"{self.provider.value}/{self.voice_id}"


@dataclass(frozen=True)
class RawMark:
    """Provider timestamp event, local to one chunk's text and audio."""

    kind: str          # "word" or "sentence"
    start_sec: float
    end_sec: float
    text: str
    char_start: int | None = None   # chunk-local, when the provider reports ranges


@dataclass(frozen=True)
class SpeechMark:
    time_ms: int
    type: str
    char_start: int
    char_end: int
    value: str

    def to_dict(self) -> dict:
        return {
            "time": self.time_ms,
            "type": self.type,
            "start": self.char_start,
            "end": self.char_end,
            "value": self.value,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SpeechMark":
        return cls(
            time_ms=int(data["time"]),
            type=str(data["type"]),
            char_start=int(data["start"]),
            char_end=int(data["end"]),
            value=str(data.get("value", "")),
        )


@dataclass(frozen=True)
class AudioSegment:
    index: int
    data: bytes
    duration_sec: float | None = None   # provider-reported, when known


@dataclass
class SynthesisJob:
    """One chunk's dispatch outcome, owned by the orchestrator."""

    chunk: TextChunk
    state: JobState = JobState.DISPATCHED
    result: object = None       # SyncResult once audio is available
    handle: object = None       # AsyncHandle for job-based providers
    reason: str = ""
    error: Exception | None = None


@dataclass
class DocumentRecord:
    id: str
    audio_url: str | None = None
    speech_marks_url: str | None = None
    audio_generation_status: AudioGenerationStatus = AudioGenerationStatus.IDLE
    audio_generation_task_ids: list[str] = field(default_factory=list)
    voice: str = ""
    error: str = ""
    page_character_offsets: list[int] = field(default_factory=list)
    updated_at: str = ""

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "audio_url": self.audio_url,
            "speech_marks_url": self.speech_marks_url,
            "audio_generation_status": self.audio_generation_status.value,
            "audio_generation_task_ids": list(self.audio_generation_task_ids),
            "voice": self.voice,
            "error": self.error,
            "page_character_offsets": list(self.page_character_offsets),
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "DocumentRecord":
        return cls(
            id=data["id"],
            audio_url=data.get("audio_url"),
            speech_marks_url=data.get("speech_marks_url"),
            audio_generation_status=AudioGenerationStatus(
                data.get("audio_generation_status", AudioGenerationStatus.IDLE.value)
            ),
            audio_generation_task_ids=list(data.get("audio_generation_task_ids", [])),
            voice=data.get("voice", ""),
            error=data.get("error", ""),
            page_character_offsets=list(data.get("page_character_offsets", [])),
            updated_at=data.get("updated_at", ""),
        )
