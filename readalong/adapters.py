"""Provider adapter contract, capability table, and factory.

Every provider turns one TextChunk plus a VoiceSpec into either audio
(SyncResult) or a provider-side job (AsyncHandle) that must be polled:
- OpenAI: sync, audio only
- Amazon Polly: sync SSML audio, or async audio + speech-mark tasks
- Lemonfox: sync, optional word timestamps
- VibeVoice: sync Gradio endpoint, WAV audio only
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Protocol, runtime_checkable

from readalong.errors import ConfigurationError, ProviderError, ProviderRejected, TransientError
from readalong.models import JobState, Provider, RawMark, TextChunk, VoiceSpec

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProviderCapabilities:
    max_chunk_chars: int
    supports_timestamps: bool
    is_async: bool
    audio_format: str = "mp3"
    bytes_per_second: int = 16000   # duration estimate when nothing better is known
    chunk_size: Callable[[str], int] = len   # how the provider counts max_chunk_chars


@dataclass
class SyncResult:
    audio: bytes
    marks: list[RawMark] = field(default_factory=list)
    duration_sec: float | None = None


@dataclass(frozen=True)
class JobHandle:
    provider: Provider
    job_id: str
    kind: str = "audio"   # "audio" or "marks"


@dataclass(frozen=True)
class AsyncHandle:
    audio: JobHandle
    marks: JobHandle | None = None

    @property
    def handles(self) -> list[JobHandle]:
        return [h for h in (self.audio, self.marks) if h is not None]


@dataclass(frozen=True)
class JobStatus:
    state: JobState
    output_uri: str | None = None
    reason: str | None = None


@runtime_checkable
class ProviderAdapter(Protocol):
    """Interface every provider adapter implements."""

    provider: Provider
    capabilities: ProviderCapabilities

    def synthesize(self, chunk: TextChunk, voice: VoiceSpec) -> SyncResult | AsyncHandle:
        """Synthesize one chunk.

        Raises:
            ConfigurationError: credentials missing or refused
            ProviderRejected: the provider refused this chunk
            TransientError: server error or timeout
        """
        ...


@runtime_checkable
class AsyncProviderAdapter(ProviderAdapter, Protocol):
    """Job-based adapter: status checks plus output download."""

    def check(self, handle: JobHandle) -> JobStatus:
        ...

    def collect(self, chunk: TextChunk, handle: AsyncHandle, voice: VoiceSpec) -> SyncResult:
        ...


def provider_error(message: str, status_code: int | None = None) -> Exception:
    """Map an HTTP status onto the adapter error taxonomy."""
    if status_code in (401, 403):
        return ConfigurationError(f"{message} (HTTP {status_code})")
    if status_code is not None and 400 <= status_code < 500 and status_code not in (408, 429):
        return ProviderRejected(message, status_code=status_code)
    return TransientError(message, status_code=status_code)


def _openai(**kwargs) -> ProviderAdapter:
    from readalong.openai_tts import OpenAIAdapter
    return OpenAIAdapter(**kwargs)


def _amazon(persist: bool = False, **kwargs) -> ProviderAdapter:
    from readalong.polly import PollyAsyncAdapter, PollySyncAdapter
    if persist:
        return PollyAsyncAdapter(**kwargs)
    return PollySyncAdapter(**kwargs)


def _lemonfox(**kwargs) -> ProviderAdapter:
    from readalong.lemonfox import LemonfoxAdapter
    return LemonfoxAdapter(**kwargs)


def _vibevoice(**kwargs) -> ProviderAdapter:
    from readalong.vibevoice import VibeVoiceAdapter
    return VibeVoiceAdapter(**kwargs)


ADAPTER_FACTORIES: dict[Provider, Callable[..., ProviderAdapter]] = {
    Provider.OPENAI: _openai,
    Provider.AMAZON: _amazon,
    Provider.LEMONFOX: _lemonfox,
    Provider.VIBEVOICE: _vibevoice,
}


def create_adapter(voice: VoiceSpec, persist: bool = False, **kwargs) -> ProviderAdapter:
    """Create the adapter for a voice's provider.

    Args:
        voice: Parsed voice selection
        persist: True when the result is stored durably (selects Polly's
                 async task mode)
        **kwargs: Passed through to the adapter constructor

    Returns:
        ProviderAdapter ready to synthesize chunks.

    Raises:
        ConfigurationError: If the provider's credentials are missing.
    """
    factory = ADAPTER_FACTORIES[voice.provider]
    if voice.provider is Provider.AMAZON:
        adapter = factory(persist=persist, **kwargs)
    else:
        adapter = factory(**kwargs)
    logger.debug(
        "Adapter for %s: %s (async=%s, limit=%d)",
        voice.name,
        type(adapter).__name__,
        adapter.capabilities.is_async,
        adapter.capabilities.max_chunk_chars,
    )
    return adapter


__all__ = [
    "ADAPTER_FACTORIES",
    "AsyncHandle",
    "AsyncProviderAdapter",
    "JobHandle",
    "JobStatus",
    "ProviderAdapter",
    "ProviderCapabilities",
    "ProviderError",
    "SyncResult",
    "create_adapter",
    "provider_error",
]
