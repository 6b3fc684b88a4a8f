"""OpenAI text-to-speech adapter."""

import logging
import os

from openai import APIConnectionError, APIStatusError, OpenAI

from readalong.adapters import ProviderCapabilities, SyncResult, provider_error
from readalong.constants import (
    OPENAI_MAX_CHUNK_CHARS,
    OPENAI_MP3_BYTES_PER_SECOND,
    OPENAI_TTS_MODEL,
    REQUEST_TIMEOUT_SECONDS,
)
from readalong.errors import ConfigurationError, ProviderRejected, TransientError
from readalong.models import Provider, TextChunk, VoiceSpec

logger = logging.getLogger(__name__)


class OpenAIAdapter:
    """Synchronous adapter for OpenAI's audio.speech endpoint. No timestamps."""

    provider = Provider.OPENAI
    capabilities = ProviderCapabilities(
        max_chunk_chars=OPENAI_MAX_CHUNK_CHARS,
        supports_timestamps=False,
        is_async=False,
        audio_format="mp3",
        bytes_per_second=OPENAI_MP3_BYTES_PER_SECOND,
    )

    def __init__(
        self,
        api_key: str | None = None,
        model: str = OPENAI_TTS_MODEL,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        client: OpenAI | None = None,
    ) -> None:
        if client is None:
            api_key = api_key or os.getenv("OPENAI_API_KEY")
            if not api_key:
                raise ConfigurationError("OpenAI API key is not configured (OPENAI_API_KEY).")
            client = OpenAI(api_key=api_key, timeout=timeout, max_retries=0)
        self._client = client
        self._model = model

    def synthesize(self, chunk: TextChunk, voice: VoiceSpec) -> SyncResult:
        try:
            response = self._client.audio.speech.create(
                model=self._model,
                voice=voice.voice_id,
                input=chunk.text,
                response_format="mp3",
                speed=voice.speaking_rate,
            )
        except APIStatusError as e:
            raise provider_error(f"OpenAI rejected chunk {chunk.index}: {e.message}", e.status_code) from e
        except APIConnectionError as e:
            raise TransientError(f"OpenAI request for chunk {chunk.index} failed: {e}") from e

        audio = response.content
        if not audio:
            raise ProviderRejected(f"OpenAI returned no audio for chunk {chunk.index}")

        logger.debug("OpenAI chunk %d: %d chars -> %d bytes", chunk.index, len(chunk.text), len(audio))
        return SyncResult(audio=audio)
