"""Lemonfox text-to-speech adapter with optional word timestamps.

Lemonfox exposes an OpenAI-compatible speech endpoint. When word timestamps
are requested the reply is JSON instead of raw audio:

    {"audio": "<base64 mp3>", "word_timestamps": [{"text": "Hi", "start": 0.0, "end": 0.2}, ...]}

Some replies name the token "word" instead of "text"; both are accepted.
"""

import base64
import binascii
import json
import logging
import os

from openai import APIConnectionError, APIStatusError, OpenAI

from readalong.adapters import ProviderCapabilities, SyncResult, provider_error
from readalong.alignment import reconstruct_word_offsets
from readalong.constants import (
    LEMONFOX_BASE_URL,
    LEMONFOX_MAX_CHUNK_CHARS,
    LEMONFOX_MODEL,
    LEMONFOX_MP3_BYTES_PER_SECOND,
    REQUEST_TIMEOUT_SECONDS,
)
from readalong.errors import ConfigurationError, ProviderRejected, TransientError
from readalong.models import Provider, RawMark, TextChunk, VoiceSpec

logger = logging.getLogger(__name__)


def _token(entry: dict) -> str:
    return str(entry.get("text") or entry.get("word") or "")


def word_marks(word_timestamps: list[dict]) -> list[RawMark]:
    """Build chunk-local word marks from Lemonfox's word_timestamps array.

    Character offsets are reconstructed by joining words with single spaces,
    except punctuation tokens which attach to the previous word.
    """
    entries = [w for w in word_timestamps if _token(w)]
    words = [_token(w) for w in entries]
    offsets = reconstruct_word_offsets(words)
    return [
        RawMark(
            kind="word",
            start_sec=float(entry.get("start", 0.0)),
            end_sec=float(entry.get("end", entry.get("start", 0.0))),
            text=word,
            char_start=offset,
        )
        for entry, word, offset in zip(entries, words, offsets)
    ]


class LemonfoxAdapter:
    """Synchronous Lemonfox adapter."""

    provider = Provider.LEMONFOX

    def __init__(
        self,
        api_key: str | None = None,
        word_timestamps: bool = True,
        model: str = LEMONFOX_MODEL,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        client: OpenAI | None = None,
    ) -> None:
        if client is None:
            api_key = api_key or os.getenv("LEMONFOX_API_KEY")
            if not api_key:
                raise ConfigurationError("Lemonfox API key is not configured (LEMONFOX_API_KEY).")
            client = OpenAI(api_key=api_key, base_url=LEMONFOX_BASE_URL, timeout=timeout, max_retries=0)
        self._client = client
        self._model = model
        self._word_timestamps = word_timestamps
        self.capabilities = ProviderCapabilities(
            max_chunk_chars=LEMONFOX_MAX_CHUNK_CHARS,
            supports_timestamps=word_timestamps,
            is_async=False,
            audio_format="mp3",
            bytes_per_second=LEMONFOX_MP3_BYTES_PER_SECOND,
        )

    def synthesize(self, chunk: TextChunk, voice: VoiceSpec) -> SyncResult:
        # Timestamped replies are JSON wrapping base64 MP3
        extra_body = {"word_timestamps": True} if self._word_timestamps else None
        try:
            response = self._client.audio.speech.create(
                model=self._model,
                voice=voice.voice_id,
                input=chunk.text,
                response_format="json" if self._word_timestamps else "mp3",
                speed=voice.speaking_rate,
                extra_body=extra_body,
            )
        except APIStatusError as e:
            raise provider_error(f"Lemonfox rejected chunk {chunk.index}: {e.message}", e.status_code) from e
        except APIConnectionError as e:
            raise TransientError(f"Lemonfox request for chunk {chunk.index} failed: {e}") from e

        body = response.content
        if not body:
            raise ProviderRejected(f"Lemonfox returned no audio for chunk {chunk.index}")
        if not self._word_timestamps:
            return SyncResult(audio=body)
        return self._parse_timestamped(chunk, body)

    def _parse_timestamped(self, chunk: TextChunk, body: bytes) -> SyncResult:
        try:
            payload = json.loads(body)
            audio = base64.b64decode(payload["audio"], validate=True)
        except (ValueError, KeyError, TypeError, binascii.Error) as e:
            raise ProviderRejected(f"Lemonfox returned a malformed timestamp reply for chunk {chunk.index}") from e

        if not audio:
            raise ProviderRejected(f"Lemonfox returned no audio for chunk {chunk.index}")
        marks = word_marks(payload.get("word_timestamps") or [])
        logger.debug("Lemonfox chunk %d: %d bytes, %d word marks", chunk.index, len(audio), len(marks))
        return SyncResult(audio=audio, marks=marks)
