"""Shared fixtures for readalong tests."""

import io

import pydub
import pytest

from readalong.adapters import ProviderCapabilities, SyncResult
from readalong.models import Provider, TextChunk, VoiceSpec


def make_wav(duration_ms: int = 100) -> bytes:
    """Silent mono WAV bytes (pydub writes WAV without ffmpeg)."""
    buffer = io.BytesIO()
    pydub.AudioSegment.silent(duration=duration_ms, frame_rate=16000).export(buffer, format="wav")
    return buffer.getvalue()


class FakeAdapter:
    """Sync adapter returning fixed-size fake MP3 bytes per chunk."""

    provider = Provider.OPENAI

    def __init__(self, max_chunk_chars=4000, supports_timestamps=False, fail_on=None, error=None, marks=None):
        self.capabilities = ProviderCapabilities(
            max_chunk_chars=max_chunk_chars,
            supports_timestamps=supports_timestamps,
            is_async=False,
            audio_format="mp3",
            bytes_per_second=1000,
        )
        self.fail_on = fail_on
        self.error = error
        self.marks = marks or {}
        self.calls = []

    def synthesize(self, chunk, voice):
        self.calls.append(chunk)
        if chunk.index == self.fail_on:
            raise self.error
        return SyncResult(audio=b"\xff" * 1000, marks=self.marks.get(chunk.index, []), duration_sec=1.0)


@pytest.fixture
def tiny_wav():
    return make_wav(100)


@pytest.fixture
def voice():
    return VoiceSpec(Provider.OPENAI, "alloy")


@pytest.fixture
def chunk():
    return TextChunk(index=0, text="Hello world.", char_offset=0)
