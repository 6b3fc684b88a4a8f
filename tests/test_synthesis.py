"""Tests for synthesis orchestration."""

import threading
from unittest.mock import MagicMock

import pytest

from readalong.adapters import AsyncHandle, JobHandle, JobStatus, ProviderCapabilities, SyncResult
from readalong.errors import ChunkDispatchError, ConfigurationError, PollFailure, PollTimeout, ProviderRejected
from readalong.exporter import from_data_uri, parse_speech_marks
from readalong.models import AudioGenerationStatus, JobState, Provider, RawMark, VoiceSpec
from readalong.openai_tts import OpenAIAdapter
from readalong.storage import JsonDocumentStore, LocalBlobStore
from readalong.synthesis import AsyncSynthesis, SpeechSynthesizer

from conftest import FakeAdapter

THREE_SENTENCES = "Aaaa bbbb cccc. Dddd eeee ffff. Gggg hhhh iiii."
POLLY = VoiceSpec(Provider.AMAZON, "Joanna")


def _factory(adapter):
    return lambda voice, persist=False: adapter


def _synth(adapter, tmp_path=None, **kwargs):
    store = blobs = None
    if tmp_path is not None:
        store = JsonDocumentStore(tmp_path / "docs")
        blobs = LocalBlobStore(tmp_path / "blobs")
    return SpeechSynthesizer(
        store=store, blobs=blobs, adapter_factory=_factory(adapter),
        probe_durations=False, **kwargs,
    )


def _word(text, start, char_start):
    return RawMark("word", start, start + 0.3, text, char_start)


class FakePollyAsync:
    """Job-based adapter: two handles per chunk, scripted status checks."""

    provider = Provider.AMAZON
    capabilities = ProviderCapabilities(
        max_chunk_chars=16, supports_timestamps=True, is_async=True,
        audio_format="mp3", bytes_per_second=1000,
    )

    def __init__(self, status=None):
        self.status = status or (lambda handle: JobStatus(JobState.COMPLETED, output_uri=f"s3://b/{handle.job_id}"))
        self.collected = []

    def synthesize(self, chunk, voice):
        return AsyncHandle(
            JobHandle(Provider.AMAZON, f"audio-{chunk.index}"),
            JobHandle(Provider.AMAZON, f"marks-{chunk.index}", "marks"),
        )

    def check(self, handle):
        return self.status(handle)

    def collect(self, chunk, handle, voice):
        self.collected.append(chunk.index)
        first_word = chunk.text.split()[0]
        return SyncResult(audio=b"\xff" * 2000, marks=[_word(first_word, 0.1, 0)], duration_sec=2.0)


# --- Sync path ---

def test_single_chunk_openai_inline():
    """'Hello world.' with openai/alloy → one chunk, data URI, no highlighting."""
    client = MagicMock()
    client.audio.speech.create.return_value = MagicMock(content=b"\xff\xfb" * 500)
    adapter = OpenAIAdapter(client=client)

    outcome = _synth(adapter).synthesize("Hello world.", VoiceSpec(Provider.OPENAI, "alloy"))

    assert outcome.chunk_count == 1
    assert outcome.audio_url.startswith("data:audio/mp3;base64,")
    assert from_data_uri(outcome.audio_url)[0] == b"\xff\xfb" * 500
    assert outcome.marks == []
    assert not outcome.has_highlighting
    assert not outcome.timestamps_supported
    client.audio.speech.create.assert_called_once()


def test_chunks_are_bounded_and_concatenated_in_order(voice):
    adapter = FakeAdapter(max_chunk_chars=16)
    outcome = _synth(adapter).synthesize(THREE_SENTENCES, voice)

    assert outcome.chunk_count == 3
    assert all(len(c.text) <= 16 for c in adapter.calls)
    assert sorted(c.index for c in adapter.calls) == [0, 1, 2]
    assert outcome.duration_sec == 3.0


def test_failed_middle_chunk_fails_request(voice, tmp_path):
    """Chunk 2 of 3 rejected → no audio, document failed, nothing uploaded."""
    adapter = FakeAdapter(max_chunk_chars=16, fail_on=1, error=ProviderRejected("unsupported characters", status_code=400))
    synth = _synth(adapter, tmp_path)

    with pytest.raises(ChunkDispatchError) as exc_info:
        synth.synthesize(THREE_SENTENCES, voice, doc_id="doc1")

    err = exc_info.value
    assert err.chunk_index == 1
    assert err.cause_kind == "rejected"
    assert "Chunk 2/3" in str(err)
    assert len(adapter.calls) == 3
    record = synth.status("doc1")
    assert record.audio_generation_status is AudioGenerationStatus.FAILED
    assert "unsupported characters" in record.error
    assert record.audio_url is None
    assert not (tmp_path / "blobs").exists()


def test_marks_aligned_across_chunks(voice):
    """Lemonfox-style word marks are shifted by chunk time and text offsets."""
    marks = {
        0: [_word("Aaaa", 0.0, 0), _word("bbbb", 0.4, 5)],
        1: [_word("Dddd", 0.2, 0)],
        2: [_word("Gggg", 0.1, 0)],
    }
    adapter = FakeAdapter(max_chunk_chars=16, supports_timestamps=True, marks=marks)
    outcome = _synth(adapter).synthesize(THREE_SENTENCES, voice)

    assert outcome.has_highlighting
    assert [m.time_ms for m in outcome.marks] == [0, 400, 1200, 2100]
    for m in outcome.marks:
        assert THREE_SENTENCES[m.char_start:m.char_end] == m.value


def test_bad_marks_degrade_to_no_highlighting(voice):
    marks = {0: [_word("Aaaa", 0.5, 0), _word("bbbb", 0.1, 5)]}
    adapter = FakeAdapter(max_chunk_chars=16, supports_timestamps=True, marks=marks)
    outcome = _synth(adapter).synthesize(THREE_SENTENCES, voice)

    assert outcome.timestamps_supported
    assert not outcome.has_highlighting
    assert outcome.audio_url.startswith("data:audio/mp3")


def test_persisted_sync_request(voice, tmp_path):
    marks = {0: [_word("Aaaa", 0.0, 0)]}
    adapter = FakeAdapter(max_chunk_chars=16, supports_timestamps=True, marks=marks)
    synth = _synth(adapter, tmp_path)

    outcome = synth.synthesize(THREE_SENTENCES, voice, doc_id="doc1", page_character_offsets=[0, 16])

    record = synth.status("doc1")
    assert record.audio_generation_status is AudioGenerationStatus.COMPLETED
    assert record.audio_url == outcome.audio_url
    assert record.audio_url.startswith("file://")
    assert record.page_character_offsets == [0, 16]
    assert record.voice == "openai/alloy"
    assert synth.load_marks("doc1") == outcome.marks


def test_empty_text_rejected(voice):
    with pytest.raises(ValueError):
        _synth(FakeAdapter()).synthesize("   \n", voice)


def test_persisting_needs_stores(voice):
    with pytest.raises(ConfigurationError):
        _synth(FakeAdapter()).synthesize("Hi.", voice, doc_id="doc1")


# --- Async path ---

def test_async_request_completes_in_background(tmp_path):
    adapter = FakePollyAsync()
    synth = _synth(adapter, tmp_path, poll_interval=0.01, poll_timeout=5)

    ticket = synth.synthesize(THREE_SENTENCES, POLLY, doc_id="doc1")

    assert isinstance(ticket, AsyncSynthesis)
    assert ticket.task_ids == ["audio-0", "marks-0", "audio-1", "marks-1", "audio-2", "marks-2"]
    outcome = ticket.wait(timeout=10)
    assert ticket.done()
    assert sorted(adapter.collected) == [0, 1, 2]
    assert [m.time_ms for m in outcome.marks] == [100, 2100, 4100]
    assert [m.value for m in outcome.marks] == ["Aaaa", "Dddd", "Gggg"]

    record = synth.status("doc1")
    assert record.audio_generation_status is AudioGenerationStatus.COMPLETED
    assert record.audio_generation_task_ids == ticket.task_ids
    stored_marks = parse_speech_marks(LocalBlobStore(tmp_path / "blobs").read(record.speech_marks_url).decode())
    assert stored_marks == outcome.marks


def test_async_job_failure_marks_document_failed(tmp_path):
    def status(handle):
        if handle.job_id == "marks-1":
            return JobStatus(JobState.FAILED, reason="Invalid SSML request")
        return JobStatus(JobState.POLLING)

    synth = _synth(FakePollyAsync(status), tmp_path, poll_interval=0.01, poll_timeout=5)
    ticket = synth.synthesize(THREE_SENTENCES, POLLY, doc_id="doc1")

    with pytest.raises(PollFailure, match="Invalid SSML"):
        ticket.wait(timeout=10)
    record = synth.status("doc1")
    assert record.audio_generation_status is AudioGenerationStatus.FAILED
    assert "Invalid SSML" in record.error
    assert record.audio_url is None


def test_async_timeout(tmp_path):
    synth = _synth(
        FakePollyAsync(lambda handle: JobStatus(JobState.POLLING)), tmp_path,
        poll_interval=0.01, poll_timeout=0.05,
    )
    ticket = synth.synthesize("Short text.", POLLY, doc_id="doc1")

    with pytest.raises(PollTimeout):
        ticket.wait(timeout=10)
    assert synth.status("doc1").audio_generation_status is AudioGenerationStatus.FAILED


def test_async_cancel(tmp_path):
    started = threading.Event()

    def status(handle):
        started.set()
        return JobStatus(JobState.POLLING)

    synth = _synth(FakePollyAsync(status), tmp_path, poll_interval=0.01, poll_timeout=60)
    ticket = synth.synthesize("Short text.", POLLY, doc_id="doc1")
    assert started.wait(5)
    ticket.cancel()

    with pytest.raises(PollFailure, match="cancelled"):
        ticket.wait(timeout=10)
    record = synth.status("doc1")
    assert record.audio_generation_status is AudioGenerationStatus.FAILED
    assert record.error == "cancelled"


def test_async_adapter_without_doc_id_waits_inline():
    outcome = _synth(FakePollyAsync(), poll_interval=0.01, poll_timeout=5).synthesize("Short text.", POLLY)
    assert outcome.audio_url.startswith("data:audio/mp3;base64,")
    assert outcome.has_highlighting


# --- Unexpected errors ---

class _ReadOnlyBlobs(LocalBlobStore):
    def put(self, name, data, content_type="application/octet-stream"):
        raise PermissionError(f"read-only: {name}")


def test_storage_error_marks_document_failed(voice, tmp_path):
    """A blob store failure during export still ends the request as failed."""
    synth = SpeechSynthesizer(
        store=JsonDocumentStore(tmp_path / "docs"),
        blobs=_ReadOnlyBlobs(tmp_path / "blobs"),
        adapter_factory=_factory(FakeAdapter()),
        probe_durations=False,
    )

    with pytest.raises(PermissionError):
        synth.synthesize("Hello world.", voice, doc_id="doc1")

    record = synth.status("doc1")
    assert record.audio_generation_status is AudioGenerationStatus.FAILED
    assert "read-only" in record.error


def test_background_collect_bug_marks_document_failed(tmp_path):
    class BrokenCollect(FakePollyAsync):
        def collect(self, chunk, handle, voice):
            raise KeyError("OutputUri")

    synth = _synth(BrokenCollect(), tmp_path, poll_interval=0.01, poll_timeout=5)
    ticket = synth.synthesize("Short text.", POLLY, doc_id="doc1")

    with pytest.raises(KeyError):
        ticket.wait(timeout=10)
    record = synth.status("doc1")
    assert record.audio_generation_status is AudioGenerationStatus.FAILED
    assert "OutputUri" in record.error
