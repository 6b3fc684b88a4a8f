"""Synthesis orchestration: chunk, dispatch, poll, assemble, align, persist.

A request either returns a SynthesisOutcome directly (sync providers, or no
document id) or an AsyncSynthesis ticket whose background PollTask finishes
the work and moves the document record to completed or failed.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from readalong.adapters import AsyncHandle, ProviderAdapter, create_adapter
from readalong.alignment import align_or_empty
from readalong.assembly import assemble
from readalong.chunker import split
from readalong.constants import MAX_PARALLEL_REQUESTS, POLL_INTERVAL_SECONDS, POLL_TIMEOUT_SECONDS
from readalong.errors import ChunkDispatchError, ConfigurationError, PollFailure, PollTimeout
from readalong.exporter import export, parse_speech_marks, to_data_uri
from readalong.models import AudioGenerationStatus, AudioSegment, DocumentRecord, JobState, SpeechMark, SynthesisJob, VoiceSpec
from readalong.poller import CANCELLED, JobPoller, PollTask

logger = logging.getLogger(__name__)


@dataclass
class SynthesisOutcome:
    audio_url: str                  # data URI, or blob URL when persisted
    audio_format: str
    duration_sec: float
    chunk_count: int
    marks: list[SpeechMark] = field(default_factory=list)
    speech_marks_url: str | None = None
    timestamps_supported: bool = False
    doc_id: str | None = None

    @property
    def has_highlighting(self) -> bool:
        return bool(self.marks)


@dataclass
class AsyncSynthesis:
    """Ticket for a request still being polled in the background."""

    doc_id: str
    task_ids: list[str]
    task: PollTask

    def cancel(self) -> None:
        self.task.cancel()

    def done(self) -> bool:
        return self.task.done()

    def wait(self, timeout: float | None = None) -> SynthesisOutcome:
        """Block until the background work finishes; re-raises its failure."""
        return self.task.result(timeout)


class SpeechSynthesizer:
    """Turns document text into audio plus aligned speech marks.

    store and blobs are only needed for requests with a document id.
    """

    def __init__(
        self,
        store=None,
        blobs=None,
        adapter_factory=create_adapter,
        max_workers: int = MAX_PARALLEL_REQUESTS,
        poll_interval: float = POLL_INTERVAL_SECONDS,
        poll_timeout: float = POLL_TIMEOUT_SECONDS,
        probe_durations: bool = True,
    ) -> None:
        self.store = store
        self.blobs = blobs
        self._adapter_factory = adapter_factory
        self._max_workers = max_workers
        self._poll_interval = poll_interval
        self._poll_timeout = poll_timeout
        self._probe_durations = probe_durations

    def synthesize(
        self,
        text: str,
        voice: VoiceSpec,
        doc_id: str | None = None,
        page_character_offsets: list[int] | None = None,
    ) -> SynthesisOutcome | AsyncSynthesis:
        """Synthesize text with one voice.

        Without doc_id the audio comes back inline as a data URI. With doc_id
        the audio and marks are uploaded and the document record tracks
        progress; job-based providers return an AsyncSynthesis ticket.

        Raises:
            ValueError: text is empty or whitespace
            ConfigurationError: credentials or storage are not configured
            ChunkDispatchError: any chunk failed; no audio is produced

        Whatever the exception, a persisted document is left failed, never
        processing.
        """
        if not text.strip():
            raise ValueError("Nothing to synthesize: text is empty")
        if doc_id is not None and (self.store is None or self.blobs is None):
            raise ConfigurationError("Persisting a document needs a document store and a blob store")

        adapter = self._adapter_factory(voice, persist=doc_id is not None)
        chunks = split(text, adapter.capabilities.max_chunk_chars, adapter.capabilities.chunk_size)
        logger.info(
            "Synthesizing %d chars as %d chunk(s) with %s%s",
            len(text), len(chunks), voice.name, f" for {doc_id}" if doc_id else "",
        )

        if doc_id is not None:
            self._mark_processing(doc_id, voice, page_character_offsets)

        try:
            jobs = self._dispatch(adapter, chunks, voice)
            if adapter.capabilities.is_async:
                if doc_id is not None:
                    return self._start_background(adapter, text, voice, doc_id, jobs)
                return self._complete_async(adapter, text, voice, None, jobs, threading.Event())
            return self._finish(adapter, text, doc_id, jobs)
        except Exception as e:
            if doc_id is not None:
                self._mark_failed(doc_id, e)
            raise

    def _dispatch(self, adapter: ProviderAdapter, chunks, voice: VoiceSpec) -> list[SynthesisJob]:
        """Send every chunk in parallel and wait for all of them.

        Each worker writes only its own job. If any chunk fails, the
        lowest-index failure is raised as ChunkDispatchError.
        """
        jobs = [SynthesisJob(chunk=c) for c in chunks]

        def run(job: SynthesisJob) -> None:
            try:
                reply = adapter.synthesize(job.chunk, voice)
            except Exception as e:
                logger.warning("Chunk %d failed: %s", job.chunk.index, e)
                job.state = JobState.FAILED
                job.error = e
                job.reason = str(e)
                return
            if isinstance(reply, AsyncHandle):
                job.handle = reply
                job.state = JobState.POLLING
            else:
                job.result = reply
                job.state = JobState.COMPLETED

        workers = max(1, min(self._max_workers, len(jobs)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="chunk") as pool:
            list(pool.map(run, jobs))

        failed = [j for j in jobs if j.state is JobState.FAILED]
        if failed:
            first = failed[0]
            raise ChunkDispatchError(first.chunk.index, first.error, total=len(jobs)) from first.error
        return jobs

    def _finish(self, adapter: ProviderAdapter, text: str, doc_id: str | None, jobs: list[SynthesisJob]) -> SynthesisOutcome:
        caps = adapter.capabilities
        segments = [
            AudioSegment(index=j.chunk.index, data=j.result.audio, duration_sec=j.result.duration_sec)
            for j in jobs
        ]
        assembled = assemble(segments, caps.audio_format, caps.bytes_per_second, probe=self._probe_durations)

        marks = []
        if caps.supports_timestamps:
            marks = align_or_empty(
                [j.chunk for j in jobs],
                [j.result.marks for j in jobs],
                assembled.cumulative_durations_sec,
                len(text),
            )

        if doc_id is not None:
            audio_url, marks_url = export(assembled, marks, doc_id, self.blobs)
            self.store.update(
                doc_id,
                audio_url=audio_url,
                speech_marks_url=marks_url,
                audio_generation_status=AudioGenerationStatus.COMPLETED,
                error="",
            )
        else:
            audio_url, marks_url = to_data_uri(assembled.data, assembled.audio_format), None

        return SynthesisOutcome(
            audio_url=audio_url,
            audio_format=assembled.audio_format,
            duration_sec=assembled.total_duration_sec,
            chunk_count=len(jobs),
            marks=marks,
            speech_marks_url=marks_url,
            timestamps_supported=caps.supports_timestamps,
            doc_id=doc_id,
        )

    def _start_background(self, adapter, text: str, voice: VoiceSpec, doc_id: str, jobs) -> AsyncSynthesis:
        task_ids = [h.job_id for j in jobs for h in j.handle.handles]
        self.store.update(doc_id, audio_generation_task_ids=task_ids)

        task = PollTask(
            lambda cancel: self._complete_async(adapter, text, voice, doc_id, jobs, cancel),
            name=f"synthesis-{doc_id}",
        )
        task.start()
        logger.info("Polling %d provider job(s) for %s in the background", len(task_ids), doc_id)
        return AsyncSynthesis(doc_id=doc_id, task_ids=task_ids, task=task)

    def _complete_async(self, adapter, text: str, voice: VoiceSpec, doc_id: str | None, jobs, cancel: threading.Event) -> SynthesisOutcome:
        """Poll every chunk's jobs, download the outputs, then finish as usual."""
        poller = JobPoller(adapter.check, interval=self._poll_interval, timeout=self._poll_timeout)
        try:
            outcome = poller.poll_all([h for j in jobs for h in j.handle.handles], cancel)
            if cancel.is_set():
                raise PollFailure(CANCELLED)
            if outcome.state is JobState.TIMED_OUT:
                raise PollTimeout(outcome.reason)
            if not outcome.ok:
                raise PollFailure(outcome.reason)

            for job in jobs:
                job.result = adapter.collect(job.chunk, job.handle, voice)
                job.state = JobState.COMPLETED
            return self._finish(adapter, text, doc_id, jobs)
        except Exception as e:
            logger.error("Background synthesis%s failed: %s", f" for {doc_id}" if doc_id else "", e)
            if doc_id is not None:
                self._mark_failed(doc_id, e)
            raise

    # --- document status ---

    def _mark_processing(self, doc_id: str, voice: VoiceSpec, page_character_offsets: list[int] | None) -> None:
        changes = {
            "audio_generation_status": AudioGenerationStatus.PROCESSING,
            "audio_url": None,
            "speech_marks_url": None,
            "audio_generation_task_ids": [],
            "voice": voice.name,
            "error": "",
        }
        if page_character_offsets is not None:
            changes["page_character_offsets"] = list(page_character_offsets)
        self.store.update(doc_id, **changes)

    def _mark_failed(self, doc_id: str, error: Exception) -> None:
        """Record any failure, including ones from storage or adapter bugs."""
        self.store.update(
            doc_id,
            audio_generation_status=AudioGenerationStatus.FAILED,
            error=str(error) or type(error).__name__,
        )

    def status(self, doc_id: str) -> DocumentRecord | None:
        return self.store.get(doc_id)

    def load_marks(self, doc_id: str) -> list[SpeechMark]:
        """Speech marks persisted for a document, or [] when it has none."""
        record = self.store.get(doc_id)
        if record is None or not record.speech_marks_url:
            return []
        return parse_speech_marks(self.blobs.read(record.speech_marks_url).decode("utf-8"))
