"""Amazon Polly adapters.

Sync mode wraps each chunk in an SSML prosody envelope and returns MP3 bytes
straight from SynthesizeSpeech. It is used for short audio that is never
stored, and carries no timestamps.

Async mode starts two StartSpeechSynthesisTask jobs per chunk, one for MP3
audio and one for sentence/word speech marks. Both are written to S3 and
must complete before the chunk can be collected.
"""

import logging
import os

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError, PartialCredentialsError

from readalong.adapters import AsyncHandle, JobHandle, JobStatus, ProviderCapabilities, SyncResult, provider_error
from readalong.constants import (
    POLLY_ASYNC_MAX_CHUNK_CHARS,
    POLLY_ENGINE,
    POLLY_MP3_BYTES_PER_SECOND,
    POLLY_SYNC_MAX_CHUNK_CHARS,
    REQUEST_TIMEOUT_SECONDS,
    SPEAKING_RATE_MAX,
)
from readalong.errors import ConfigurationError, ProviderRejected, TransientError
from readalong.exporter import parse_speech_marks
from readalong.models import JobState, Provider, RawMark, TextChunk, VoiceSpec
from readalong.storage import parse_s3_uri

logger = logging.getLogger(__name__)

XML_ESCAPES = {"&": "&amp;", "<": "&lt;", ">": "&gt;"}
SPEECH_MARK_TYPES = ["sentence", "word"]


def prosody_rate(speaking_rate: float) -> int:
    """Speaking rate as a prosody percentage, rounding halves up."""
    return int(speaking_rate * 100 + 0.5)


def build_ssml(text: str, speaking_rate: float) -> tuple[str, list[int]]:
    """Wrap text in <speak><prosody>, returning the SSML and a byte map.

    Polly reports speech-mark offsets as byte positions in the submitted
    UTF-8 SSML. byte_to_char[i] is the index in text of the character that
    produced byte i; envelope bytes map to 0 (prefix) or len(text) (suffix).
    """
    prefix = f'<speak><prosody rate="{prosody_rate(speaking_rate)}%">'
    suffix = "</prosody></speak>"

    parts = [prefix]
    byte_to_char = [0] * len(prefix.encode("utf-8"))
    for i, ch in enumerate(text):
        piece = XML_ESCAPES.get(ch, ch)
        parts.append(piece)
        byte_to_char.extend([i] * len(piece.encode("utf-8")))
    parts.append(suffix)
    byte_to_char.extend([len(text)] * len(suffix.encode("utf-8")))

    return "".join(parts), byte_to_char


def ssml_length(text: str) -> int:
    """Length of build_ssml's output for text at the widest prosody rate.

    Chunk limits for Polly are measured with this, so the submitted request
    (envelope and entity escapes included) stays within the limit.
    """
    envelope = len(f'<speak><prosody rate="{prosody_rate(SPEAKING_RATE_MAX)}%">') + len("</prosody></speak>")
    return envelope + sum(len(XML_ESCAPES.get(ch, ch)) for ch in text)


def _char_at(byte_to_char: list[int], byte_offset: int, text_length: int) -> int:
    if byte_offset >= len(byte_to_char):
        return text_length
    return byte_to_char[max(byte_offset, 0)]


def marks_from_polly(text: str, ndjson: str, byte_to_char: list[int]) -> list[RawMark]:
    """Convert Polly's speech-mark output into chunk-local RawMarks.

    Polly gives start times only; each mark ends where the next mark of the
    same type starts (the last one gets a zero-length window).
    """
    parsed = parse_speech_marks(ndjson)

    next_start: dict[str, float] = {}
    end_times = [0.0] * len(parsed)
    for i in range(len(parsed) - 1, -1, -1):
        mark = parsed[i]
        start_sec = mark.time_ms / 1000
        end_times[i] = next_start.get(mark.type, start_sec)
        next_start[mark.type] = start_sec

    marks = []
    for mark, end_sec in zip(parsed, end_times):
        char_start = _char_at(byte_to_char, mark.char_start, len(text))
        char_end = _char_at(byte_to_char, mark.char_end, len(text))
        if char_end <= char_start:
            continue
        marks.append(RawMark(
            kind=mark.type,
            start_sec=mark.time_ms / 1000,
            end_sec=end_sec,
            text=text[char_start:char_end],
            char_start=char_start,
        ))
    return marks


def _translate(error: Exception, context: str) -> Exception:
    if isinstance(error, (NoCredentialsError, PartialCredentialsError)):
        return ConfigurationError(f"AWS credentials are not configured: {error}")
    if isinstance(error, ClientError):
        status = error.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        message = error.response.get("Error", {}).get("Message") or str(error)
        return provider_error(f"{context}: {message}", status)
    return TransientError(f"{context}: {error}")


def _aws_region(region: str | None) -> str:
    region = region or os.getenv("AWS_REGION")
    if not region:
        raise ConfigurationError("AWS region is not configured (AWS_REGION).")
    return region


def _client_config(timeout: float) -> Config:
    return Config(
        connect_timeout=timeout,
        read_timeout=timeout,
        retries={"max_attempts": 1, "mode": "standard"},
    )


class PollySyncAdapter:
    """SynthesizeSpeech with SSML rate control. Audio only."""

    provider = Provider.AMAZON
    capabilities = ProviderCapabilities(
        max_chunk_chars=POLLY_SYNC_MAX_CHUNK_CHARS,
        supports_timestamps=False,
        is_async=False,
        audio_format="mp3",
        bytes_per_second=POLLY_MP3_BYTES_PER_SECOND,
        chunk_size=ssml_length,
    )

    def __init__(
        self,
        region: str | None = None,
        engine: str = POLLY_ENGINE,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        client=None,
    ) -> None:
        if client is None:
            client = boto3.client("polly", region_name=_aws_region(region), config=_client_config(timeout))
        self._client = client
        self._engine = engine

    def synthesize(self, chunk: TextChunk, voice: VoiceSpec) -> SyncResult:
        ssml, _ = build_ssml(chunk.text, voice.speaking_rate)
        try:
            response = self._client.synthesize_speech(
                Text=ssml,
                TextType="ssml",
                VoiceId=voice.voice_id,
                OutputFormat="mp3",
                Engine=self._engine,
            )
            stream = response.get("AudioStream")
            audio = stream.read() if stream is not None else b""
        except (ClientError, BotoCoreError) as e:
            raise _translate(e, f"Polly rejected chunk {chunk.index}") from e

        if not audio:
            raise ProviderRejected(f"Amazon Polly returned no audio stream for chunk {chunk.index}")
        return SyncResult(audio=audio)


class PollyAsyncAdapter:
    """StartSpeechSynthesisTask for audio and speech marks, written to S3."""

    provider = Provider.AMAZON
    capabilities = ProviderCapabilities(
        max_chunk_chars=POLLY_ASYNC_MAX_CHUNK_CHARS,
        supports_timestamps=True,
        is_async=True,
        audio_format="mp3",
        bytes_per_second=POLLY_MP3_BYTES_PER_SECOND,
        chunk_size=ssml_length,
    )

    def __init__(
        self,
        region: str | None = None,
        bucket: str | None = None,
        key_prefix: str = "",
        engine: str = POLLY_ENGINE,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        client=None,
        s3_client=None,
    ) -> None:
        self._bucket = bucket or os.getenv("AWS_S3_BUCKET_NAME")
        if not self._bucket:
            raise ConfigurationError("S3 bucket for Polly output is not configured (AWS_S3_BUCKET_NAME).")
        if client is None or s3_client is None:
            region = _aws_region(region)
            config = _client_config(timeout)
            client = client or boto3.client("polly", region_name=region, config=config)
            s3_client = s3_client or boto3.client("s3", region_name=region, config=config)
        self._client = client
        self._s3 = s3_client
        self._key_prefix = key_prefix
        self._engine = engine

    def synthesize(self, chunk: TextChunk, voice: VoiceSpec) -> AsyncHandle:
        ssml, _ = build_ssml(chunk.text, voice.speaking_rate)
        request = {
            "Text": ssml,
            "TextType": "ssml",
            "VoiceId": voice.voice_id,
            "Engine": self._engine,
            "OutputS3BucketName": self._bucket,
            "OutputS3KeyPrefix": f"{self._key_prefix}chunk-{chunk.index:04d}-",
        }
        audio_id = self._start_task(chunk, OutputFormat="mp3", **request)
        marks_id = self._start_task(chunk, OutputFormat="json", SpeechMarkTypes=SPEECH_MARK_TYPES, **request)
        logger.info("Polly tasks started for chunk %d: audio=%s marks=%s", chunk.index, audio_id, marks_id)
        return AsyncHandle(
            audio=JobHandle(Provider.AMAZON, audio_id, "audio"),
            marks=JobHandle(Provider.AMAZON, marks_id, "marks"),
        )

    def _start_task(self, chunk: TextChunk, **request) -> str:
        try:
            response = self._client.start_speech_synthesis_task(**request)
        except (ClientError, BotoCoreError) as e:
            raise _translate(e, f"Polly rejected chunk {chunk.index}") from e
        task_id = response.get("SynthesisTask", {}).get("TaskId")
        if not task_id:
            raise ProviderRejected(f"Polly did not return a task id for chunk {chunk.index}")
        return task_id

    def check(self, handle: JobHandle) -> JobStatus:
        try:
            response = self._client.get_speech_synthesis_task(TaskId=handle.job_id)
        except (ClientError, BotoCoreError) as e:
            raise _translate(e, f"Polly status check for task {handle.job_id} failed") from e

        task = response.get("SynthesisTask", {})
        status = task.get("TaskStatus")
        if status == "completed":
            uri = task.get("OutputUri")
            if not uri:
                return JobStatus(JobState.FAILED, reason="Task completed but its output URI is missing.")
            return JobStatus(JobState.COMPLETED, output_uri=uri)
        if status == "failed":
            return JobStatus(
                JobState.FAILED,
                reason=task.get("TaskStatusReason") or "Task failed for an unknown reason.",
            )
        return JobStatus(JobState.POLLING)

    def collect(self, chunk: TextChunk, handle: AsyncHandle, voice: VoiceSpec) -> SyncResult:
        """Download a finished chunk's audio and speech marks from S3."""
        audio = self._download(self._output_uri(handle.audio))
        if not audio:
            raise ProviderRejected(f"Polly audio for chunk {chunk.index} is empty")

        marks = []
        if handle.marks is not None:
            ndjson = self._download(self._output_uri(handle.marks)).decode("utf-8", errors="replace")
            _, byte_to_char = build_ssml(chunk.text, voice.speaking_rate)
            marks = marks_from_polly(chunk.text, ndjson, byte_to_char)

        logger.debug("Polly chunk %d collected: %d bytes, %d marks", chunk.index, len(audio), len(marks))
        return SyncResult(audio=audio, marks=marks)

    def _output_uri(self, handle: JobHandle) -> str:
        status = self.check(handle)
        if status.state is not JobState.COMPLETED or not status.output_uri:
            raise ProviderRejected(f"Polly task {handle.job_id} has no output: {status.reason or status.state.value}")
        return status.output_uri

    def _download(self, uri: str) -> bytes:
        bucket, key = parse_s3_uri(uri)
        try:
            response = self._s3.get_object(Bucket=bucket, Key=key)
            return response["Body"].read()
        except (ClientError, BotoCoreError) as e:
            raise _translate(e, f"Downloading {uri} failed") from e
