"""VibeVoice adapter for the Gradio Space HTTP API.

A call is two requests: POST /gradio_api/call/<endpoint> returns an event id,
then GET /gradio_api/call/<endpoint>/<event_id> streams server-sent events
until "complete" (payload holds a temporary file URL) or "error". The audio
is WAV. The endpoint has no rate control, so speaking_rate is ignored.
"""

import json
import logging
import os
from urllib.parse import urljoin

import httpx

from readalong.adapters import ProviderCapabilities, SyncResult, provider_error
from readalong.constants import (
    REQUEST_TIMEOUT_SECONDS,
    VIBEVOICE_ENDPOINT,
    VIBEVOICE_MAX_CHUNK_CHARS,
    VIBEVOICE_SPACE_URL,
    VIBEVOICE_WAV_BYTES_PER_SECOND,
)
from readalong.errors import ProviderRejected, TransientError
from readalong.models import Provider, TextChunk, VoiceSpec

logger = logging.getLogger(__name__)

NUM_SPEAKERS = 1


def parse_event_stream(body: str) -> tuple[str | None, object]:
    """Return (event, data) for the last terminal event in an SSE body.

    Terminal events are "complete" and "error"; "generating" and "heartbeat"
    are skipped. data is decoded as JSON when possible.
    """
    event = None
    result: tuple[str | None, object] = (None, None)
    for line in body.splitlines():
        if line.startswith("event:"):
            event = line[len("event:"):].strip()
        elif line.startswith("data:") and event in ("complete", "error"):
            raw = line[len("data:"):].strip()
            try:
                data = json.loads(raw)
            except ValueError:
                data = raw
            result = (event, data)
    return result


def find_file_url(data: object) -> str | None:
    """Find the first file URL in a Gradio output payload."""
    if isinstance(data, dict):
        if isinstance(data.get("url"), str):
            return data["url"]
        return None
    if isinstance(data, list):
        for item in data:
            url = find_file_url(item)
            if url:
                return url
    return None


class VibeVoiceAdapter:
    """Synchronous adapter for the VibeVoice Gradio Space. WAV audio only."""

    provider = Provider.VIBEVOICE
    capabilities = ProviderCapabilities(
        max_chunk_chars=VIBEVOICE_MAX_CHUNK_CHARS,
        supports_timestamps=False,
        is_async=False,
        audio_format="wav",
        bytes_per_second=VIBEVOICE_WAV_BYTES_PER_SECOND,
    )

    def __init__(
        self,
        base_url: str | None = None,
        endpoint: str = VIBEVOICE_ENDPOINT,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        client: httpx.Client | None = None,
    ) -> None:
        self._base_url = (base_url or os.getenv("VIBEVOICE_URL") or VIBEVOICE_SPACE_URL).rstrip("/")
        self._endpoint = endpoint
        self._client = client or httpx.Client(timeout=timeout)

    @property
    def call_url(self) -> str:
        return f"{self._base_url}/gradio_api/call/{self._endpoint}"

    def synthesize(self, chunk: TextChunk, voice: VoiceSpec) -> SyncResult:
        try:
            event_id = self._submit(chunk, voice)
            url = self._await_result(chunk, event_id)
            response = self._client.get(urljoin(self._base_url + "/", url))
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise provider_error(
                f"VibeVoice rejected chunk {chunk.index}: HTTP {e.response.status_code}",
                e.response.status_code,
            ) from e
        except httpx.TimeoutException as e:
            raise TransientError(f"VibeVoice request for chunk {chunk.index} timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransientError(f"VibeVoice request for chunk {chunk.index} failed: {e}") from e

        audio = response.content
        if not audio:
            raise ProviderRejected(f"VibeVoice returned an empty audio file for chunk {chunk.index}")
        logger.debug("VibeVoice chunk %d: %d chars -> %d bytes", chunk.index, len(chunk.text), len(audio))
        return SyncResult(audio=audio)

    def _submit(self, chunk: TextChunk, voice: VoiceSpec) -> str:
        response = self._client.post(self.call_url, json={"data": [NUM_SPEAKERS, chunk.text, voice.voice_id]})
        response.raise_for_status()
        try:
            event_id = response.json().get("event_id")
        except (ValueError, AttributeError):
            event_id = None
        if not event_id:
            raise ProviderRejected(f"VibeVoice did not return an event id for chunk {chunk.index}")
        return event_id

    def _await_result(self, chunk: TextChunk, event_id: str) -> str:
        response = self._client.get(f"{self.call_url}/{event_id}")
        response.raise_for_status()

        event, data = parse_event_stream(response.text)
        if event == "error":
            raise ProviderRejected(f"VibeVoice failed on chunk {chunk.index}: {data}")
        url = find_file_url(data) if event == "complete" else None
        if not url:
            raise ProviderRejected(f"VibeVoice returned no audio URL for chunk {chunk.index}")
        return url
