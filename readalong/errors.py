"""Error taxonomy for synthesis requests."""

ERROR_KIND_CONFIGURATION = "configuration"
ERROR_KIND_REJECTED = "rejected"
ERROR_KIND_TRANSIENT = "transient"
ERROR_KIND_CHUNK_DISPATCH = "chunk_dispatch"
ERROR_KIND_POLL_TIMEOUT = "poll_timeout"
ERROR_KIND_POLL_FAILURE = "poll_failure"
ERROR_KIND_ALIGNMENT = "alignment"
ERROR_KIND_ASSEMBLY = "assembly"


class SynthesisError(RuntimeError):
    """Base class for every failure raised by the synthesis core."""

    error_kind = "unknown"


class ConfigurationError(SynthesisError):
    """Missing or invalid credentials. Fatal, never retried."""

    error_kind = ERROR_KIND_CONFIGURATION


class ProviderError(SynthesisError):
    """A provider call failed."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ProviderRejected(ProviderError):
    """4xx or malformed reply: fatal for the chunk."""

    error_kind = ERROR_KIND_REJECTED


class TransientError(ProviderError):
    """5xx or timeout: eligible for the poller's retry budget."""

    error_kind = ERROR_KIND_TRANSIENT


class ChunkDispatchError(SynthesisError):
    """A chunk's provider call failed, aborting the whole request."""

    error_kind = ERROR_KIND_CHUNK_DISPATCH

    def __init__(self, chunk_index: int, cause: BaseException, *, total: int | None = None) -> None:
        self.chunk_index = chunk_index
        self.cause = cause
        self.cause_kind = getattr(cause, "error_kind", "unknown")
        position = f"{chunk_index + 1}/{total}" if total else str(chunk_index + 1)
        super().__init__(f"Chunk {position} failed: {cause}")


class PollTimeout(SynthesisError):
    error_kind = ERROR_KIND_POLL_TIMEOUT


class PollFailure(SynthesisError):
    error_kind = ERROR_KIND_POLL_FAILURE


class AlignmentError(SynthesisError):
    """Marks are out of order or point outside the document text."""

    error_kind = ERROR_KIND_ALIGNMENT


class AssemblyError(SynthesisError):
    error_kind = ERROR_KIND_ASSEMBLY
