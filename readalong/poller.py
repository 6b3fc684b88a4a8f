"""Poll provider-side synthesis jobs until they finish, fail, or time out."""

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable

from readalong.adapters import JobHandle, JobStatus
from readalong.constants import POLL_INTERVAL_SECONDS, POLL_MAX_TRANSIENT_ERRORS, POLL_TIMEOUT_SECONDS
from readalong.errors import ConfigurationError, ProviderRejected, TransientError
from readalong.models import JobState

logger = logging.getLogger(__name__)

CANCELLED = "cancelled"


@dataclass
class PollOutcome:
    state: JobState
    handle: JobHandle | None = None
    status: JobStatus | None = None   # last status seen
    reason: str = ""
    outcomes: list["PollOutcome"] = field(default_factory=list)   # per handle, for poll_all

    @property
    def ok(self) -> bool:
        return self.state is JobState.COMPLETED


class JobPoller:
    """Fixed-interval poller with a wall-clock timeout.

    check(handle) -> JobStatus is normally an async adapter's check method.
    Status checks raising TransientError are retried until
    max_transient_errors consecutive failures; ProviderRejected and
    ConfigurationError end the poll at once.
    """

    def __init__(
        self,
        check: Callable[[JobHandle], JobStatus],
        interval: float = POLL_INTERVAL_SECONDS,
        timeout: float = POLL_TIMEOUT_SECONDS,
        max_transient_errors: int = POLL_MAX_TRANSIENT_ERRORS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._check = check
        self.interval = interval
        self.timeout = timeout
        self.max_transient_errors = max_transient_errors
        self._clock = clock

    def poll(self, handle: JobHandle, cancel: threading.Event | None = None) -> PollOutcome:
        """Poll one job to a terminal state.

        Setting cancel from any thread stops status checks at the next wait
        and returns FAILED with reason "cancelled". The provider-side job is
        left running.
        """
        cancel = cancel or threading.Event()
        deadline = self._clock() + self.timeout
        errors = 0
        status = None

        while True:
            if cancel.is_set():
                return PollOutcome(JobState.FAILED, handle, status, CANCELLED)

            try:
                status = self._check(handle)
            except TransientError as e:
                errors += 1
                logger.warning("Status check %d for %s failed: %s", errors, handle.job_id, e)
                if errors > self.max_transient_errors:
                    return PollOutcome(
                        JobState.FAILED, handle, status,
                        f"status check failed {errors} times in a row: {e}",
                    )
            except (ProviderRejected, ConfigurationError) as e:
                return PollOutcome(JobState.FAILED, handle, status, str(e))
            else:
                errors = 0
                if status.state is JobState.COMPLETED:
                    logger.debug("Job %s completed", handle.job_id)
                    return PollOutcome(JobState.COMPLETED, handle, status)
                if status.state is JobState.FAILED:
                    return PollOutcome(JobState.FAILED, handle, status, status.reason or "job failed")

            remaining = deadline - self._clock()
            if remaining <= 0:
                return PollOutcome(
                    JobState.TIMED_OUT, handle, status,
                    f"no result after {self.timeout:g}s",
                )
            if cancel.wait(min(self.interval, remaining)):
                return PollOutcome(JobState.FAILED, handle, status, CANCELLED)

    def poll_all(self, handles: list[JobHandle], cancel: threading.Event | None = None) -> PollOutcome:
        """Poll several jobs in parallel.

        COMPLETED only when every job completes. The first FAILED or
        TIMED_OUT job cancels the rest and decides the combined outcome.
        """
        if not handles:
            return PollOutcome(JobState.COMPLETED)

        group = threading.Event()
        outcomes: list[PollOutcome | None] = [None] * len(handles)
        first_failure = None

        with ThreadPoolExecutor(max_workers=len(handles), thread_name_prefix="poll") as pool:
            futures = {pool.submit(self.poll, h, group): i for i, h in enumerate(handles)}
            pending = set(futures)
            try:
                while pending:
                    done, pending = wait(pending, timeout=self.interval, return_when=FIRST_COMPLETED)
                    for future in done:
                        outcome = future.result()
                        outcomes[futures[future]] = outcome
                        if not outcome.ok and first_failure is None:
                            first_failure = outcome
                            group.set()
                    if cancel is not None and cancel.is_set():
                        group.set()
            except Exception:
                group.set()
                raise

        if first_failure is not None:
            job_id = first_failure.handle.job_id if first_failure.handle else "?"
            return PollOutcome(
                first_failure.state, first_failure.handle, first_failure.status,
                f"job {job_id}: {first_failure.reason}", outcomes,
            )
        return PollOutcome(JobState.COMPLETED, outcomes=outcomes)


class PollTask:
    """Runs target(cancel_event) on its own thread.

    The task owns the cancel event; cancel() may be called from any thread.
    result() re-raises whatever the target raised.
    """

    def __init__(self, target: Callable[[threading.Event], object], name: str | None = None) -> None:
        self._target = target
        self._cancel = threading.Event()
        self._future: Future = Future()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def _run(self) -> None:
        if not self._future.set_running_or_notify_cancel():
            return
        try:
            result = self._target(self._cancel)
        except Exception as e:
            self._future.set_exception(e)
        else:
            self._future.set_result(result)

    def start(self) -> "PollTask":
        self._thread.start()
        return self

    @property
    def cancel_event(self) -> threading.Event:
        return self._cancel

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def cancel(self) -> None:
        self._cancel.set()

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: float | None = None):
        return self._future.result(timeout)

    def join(self, timeout: float | None = None) -> None:
        self._thread.join(timeout)
