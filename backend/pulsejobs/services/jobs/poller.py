"""
Job Poller

Drives one job from submission to a terminal state. A poller claims its job id
in the PollingRegistry before doing any I/O, polls the service on a fixed
interval, reports progress, and on completion hands the outcome to the
ResultSink and drops the local record.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional, Set

from pulsejobs.core.config import settings
from pulsejobs.core.exceptions import JobTimeoutError, OwnershipError, RemoteError
from pulsejobs.schemas.job import Job, JobStatus, PersistedJobRecord
from pulsejobs.services.jobs.cache import LocalJobCache
from pulsejobs.services.jobs.client import JobClient
from pulsejobs.services.jobs.events import JobEventBus, JobEventType
from pulsejobs.services.jobs.registry import PollingRegistry
from pulsejobs.services.jobs.sink import ResultSink

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], Any]

# Fire-and-forget cancel requests are kept here until they finish
_background_tasks: Set[asyncio.Task] = set()


class PollerState(str, Enum):
    STARTING = "starting"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"
    SKIPPED = "skipped"


@dataclass
class PollOutcome:
    job_id: str
    url: Optional[str]
    state: PollerState
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    attempts: int = 0


class CancellationToken:
    """Cooperative cancellation flag shared between a caller and a poller"""

    def __init__(self):
        self._event = asyncio.Event()
        self._reason: Optional[str] = None

    def cancel(self, reason: str = "Job cancelled by user") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    async def wait(self, timeout: float) -> bool:
        """Sleep up to `timeout` seconds; True as soon as the token is cancelled"""
        if timeout <= 0:
            await asyncio.sleep(0)
            return self.cancelled
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False


def _log_background_failure(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.warning(f"Background cancel request failed: {error}")


async def settle_terminal_job(
    job: Job,
    url: Optional[str],
    cache: LocalJobCache,
    sink: ResultSink,
    registry: Optional[PollingRegistry] = None
) -> PollerState:
    """Apply the terminal-state cleanup for a job observed as completed, failed or cancelled"""

    await cache.remove(job.job_id)
    if registry is not None:
        registry.unregister(job.job_id)

    if job.status == JobStatus.COMPLETED:
        await sink.store_completed(job.job_id, url, job.result, completed_at=job.updated_at_ms)
        return PollerState.COMPLETED

    if job.status == JobStatus.FAILED:
        await sink.store_failed(job.job_id, url, job.error or "Job failed")
        return PollerState.FAILED

    await sink.store_cancelled(job.job_id, url, job.error or "Job cancelled")
    return PollerState.CANCELLED


class JobPoller:
    """Poll loop for a single job.

    Ticks are strictly sequential. Network and server errors consume one
    attempt from the budget; an ownership error ends the job as failed. When
    the budget runs out `run()` raises JobTimeoutError and leaves the local
    record in place so a later recovery can pick the job up again.
    """

    def __init__(
        self,
        job_id: str,
        url: Optional[str],
        *,
        client: JobClient,
        registry: PollingRegistry,
        cache: LocalJobCache,
        sink: ResultSink,
        events: JobEventBus,
        interval: Optional[float] = None,
        max_attempts: Optional[int] = None,
        token: Optional[CancellationToken] = None,
        on_progress: Optional[ProgressCallback] = None,
        item_id: Optional[str] = None,
        platform: str = "x"
    ):
        self.job_id = job_id
        self.url = url
        self.item_id = item_id
        self.platform = platform
        self.interval = interval if interval is not None else settings.POLL_INTERVAL_SECONDS
        self.max_attempts = max_attempts if max_attempts is not None else settings.POLL_MAX_ATTEMPTS
        self.token = token or CancellationToken()

        self._client = client
        self._registry = registry
        self._cache = cache
        self._sink = sink
        self._events = events
        self._on_progress = on_progress

        self.state = PollerState.STARTING
        self.attempts = 0
        self.progress = 0
        self.outcome: Optional[PollOutcome] = None
        self.task: Optional[asyncio.Task] = None
        self._registered = False

    def register(self) -> bool:
        """Claim the job id; False (and state `skipped`) if another poller holds it"""
        if self._registered:
            return True
        if not self._registry.try_register(self.job_id):
            self.state = PollerState.SKIPPED
            return False
        self._registered = True
        return True

    def start(self) -> Optional[asyncio.Task]:
        """Register and schedule `run()` as a task; None if the job is already polled"""
        if not self.register():
            return None
        self.task = asyncio.create_task(self.run(), name=f"job-poller-{self.job_id}")
        self.task.add_done_callback(self._on_task_done)
        return self.task

    async def run(self) -> PollOutcome:
        if not self.register():
            logger.info(f"Job {self.job_id} is already being polled")
            return self._finish(PollerState.SKIPPED)

        try:
            return await self._poll_loop()
        finally:
            self._registry.unregister(self.job_id)

    async def _poll_loop(self) -> PollOutcome:
        self.state = PollerState.POLLING
        await self._persist_record()
        logger.info(f"Polling job {self.job_id} every {self.interval}s (max {self.max_attempts} attempts)")

        while self.attempts < self.max_attempts:
            if self.token.cancelled:
                return await self._cancel_by_token()

            self.attempts += 1
            try:
                job = await self._client.poll(self.job_id)
            except OwnershipError as e:
                logger.error(f"Job {self.job_id} is not accessible to this identity: {e.message}")
                return await self._fail(e.message)
            except RemoteError as e:
                logger.warning(f"Poll attempt {self.attempts}/{self.max_attempts} for job {self.job_id} failed: {e.message}")
            else:
                if job.is_terminal:
                    return await self._settle(job)
                self._report_progress(job)

            if self.token.cancelled:
                return await self._cancel_by_token()

            if self.attempts >= self.max_attempts:
                break

            if await self.token.wait(self.interval):
                return await self._cancel_by_token()

        return await self._time_out()

    async def _persist_record(self) -> None:
        if not self.url:
            return
        if not await self._cache.touch(self.job_id):
            record = PersistedJobRecord.create(self.job_id, self.url, self.item_id, self.platform)
            await self._cache.save(record)

    def _report_progress(self, job: Job) -> None:
        self.progress = max(self.progress, job.progress)
        logger.info(f"Job {self.job_id}: {job.status.value} ({self.progress}%)")

        if self._on_progress is not None:
            try:
                self._on_progress(self.progress, job.status.value)
            except Exception as e:
                logger.error(f"Progress callback failed for job {self.job_id}: {e}")

        self._events.emit(
            JobEventType.PROGRESS,
            self.job_id,
            self.url,
            progress=self.progress,
            status=job.status.value
        )

    async def _settle(self, job: Job) -> PollOutcome:
        state = await settle_terminal_job(job, self.url, self._cache, self._sink, self._registry)
        if state == PollerState.COMPLETED:
            logger.info(f"Job {self.job_id} completed after {self.attempts} poll(s)")
            return self._finish(state, result=job.result if job.result is not None else {})
        return self._finish(state, error=job.error or f"Job {state.value}")

    async def _fail(self, message: str) -> PollOutcome:
        await self._cache.remove(self.job_id)
        self._registry.unregister(self.job_id)
        await self._sink.store_failed(self.job_id, self.url, message)
        return self._finish(PollerState.FAILED, error=message)

    async def _cancel_by_token(self) -> PollOutcome:
        reason = self.token.reason or "Job cancelled"
        logger.info(f"Cancelling job {self.job_id}: {reason}")

        task = asyncio.create_task(self._client.cancel(self.job_id))
        _background_tasks.add(task)
        task.add_done_callback(_log_background_failure)

        await self._cache.remove(self.job_id)
        self._registry.unregister(self.job_id)
        await self._sink.store_cancelled(self.job_id, self.url, reason)
        return self._finish(PollerState.CANCELLED, error=reason)

    async def _time_out(self) -> PollOutcome:
        message = f"Job polling timeout after {self.attempts} attempts"
        logger.warning(f"Job {self.job_id}: {message}; keeping local record for recovery")

        self._registry.unregister(self.job_id)
        await self._sink.store_failed(self.job_id, self.url, message, timed_out=True)
        self._finish(PollerState.TIMED_OUT, error=message)
        raise JobTimeoutError(message, self.attempts)

    def _finish(self, state: PollerState, result: Optional[Dict[str, Any]] = None, error: Optional[str] = None) -> PollOutcome:
        self.state = state
        self.outcome = PollOutcome(
            job_id=self.job_id,
            url=self.url,
            state=state,
            result=result,
            error=error,
            attempts=self.attempts
        )
        return self.outcome

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            logger.info(f"Poller task for job {self.job_id} was cancelled")
            return
        error = task.exception()
        if isinstance(error, JobTimeoutError):
            logger.warning(f"Poller for job {self.job_id} timed out")
        elif error is not None:
            logger.error(f"Poller for job {self.job_id} crashed: {error}", exc_info=error)


class JobPollerFactory:
    """Builds pollers that share one set of collaborators"""

    def __init__(
        self,
        client: JobClient,
        registry: PollingRegistry,
        cache: LocalJobCache,
        sink: ResultSink,
        events: JobEventBus,
        interval: Optional[float] = None,
        max_attempts: Optional[int] = None,
        platform: str = "x"
    ):
        self.client = client
        self.registry = registry
        self.cache = cache
        self.sink = sink
        self.events = events
        self.interval = interval
        self.max_attempts = max_attempts
        self.platform = platform

    def create(
        self,
        job_id: str,
        url: Optional[str],
        item_id: Optional[str] = None,
        token: Optional[CancellationToken] = None,
        on_progress: Optional[ProgressCallback] = None
    ) -> JobPoller:
        return JobPoller(
            job_id,
            url,
            client=self.client,
            registry=self.registry,
            cache=self.cache,
            sink=self.sink,
            events=self.events,
            interval=self.interval,
            max_attempts=self.max_attempts,
            token=token,
            on_progress=on_progress,
            item_id=item_id,
            platform=self.platform
        )
