"""
Async Job Manager

Entry point for callers that want a URL analyzed: reuses a job that is
already running for the URL, otherwise submits a new one, and polls it to a
terminal state. Only one job is driven at a time; starting another cancels
the previous one.
"""

import logging
from typing import Dict, Optional

from pulsejobs.core.exceptions import JobServiceError, OwnershipError, RemoteError, ValidationError
from pulsejobs.schemas.job import PersistedJobRecord
from pulsejobs.services.jobs.cache import LocalJobCache
from pulsejobs.services.jobs.client import JobClient
from pulsejobs.services.jobs.poller import (
    CancellationToken,
    JobPoller,
    JobPollerFactory,
    PollerState,
    PollOutcome,
    ProgressCallback,
    settle_terminal_job,
)
from pulsejobs.services.jobs.registry import PollingRegistry
from pulsejobs.services.jobs.sink import ResultSink

logger = logging.getLogger(__name__)


class AsyncJobManager:
    """Starts, resumes and cancels jobs on behalf of a caller"""

    def __init__(
        self,
        client: JobClient,
        cache: LocalJobCache,
        registry: PollingRegistry,
        sink: ResultSink,
        pollers: JobPollerFactory
    ):
        self._client = client
        self._cache = cache
        self._registry = registry
        self._sink = sink
        self._pollers = pollers

        self._active: Optional[JobPoller] = None
        self._running: Dict[str, JobPoller] = {}

    @property
    def active_job_id(self) -> Optional[str]:
        return self._active.job_id if self._active is not None else None

    async def start_job(
        self,
        url: str,
        item_id: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None
    ) -> Optional[PollOutcome]:
        """
        Process `url` and wait for the outcome.

        Returns:
            PollOutcome, or None when another poller already owns the
            existing job for this URL

        Raises:
            ValidationError: empty url
            RemoteError: the job could not be submitted
            JobTimeoutError: the job did not finish within the attempt budget
        """

        if not url or not url.strip():
            raise ValidationError("url is required")
        url = url.strip()

        logger.info(f"Starting job for: {url}")

        existing_job_id = await self.find_existing_job(url)
        if existing_job_id:
            logger.info(f"Found existing job for URL, resuming: {existing_job_id}")
            return await self.resume_job(existing_job_id, url, item_id=item_id, on_progress=on_progress)

        job_id = await self._client.submit(url, item_id)
        await self._cache.save(PersistedJobRecord.create(job_id, url, item_id, self._pollers.platform))

        poller = self._pollers.create(job_id, url, item_id=item_id, token=CancellationToken(), on_progress=on_progress)
        return await self._drive(poller)

    async def resume_job(
        self,
        job_id: str,
        url: Optional[str],
        item_id: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None
    ) -> Optional[PollOutcome]:
        """Check a known job once and either settle it or poll it to completion"""

        if self._registry.is_polling(job_id):
            logger.info(f"Job {job_id} is already being polled, skipping duplicate polling")
            return None

        logger.info(f"Resuming job: {job_id}")

        try:
            job = await self._client.poll(job_id)
        except OwnershipError as e:
            logger.error(f"Job {job_id} is not accessible: {e.message}")
            await self._cache.remove(job_id)
            await self._sink.store_failed(job_id, url, e.message)
            return PollOutcome(job_id=job_id, url=url, state=PollerState.FAILED, error=e.message, attempts=1)
        except RemoteError as e:
            # The poll loop retries within its own budget
            logger.warning(f"Status check for job {job_id} failed, polling anyway: {e.message}")
        else:
            if job.is_terminal:
                state = await settle_terminal_job(job, url or job.url, self._cache, self._sink)
                logger.info(f"Job {job_id} already {state.value}")
                return PollOutcome(
                    job_id=job_id,
                    url=url or job.url,
                    state=state,
                    result=(job.result or {}) if state == PollerState.COMPLETED else None,
                    error=job.error if state != PollerState.COMPLETED else None,
                    attempts=1
                )

        poller = self._pollers.create(job_id, url, item_id=item_id, token=CancellationToken(), on_progress=on_progress)
        return await self._drive(poller)

    async def _drive(self, poller: JobPoller) -> PollOutcome:
        if self._active is not None and self._active is not poller:
            logger.info(f"Cancelling previous job {self._active.job_id} in favour of {poller.job_id}")
            self._active.token.cancel("Superseded by a new job")

        self._active = poller
        self._running[poller.job_id] = poller
        try:
            return await poller.run()
        finally:
            self._running.pop(poller.job_id, None)
            if self._active is poller:
                self._active = None

    def cancel_active(self, reason: str = "Job cancelled by user") -> bool:
        if self._active is None:
            return False
        logger.info(f"Cancelling active job {self._active.job_id}")
        self._active.token.cancel(reason)
        return True

    async def cancel(self, job_id: str, reason: str = "Job cancelled by user") -> bool:
        """Cancel a job by id, whether or not this manager is polling it"""

        poller = self._running.get(job_id)
        if poller is not None:
            poller.token.cancel(reason)
            return True

        if self._registry.is_polling(job_id):
            # Owned by a poller started elsewhere, e.g. recovery
            logger.warning(f"Job {job_id} is polled by another component, requesting remote cancel only")
            return await self._client.cancel(job_id)

        record = await self._cache.get(job_id)
        acknowledged = await self._client.cancel(job_id)
        await self._cache.remove(job_id)
        await self._sink.store_cancelled(job_id, record.url if record else None, reason)
        return acknowledged

    async def find_existing_job(self, url: str) -> Optional[str]:
        """Job id of a job already running for `url`, from the local cache or the service"""

        record = await self._cache.get_by_url(url)
        if record is not None:
            return record.job_id

        try:
            active = await self._client.list_active()
        except RemoteError as e:
            logger.warning(f"Could not check remote jobs for {url}: {e.message}")
            return None

        for job in active:
            if job.url == url and not job.is_terminal:
                return job.job_id
        return None

    async def check_for_existing_job(self, url: str) -> Optional[PollOutcome]:
        """Resume a job for `url` if one exists; errors are logged, not raised"""

        try:
            job_id = await self.find_existing_job(url)
            if not job_id:
                return None
            logger.info(f"Found existing job for URL, auto-resuming: {job_id}")
            return await self.resume_job(job_id, url)
        except JobServiceError as e:
            logger.error(f"Error checking for existing job: {e.message}")
            return None
