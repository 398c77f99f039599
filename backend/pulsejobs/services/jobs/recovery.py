"""
Recovery Orchestrator

Runs once on cold start. Merges the service's view of active jobs with the
records left on this device, settles jobs that finished while the process was
down and resumes polling for the rest, so every live job ends up with exactly
one poller and no finished job lingers in the local cache.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from pulsejobs.core.exceptions import OwnershipError, RemoteError
from pulsejobs.schemas.job import Job
from pulsejobs.services.jobs.cache import LocalJobCache
from pulsejobs.services.jobs.client import JobClient
from pulsejobs.services.jobs.events import JobEventBus, JobEventType
from pulsejobs.services.jobs.poller import JobPollerFactory, PollerState, settle_terminal_job
from pulsejobs.services.jobs.reconcile import Classification, ReconciledJob, classify, reconcile
from pulsejobs.services.jobs.registry import PollingRegistry
from pulsejobs.services.jobs.sink import ResultSink

logger = logging.getLogger(__name__)


@dataclass
class RecoveryReport:
    """Job ids grouped by what recovery did with them"""
    completed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    cancelled: List[str] = field(default_factory=list)
    resumed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    deferred: List[str] = field(default_factory=list)
    tasks: List[asyncio.Task] = field(default_factory=list)
    remote_available: bool = True

    @property
    def total(self) -> int:
        return sum(len(group) for group in (
            self.completed, self.failed, self.cancelled, self.resumed,
            self.skipped, self.removed, self.deferred
        ))


class RecoveryOrchestrator:
    """Reconstructs job state after a restart.

    `recover()` does its work once per process; a call that arrives while a
    run is in progress returns None, later calls return the first report.
    `reset()` re-arms it after an identity change.
    """

    def __init__(
        self,
        client: JobClient,
        cache: LocalJobCache,
        registry: PollingRegistry,
        sink: ResultSink,
        events: JobEventBus,
        pollers: JobPollerFactory
    ):
        self._client = client
        self._cache = cache
        self._registry = registry
        self._sink = sink
        self._events = events
        self._pollers = pollers

        self._running = False
        self._report: Optional[RecoveryReport] = None

    @property
    def has_run(self) -> bool:
        return self._report is not None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def last_report(self) -> Optional[RecoveryReport]:
        return self._report

    def reset(self) -> None:
        if self._running:
            logger.warning("Recovery reset requested while a run is in progress")
        self._report = None

    async def recover(self) -> Optional[RecoveryReport]:
        if self._running:
            logger.info("Recovery already in progress, ignoring call")
            return None
        if self._report is not None:
            logger.debug("Recovery already ran for this session")
            return self._report

        self._running = True
        try:
            report = await self._recover()
            self._report = report
            return report
        finally:
            self._running = False

    async def _recover(self) -> RecoveryReport:
        report = RecoveryReport()
        logger.info("Checking for jobs to recover...")

        try:
            remote = await self._client.list_active()
        except RemoteError as e:
            logger.warning(f"Could not fetch active jobs, recovering from local records only: {e.message}")
            remote = []
            report.remote_available = False

        local = await self._cache.get_all()
        logger.info(f"Found {len(remote)} remote and {len(local)} local job(s)")

        entries = reconcile(remote, local)
        if not entries:
            logger.info("No jobs to recover")
            return report

        for entry in entries:
            await self._recover_job(entry, report)

        logger.info(
            f"Recovery finished: {len(report.completed)} completed, {len(report.failed)} failed, "
            f"{len(report.cancelled)} cancelled, {len(report.resumed)} resumed, "
            f"{len(report.deferred)} deferred"
        )
        return report

    async def _lookup(self, entry: ReconciledJob, report: RecoveryReport) -> Optional[Job]:
        """Single poll used to classify a job; None when the job was dropped or deferred"""
        try:
            return await self._client.poll(entry.job_id)
        except OwnershipError as e:
            logger.warning(f"Job {entry.job_id} no longer accessible ({e.message}), removing local record")
            await self._cache.remove(entry.job_id)
            report.removed.append(entry.job_id)
        except RemoteError as e:
            # Record stays for the next recovery attempt
            logger.warning(f"Could not check job {entry.job_id}: {e.message}")
            report.deferred.append(entry.job_id)
        return None

    async def _recover_job(self, entry: ReconciledJob, report: RecoveryReport) -> None:
        job = entry.job
        classification = entry.classification

        needs_result = classification == Classification.COMPLETED and job.result is None
        if classification == Classification.NEEDS_LOOKUP or needs_result:
            logger.info(f"Checking status of job {entry.job_id}...")
            looked_up = await self._lookup(entry, report)
            if looked_up is None:
                return
            job = looked_up
            classification = classify(job)

        url = entry.url or job.url

        if classification == Classification.PROCESSING:
            self._resume(entry, job, url, report)
            return

        self._events.emit(JobEventType.RECOVERED, job.job_id, url, status=classification.value)
        state = await settle_terminal_job(job, url, self._cache, self._sink)

        if state == PollerState.COMPLETED:
            logger.info(f"Job {job.job_id} already completed, result stored")
            report.completed.append(job.job_id)
        elif state == PollerState.FAILED:
            logger.info(f"Job {job.job_id} failed while the app was closed")
            report.failed.append(job.job_id)
        else:
            report.cancelled.append(job.job_id)

    def _resume(self, entry: ReconciledJob, job: Job, url: Optional[str], report: RecoveryReport) -> None:
        if self._registry.is_polling(job.job_id):
            logger.info(f"Job {job.job_id} is already being polled, not resuming")
            report.skipped.append(job.job_id)
            return

        item_id = entry.record.item_id if entry.record else job.item_id
        poller = self._pollers.create(job.job_id, url, item_id=item_id)
        task = poller.start()
        if task is None:
            report.skipped.append(job.job_id)
            return

        logger.info(f"Resuming job {job.job_id} ({job.status.value} {job.progress}%)")
        self._events.emit(JobEventType.RECOVERED, job.job_id, url, status=job.status.value, progress=job.progress)
        report.resumed.append(job.job_id)
        report.tasks.append(task)
