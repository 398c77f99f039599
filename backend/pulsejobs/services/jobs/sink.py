"""
Result sink

Write-back path for terminal jobs. Completed results are stored durably,
keyed by URL, and every terminal transition is published on the event bus so
observers share one code path for success, failure and cancellation.
"""

import logging
from typing import Any, Dict, Optional, Set

from pulsejobs.core.storage import DurableStore
from pulsejobs.schemas.job import now_ms
from pulsejobs.services.jobs.events import JobEventBus, JobEventType

logger = logging.getLogger(__name__)

RESULTS_KEY = "pulse_job_results"
CONSUMED_JOBS_KEY = "pulse_consumed_job_ids"


class ResultSink:
    """Persists completed job results and publishes terminal events.

    Job ids whose result has been consumed are tracked apart from the per-URL
    results, so a job whose entry was later replaced by a newer analysis of the
    same URL is still recognised and never written back again.
    """

    def __init__(self, store: DurableStore, events: JobEventBus):
        self._store = store
        self._events = events

    @staticmethod
    def _result_key(job_id: str, url: Optional[str]) -> str:
        return url or f"job:{job_id}"

    def _load(self) -> Dict[str, Dict[str, Any]]:
        results = self._store.get(RESULTS_KEY)
        return results if isinstance(results, dict) else {}

    def _consumed(self) -> Set[str]:
        consumed = self._store.get(CONSUMED_JOBS_KEY)
        return set(consumed) if isinstance(consumed, (list, set, tuple)) else set()

    def _mark_consumed(self, job_id: str) -> None:
        consumed = self._consumed()
        consumed.add(job_id)
        self._store.set(CONSUMED_JOBS_KEY, sorted(consumed))

    def has_result_for_job(self, job_id: str) -> bool:
        if job_id in self._consumed():
            return True
        return any(entry.get("jobId") == job_id for entry in self._load().values())

    async def store_completed(
        self,
        job_id: str,
        url: Optional[str],
        result: Optional[Dict[str, Any]],
        completed_at: Optional[int] = None
    ) -> bool:
        """
        Persist a completed job's result and publish `completed`.

        Args:
            completed_at: completion time in epoch ms as reported by the
                service; defaults to now

        Returns:
            bool: False when this job was already consumed or a newer result
                for the same URL is stored
        """

        if self.has_result_for_job(job_id):
            logger.info(f"Result for job {job_id} already stored, skipping")
            return False

        results = self._load()
        key = self._result_key(job_id, url)
        entry = {
            "jobId": job_id,
            "url": url,
            "result": result if result is not None else {},
            "completedAt": completed_at if completed_at is not None else now_ms(),
        }

        current = results.get(key)
        if current and current.get("completedAt", 0) > entry["completedAt"]:
            logger.info(f"Newer result for {key} already stored, dropping result of job {job_id}")
            self._mark_consumed(job_id)
            return False

        results[key] = entry
        self._store.set(RESULTS_KEY, results)
        self._mark_consumed(job_id)

        logger.info(f"Stored result for job {job_id}")
        self._events.emit(JobEventType.COMPLETED, job_id, url, result=entry["result"])
        return True

    async def store_failed(self, job_id: str, url: Optional[str], error: Optional[str], **details) -> None:
        message = error or "Job failed"
        logger.warning(f"Job {job_id} failed: {message}")
        self._events.emit(JobEventType.FAILED, job_id, url, error=message, **details)

    async def store_cancelled(self, job_id: str, url: Optional[str], reason: Optional[str] = None) -> None:
        logger.info(f"Job {job_id} cancelled")
        self._events.emit(JobEventType.CANCELLED, job_id, url, error=reason)

    def get_result(self, url: str) -> Optional[Dict[str, Any]]:
        return self._load().get(url)

    def results(self) -> Dict[str, Dict[str, Any]]:
        return dict(self._load())

    def clear(self) -> None:
        self._store.delete(RESULTS_KEY)
        self._store.delete(CONSUMED_JOBS_KEY)
