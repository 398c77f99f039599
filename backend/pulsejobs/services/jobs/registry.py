"""
Polling registry

The set of job ids with an active poll loop in this process. It is the only
concurrency-control primitive of the job subsystem: `try_register` checks and
inserts without awaiting, so under a single event loop two pollers racing for
the same job cannot both win.
"""

import logging
from typing import FrozenSet, Set

logger = logging.getLogger(__name__)


class PollingRegistry:
    """Process-wide set of job ids currently being polled"""

    def __init__(self):
        self._active: Set[str] = set()

    def try_register(self, job_id: str) -> bool:
        """Claim a job for polling; False if another poller already owns it"""
        if job_id in self._active:
            logger.info(f"Job {job_id} is already being polled, skipping duplicate poller")
            return False
        self._active.add(job_id)
        logger.debug(f"Registered polling for job {job_id}")
        return True

    def unregister(self, job_id: str) -> None:
        if job_id in self._active:
            self._active.discard(job_id)
            logger.debug(f"Unregistered polling for job {job_id}")

    def is_polling(self, job_id: str) -> bool:
        return job_id in self._active

    def active_jobs(self) -> FrozenSet[str]:
        return frozenset(self._active)

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._active

    def __len__(self) -> int:
        return len(self._active)
