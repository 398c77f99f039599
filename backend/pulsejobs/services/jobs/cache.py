"""
Local job cache

Durable list of job handles on this device, stored as one JSON array under a
single key. Holds at most one record per URL and prunes records older than
the retention window on every read.
"""

import asyncio
import json
import logging
from typing import Callable, List, Optional

from pydantic import ValidationError as SchemaValidationError

from pulsejobs.core.config import settings
from pulsejobs.core.storage import DurableStore
from pulsejobs.schemas.job import PersistedJobRecord, now_ms

logger = logging.getLogger(__name__)

ACTIVE_JOBS_KEY = "pulse_active_jobs"


class LocalJobCache:
    """Durable key-value cache of PersistedJobRecord entries"""

    def __init__(
        self,
        store: DurableStore,
        retention_hours: Optional[float] = None,
        clock: Callable[[], int] = now_ms
    ):
        self._store = store
        hours = retention_hours if retention_hours is not None else settings.JOB_RETENTION_HOURS
        self._max_age_ms = int(hours * 60 * 60 * 1000)
        self._clock = clock
        self._lock = asyncio.Lock()

    def _read(self) -> List[PersistedJobRecord]:
        raw = self._store.get(ACTIVE_JOBS_KEY)
        if not raw:
            return []

        try:
            entries = json.loads(raw)
        except ValueError:
            logger.error("Stored job list is not valid JSON, ignoring it")
            return []

        records = []
        for entry in entries if isinstance(entries, list) else []:
            try:
                records.append(PersistedJobRecord.model_validate(entry))
            except SchemaValidationError as e:
                logger.warning(f"Dropping unreadable job record: {e}")
        return records

    def _write(self, records: List[PersistedJobRecord]) -> None:
        self._store.set(ACTIVE_JOBS_KEY, json.dumps([record.to_storage() for record in records]))

    def _load_live(self) -> List[PersistedJobRecord]:
        """Read all records, persisting the pruned list if anything expired"""
        records = self._read()
        now = self._clock()
        live = [record for record in records if record.age_ms(now) < self._max_age_ms]

        if len(live) != len(records):
            logger.info(f"Pruned {len(records) - len(live)} expired job record(s)")
            self._write(live)

        return live

    async def save(self, record: PersistedJobRecord) -> None:
        """Insert a record, evicting any earlier record for the same URL"""
        async with self._lock:
            records = [r for r in self._load_live() if r.url != record.url and r.job_id != record.job_id]
            records.append(record)
            self._write(records)
        logger.info(f"Saved job {record.job_id} for {record.url}")

    async def get_all(self) -> List[PersistedJobRecord]:
        async with self._lock:
            return self._load_live()

    async def get(self, job_id: str) -> Optional[PersistedJobRecord]:
        for record in await self.get_all():
            if record.job_id == job_id:
                return record
        return None

    async def get_by_url(self, url: str) -> Optional[PersistedJobRecord]:
        for record in await self.get_all():
            if record.url == url:
                return record
        return None

    async def has_active_job_for_url(self, url: str) -> bool:
        return await self.get_by_url(url) is not None

    async def remove(self, job_id: str) -> bool:
        async with self._lock:
            records = self._load_live()
            remaining = [r for r in records if r.job_id != job_id]
            if len(remaining) == len(records):
                return False
            self._write(remaining)
        logger.info(f"Removed job {job_id}")
        return True

    async def remove_by_url(self, url: str) -> bool:
        async with self._lock:
            records = self._load_live()
            remaining = [r for r in records if r.url != url]
            if len(remaining) == len(records):
                return False
            self._write(remaining)
        logger.info(f"Removed job by URL: {url}")
        return True

    async def touch(self, job_id: str) -> bool:
        """Refresh lastCheck for a record"""
        async with self._lock:
            records = self._load_live()
            found = False
            for index, record in enumerate(records):
                if record.job_id == job_id:
                    records[index] = record.model_copy(update={"last_check": self._clock()})
                    found = True
            if found:
                self._write(records)
        return found

    async def clear(self) -> None:
        async with self._lock:
            self._store.delete(ACTIVE_JOBS_KEY)
        logger.info("Cleared all job records")
