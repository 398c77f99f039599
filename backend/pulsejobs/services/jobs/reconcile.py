"""
Merge remote and local job views into one classified set.

Pure functions with no I/O, so recovery decisions can be tested directly.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional

from pulsejobs.schemas.job import Job, JobStatus, PersistedJobRecord


class Classification(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    PROCESSING = "processing"
    NEEDS_LOOKUP = "needs_lookup"


class JobSource(str, Enum):
    REMOTE = "remote"
    LOCAL = "local"
    BOTH = "both"


@dataclass(frozen=True)
class ReconciledJob:
    job_id: str
    url: Optional[str]
    classification: Classification
    source: JobSource
    job: Optional[Job] = None
    record: Optional[PersistedJobRecord] = None


def classify(job: Job) -> Classification:
    """Map a remote status onto a recovery action"""
    if job.status == JobStatus.COMPLETED:
        return Classification.COMPLETED
    if job.status == JobStatus.FAILED:
        return Classification.FAILED
    if job.status == JobStatus.CANCELLED:
        return Classification.CANCELLED
    return Classification.PROCESSING


def reconcile(remote: Iterable[Job], local: Iterable[PersistedJobRecord]) -> List[ReconciledJob]:
    """Union remote and local jobs by id.

    Remote state wins on conflict. A remote job missing its URL borrows the
    one from the local record. Jobs known only locally are `needs_lookup`.
    Remote jobs come first in their original order, then local-only jobs.
    """

    records: Dict[str, PersistedJobRecord] = {}
    for record in local:
        records.setdefault(record.job_id, record)

    merged: Dict[str, ReconciledJob] = {}
    for job in remote:
        if job.job_id in merged:
            continue
        record = records.get(job.job_id)
        merged[job.job_id] = ReconciledJob(
            job_id=job.job_id,
            url=job.url or (record.url if record else None),
            classification=classify(job),
            source=JobSource.BOTH if record else JobSource.REMOTE,
            job=job,
            record=record
        )

    for job_id, record in records.items():
        if job_id in merged:
            continue
        merged[job_id] = ReconciledJob(
            job_id=job_id,
            url=record.url,
            classification=Classification.NEEDS_LOOKUP,
            source=JobSource.LOCAL,
            record=record
        )

    return list(merged.values())
