import time
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class JobStatus(str, Enum):
    """Remote job status"""
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED})


def now_ms() -> int:
    return int(time.time() * 1000)


class Job(BaseModel):
    """A unit of remote work as reported by the job service.

    The client never writes status, progress or result; it only observes them.
    """
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(validation_alias=AliasChoices("jobId", "job_id", "id"), serialization_alias="jobId")
    url: Optional[str] = None
    status: JobStatus
    progress: int = 0
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    created_at: Optional[datetime] = Field(
        default=None,
        validation_alias=AliasChoices("createdAt", "created_at"),
        serialization_alias="createdAt"
    )
    updated_at: Optional[datetime] = Field(
        default=None,
        validation_alias=AliasChoices("updatedAt", "updated_at"),
        serialization_alias="updatedAt"
    )
    item_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("itemId", "item_id"),
        serialization_alias="itemId"
    )

    @field_validator("progress", mode="before")
    @classmethod
    def clamp_progress(cls, v: Any) -> int:
        if v is None:
            return 0
        return max(0, min(100, int(v)))

    @field_validator("error", mode="before")
    @classmethod
    def flatten_error(cls, v: Any) -> Optional[str]:
        # Failure bodies sometimes nest the message: {"error": {"message": ...}}
        if isinstance(v, dict):
            return v.get("message") or str(v)
        return v

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def updated_at_ms(self) -> Optional[int]:
        if self.updated_at is None:
            return None
        return int(self.updated_at.timestamp() * 1000)


class PersistedJobRecord(BaseModel):
    """Local handle on a job, kept until a terminal state has been observed.

    Timestamps are epoch milliseconds.
    """
    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(alias="jobId")
    url: str
    start_time: int = Field(alias="startTime")
    last_check: int = Field(alias="lastCheck")
    platform: str = "x"
    item_id: Optional[str] = Field(default=None, alias="itemId")

    @classmethod
    def create(cls, job_id: str, url: str, item_id: Optional[str] = None, platform: str = "x") -> "PersistedJobRecord":
        timestamp = now_ms()
        return cls(
            job_id=job_id,
            url=url,
            start_time=timestamp,
            last_check=timestamp,
            platform=platform,
            item_id=item_id
        )

    def age_ms(self, reference_ms: Optional[int] = None) -> int:
        return (reference_ms if reference_ms is not None else now_ms()) - self.start_time

    def to_storage(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)
