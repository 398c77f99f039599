"""
Async job services
"""

from .cache import LocalJobCache
from .client import JobClient
from .events import JobEvent, JobEventBus, JobEventType
from .manager import AsyncJobManager
from .migration import MigrationCoordinator, MigrationResult
from .poller import CancellationToken, JobPoller, JobPollerFactory, PollerState, PollOutcome
from .reconcile import Classification, ReconciledJob, reconcile
from .recovery import RecoveryOrchestrator, RecoveryReport
from .registry import PollingRegistry
from .session import DeviceIdService, SessionIdentity
from .sink import ResultSink

__all__ = [
    "AsyncJobManager",
    "CancellationToken",
    "Classification",
    "DeviceIdService",
    "JobClient",
    "JobEvent",
    "JobEventBus",
    "JobEventType",
    "JobPoller",
    "JobPollerFactory",
    "LocalJobCache",
    "MigrationCoordinator",
    "MigrationResult",
    "PollerState",
    "PollOutcome",
    "PollingRegistry",
    "ReconciledJob",
    "RecoveryOrchestrator",
    "RecoveryReport",
    "ResultSink",
    "SessionIdentity",
    "reconcile",
]
