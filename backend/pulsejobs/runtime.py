"""
Runtime wiring for the job subsystem

Builds one instance of every collaborator, sharing a single registry, cache
and event bus, and runs recovery on start before callers touch job state.
"""

import logging
from typing import Optional

from pulsejobs.core.config import settings
from pulsejobs.core.http_client import HTTPClientConfig, JobServiceHTTPClient
from pulsejobs.core.logging import setup_logging
from pulsejobs.core.storage import DurableStore
from pulsejobs.services.jobs import (
    AsyncJobManager,
    DeviceIdService,
    JobClient,
    JobEventBus,
    JobPollerFactory,
    LocalJobCache,
    MigrationCoordinator,
    PollingRegistry,
    RecoveryOrchestrator,
    RecoveryReport,
    ResultSink,
    SessionIdentity,
)
from pulsejobs.services.jobs.session import UserProvider

logger = logging.getLogger(__name__)


class JobRuntime:
    """Process-wide container for the job services"""

    def __init__(
        self,
        store: Optional[DurableStore] = None,
        http_config: Optional[HTTPClientConfig] = None,
        user_provider: Optional[UserProvider] = None,
        registry: Optional[PollingRegistry] = None,
        events: Optional[JobEventBus] = None,
        poll_interval: Optional[float] = None,
        max_attempts: Optional[int] = None
    ):
        self.store = store or DurableStore()
        self.http = JobServiceHTTPClient(http_config)
        self.registry = registry or PollingRegistry()
        self.events = events or JobEventBus()

        self.device_ids = DeviceIdService(self.store)
        self.session = SessionIdentity(self.device_ids, user_provider)
        self.cache = LocalJobCache(self.store)
        self.client = JobClient(self.http, self.session)
        self.sink = ResultSink(self.store, self.events)
        self.pollers = JobPollerFactory(
            self.client,
            self.registry,
            self.cache,
            self.sink,
            self.events,
            interval=poll_interval,
            max_attempts=max_attempts,
            platform=settings.DEVICE_PLATFORM
        )
        self.recovery = RecoveryOrchestrator(
            self.client, self.cache, self.registry, self.sink, self.events, self.pollers
        )
        self.migration = MigrationCoordinator(self.client, self.session, self.recovery)
        self.jobs = AsyncJobManager(self.client, self.cache, self.registry, self.sink, self.pollers)

    async def start(self) -> Optional[RecoveryReport]:
        """Resolve the session and recover in-flight jobs"""
        session = await self.session.initialize()
        logger.info(f"Job runtime started ({session.type.value} session)")
        return await self.recovery.recover()

    async def close(self):
        await self.http.aclose()
        self.store.close()
        logger.info("Job runtime closed")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


# Global runtime instance
_runtime: Optional[JobRuntime] = None


async def get_runtime() -> JobRuntime:
    """Get the global runtime, starting it on first use"""
    global _runtime

    if _runtime is None:
        setup_logging()
        _runtime = JobRuntime()
        await _runtime.start()

    return _runtime


async def close_runtime():
    """Close the global runtime"""
    global _runtime

    if _runtime:
        await _runtime.close()
        _runtime = None
