import pytest
import pytest_asyncio

from pulsejobs.core.http_client import JobServiceHTTPClient
from pulsejobs.core.storage import DurableStore
from pulsejobs.services.jobs.cache import LocalJobCache
from pulsejobs.services.jobs.client import JobClient
from pulsejobs.services.jobs.events import JobEventBus
from pulsejobs.services.jobs.manager import AsyncJobManager
from pulsejobs.services.jobs.poller import JobPollerFactory
from pulsejobs.services.jobs.recovery import RecoveryOrchestrator
from pulsejobs.services.jobs.registry import PollingRegistry
from pulsejobs.services.jobs.session import DEVICE_ID_KEY, DeviceIdService, SessionIdentity
from pulsejobs.services.jobs.sink import ResultSink
from tests.fake_job_service import GUEST_ID, FakeJobService


@pytest.fixture
def store(tmp_path):
    """Durable store in a throwaway directory."""
    durable = DurableStore(str(tmp_path / "cache"))
    yield durable
    durable.close()


@pytest.fixture
def fake_service():
    return FakeJobService()


@pytest.fixture
def registry():
    return PollingRegistry()


@pytest.fixture
def events():
    return JobEventBus()


@pytest.fixture
def recorded_events(events):
    """Every event published during the test, in order."""
    received = []
    events.subscribe(received.append)
    return received


@pytest.fixture
def cache(store):
    return LocalJobCache(store)


@pytest.fixture
def sink(store, events):
    return ResultSink(store, events)


@pytest_asyncio.fixture
async def session(store):
    """Guest session with a known device id."""
    store.set(DEVICE_ID_KEY, GUEST_ID)
    identity = SessionIdentity(DeviceIdService(store))
    await identity.initialize()
    return identity


@pytest_asyncio.fixture
async def http(fake_service):
    client = JobServiceHTTPClient(fake_service.config())
    yield client
    await client.aclose()


@pytest.fixture
def client(http, session):
    return JobClient(http, session)


@pytest.fixture
def pollers(client, registry, cache, sink, events):
    return JobPollerFactory(client, registry, cache, sink, events, interval=0, max_attempts=10)


@pytest.fixture
def recovery(client, cache, registry, sink, events, pollers):
    return RecoveryOrchestrator(client, cache, registry, sink, events, pollers)


@pytest.fixture
def manager(client, cache, registry, sink, pollers):
    return AsyncJobManager(client, cache, registry, sink, pollers)
