"""
Tests for the job poller state machine: terminal transitions, cancellation,
attempt budget and error handling.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from pulsejobs.core.exceptions import JobTimeoutError
from pulsejobs.schemas.job import Job, JobStatus
from pulsejobs.services.jobs.client import JobClient
from pulsejobs.services.jobs.events import JobEventType
from pulsejobs.services.jobs.poller import CancellationToken, JobPoller, PollerState
from tests.fake_job_service import GUEST_ID, OTHER_GUEST_ID

URL = "https://x.example/status/42"


async def wait_until(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


def event_types(recorded):
    return [event.type for event in recorded]


@pytest.mark.unit
class TestPollerTerminalStates:

    @pytest.mark.asyncio
    async def test_three_poll_completion(self, pollers, fake_service, cache, registry, sink, recorded_events):
        fake_service.add_job("job-42", URL, status="queued", guest_id=GUEST_ID)
        fake_service.script(
            "job-42",
            {"status": "queued", "progress": 0},
            {"status": "processing", "progress": 40},
            {"status": "completed", "progress": 100, "result": {"summary": "A post about cats"}},
        )
        progress = []
        poller = pollers.create("job-42", URL, on_progress=lambda value, status: progress.append((value, status)))

        outcome = await poller.run()

        assert outcome.state == PollerState.COMPLETED
        assert outcome.result == {"summary": "A post about cats"}
        assert outcome.attempts == 3
        assert fake_service.poll_count("job-42") == 3
        assert progress == [(0, "queued"), (40, "processing")]
        assert event_types(recorded_events).count(JobEventType.COMPLETED) == 1
        assert sink.get_result(URL)["result"] == {"summary": "A post about cats"}
        assert await cache.get_all() == []
        assert not registry.is_polling("job-42")

    @pytest.mark.asyncio
    async def test_job_stays_registered_until_record_is_removed(self, pollers, fake_service, cache, registry, mocker):
        fake_service.add_job("job-42", URL, status="completed", result={}, guest_id=GUEST_ID)
        remove = cache.remove
        registered_during_remove = []

        async def tracking_remove(job_id):
            registered_during_remove.append(job_id in registry)
            return await remove(job_id)

        mocker.patch.object(cache, "remove", new_callable=AsyncMock, side_effect=tracking_remove)

        outcome = await pollers.create("job-42", URL).run()

        assert outcome.state == PollerState.COMPLETED
        assert registered_during_remove == [True]
        assert "job-42" not in registry

    @pytest.mark.asyncio
    async def test_record_is_persisted_while_polling(self, pollers, fake_service, cache, mocker):
        fake_service.add_job("job-42", URL, guest_id=GUEST_ID)
        fake_service.script("job-42", {"status": "processing", "progress": 10}, {"status": "completed", "result": {}})
        poller = pollers.create("job-42", URL, item_id="item-9")
        records_during = []
        original_poll = pollers.client.poll

        async def spying_poll(job_id):
            records_during.append(await cache.get(job_id))
            return await original_poll(job_id)

        mocker.patch.object(pollers.client, "poll", side_effect=spying_poll)
        await poller.run()

        assert records_during[0] is not None
        assert records_during[0].item_id == "item-9"
        assert await cache.get("job-42") is None

    @pytest.mark.asyncio
    async def test_failed_job(self, pollers, fake_service, cache, registry, recorded_events):
        fake_service.add_job("job-42", URL, guest_id=GUEST_ID)
        fake_service.script("job-42", {"status": "failed", "error": "Video unavailable"})

        outcome = await pollers.create("job-42", URL).run()

        assert outcome.state == PollerState.FAILED
        assert outcome.error == "Video unavailable"
        assert await cache.get_all() == []
        assert not registry.is_polling("job-42")
        failed = [e for e in recorded_events if e.type == JobEventType.FAILED]
        assert failed[0].error == "Video unavailable"

    @pytest.mark.asyncio
    async def test_remotely_cancelled_job(self, pollers, fake_service, cache, recorded_events):
        fake_service.add_job("job-42", URL, guest_id=GUEST_ID)
        fake_service.script("job-42", {"status": "cancelled"})

        outcome = await pollers.create("job-42", URL).run()

        assert outcome.state == PollerState.CANCELLED
        assert JobEventType.CANCELLED in event_types(recorded_events)
        assert await cache.get_all() == []
        assert fake_service.cancel_count("job-42") == 0

    @pytest.mark.asyncio
    async def test_completed_without_result_stores_empty_result(self, pollers, fake_service, sink):
        fake_service.add_job("job-42", URL, guest_id=GUEST_ID)
        fake_service.script("job-42", {"status": "completed", "progress": 100})

        outcome = await pollers.create("job-42", URL).run()

        assert outcome.result == {}
        assert sink.get_result(URL)["result"] == {}

    @pytest.mark.asyncio
    async def test_progress_never_goes_backwards(self, pollers, fake_service):
        fake_service.add_job("job-42", URL, guest_id=GUEST_ID)
        fake_service.script(
            "job-42",
            {"status": "processing", "progress": 50},
            {"status": "processing", "progress": 30},
            {"status": "completed", "progress": 100, "result": {}},
        )
        progress = []

        await pollers.create("job-42", URL, on_progress=lambda value, status: progress.append(value)).run()

        assert progress == [50, 50]

    @pytest.mark.asyncio
    async def test_failing_progress_callback_does_not_stop_polling(self, pollers, fake_service):
        fake_service.add_job("job-42", URL, guest_id=GUEST_ID)
        fake_service.script("job-42", {"status": "processing", "progress": 50}, {"status": "completed", "result": {}})

        def explode(value, status):
            raise RuntimeError("observer bug")

        outcome = await pollers.create("job-42", URL, on_progress=explode).run()

        assert outcome.state == PollerState.COMPLETED


@pytest.mark.unit
class TestPollerCancellation:

    @pytest.mark.asyncio
    async def test_token_set_mid_poll(self, pollers, fake_service, cache, registry, recorded_events):
        fake_service.add_job("job-42", URL, guest_id=GUEST_ID)
        token = CancellationToken()
        poller = pollers.create("job-42", URL, token=token, on_progress=lambda value, status: token.cancel())

        outcome = await poller.run()

        assert outcome.state == PollerState.CANCELLED
        assert fake_service.poll_count("job-42") == 1
        await wait_until(lambda: fake_service.cancel_count("job-42") == 1)
        assert fake_service.cancel_count("job-42") == 1
        assert await cache.get_all() == []
        assert not registry.is_polling("job-42")
        assert JobEventType.CANCELLED in event_types(recorded_events)

    @pytest.mark.asyncio
    async def test_cancel_request_is_fire_and_forget(self, registry, cache, sink, events):
        client = AsyncMock(spec=JobClient)
        client.poll.return_value = Job(job_id="job-42", url=URL, status=JobStatus.PROCESSING, progress=10)
        cancel_started = asyncio.Event()
        release_cancel = asyncio.Event()

        async def slow_cancel(job_id):
            cancel_started.set()
            await release_cancel.wait()
            return True

        client.cancel.side_effect = slow_cancel
        token = CancellationToken()
        poller = JobPoller(
            "job-42", URL,
            client=client, registry=registry, cache=cache, sink=sink, events=events,
            interval=0, max_attempts=10, token=token,
            on_progress=lambda value, status: token.cancel("Stop")
        )

        outcome = await poller.run()

        assert outcome.state == PollerState.CANCELLED
        assert outcome.error == "Stop"
        await asyncio.wait_for(cancel_started.wait(), 1)
        release_cancel.set()
        await asyncio.sleep(0)
        client.cancel.assert_awaited_once_with("job-42")

    @pytest.mark.asyncio
    async def test_sleep_between_ticks_is_interruptible(self, client, registry, cache, sink, events, fake_service):
        fake_service.add_job("job-42", URL, guest_id=GUEST_ID)
        token = CancellationToken()
        poller = JobPoller(
            "job-42", URL,
            client=client, registry=registry, cache=cache, sink=sink, events=events,
            interval=30, max_attempts=5, token=token
        )

        task = poller.start()
        await wait_until(lambda: fake_service.poll_count("job-42") == 1)
        token.cancel()
        outcome = await asyncio.wait_for(task, 2)

        assert outcome.state == PollerState.CANCELLED
        assert fake_service.poll_count("job-42") == 1

    @pytest.mark.asyncio
    async def test_token_cancelled_before_start(self, pollers, fake_service):
        fake_service.add_job("job-42", URL, guest_id=GUEST_ID)
        token = CancellationToken()
        token.cancel()

        outcome = await pollers.create("job-42", URL, token=token).run()

        assert outcome.state == PollerState.CANCELLED
        assert fake_service.poll_count("job-42") == 0


@pytest.mark.unit
class TestPollerBudget:

    @pytest.mark.asyncio
    async def test_timeout_keeps_record_for_recovery(self, client, registry, cache, sink, events, fake_service, recorded_events):
        fake_service.add_job("job-42", URL, guest_id=GUEST_ID)
        poller = JobPoller(
            "job-42", URL,
            client=client, registry=registry, cache=cache, sink=sink, events=events,
            interval=0, max_attempts=3
        )

        with pytest.raises(JobTimeoutError) as exc_info:
            await poller.run()

        assert isinstance(exc_info.value, TimeoutError)
        assert exc_info.value.attempts == 3
        assert poller.state == PollerState.TIMED_OUT
        assert fake_service.poll_count("job-42") == 3
        assert not registry.is_polling("job-42")
        assert (await cache.get("job-42")) is not None
        failed = [e for e in recorded_events if e.type == JobEventType.FAILED]
        assert failed[0].data["timed_out"] is True
        assert fake_service.cancel_count("job-42") == 0

    @pytest.mark.asyncio
    async def test_transient_errors_consume_attempts(self, pollers, fake_service):
        fake_service.add_job("job-42", URL, guest_id=GUEST_ID)
        fake_service.fail_polls("job-42", "network", 500)
        fake_service.script("job-42", {"status": "completed", "result": {"ok": True}})

        outcome = await pollers.create("job-42", URL).run()

        assert outcome.state == PollerState.COMPLETED
        assert outcome.attempts == 3

    @pytest.mark.asyncio
    async def test_transient_errors_count_toward_timeout(self, client, registry, cache, sink, events, fake_service):
        fake_service.add_job("job-42", URL, guest_id=GUEST_ID)
        fake_service.fail_polls("job-42", "network", "network")
        poller = JobPoller(
            "job-42", URL,
            client=client, registry=registry, cache=cache, sink=sink, events=events,
            interval=0, max_attempts=2
        )

        with pytest.raises(JobTimeoutError):
            await poller.run()

    @pytest.mark.asyncio
    async def test_ownership_error_is_fatal(self, pollers, fake_service, cache, registry):
        fake_service.add_job("job-42", URL, guest_id=OTHER_GUEST_ID)

        outcome = await pollers.create("job-42", URL).run()

        assert outcome.state == PollerState.FAILED
        assert fake_service.poll_count("job-42") == 1
        assert await cache.get_all() == []
        assert not registry.is_polling("job-42")
