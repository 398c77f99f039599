"""
Job event notifications

Pollers, recovery and the result sink publish lifecycle events here instead of
holding references to whoever displays job state. Consumers either register a
handler or read from an async channel scoped to one URL.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, FrozenSet, Iterable, List, Optional, Union

from pulsejobs.schemas.job import now_ms

logger = logging.getLogger(__name__)


class JobEventType(str, Enum):
    PROGRESS = "progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    RECOVERED = "recovered"


@dataclass
class JobEvent:
    type: JobEventType
    job_id: str
    url: Optional[str] = None
    progress: Optional[int] = None
    status: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: int = field(default_factory=now_ms)


EventHandler = Callable[[JobEvent], Union[None, Awaitable[None]]]


class Subscription:
    """Handle returned by JobEventBus.subscribe"""

    def __init__(
        self,
        bus: "JobEventBus",
        handler: EventHandler,
        event_types: Optional[FrozenSet[JobEventType]],
        url: Optional[str]
    ):
        self._bus = bus
        self.handler = handler
        self.event_types = event_types
        self.url = url
        self.active = True

    def matches(self, event: JobEvent) -> bool:
        if self.event_types is not None and event.type not in self.event_types:
            return False
        if self.url is not None and event.url != self.url:
            return False
        return True

    def unsubscribe(self) -> None:
        if self.active:
            self._bus._remove(self)
            self.active = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.unsubscribe()


class EventChannel:
    """Async iterator over events, fed by a queue subscription"""

    _CLOSED = object()

    def __init__(self, bus: "JobEventBus", url: Optional[str], event_types: Optional[Iterable[JobEventType]]):
        self._queue: asyncio.Queue = asyncio.Queue()
        self._subscription = bus.subscribe(self._queue.put_nowait, event_types=event_types, url=url)

    async def get(self, timeout: Optional[float] = None) -> JobEvent:
        item = await asyncio.wait_for(self._queue.get(), timeout)
        if item is self._CLOSED:
            raise StopAsyncIteration
        return item

    def close(self) -> None:
        if self._subscription.active:
            self._subscription.unsubscribe()
            self._queue.put_nowait(self._CLOSED)

    def __aiter__(self) -> AsyncIterator[JobEvent]:
        return self

    async def __anext__(self) -> JobEvent:
        return await self.get()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.close()


class JobEventBus:
    """Fan-out of job lifecycle events.

    Handlers may be plain callables or coroutine functions; coroutines are
    scheduled as tasks. A failing handler is logged and does not stop delivery
    to the others.
    """

    def __init__(self):
        self._subscriptions: List[Subscription] = []
        self._pending: set = set()

    def subscribe(
        self,
        handler: EventHandler,
        event_types: Optional[Iterable[JobEventType]] = None,
        url: Optional[str] = None
    ) -> Subscription:
        types = frozenset(JobEventType(t) for t in event_types) if event_types is not None else None
        subscription = Subscription(self, handler, types, url)
        self._subscriptions.append(subscription)
        return subscription

    def channel(
        self,
        url: Optional[str] = None,
        event_types: Optional[Iterable[JobEventType]] = None
    ) -> EventChannel:
        return EventChannel(self, url, event_types)

    def _remove(self, subscription: Subscription) -> None:
        try:
            self._subscriptions.remove(subscription)
        except ValueError:
            pass

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def publish(self, event: JobEvent) -> None:
        logger.debug(f"Event {event.type.value} for job {event.job_id}")

        for subscription in list(self._subscriptions):
            if not subscription.matches(event):
                continue
            try:
                outcome = subscription.handler(event)
                if asyncio.iscoroutine(outcome):
                    task = asyncio.ensure_future(outcome)
                    self._pending.add(task)
                    task.add_done_callback(self._handler_done)
            except Exception as e:
                logger.error(f"Job event handler failed for {event.type.value}: {e}", exc_info=True)

    def _handler_done(self, task: asyncio.Future) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Async job event handler failed: {error}")

    def emit(self, event_type: JobEventType, job_id: str, url: Optional[str] = None, **fields) -> JobEvent:
        """Build and publish an event in one step"""
        known = {k: fields.pop(k) for k in ("progress", "status", "result", "error") if k in fields}
        event = JobEvent(type=event_type, job_id=job_id, url=url, data=fields, **known)
        self.publish(event)
        return event

    def clear(self) -> None:
        """Drop every subscription"""
        for subscription in list(self._subscriptions):
            subscription.unsubscribe()
