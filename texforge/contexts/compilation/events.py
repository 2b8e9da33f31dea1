"""
Event channel for compilation progress and outcomes.

One multiplexed channel carries every job's events. Consumers subscribe
explicitly, either to all jobs or to a single job id, and read events as an
async iterator:

    async with scheduler.events.subscribe() as events:
        job_id = scheduler.submit(source)
        async for event in events:
            if isinstance(event, CompletedEvent) and event.job_id == job_id:
                break

A job-scoped subscription ends by itself after that job's terminal event
(CompletedEvent or CancelledEvent). Every subscription ends when the channel
is closed.
"""

import asyncio
from dataclasses import dataclass
from typing import List, Optional, Union

from texforge.contexts.compilation.models import CompilationProgress, CompilationResult


@dataclass(frozen=True)
class ProgressEvent:
    progress: CompilationProgress
    is_terminal = False

    @property
    def job_id(self) -> str:
        return self.progress.job_id


@dataclass(frozen=True)
class CompletedEvent:
    result: CompilationResult
    is_terminal = True

    @property
    def job_id(self) -> str:
        return self.result.job_id


@dataclass(frozen=True)
class CancelledEvent:
    job_id: str
    is_terminal = True


CompilationEvent = Union[ProgressEvent, CompletedEvent, CancelledEvent]

# Queue sentinel marking the end of a subscription
_END = object()


class Subscription:
    """Buffered async iterator over the events matching one filter."""

    def __init__(self, channel: "EventChannel", job_id: Optional[str] = None):
        self.job_id = job_id
        self._channel = channel
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False

    def matches(self, event: CompilationEvent) -> bool:
        return self.job_id is None or event.job_id == self.job_id

    def _deliver(self, event: CompilationEvent) -> None:
        self._queue.put_nowait(event)
        if self.job_id is not None and event.is_terminal:
            self.close()

    def close(self) -> None:
        """Stop receiving events. Already-buffered events are still yielded."""
        if self._closed:
            return
        self._closed = True
        self._channel._detach(self)
        self._queue.put_nowait(_END)

    @property
    def closed(self) -> bool:
        return self._closed

    def drain(self) -> List[CompilationEvent]:
        """Return buffered events without waiting."""
        events = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is _END:
                # Keep the end marker for any later iteration
                self._queue.put_nowait(_END)
                break
            events.append(item)
        return events

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> CompilationEvent:
        item = await self._queue.get()
        if item is _END:
            self._queue.put_nowait(_END)
            raise StopAsyncIteration
        return item

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info) -> None:
        self.close()


class EventChannel:
    """Fan-out of compilation events to explicit subscribers."""

    def __init__(self):
        self._subscriptions: List[Subscription] = []
        self._closed = False

    def subscribe(self, job_id: Optional[str] = None) -> Subscription:
        """
        Start receiving events.

        Args:
            job_id: Only deliver this job's events (None for all jobs)

        Returns:
            Subscription; iterate it with `async for`
        """
        subscription = Subscription(self, job_id)
        if self._closed:
            subscription.close()
        else:
            self._subscriptions.append(subscription)
        return subscription

    def publish(self, event: CompilationEvent) -> None:
        """Deliver an event to every matching subscriber. Never blocks."""
        if self._closed:
            return
        for subscription in list(self._subscriptions):
            if subscription.matches(event):
                subscription._deliver(event)

    def close(self) -> None:
        """End every subscription. Later publishes are dropped."""
        self._closed = True
        for subscription in list(self._subscriptions):
            subscription.close()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def _detach(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
