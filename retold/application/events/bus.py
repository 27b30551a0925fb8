"""Event delivery: subscriptions over the store-wide event log.

This module provides:
- EventSubscription: Cursor-based async iterator over delivered events
- EventBus: Abstract interface for publishing and subscribing
- InMemoryEventBus: In-process bus reading from an EventStore
- Listener: Background task feeding a subscription into a handler
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import suppress
from typing import Any

from ...domain import Event
from .store import EventStore
from .upcasting import UpcastingPipeline

LOGGER = logging.getLogger(__name__)

EventHandler = Callable[[Event[Any]], Awaitable[None]]


class EventSubscription(ABC):
    """Abstract interface for consuming events from the event log.

    A subscription is an endless async iterator. Its ``cursor`` is the
    position of the last event it delivered; a new subscription started
    from any cursor observed earlier picks up right after it, which is how
    consumers resume after a restart or a failure.

    Delivery is at-least-once and follows commit order, so events of one
    aggregate always arrive in version order. Consumers must tolerate
    seeing an event again after resubscribing from an older cursor.
    """

    @property
    @abstractmethod
    def cursor(self) -> int:
        """Position of the last delivered event (the start cursor before any)."""
        ...

    @abstractmethod
    async def depth(self) -> int:
        """Number of committed events not delivered yet.

        This is a snapshot value: it may grow as new events are published.
        """
        ...

    @abstractmethod
    async def next(self) -> Event[Any]:
        """Wait for and return the next event, advancing the cursor.

        Raises:
            StopAsyncIteration: When the subscription has been closed.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Stop the subscription and wake up a pending ``next()``."""
        ...

    def __aiter__(self) -> AsyncIterator[Event[Any]]:
        return self

    async def __anext__(self) -> Event[Any]:
        return await self.next()


class Listener:
    """Runs a handler for every event of a subscription in a background task.

    Example:
        >>> listener = bus.listen(push_to_client, from_cursor=42)
        >>> ...
        >>> await listener.stop()
    """

    def __init__(self, subscription: EventSubscription, handler: EventHandler):
        self.subscription = subscription
        self.handler = handler
        self.task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        async for event in self.subscription:
            await self.handler(event)

    async def stop(self) -> None:
        """Close the subscription and wait for the task to finish.

        Raises:
            Exception: Whatever the handler raised, if the task failed.
        """
        await self.subscription.close()
        self.task.cancel()
        with suppress(asyncio.CancelledError):
            await self.task


class EventBus(ABC):
    """Abstract interface for delivering appended events to subscribers.

    The bus does not persist anything itself: the EventStore is the source
    of truth and the bus only announces that new events were committed.
    Subscribers can start from any cursor, including 0 to replay the whole
    history into a fresh read model.
    """

    @abstractmethod
    async def publish(self, events: list[Event[Any]]) -> None:
        """Announce events that have just been appended to the store."""
        ...

    @abstractmethod
    def subscribe(self, from_cursor: int = 0) -> EventSubscription:
        """Create a subscription delivering events after ``from_cursor``."""
        ...

    def listen(self, handler: EventHandler, from_cursor: int = 0) -> Listener:
        """Subscribe ``handler`` to every event after ``from_cursor``."""
        return Listener(self.subscribe(from_cursor), handler)


class InMemoryEventBus(EventBus):
    """In-process event bus over an EventStore.

    Subscriptions page through ``store.load_all()`` and then wait until
    ``publish()`` announces new commits. Events are upcast on the way out,
    like every other read of stored events.

    Limitations:
    - Single process only (publishers and subscribers share one event loop)
    - Publishing must happen after the append has been committed
    """

    def __init__(self, store: EventStore, upcasting_pipeline: UpcastingPipeline):
        self.store = store
        self.upcasting_pipeline = upcasting_pipeline
        self.generation = 0
        self.condition = asyncio.Condition()

    async def publish(self, events: list[Event[Any]]) -> None:
        if not events:
            return
        async with self.condition:
            self.generation += 1
            self.condition.notify_all()
        LOGGER.debug(
            "Published events",
            extra={"event_count": len(events), "head_position": events[-1].position},
        )

    def subscribe(self, from_cursor: int = 0) -> EventSubscription:
        return InMemoryEventSubscription(self, from_cursor)

    async def wait_for_publish(self, seen_generation: int) -> None:
        async with self.condition:
            await self.condition.wait_for(lambda: self.generation > seen_generation)


class InMemoryEventSubscription(EventSubscription):
    """Cursor-based subscription for the in-memory bus."""

    def __init__(self, bus: InMemoryEventBus, from_cursor: int):
        self.bus = bus
        self._cursor = from_cursor
        self._buffer: deque[Event[Any]] = deque()
        self._closed = False

    @property
    def cursor(self) -> int:
        return self._cursor

    async def depth(self) -> int:
        return len(self._buffer) + max(await self.bus.store.head_position() - self._read_up_to, 0)

    @property
    def _read_up_to(self) -> int:
        return self._buffer[-1].position if self._buffer else self._cursor

    async def next(self) -> Event[Any]:
        while not self._closed:
            if self._buffer:
                event = self._buffer.popleft()
                self._cursor = event.position
                return event

            # Read the generation first so a publish racing with the read
            # below still wakes us up.
            seen_generation = self.bus.generation
            await self._fill()
            if not self._buffer:
                await self.bus.wait_for_publish(seen_generation)

        raise StopAsyncIteration

    async def _fill(self) -> None:
        events = self.bus.store.load_all(self._read_up_to)
        async for event in self.bus.upcasting_pipeline.read_upcast(events):
            self._buffer.append(event)

    async def close(self) -> None:
        self._closed = True
        async with self.bus.condition:
            self.bus.generation += 1
            self.bus.condition.notify_all()
