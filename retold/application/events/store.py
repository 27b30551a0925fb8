"""Event store interfaces and implementations for durable event persistence."""

import asyncio
from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from typing import Any

from ...domain import ConcurrencyConflict, Event, PendingEvent, epoch_millis


@dataclass(frozen=True)
class AppendResult:
    """Outcome of a successful append.

    Attributes:
        new_version: Version of the aggregate after the append.
        events: The appended events, with versions, positions and
            timestamps assigned by the store.
    """

    new_version: int
    events: list[Event[Any]] = field(default_factory=list)


class EventStore(ABC):
    """Abstract interface for durable event persistence.

    EventStore is the append-only log behind event sourcing. Each aggregate's
    events form a stream that is replayed to reconstruct its state, and all
    streams together form one store-wide log in commit order that projections
    replay.

    Key responsibilities:
    - **Versioning**: The store alone decides the next version of a stream
    - **Atomicity**: A batch is appended entirely or not at all
    - **Concurrency Control**: Optimistic locking via expected_version
    - **Immutability**: Events are never modified or deleted

    Implementations raise StoreUnavailable when the underlying storage
    cannot be reached.
    """

    @abstractmethod
    async def append(
        self,
        aggregate_id: str,
        aggregate_name: str,
        expected_version: int,
        events: Sequence[PendingEvent],
    ) -> AppendResult:
        """Append events to an aggregate's stream with optimistic concurrency control.

        Args:
            aggregate_id: The aggregate whose stream is appended to.
            aggregate_name: Name of the aggregate type.
            expected_version: The version the stream must be at. The events
                get versions expected_version + 1, expected_version + 2, ...
            events: The proposed events, in order.

        Returns:
            The new stream version and the stored events.

        Raises:
            ConcurrencyConflict: If the stream's current version is not
                expected_version (another command committed first).
            StoreUnavailable: If the storage cannot be reached.
        """
        ...

    @abstractmethod
    def load_events(self, aggregate_id: str, from_version: int = 0) -> AsyncIterator[Event[Any]]:
        """Lazily read an aggregate's events in ascending version order.

        Args:
            aggregate_id: The aggregate whose events to load.
            from_version: Minimum version to load (inclusive). Use 0 for all.

        Returns:
            A finite async iterator. Every call starts a fresh traversal, so
            a failed or interrupted read can simply be restarted.
        """
        ...

    @abstractmethod
    def load_all(self, from_position: int = 0) -> AsyncIterator[Event[Any]]:
        """Lazily read every event in the store in commit order.

        Args:
            from_position: Only events with a position greater than this one
                are returned. Use 0 to replay the whole store.

        Returns:
            A finite async iterator over the events committed so far.
        """
        ...

    @abstractmethod
    async def current_version(self, aggregate_id: str) -> int:
        """Return the highest version of a stream, 0 if it has no events."""
        ...

    @abstractmethod
    async def head_position(self) -> int:
        """Return the position of the last committed event, 0 if empty."""
        ...

    @abstractmethod
    async def aggregate_ids(self) -> list[str]:
        """Return the ids of all aggregates with at least one event."""
        ...


class InMemoryEventStore(EventStore):
    """Dictionary-based in-memory event store for tests and development.

    Keeps one list per aggregate plus the store-wide list in commit order.
    An asyncio lock makes the version check and the append one atomic step.

    **NOT suitable for production**: nothing survives a restart and memory
    grows without bound.
    """

    def __init__(self) -> None:
        self.by_aggregate_id: dict[str, list[Event[Any]]] = defaultdict(list)
        self.events_in_order: list[Event[Any]] = []
        self._lock = asyncio.Lock()

    async def append(
        self,
        aggregate_id: str,
        aggregate_name: str,
        expected_version: int,
        events: Sequence[PendingEvent],
    ) -> AppendResult:
        async with self._lock:
            stream = self.by_aggregate_id[aggregate_id]
            current_version = stream[-1].version if stream else 0
            if current_version != expected_version:
                raise ConcurrencyConflict(aggregate_id, expected_version, current_version)

            timestamp = epoch_millis()
            position = len(self.events_in_order)
            appended = [
                Event(
                    aggregate_id=aggregate_id,
                    aggregate_name=aggregate_name,
                    type=pending.type,
                    version=expected_version + offset,
                    position=position + offset,
                    timestamp=timestamp,
                    payload=pending.payload,
                    schema_version=pending.schema_version,
                    meta=pending.meta,
                    correlation_id=pending.correlation_id,
                    causation_id=pending.causation_id,
                )
                for offset, pending in enumerate(events, start=1)
            ]
            stream.extend(appended)
            self.events_in_order.extend(appended)

        return AppendResult(new_version=expected_version + len(appended), events=appended)

    async def load_events(
        self, aggregate_id: str, from_version: int = 0
    ) -> AsyncIterator[Event[Any]]:
        stream = self.by_aggregate_id.get(aggregate_id, [])
        index = max(from_version - 1, 0)
        while index < len(stream):
            yield stream[index]
            index += 1

    async def load_all(self, from_position: int = 0) -> AsyncIterator[Event[Any]]:
        # Positions are 1-indexed and dense, so position n sits at index n - 1
        index = max(from_position, 0)
        while index < len(self.events_in_order):
            yield self.events_in_order[index]
            index += 1

    async def current_version(self, aggregate_id: str) -> int:
        stream = self.by_aggregate_id.get(aggregate_id)
        return stream[-1].version if stream else 0

    async def head_position(self) -> int:
        return len(self.events_in_order)

    async def aggregate_ids(self) -> list[str]:
        return [aggregate_id for aggregate_id, stream in self.by_aggregate_id.items() if stream]
