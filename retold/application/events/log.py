import logging
from collections.abc import AsyncIterator, Sequence
from typing import Any

from ...domain import Event, PendingEvent
from .bus import EventBus
from .store import AppendResult, EventStore
from .upcasting import UpcastingPipeline

LOGGER = logging.getLogger(__name__)


class EventLog:
    """Coordinates event persistence, upcasting, and delivery.

    EventLog is the entry point every component uses to read and write
    events. It orchestrates:

    1. **Upcasting**: Brings payloads to the current schema (via pipeline)
    2. **Persistence**: Appends atomically with optimistic locking (via EventStore)
    3. **Delivery**: Announces committed events to subscribers (via EventBus)

    Writes go store first, bus second: an event is only ever delivered once
    it has been durably appended, and a failed append delivers nothing.
    """

    def __init__(
        self,
        store: EventStore,
        bus: EventBus,
        upcasting_pipeline: UpcastingPipeline,
    ):
        self.store = store
        self.bus = bus
        self.upcasting_pipeline = upcasting_pipeline

    async def append(
        self,
        aggregate_id: str,
        aggregate_name: str,
        expected_version: int,
        events: Sequence[PendingEvent],
    ) -> AppendResult:
        """Append proposed events and publish them once committed.

        Raises:
            ConcurrencyConflict: If expected_version is stale.
            StoreUnavailable: If the store cannot be reached.
        """
        pending = await self.upcasting_pipeline.write_upcast(list(events))
        result = await self.store.append(aggregate_id, aggregate_name, expected_version, pending)
        LOGGER.debug(
            "Appended events",
            extra={
                "aggregate_id": aggregate_id,
                "aggregate_name": aggregate_name,
                "new_version": result.new_version,
                "event_count": len(result.events),
            },
        )
        await self.bus.publish(result.events)
        return result

    def load_events(self, aggregate_id: str, from_version: int = 0) -> AsyncIterator[Event[Any]]:
        """Load an aggregate's events with schema evolution applied."""
        return self.upcasting_pipeline.read_upcast(self.store.load_events(aggregate_id, from_version))

    def load_all(self, from_position: int = 0) -> AsyncIterator[Event[Any]]:
        """Load the store-wide log after ``from_position`` with schema evolution applied."""
        return self.upcasting_pipeline.read_upcast(self.store.load_all(from_position))
