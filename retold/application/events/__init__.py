from .bus import (
    EventBus,
    EventHandler,
    EventSubscription,
    InMemoryEventBus,
    InMemoryEventSubscription,
    Listener,
)
from .log import EventLog
from .store import AppendResult, EventStore, InMemoryEventStore
from .upcasting import (
    EagerUpcastingStrategy,
    EventUpcaster,
    LazyUpcastingStrategy,
    UpcasterMap,
    UpcastingPipeline,
    UpcastingStrategy,
)

__all__ = [
    # Store
    "AppendResult",
    "EventStore",
    "InMemoryEventStore",
    # Delivery
    "EventBus",
    "EventHandler",
    "EventSubscription",
    "InMemoryEventBus",
    "InMemoryEventSubscription",
    "Listener",
    # Coordination
    "EventLog",
    # Upcasting
    "EagerUpcastingStrategy",
    "EventUpcaster",
    "LazyUpcastingStrategy",
    "UpcasterMap",
    "UpcastingPipeline",
    "UpcastingStrategy",
]
