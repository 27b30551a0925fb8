"""Application wiring for retold.

This package contains the runtime components of an event-sourced CQRS
application: the event log, the aggregate runtime, the command and query
buses with their middleware, the projection engines with their read model
store, the view model engine, and the builder that wires them together.
"""

from .aggregates import AggregateRuntime, fold
from .application import Application, ApplicationBuilder, HasLifecycle
from .commands import CommandBus
from .events import (
    AppendResult,
    EagerUpcastingStrategy,
    EventBus,
    EventLog,
    EventStore,
    EventSubscription,
    EventUpcaster,
    InMemoryEventBus,
    InMemoryEventStore,
    LazyUpcastingStrategy,
    Listener,
    UpcastingStrategy,
)
from .middleware import ContextPropagationMiddleware, Handler, LoggingMiddleware, Middleware
from .projections import (
    CursorBackend,
    InMemoryCursorBackend,
    InMemoryReadModelStore,
    ProjectionCursor,
    ProjectionEngine,
    ReadModel,
    ReadModelReader,
    ReadModelStore,
    ReadModelWriter,
    TableSchema,
)
from .queries import QueryBus, QueryResolver
from .registry import Registry
from .view_models import ViewModel, ViewModelEngine, ViewModelSession

__all__ = [
    # Application
    "Application",
    "ApplicationBuilder",
    "HasLifecycle",
    "Registry",
    # Write side
    "AggregateRuntime",
    "CommandBus",
    "fold",
    # Events
    "AppendResult",
    "EagerUpcastingStrategy",
    "EventBus",
    "EventLog",
    "EventStore",
    "EventSubscription",
    "EventUpcaster",
    "InMemoryEventBus",
    "InMemoryEventStore",
    "LazyUpcastingStrategy",
    "Listener",
    "UpcastingStrategy",
    # Middleware
    "ContextPropagationMiddleware",
    "Handler",
    "LoggingMiddleware",
    "Middleware",
    # Read side
    "CursorBackend",
    "InMemoryCursorBackend",
    "InMemoryReadModelStore",
    "ProjectionCursor",
    "ProjectionEngine",
    "QueryBus",
    "QueryResolver",
    "ReadModel",
    "ReadModelReader",
    "ReadModelStore",
    "ReadModelWriter",
    "TableSchema",
    # View models
    "ViewModel",
    "ViewModelEngine",
    "ViewModelSession",
]
