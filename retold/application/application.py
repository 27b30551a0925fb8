import asyncio
import logging
from collections.abc import AsyncIterator, Collection
from types import TracebackType
from typing import Any, Protocol, runtime_checkable

from ..domain import Aggregate, Command, Event, Query
from ..settings import RetoldSettings
from .aggregates import AggregateRuntime
from .commands import CommandBus
from .events import (
    EventBus,
    EventLog,
    EventStore,
    EventUpcaster,
    InMemoryEventBus,
    InMemoryEventStore,
    LazyUpcastingStrategy,
    UpcasterMap,
    UpcastingPipeline,
    UpcastingStrategy,
)
from .middleware import ContextPropagationMiddleware, LoggingMiddleware, Middleware
from .projections import (
    CursorBackend,
    InMemoryCursorBackend,
    InMemoryReadModelStore,
    ProjectionEngine,
    ReadModel,
    ReadModelStore,
)
from .queries import QueryBus, QueryResolver
from .registry import Registry
from .view_models import ViewModel, ViewModelEngine, ViewModelSession

LOGGER = logging.getLogger(__name__)


@runtime_checkable
class HasLifecycle(Protocol):
    async def on_startup(self) -> None:
        """Called when the application is started."""
        ...

    async def on_shutdown(self) -> None:
        """Called when the application is shutdown."""
        ...


class Application:
    """A wired CQRS application: command side, read side and view models.

    Build one with ApplicationBuilder. Use it as an async context manager
    to run the projection engines in the background:

        >>> async with app:
        ...     await app.execute_command(command)
        ...     await app.execute_query(query)

    Tests that want deterministic projections can skip the lifecycle and
    call ``catch_up()`` after executing commands instead.
    """

    def __init__(
        self,
        *,
        registry: Registry,
        settings: RetoldSettings,
        event_log: EventLog,
        runtime: AggregateRuntime,
        command_bus: CommandBus,
        read_model_store: ReadModelStore,
        cursors: CursorBackend,
        query_bus: QueryBus,
        view_model_engine: ViewModelEngine,
    ):
        self.registry = registry
        self.settings = settings
        self.event_log = event_log
        self.runtime = runtime
        self.command_bus = command_bus
        self.read_model_store = read_model_store
        self.cursors = cursors
        self.query_bus = query_bus
        self.view_model_engine = view_model_engine
        self.engines = {
            name: ProjectionEngine(read_model, read_model_store, event_log, cursors, settings)
            for name, read_model in registry.read_models.items()
        }
        self.projection_tasks: dict[str, asyncio.Task[None]] = {}

    async def execute_command(
        self, command: Command, timeout: float | None = None
    ) -> list[Event[Any]]:
        """Execute a command and return the events it appended.

        Args:
            command: The command to execute.
            timeout: Seconds after which the command is cancelled. A
                cancelled command either appended all of its events or none.

        Raises:
            DomainRuleViolation: If the aggregate rejected the command.
            Contention: If every attempt hit a concurrency conflict.
            TimeoutError: If the timeout elapsed first.
        """
        return await asyncio.wait_for(self.command_bus.dispatch(command), timeout)

    async def execute_query(self, query: Query, timeout: float | None = None) -> Any:
        """Resolve a query against a read model or a view model.

        Raises:
            ReadModelNotFound, ViewModelNotFound, ResolverNotFound: If the
                query names something that does not exist.
            ResolverExecutionError: If the resolver raised.
            TimeoutError: If the timeout elapsed first.
        """
        return await asyncio.wait_for(self.query_bus.dispatch(query), timeout)

    async def load_state(self, aggregate_name: str, aggregate_id: str) -> Aggregate:
        return await self.runtime.load_state(aggregate_name, aggregate_id)

    def load_events(self, aggregate_id: str, from_version: int = 0) -> AsyncIterator[Event[Any]]:
        return self.event_log.load_events(aggregate_id, from_version)

    def projection(self, read_model_name: str) -> ProjectionEngine:
        """Return the projection engine of a read model.

        Raises:
            ReadModelNotFound: If the read model is not registered.
        """
        self.registry.read_model(read_model_name)
        return self.engines[read_model_name]

    async def catch_up(self) -> dict[str, int]:
        """Bring every read model up to the current end of the event log.

        Returns:
            Number of events applied, per read model.
        """
        applied = await asyncio.gather(*(engine.catch_up() for engine in self.engines.values()))
        return dict(zip(self.engines, applied))

    async def rebuild(self, read_model_name: str) -> int:
        """Drop and replay one read model, pausing its background task meanwhile."""
        engine = self.projection(read_model_name)
        was_running = await self._stop_projection(read_model_name)
        try:
            return await engine.rebuild()
        finally:
            if was_running:
                self._start_projection(read_model_name)

    async def run_projections(self, *read_model_names: str) -> None:
        """Run projection engines until cancelled or until one halts.

        Each read model gets its own task, so a slow or halted read model
        never holds the others back. With no names, every read model runs.

        Raises:
            ProjectionApplicationError: If a projection halts its engine.
        """
        names = read_model_names or tuple(self.engines)
        await asyncio.gather(*(self.projection(name).run() for name in names))

    async def open_view_model(
        self, view_model_name: str, aggregate_ids: str | Collection[str] | None = None
    ) -> ViewModelSession:
        """Open a live session on a view model.

        ``aggregate_ids`` may be a single id, a collection of ids, or None
        to follow every aggregate.

        Raises:
            ViewModelNotFound: If the view model is not registered.
        """
        return await self.view_model_engine.open_session(view_model_name, aggregate_ids)

    def _lifecycle_dependencies(self) -> list[HasLifecycle]:
        candidates = [self.event_log.store, self.event_log.bus, self.read_model_store, self.cursors]
        return [dependency for dependency in candidates if isinstance(dependency, HasLifecycle)]

    def _start_projection(self, read_model_name: str) -> None:
        task = asyncio.create_task(self.engines[read_model_name].run())
        task.add_done_callback(lambda t, name=read_model_name: self._projection_done(name, t))
        self.projection_tasks[read_model_name] = task

    def _projection_done(self, read_model_name: str, task: asyncio.Task[None]) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            LOGGER.error(
                "Projection stopped: %s",
                error,
                extra={"read_model": read_model_name},
            )

    async def _stop_projection(self, read_model_name: str) -> bool:
        task = self.projection_tasks.pop(read_model_name, None)
        if task is None:
            return False
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        return True

    async def startup(self) -> None:
        """Start dependencies, initialize read models and start their engines."""
        for dependency in self._lifecycle_dependencies():
            await dependency.on_startup()
        for name, engine in self.engines.items():
            await engine.initialize()
            if not (await engine.cursor()).halted:
                self._start_projection(name)

    async def shutdown(self) -> None:
        """Stop projection engines, then shut dependencies down in reverse order."""
        for name in list(self.projection_tasks):
            await self._stop_projection(name)
        for dependency in reversed(self._lifecycle_dependencies()):
            await dependency.on_shutdown()

    async def __aenter__(self) -> "Application":
        await self.startup()
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_value: BaseException | None,
        _traceback: TracebackType | None,
    ) -> None:
        await self.shutdown()


class ApplicationBuilder:
    """Fluent builder for Application instances.

    Every backend has an in-memory default, so the smallest application is
    just its domain:

        >>> app = (ApplicationBuilder()
        ...     .register_aggregate(ShoppingList)
        ...     .register_read_model(ShoppingLists())
        ...     .register_view_model(ShoppingListView)
        ...     .build())
    """

    def __init__(self) -> None:
        self.registry = Registry()
        self.settings: RetoldSettings | None = None
        self.event_store: EventStore | None = None
        self.event_bus: EventBus | None = None
        self.read_model_store: ReadModelStore | None = None
        self.cursor_backend: CursorBackend | None = None
        self.upcasting_strategy: UpcastingStrategy = LazyUpcastingStrategy()
        self.upcasters: list[EventUpcaster[Any, Any]] = []
        self.middleware: list[Middleware] = []
        self.correlation_tracking = False
        self.log_messages = False

    def register_aggregate(self, aggregate_type: type[Aggregate]) -> "ApplicationBuilder":
        self.registry.add_aggregate(aggregate_type)
        return self

    def register_read_model(self, read_model: ReadModel | type[ReadModel]) -> "ApplicationBuilder":
        """Register a read model instance (or a class, instantiated without arguments)."""
        if isinstance(read_model, type):
            read_model = read_model()
        self.registry.add_read_model(read_model)
        return self

    def register_view_model(self, view_model_type: type[ViewModel]) -> "ApplicationBuilder":
        self.registry.add_view_model(view_model_type)
        return self

    def register_upcaster(
        self, upcaster: EventUpcaster[Any, Any] | type[EventUpcaster[Any, Any]]
    ) -> "ApplicationBuilder":
        if isinstance(upcaster, type):
            upcaster = upcaster()
        self.upcasters.append(upcaster)
        return self

    def register_middleware(self, middleware: Middleware | type[Middleware]) -> "ApplicationBuilder":
        """Append middleware to the command and query chains.

        Middleware runs in registration order.
        """
        if isinstance(middleware, type):
            middleware = middleware()
        self.middleware.append(middleware)
        return self

    def use_correlation_tracking(self) -> "ApplicationBuilder":
        """Put ContextPropagationMiddleware first in the chain."""
        self.correlation_tracking = True
        return self

    def use_logging(self) -> "ApplicationBuilder":
        """Log every command and query at ``settings.log_level``.

        LoggingMiddleware runs right after context propagation, before any
        registered middleware.
        """
        self.log_messages = True
        return self

    def use_settings(self, settings: RetoldSettings) -> "ApplicationBuilder":
        self.settings = settings
        return self

    def use_event_store(self, event_store: EventStore) -> "ApplicationBuilder":
        self.event_store = event_store
        return self

    def use_event_bus(self, event_bus: EventBus) -> "ApplicationBuilder":
        self.event_bus = event_bus
        return self

    def use_read_model_store(self, read_model_store: ReadModelStore) -> "ApplicationBuilder":
        self.read_model_store = read_model_store
        return self

    def use_cursor_backend(self, cursor_backend: CursorBackend) -> "ApplicationBuilder":
        self.cursor_backend = cursor_backend
        return self

    def use_upcasting_strategy(self, strategy: UpcastingStrategy) -> "ApplicationBuilder":
        self.upcasting_strategy = strategy
        return self

    def build(self) -> Application:
        settings = self.settings or RetoldSettings()
        pipeline = UpcastingPipeline(
            self.upcasting_strategy, UpcasterMap.from_upcasters(self.upcasters)
        )
        store = self.event_store or InMemoryEventStore()
        bus = self.event_bus or InMemoryEventBus(store, pipeline)
        event_log = EventLog(store, bus, pipeline)

        middleware = list(self.middleware)
        if self.log_messages:
            middleware.insert(0, LoggingMiddleware(settings.log_level))
        if self.correlation_tracking:
            middleware.insert(0, ContextPropagationMiddleware())

        runtime = AggregateRuntime(self.registry, event_log, settings)
        read_model_store = self.read_model_store or InMemoryReadModelStore()
        view_model_engine = ViewModelEngine(self.registry, event_log)
        resolver = QueryResolver(self.registry, read_model_store, view_model_engine)

        return Application(
            registry=self.registry,
            settings=settings,
            event_log=event_log,
            runtime=runtime,
            command_bus=CommandBus(runtime, middleware),
            read_model_store=read_model_store,
            cursors=self.cursor_backend or InMemoryCursorBackend(),
            query_bus=QueryBus(resolver, middleware),
            view_model_engine=view_model_engine,
        )
