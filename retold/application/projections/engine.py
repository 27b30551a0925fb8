import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import replace
from typing import Any

from ...context import ExecutionContext, execution_context
from ...domain import Event
from ...domain.exceptions import ProjectionApplicationError, ProjectionHalted, StoreUnavailable
from ...settings import RetoldSettings
from ..events import EventLog
from .cursor import CursorBackend, ProjectionCursor
from .read_model import ReadModel
from .store import ReadModelStore

LOGGER = logging.getLogger(__name__)


class ProjectionEngine:
    """Keeps one read model up to date with the event log.

    The engine applies events strictly one at a time, in commit order.
    Each event is applied inside a read model store transaction that also
    saves the advanced cursor, so either both the table writes and the new
    cursor are kept or neither is. Events at or before the cursor are
    skipped, which makes redelivery harmless.

    Failure handling:

    - StoreUnavailable: the transaction is rolled back and the same event
      is retried after an exponential backoff. The cursor never moves past
      an event that was not applied.
    - Any other error from a projection: the transaction is rolled back,
      then ``settings.projection_on_error`` decides. "halt" marks the
      cursor halted and raises ProjectionApplicationError; nothing more is
      applied until ``resume()``. "skip" logs the error and moves past the
      event.

    Example:
        >>> engine = app.projection("ShoppingLists")
        >>> await engine.catch_up()
        >>> (await engine.cursor()).position
        3
    """

    def __init__(
        self,
        read_model: ReadModel,
        store: ReadModelStore,
        event_log: EventLog,
        cursors: CursorBackend,
        settings: RetoldSettings,
    ):
        self.read_model = read_model
        self.name = read_model.get_name()
        self.store = store
        self.writer = store.writer(self.name)
        self.event_log = event_log
        self.cursors = cursors
        self.settings = settings
        self._cursor: ProjectionCursor | None = None
        self._lock = asyncio.Lock()

    async def cursor(self) -> ProjectionCursor:
        """Current cursor, loaded from the cursor backend on first use."""
        if self._cursor is None:
            loaded = await self.cursors.load_cursor(self.name)
            self._cursor = loaded or ProjectionCursor(read_model_name=self.name)
        return self._cursor

    async def initialize(self) -> None:
        """Run the read model's ``init`` unless it already ran."""
        async with self._lock:
            await self._initialize()

    async def apply(self, event: Event[Any]) -> bool:
        """Apply one event to the read model.

        Returns:
            True if the event moved the cursor, False if it was already
            applied or was skipped after a failure.

        Raises:
            ProjectionHalted: If the engine is halted.
            ProjectionApplicationError: If the projection failed and the
                error policy is "halt".
        """
        async with self._lock:
            await self._initialize()
            return await self._apply(event)

    async def catch_up(self) -> int:
        """Apply every stored event after the cursor.

        Returns:
            The number of events applied.
        """
        async with self._lock:
            await self._initialize()
            return await self._catch_up()

    async def run(self) -> None:
        """Follow the event log forever, starting right after the cursor.

        Runs until cancelled, or until a failing projection halts the engine.
        """
        await self.initialize()
        delay = self.settings.projection_retry_delay
        while True:
            cursor = await self.cursor()
            if cursor.halted:
                raise ProjectionHalted(f"Projection {self.name} is halted: {cursor.last_error}")

            subscription = self.event_log.bus.subscribe(cursor.position)
            try:
                async for event in subscription:
                    await self.apply(event)
                    delay = self.settings.projection_retry_delay
                return
            except StoreUnavailable as error:
                LOGGER.warning(
                    "Event log unavailable, resubscribing in %.2fs: %s",
                    delay,
                    error,
                    extra={"read_model": self.name},
                )
                await asyncio.sleep(delay)
                delay = min(delay * 2, self.settings.projection_retry_max_delay)
            finally:
                await subscription.close()

    async def rebuild(self) -> int:
        """Drop the read model's tables and replay the whole event log.

        Returns:
            The number of events applied.
        """
        async with self._lock:
            LOGGER.info("Rebuilding read model", extra={"read_model": self.name})
            await self.store.drop(self.name)
            self._cursor = ProjectionCursor(read_model_name=self.name)
            await self.cursors.save_cursor(self._cursor)
            await self._initialize()
            return await self._catch_up()

    async def resume(self, skip_failed_event: bool = False) -> ProjectionCursor:
        """Clear the halted status so the engine applies events again.

        Args:
            skip_failed_event: Move the cursor past the event that halted
                the engine instead of retrying it.
        """
        async with self._lock:
            cursor = await self.cursor()
            position = cursor.position
            if skip_failed_event and cursor.failed_position is not None:
                position = cursor.failed_position
            self._cursor = replace(
                cursor, status="running", position=position, failed_position=None, last_error=None
            )
            await self.cursors.save_cursor(self._cursor)
            LOGGER.info(
                "Resumed projection",
                extra={"read_model": self.name, "position": position},
            )
            return self._cursor

    async def _initialize(self) -> None:
        cursor = await self.cursor()
        if cursor.initialized:
            return

        initialized = replace(cursor, initialized=True)
        await self._with_backoff(self._run_init, initialized)
        self._cursor = initialized
        LOGGER.info("Initialized read model", extra={"read_model": self.name})

    async def _run_init(self, initialized: ProjectionCursor) -> None:
        async with self.store.transaction(self.name):
            await self.read_model.init(self.writer)
            await self.cursors.save_cursor(initialized)

    async def _catch_up(self) -> int:
        applied = 0
        delay = self.settings.projection_retry_delay
        while True:
            cursor = await self.cursor()
            try:
                async for event in self.event_log.load_all(cursor.position):
                    if await self._apply(event):
                        applied += 1
                break
            except StoreUnavailable as error:
                LOGGER.warning(
                    "Event log unavailable, retrying catch-up in %.2fs: %s",
                    delay,
                    error,
                    extra={"read_model": self.name},
                )
                await asyncio.sleep(delay)
                delay = min(delay * 2, self.settings.projection_retry_max_delay)

        LOGGER.info(
            "Caught up read model",
            extra={"read_model": self.name, "events_applied": applied},
        )
        return applied

    async def _apply(self, event: Event[Any]) -> bool:
        cursor = await self.cursor()
        if cursor.halted:
            raise ProjectionHalted(f"Projection {self.name} is halted: {cursor.last_error}")
        if event.position <= cursor.position:
            return False

        advanced = replace(
            cursor, position=event.position, events_applied=cursor.events_applied + 1
        )
        try:
            await self._with_backoff(self._project, event, advanced)
        except Exception as error:
            return await self._on_projection_error(cursor, event, error)

        self._cursor = advanced
        return True

    async def _project(self, event: Event[Any], advanced: ProjectionCursor) -> None:
        ctx = ExecutionContext(correlation_id=event.correlation_id, causation_id=event.id)
        with execution_context(ctx):
            async with self.store.transaction(self.name):
                handled = await self.read_model.project(self.writer, event)
                await self.cursors.save_cursor(advanced)
        if handled:
            LOGGER.debug(
                "Projected event",
                extra={
                    "read_model": self.name,
                    "event_type": event.type,
                    "position": event.position,
                    **ctx.as_log_extra(),
                },
            )

    async def _with_backoff(self, operation: Callable[..., Awaitable[None]], *args: Any) -> None:
        delay = self.settings.projection_retry_delay
        while True:
            try:
                await operation(*args)
                return
            except StoreUnavailable as error:
                LOGGER.warning(
                    "Read model store unavailable, retrying in %.2fs: %s",
                    delay,
                    error,
                    extra={"read_model": self.name},
                )
                await asyncio.sleep(delay)
                delay = min(delay * 2, self.settings.projection_retry_max_delay)

    async def _on_projection_error(
        self, cursor: ProjectionCursor, event: Event[Any], error: Exception
    ) -> bool:
        failure = ProjectionApplicationError(self.name, event, error)
        extra = {
            "read_model": self.name,
            "event_type": event.type,
            "position": event.position,
            "policy": self.settings.projection_on_error,
        }
        LOGGER.error("Projection failed: %s", error, exc_info=error, extra=extra)

        if self.settings.projection_on_error == "skip":
            self._cursor = replace(cursor, position=event.position, last_error=str(failure))
            await self.cursors.save_cursor(self._cursor)
            return False

        self._cursor = replace(
            cursor, status="halted", failed_position=event.position, last_error=str(failure)
        )
        await self.cursors.save_cursor(self._cursor)
        raise failure from error
