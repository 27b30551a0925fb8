"""Building and live-updating view models.

ViewModelEngine folds stored events into view model states on demand.
ViewModelSession keeps one such state current by following the event bus,
pushing a snapshot to the client after each event it applies.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Collection
from types import TracebackType
from typing import Any

from typing_extensions import Self

from ...domain import Event, ViewModelApplicationError
from ..events import EventLog, Listener
from ..registry import Registry
from .view_model import ViewModel

LOGGER = logging.getLogger(__name__)

_CLOSED = object()


class _Failure:
    __slots__ = ("error",)

    def __init__(self, error: ViewModelApplicationError):
        self.error = error


class ViewModelSession:
    """A client's live subscription to one view model.

    Iterating a session yields the initial state first, then a fresh
    snapshot every time an event changes it. Closing the session stops the
    listener and discards the state.

    Example:
        >>> async with await app.open_view_model("ShoppingListView", ["A1"]) as session:
        ...     async for state in session:
        ...         render(state)
    """

    def __init__(
        self,
        view_model: ViewModel,
        aggregate_ids: str | Collection[str] | None,
        cursor: int,
    ):
        self.view_model: ViewModel | None = view_model
        self.aggregate_ids = _id_set(aggregate_ids)
        self.cursor = cursor
        self.listener: Listener | None = None
        self._updates: asyncio.Queue[Any] = asyncio.Queue()
        self._updates.put_nowait(view_model.snapshot())

    @property
    def closed(self) -> bool:
        return self.view_model is None

    @property
    def state(self) -> dict[str, Any] | None:
        return self.view_model.snapshot() if self.view_model is not None else None

    def follow(self, event_log: EventLog) -> None:
        self.listener = event_log.bus.listen(self.on_event, from_cursor=self.cursor)

    async def on_event(self, event: Event[Any]) -> None:
        if self.view_model is None or not _selects(self.aggregate_ids, event):
            return
        self.cursor = event.position
        try:
            changed = self.view_model.apply(event)
        except Exception as error:
            self.fail(ViewModelApplicationError(self.view_model.get_name(), event, error))
            return
        if changed:
            self._updates.put_nowait(self.view_model.snapshot())

    def fail(self, error: ViewModelApplicationError) -> None:
        """Close the session and hand the error to the next reader."""
        LOGGER.error(
            "View model session failed: %s",
            error,
            exc_info=error.cause,
            extra={"view_model": error.view_model_name, "position": error.event.position},
        )
        self.view_model = None
        self._updates.put_nowait(_Failure(error))

    async def next(self) -> dict[str, Any]:
        """Wait for the next state snapshot.

        Raises:
            StopAsyncIteration: Once the session is closed.
            ViewModelApplicationError: If a reducer failed on an event; the
                session is closed afterwards.
        """
        if self.closed and self._updates.empty():
            raise StopAsyncIteration
        update = await self._updates.get()
        if update is _CLOSED:
            raise StopAsyncIteration
        if isinstance(update, _Failure):
            raise update.error from update.error.cause
        return update

    async def close(self) -> None:
        listener, self.listener = self.listener, None
        if listener is not None:
            await listener.stop()
        if self.closed:
            return
        self.view_model = None
        self._updates.put_nowait(_CLOSED)

    def __aiter__(self) -> AsyncIterator[dict[str, Any]]:
        return self

    async def __anext__(self) -> dict[str, Any]:
        return await self.next()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        await self.close()


def _selects(aggregate_ids: set[str] | None, event: Event[Any]) -> bool:
    return aggregate_ids is None or event.aggregate_id in aggregate_ids


def _id_set(aggregate_ids: str | Collection[str] | None) -> set[str] | None:
    """Normalize an aggregate id selection; a bare string selects one aggregate."""
    if aggregate_ids is None:
        return None
    if isinstance(aggregate_ids, str):
        return {aggregate_ids}
    if not isinstance(aggregate_ids, Collection):
        raise TypeError(
            f"aggregate_ids must be a string or a collection of strings, "
            f"not {type(aggregate_ids).__name__}"
        )
    return set(aggregate_ids)


class ViewModelEngine:
    """Builds view models from the event log and opens live sessions on them."""

    def __init__(self, registry: Registry, event_log: EventLog):
        self.registry = registry
        self.event_log = event_log

    async def build(
        self, view_model_name: str, aggregate_ids: str | Collection[str] | None = None
    ) -> ViewModel:
        """Fold the stored events of the selected aggregates into a view model.

        Events are folded in commit order. With no aggregate ids, every
        event in the store is folded.

        Raises:
            ViewModelNotFound: If no view model is registered under the name.
        """
        view_model, _ = await self._fold(view_model_name, aggregate_ids)
        return view_model

    async def resolve(self, view_model_name: str, args: dict[str, Any]) -> dict[str, Any]:
        """Answer a view model query with the current state snapshot.

        ``args["aggregate_ids"]`` may be a single id or a list of ids.

        Raises:
            TypeError: If ``aggregate_ids`` is neither.
        """
        view_model = await self.build(view_model_name, args.get("aggregate_ids"))
        return view_model.snapshot()

    async def open_session(
        self, view_model_name: str, aggregate_ids: str | Collection[str] | None = None
    ) -> ViewModelSession:
        """Fold the history, then keep the state current from the event bus.

        The bus subscription starts at the position of the last stored
        event read, so no event is missed or applied twice.
        """
        view_model, cursor = await self._fold(view_model_name, aggregate_ids)
        session = ViewModelSession(view_model, aggregate_ids, cursor)
        session.follow(self.event_log)
        LOGGER.debug(
            "Opened view model session",
            extra={"view_model": view_model_name, "cursor": cursor},
        )
        return session

    async def _fold(
        self, view_model_name: str, aggregate_ids: str | Collection[str] | None
    ) -> tuple[ViewModel, int]:
        view_model_type = self.registry.view_model(view_model_name)
        view_model = view_model_type()
        selected = _id_set(aggregate_ids)
        cursor = 0
        async for event in self.event_log.load_all():
            cursor = event.position
            if _selects(selected, event):
                view_model.apply(event)
        return view_model, cursor
