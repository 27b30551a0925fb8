"""Read model base class: projections that write, resolvers that read."""

import inspect
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, ClassVar

from ...domain import Event
from ...domain.exceptions import (
    ReadModelSchemaError,
    ResolverExecutionError,
    ResolverNotFound,
    StoreUnavailable,
)
from ...routing import setup_projection_routing, setup_resolvers
from .store import ReadModelReader, ReadModelWriter

if TYPE_CHECKING:
    from ...routing import MessageRouter


class ReadModel:
    """Base class for durable, query-optimized views of the event log.

    A read model is the read side of CQRS. It declares:

    - ``init``: creates its tables; runs once, before the first event
    - ``@projects`` methods: turn events into table writes
    - ``@resolves`` methods: answer queries from the tables

    Projections only ever see a ReadModelWriter and resolvers a
    ReadModelReader, so a projection cannot base its writes on previously
    projected state it reads back, and a resolver cannot change anything.

    Projection functions must be idempotent: after a crash an event may be
    delivered again, and applying it twice must leave the same tables.
    Events without a projection are ignored.

    Example:
        >>> class ShoppingLists(ReadModel):
        ...     read_model_name = "ShoppingLists"
        ...
        ...     async def init(self, store: ReadModelWriter) -> None:
        ...         await store.define_table("lists", TableSchema(
        ...             indexes={"id": "string"}, fields=["name", "createdAt"]))
        ...
        ...     @projects
        ...     async def created(self, store: ReadModelWriter,
        ...                       event: Event[ShoppingListCreated]) -> None:
        ...         await store.insert("lists", {
        ...             "id": event.aggregate_id,
        ...             "name": event.payload.name,
        ...             "createdAt": event.timestamp,
        ...         })
        ...
        ...     @resolves
        ...     async def all(self, store: ReadModelReader, args: dict) -> list[dict]:
        ...         return await store.find("lists", sort={"createdAt": 1})
    """

    read_model_name: ClassVar[str | None] = None

    _projection_router: ClassVar["MessageRouter"]
    _resolvers: ClassVar[dict[str, Callable[..., Any]]]

    def __init_subclass__(cls, **kwargs: object) -> None:
        """Set up projection and resolver routing when a subclass is defined."""
        super().__init_subclass__(**kwargs)
        cls._projection_router = setup_projection_routing(cls)
        cls._resolvers = setup_resolvers(cls)

    @classmethod
    def get_name(cls) -> str:
        return vars(cls).get("read_model_name") or cls.__name__

    @classmethod
    def resolver_names(cls) -> list[str]:
        return list(cls._resolvers)

    def handles(self, type_tag: str) -> bool:
        return self._projection_router.handles(type_tag)

    async def init(self, store: ReadModelWriter) -> None:
        """Create the tables of this read model. Does nothing by default."""

    async def project(self, store: ReadModelWriter, event: Event[Any]) -> bool:
        """Apply one event to the tables.

        Returns:
            False when the read model has no projection for the event type.
        """
        if not self.handles(event.type):
            return False
        result = self._projection_router.route(self, event.type, event.payload, store, event=event)
        if inspect.isawaitable(result):
            await result
        return True

    async def resolve(self, resolver_name: str, store: ReadModelReader, args: dict[str, Any]) -> Any:
        """Run a resolver.

        Raises:
            ResolverNotFound: If the read model has no such resolver.
            ResolverExecutionError: If the resolver raised.
            ReadModelSchemaError: If a table the resolver reads is not defined,
                for example before the read model has been initialized.
            StoreUnavailable: If the store could not be reached.
        """
        resolver = self._resolvers.get(resolver_name)
        if resolver is None:
            raise ResolverNotFound(
                f"Read model {self.get_name()} has no resolver {resolver_name!r}"
            )

        try:
            result = resolver(self, store, args)
            if inspect.isawaitable(result):
                result = await result
        except (StoreUnavailable, ReadModelSchemaError):
            raise
        except Exception as error:
            raise ResolverExecutionError(self.get_name(), resolver_name, error) from error
        return result
