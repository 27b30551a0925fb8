"""Query bus: the middleware chain in front of resolvers."""

from collections.abc import Callable, Coroutine
from functools import reduce
from typing import Any

from ...domain import Query
from ..middleware import Middleware
from ..projections import ReadModelStore
from ..registry import Registry
from ..view_models import ViewModelEngine

QueryHandler = Callable[[Query], Coroutine[Any, Any, Any]]


class QueryResolver:
    """Answers queries from read models and view models.

    Read model queries run the named resolver against a read-only view of
    the read model's tables. View model queries fold the requested
    aggregates (``args["aggregate_ids"]``, or all of them) and return the
    resulting state.
    """

    def __init__(
        self,
        registry: Registry,
        read_model_store: ReadModelStore,
        view_model_engine: ViewModelEngine,
    ):
        self.registry = registry
        self.read_model_store = read_model_store
        self.view_model_engine = view_model_engine

    async def resolve(self, query: Query) -> Any:
        """Resolve a query.

        Raises:
            ReadModelNotFound: If the read model is not registered.
            ViewModelNotFound: If the view model is not registered.
            ResolverNotFound: If the read model has no such resolver.
            ResolverExecutionError: If the resolver raised.
            StoreUnavailable: If the store could not be reached.
        """
        if query.view_model_name is not None:
            return await self.view_model_engine.resolve(query.view_model_name, query.args)

        read_model = self.registry.read_model(query.model_name)
        reader = self.read_model_store.reader(read_model.get_name())
        return await read_model.resolve(query.resolver_name, reader, query.args)


class QueryBus:
    """Query bus for dispatching queries through middleware.

    Args:
        resolver: The resolver at the end of the chain.
        middleware: List of middleware to apply (in order).
    """

    def __init__(self, resolver: QueryResolver, middleware: list[Middleware]):
        self.resolver = resolver
        self.middleware = middleware
        self.chain: QueryHandler = reduce(
            lambda next, mw: lambda query, n=next, m=mw: m.intercept(query, n),
            reversed(middleware),
            self.resolver.resolve,
        )

    async def dispatch(self, query: Query) -> Any:
        return await self.chain(query)
