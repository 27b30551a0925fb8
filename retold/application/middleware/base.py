"""Base middleware class for commands and queries.

Middleware components wrap the command and query buses to provide
cross-cutting concerns like logging, context propagation, or authorization.
"""

import inspect
from collections.abc import Callable, Coroutine
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import BaseModel

if TYPE_CHECKING:
    from ...routing import ClassRouter

# Handler type for both commands and queries
Handler = Callable[[BaseModel], Coroutine[Any, Any, Any]]


class Middleware:
    """Base class for middleware with annotation-based routing.

    Middleware follows the chain of responsibility pattern. Interceptor
    methods are declared with the @intercepts decorator; the message class
    in their annotation decides which messages they see. Annotating with
    Command or Query intercepts every message of that kind.

    If no interceptor matches the message, the middleware forwards it to
    the next handler unchanged.

    Examples:
        Intercept all commands:

        >>> class AuditMiddleware(Middleware):
        ...     @intercepts
        ...     async def audit(self, cmd: Command, next: Handler) -> Any:
        ...         print(f"Command: {cmd.type}")
        ...         return await next(cmd)

        Intercept queries:

        >>> class TenantMiddleware(Middleware):
        ...     @intercepts
        ...     async def scope(self, query: Query, next: Handler) -> Any:
        ...         return await next(query.model_copy(update={"args": {**query.args, "tenant": "a"}}))
    """

    _message_router: ClassVar["ClassRouter"]

    def __init_subclass__(cls, **kwargs: object) -> None:
        """Set up routing when a subclass is defined."""
        super().__init_subclass__(**kwargs)
        from ...routing import setup_middleware_routing

        cls._message_router = setup_middleware_routing(cls)

    async def intercept(self, message: BaseModel, next: Handler) -> Any:
        """Route message to interceptor method or forward to next.

        Args:
            message: The command or query to intercept.
            next: The next handler in the middleware chain.

        Returns:
            The result from the interceptor or next handler.
        """
        result = self._message_router.route(self, message, next)

        if result is None:
            return await next(message)
        elif inspect.isawaitable(result):
            return await result
        else:
            return result
