"""Command bus: the middleware chain in front of the aggregate runtime."""

from collections.abc import Callable, Coroutine
from functools import reduce
from typing import Any

from ...domain import Command, Event
from ..aggregates import AggregateRuntime
from ..middleware import Middleware

CommandHandler = Callable[[Command], Coroutine[Any, Any, Any]]


class CommandBus:
    """Command bus for dispatching commands through middleware.

    Middleware is applied in registration order, with each middleware
    deciding via annotation-based routing whether to intercept a command.
    The end of the chain is the aggregate runtime.

    Args:
        runtime: The runtime executing commands against aggregates.
        middleware: List of middleware to apply (in order).
    """

    def __init__(self, runtime: AggregateRuntime, middleware: list[Middleware]):
        self.runtime = runtime
        self.middleware = middleware
        # Build the middleware chain by reducing from right to left
        self.chain: CommandHandler = reduce(
            lambda next, mw: lambda cmd, n=next, m=mw: m.intercept(cmd, n),
            reversed(middleware),
            self.runtime.execute,
        )

    async def dispatch(self, command: Command) -> list[Event[Any]]:
        """Dispatch command through the middleware chain to the runtime.

        Returns:
            The events appended for the command.
        """
        return await self.chain(command)
