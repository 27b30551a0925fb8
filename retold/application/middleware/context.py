"""Context propagation middleware for correlation and causation tracking."""

from typing import Any

from ...context import ExecutionContext, execution_context
from ...domain import Command
from ...routing import intercepts
from .base import Handler, Middleware


class ContextPropagationMiddleware(Middleware):
    """Middleware that propagates execution context from commands.

    Sets up the execution context from the command before it is handled,
    so that the events it produces carry the command's correlation id and
    name the command as their cause.

    **Context Setup**:
    - If the command has a correlation_id: use it
    - Otherwise: generate a new one (entry point)
    - If the command has a causation_id: use it
    - Otherwise: use the correlation_id (self-referencing entry point)
    - Always use command.command_id as the command id

    The previous context is restored after the command completes, even if
    it fails, so nothing leaks between operations.

    Note:
        This middleware is registered first in the chain by
        ApplicationBuilder.use_correlation_tracking().
    """

    @intercepts
    async def propagate_context(self, command: Command, next: Handler) -> Any:
        ctx = ExecutionContext.create(command.correlation_id)
        if command.causation_id is not None:
            ctx = ExecutionContext(
                correlation_id=ctx.correlation_id,
                causation_id=command.causation_id,
            )

        with execution_context(ctx.for_command(command.command_id)):
            return await next(command)
