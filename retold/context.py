import contextvars
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, replace

from ulid import ULID


@dataclass(frozen=True)
class ExecutionContext:
    """Immutable context tracking a request as it flows through the system.

    Attributes:
        correlation_id: Traces an entire logical operation across commands,
            events and queries. Constant throughout the flow.
        causation_id: Id of what directly caused the current operation: the
            entry point, a command, or an event.
        command_id: Id of the command currently executing. Events appended
            while it runs use it as their causation id.

    Examples:
        >>> ctx = ExecutionContext.create()
        >>> cmd_ctx = ctx.for_command(ULID())
        >>> cmd_ctx.correlation_id == ctx.correlation_id
        True
    """

    correlation_id: ULID | None = None
    causation_id: ULID | None = None
    command_id: ULID | None = None

    @classmethod
    def create(cls, correlation_id: ULID | None = None) -> "ExecutionContext":
        """Create a context for a new logical operation.

        At entry points the causation id refers to the correlation id itself.
        """
        if correlation_id is None:
            correlation_id = ULID()
        return cls(correlation_id=correlation_id, causation_id=correlation_id)

    def for_command(self, command_id: ULID) -> "ExecutionContext":
        return replace(self, command_id=command_id)

    def for_event(self, event_id: ULID) -> "ExecutionContext":
        """Child context for reacting to an event; the event becomes the cause."""
        return replace(self, causation_id=event_id, command_id=None)

    def as_log_extra(self) -> dict[str, str]:
        """Return the ids that are set, stringified for ``logging`` extras."""
        extra = {}
        if self.correlation_id is not None:
            extra["correlation_id"] = str(self.correlation_id)
        if self.causation_id is not None:
            extra["causation_id"] = str(self.causation_id)
        if self.command_id is not None:
            extra["command_id"] = str(self.command_id)
        return extra


_context: contextvars.ContextVar[ExecutionContext | None] = contextvars.ContextVar(
    "retold_execution_context", default=None
)


def get_context() -> ExecutionContext:
    """Get the current execution context, or an empty one if none is set."""
    ctx = _context.get()
    if ctx is None:
        return ExecutionContext()
    return ctx


def set_context(context: ExecutionContext) -> None:
    _context.set(context)


def clear_context() -> None:
    _context.set(None)


@contextmanager
def execution_context(context: ExecutionContext) -> Iterator[ExecutionContext]:
    """Make ``context`` current for the duration of the block.

    The previous context is restored on exit, even if the block raises, so
    nested operations do not leak their ids into the caller.

    Example:
        >>> with execution_context(ExecutionContext.create()) as ctx:
        ...     await app.execute_command(command)
    """
    token = _context.set(context)
    try:
        yield context
    finally:
        _context.reset(token)
