"""Error taxonomy for the command, projection and query sides."""

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .event import Event


class RetoldError(Exception):
    """Base class for every error raised by retold."""


class DomainRuleViolation(RetoldError):
    """A command handler rejected the command on business grounds.

    This is not a system error: it is surfaced to the caller as is and never
    retried. ``code`` is a short machine-readable identifier and ``reason``
    the human-readable explanation.

    Examples:
        >>> raise DomainRuleViolation("Shopping list already exists", code="already_exists")
    """

    def __init__(self, reason: str, code: str = "rejected"):
        super().__init__(reason)
        self.reason = reason
        self.code = code

    def to_rejection(self) -> dict[str, str]:
        """Return the caller-facing rejection, free of system detail."""
        return {"code": self.code, "reason": self.reason}


class ConcurrencyConflict(RetoldError):
    """An append found a different current version than the one expected.

    Another command committed to the same aggregate first. The caller has
    to reload state and try again.
    """

    def __init__(self, aggregate_id: str, expected_version: int, actual_version: int):
        super().__init__(
            f"Expected version {expected_version}, got {actual_version} "
            f"for aggregate {aggregate_id}"
        )
        self.aggregate_id = aggregate_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class Contention(RetoldError):
    """Every attempt to execute a command hit a concurrency conflict.

    The command may be resubmitted by the caller.
    """

    retryable = True

    def __init__(self, aggregate_id: str, attempts: int):
        super().__init__(f"Max attempts ({attempts}) reached for aggregate {aggregate_id}")
        self.aggregate_id = aggregate_id
        self.attempts = attempts


class StoreUnavailable(RetoldError):
    """The event store or the read model store could not be reached."""


class AggregateNotFound(RetoldError):
    pass


class CommandNotFound(RetoldError):
    pass


class ReadModelNotFound(RetoldError):
    pass


class ViewModelNotFound(RetoldError):
    pass


class ResolverNotFound(RetoldError):
    pass


class ResolverExecutionError(RetoldError):
    """A resolver raised while answering a query."""

    def __init__(self, model_name: str, resolver_name: str, cause: BaseException):
        super().__init__(f"Resolver {model_name}.{resolver_name} failed: {cause}")
        self.model_name = model_name
        self.resolver_name = resolver_name
        self.cause = cause


class ProjectionApplicationError(RetoldError):
    """A projection function failed while applying an event.

    The mutation attempted by the projection has been rolled back by the
    time this is raised; whether the cursor moves on depends on the
    configured error policy.
    """

    def __init__(self, read_model_name: str, event: "Event[Any]", cause: BaseException):
        super().__init__(
            f"Projection {read_model_name} failed on {event.type} "
            f"at position {event.position}: {cause}"
        )
        self.read_model_name = read_model_name
        self.event = event
        self.cause = cause


class ViewModelApplicationError(RetoldError):
    """A view model reducer failed while applying an event to a live session.

    The session is closed by the time this is raised.
    """

    def __init__(self, view_model_name: str, event: "Event[Any]", cause: BaseException):
        super().__init__(
            f"View model {view_model_name} failed on {event.type} "
            f"at position {event.position}: {cause}"
        )
        self.view_model_name = view_model_name
        self.event = event
        self.cause = cause


class ProjectionHalted(RetoldError):
    """The projection stopped on a failing event and waits for a manual fix."""


class ReadModelAccessError(RetoldError):
    """A read model store operation was called from the wrong role.

    Projections may only mutate a read model and resolvers may only read it.
    """


class ReadModelSchemaError(RetoldError):
    """A write referenced a table or field its read model never defined."""
