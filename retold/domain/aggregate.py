from collections.abc import Iterable
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import BaseModel

from ..routing import setup_command_routing, setup_event_applying
from .event import Event
from .payload import Payload

if TYPE_CHECKING:
    from ..routing import MessageRouter


class Aggregate(BaseModel):
    """Base class for aggregates: the consistency boundary of the write side.

    An aggregate instance is the state obtained by folding one aggregate's
    events, in version order, through its ``@applies_event`` reducers. Field
    defaults are the initial state. Instances are throwaway: the runtime
    rebuilds one for every command and never keeps it afterwards.

    ``@handles_command`` methods decide what happens. They read the current
    state and return the proposed event payloads (one payload, a list, or
    None), or raise DomainRuleViolation. They must not mutate state or touch
    anything outside the aggregate, so that a command can be retried safely
    after a concurrency conflict.

    Examples:
        >>> class ShoppingList(Aggregate):
        ...     created_at: int | None = None
        ...     name: str = ""
        ...
        ...     @handles_command
        ...     def create(self, cmd: CreateShoppingList) -> ShoppingListCreated:
        ...         if self.created_at is not None:
        ...             raise DomainRuleViolation("Shopping list already exists")
        ...         return ShoppingListCreated(name=cmd.name)
        ...
        ...     @applies_event
        ...     def created(self, event: Event[ShoppingListCreated]) -> None:
        ...         self.created_at = event.timestamp
        ...         self.name = event.payload.name

    Attributes:
        id: Id of the aggregate instance.
        version: Version of the last event folded into this state.
    """

    aggregate_name: ClassVar[str | None] = None

    id: str = ""
    version: int = 0

    _command_router: ClassVar["MessageRouter"]
    _event_router: ClassVar["MessageRouter"]

    def __init_subclass__(cls, **kwargs: Any) -> None:
        """Set up command and event routing when a subclass is defined."""
        super().__init_subclass__(**kwargs)
        cls._command_router = setup_command_routing(cls)
        cls._event_router = setup_event_applying(cls)

    @classmethod
    def get_name(cls) -> str:
        return vars(cls).get("aggregate_name") or cls.__name__

    @classmethod
    def command_types(cls) -> list[str]:
        return cls._command_router.type_tags()

    @classmethod
    def handles_command_type(cls, type_tag: str) -> bool:
        return cls._command_router.handles(type_tag)

    @classmethod
    def event_payload_type(cls, type_tag: str) -> type[BaseModel] | None:
        return cls._event_router.payload_type(type_tag)

    def handle(self, type_tag: str, payload: Any) -> list[Payload]:
        """Route a command payload to its handler and collect the proposals.

        Raises:
            CommandNotFound: If no handler is registered for ``type_tag``.
            pydantic.ValidationError: If the payload does not validate.
            DomainRuleViolation: If the handler rejects the command.
        """
        result = self._command_router.route(self, type_tag, payload)
        if result is None:
            return []
        if isinstance(result, BaseModel):
            return [result]  # type: ignore[list-item]
        return list(result)

    def apply(self, event: Event[Any]) -> None:
        """Fold one event into the state. Events without a reducer are ignored."""
        self._event_router.route(self, event.type, event.payload, event=event)
        self.version = event.version

    def replay(self, events: Iterable[Event[Any]]) -> None:
        for event in events:
            self.apply(event)
