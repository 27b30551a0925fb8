from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Iterable
from typing import Any, Generic, TypeVar, get_args

from pydantic import BaseModel

from ....domain import Event, PendingEvent, payload_schema_version, payload_type_name
from ....domain.payload import Payload
from .strategies import UpcastingStrategy

T = TypeVar("T", bound=Payload)
U = TypeVar("U", bound=Payload)
E = TypeVar("E", bound=BaseModel)


def extract_upcaster_types(upcaster_class: type) -> tuple[type[Payload], type[Payload]]:
    """Extract source and target payload types from an EventUpcaster subclass.

    Args:
        upcaster_class: The EventUpcaster subclass to introspect

    Returns:
        Tuple of (source_type, target_type)

    Raises:
        ValueError: If type parameters cannot be extracted

    Example:
        >>> class CreatedV1ToV2(EventUpcaster[ShoppingListCreatedV1, ShoppingListCreated]):
        ...     pass
        >>> extract_upcaster_types(CreatedV1ToV2)
        (<class 'ShoppingListCreatedV1'>, <class 'ShoppingListCreated'>)
    """
    for base in getattr(upcaster_class, "__orig_bases__", ()):
        origin = getattr(base, "__origin__", None)
        if isinstance(origin, type) and issubclass(origin, EventUpcaster):
            args = get_args(base)
            if len(args) == 2:
                return (args[0], args[1])

    raise ValueError(
        f"Cannot extract types from {upcaster_class.__name__}: "
        f"must inherit from EventUpcaster[SourceType, TargetType]"
    )


class EventUpcaster(Generic[T, U], ABC):
    """Base class for transforming an event payload to a newer schema.

    The source and target payload classes are read from the generic
    parameters. An event matches the upcaster when its type tag and schema
    version are those of the source class.

    Example:
        >>> class ShoppingListCreatedV1(Payload):
        ...     type_name = "ShoppingListCreated"
        ...     title: str
        ...
        >>> class ShoppingListCreated(Payload):
        ...     schema_version = 2
        ...     name: str
        ...
        >>> class RenameTitle(EventUpcaster[ShoppingListCreatedV1, ShoppingListCreated]):
        ...     async def upcast_payload(self, data: ShoppingListCreatedV1) -> ShoppingListCreated:
        ...         return ShoppingListCreated(name=data.title)
    """

    @property
    def source_key(self) -> tuple[str, int]:
        source_type, _ = extract_upcaster_types(type(self))
        return (payload_type_name(source_type), payload_schema_version(source_type))

    async def upcast_event(self, event: E) -> E:
        """Transform an event's payload, keeping all other metadata."""
        source_type, target_type = extract_upcaster_types(type(self))
        upcasted = await self.upcast_payload(source_type.model_validate(event.payload))
        return event.model_copy(
            update={
                "type": payload_type_name(target_type),
                "schema_version": payload_schema_version(target_type),
                "payload": upcasted.to_value(),
            }
        )

    async def can_upcast(self, event: Event[Any] | PendingEvent) -> bool:
        """Override for conditional upcasting (e.g., only before a date)."""
        return True

    @abstractmethod
    async def upcast_payload(self, data: T) -> U:
        """Transform payload data from the old schema to the new one."""
        ...


class UpcasterMap:
    """Upcasters indexed by the (type tag, schema version) they accept."""

    @staticmethod
    def from_upcasters(upcasters: Iterable[EventUpcaster[Any, Any]]) -> "UpcasterMap":
        map = UpcasterMap()
        for upcaster in upcasters:
            map.register_upcaster(upcaster)
        return map

    def __init__(self) -> None:
        self.upcasters: dict[tuple[str, int], list[EventUpcaster[Any, Any]]] = {}

    def register_upcaster(self, upcaster: EventUpcaster[Any, Any]) -> None:
        self.upcasters.setdefault(upcaster.source_key, []).append(upcaster)

    def get_upcasters(self, type_tag: str, schema_version: int) -> list[EventUpcaster[Any, Any]]:
        return self.upcasters.get((type_tag, schema_version), [])

    def __len__(self) -> int:
        return sum(len(upcasters) for upcasters in self.upcasters.values())


class UpcastingPipeline:
    """Pipeline for applying event upcasting transformations.

    Supports multi-step chains (V1 -> V2 -> V3): an event is upcast
    repeatedly until no upcaster matches its tag and schema version.
    """

    def __init__(self, upcasting_strategy: UpcastingStrategy, upcaster_map: UpcasterMap):
        self.upcasting_strategy = upcasting_strategy
        self.upcaster_map = upcaster_map

    async def upcast(self, event: E) -> E:
        """Apply the first matching upcaster, or return the event unchanged."""
        for upcaster in self.upcaster_map.get_upcasters(event.type, event.schema_version):
            if await upcaster.can_upcast(event):
                return await upcaster.upcast_event(event)
        return event

    async def upcast_chain(self, event: E, max_steps: int = 10) -> E:
        """Apply upcasters until the event reaches its final form.

        Raises:
            RuntimeError: If max_steps is exceeded
        """
        for _step in range(max_steps):
            upcasted = await self.upcast(event)
            if upcasted is event:
                return upcasted
            event = upcasted

        raise RuntimeError(
            f"Upcasting exceeded max steps ({max_steps}). "
            f"Possible circular upcasting chain for {event.type}"
        )

    async def read_upcast(self, events: AsyncIterator[Event[Any]]) -> AsyncIterator[Event[Any]]:
        """Upcast a stream of stored events according to the strategy."""
        upcast = self.upcasting_strategy.should_upcast_on_read() and len(self.upcaster_map) > 0
        async for event in events:
            yield await self.upcast_chain(event) if upcast else event

    async def write_upcast(self, events: list[PendingEvent]) -> list[PendingEvent]:
        """Upcast proposed events before they are appended, if the strategy says so."""
        if not self.upcasting_strategy.should_upcast_on_write():
            return events
        return [await self.upcast_chain(event) for event in events]
