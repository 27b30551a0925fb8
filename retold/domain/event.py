import time
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from ulid import ULID

T = TypeVar("T")


def epoch_millis() -> int:
    """Get the current time as integer milliseconds since the Unix epoch.

    Note:
        Used as the stored timestamp of every event so that the value is
        independent of the timezone of the process that appended it.
    """
    return time.time_ns() // 1_000_000


class PendingEvent(BaseModel):
    """An event proposed by a command handler that has not been appended yet.

    The event store turns pending events into ``Event`` records by assigning
    the version, position and timestamp.
    """

    model_config = ConfigDict(frozen=True)

    type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    schema_version: int = 1
    meta: dict[str, Any] = Field(default_factory=dict)
    correlation_id: ULID | None = None
    causation_id: ULID | None = None


class Event(BaseModel, Generic[T]):
    """Immutable record of a state change in an aggregate.

    Events are appended to a per-aggregate log and never changed or deleted
    afterwards. Each one is:

    - **Versioned**: ``version`` starts at 1 and grows by exactly one per event
      of the same aggregate
    - **Positioned**: ``position`` is the global commit order across the
      whole store, used as the cursor by projections
    - **Typed**: ``type`` is the tag that selects reducers and projections
    - **Timestamped**: ``timestamp`` is epoch milliseconds
    - **Traceable**: correlation and causation ids tie it to the command

    Stored events carry the payload as a plain structured value. Handlers
    annotated with ``Event[SomePayload]`` receive a copy whose payload has
    been validated into ``SomePayload``.

    Attributes:
        id: Unique identifier of this event instance
        aggregate_id: Id of the aggregate that produced the event
        aggregate_name: Name of the aggregate type
        type: Event type tag
        version: Position in the aggregate's stream (1-indexed)
        position: Position in the store-wide commit order (1-indexed)
        timestamp: When the event was appended, epoch milliseconds
        payload: Event data
        schema_version: Version of the payload shape
        meta: Free-form metadata copied from the command
        correlation_id: Id tracing the whole logical operation
        causation_id: Id of what caused the event (typically the command id)

    Examples:
        >>> event = Event(
        ...     aggregate_id="A1",
        ...     aggregate_name="ShoppingList",
        ...     type="ShoppingListCreated",
        ...     version=1,
        ...     position=1,
        ...     payload={"name": "Groceries"},
        ... )
        >>> event.to_wire()["aggregateId"]
        'A1'
    """

    model_config = ConfigDict(frozen=True)

    id: ULID = Field(default_factory=ULID)
    aggregate_id: str
    aggregate_name: str
    type: str
    version: int = Field(ge=1)
    position: int = Field(default=0, ge=0)
    timestamp: int = Field(default_factory=epoch_millis)
    payload: T
    schema_version: int = 1
    meta: dict[str, Any] = Field(default_factory=dict)
    correlation_id: ULID | None = None
    causation_id: ULID | None = None

    def to_wire(self) -> dict[str, Any]:
        """Return the storage and wire shape of the event."""
        payload = self.payload
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(mode="json")
        return {
            "aggregateId": self.aggregate_id,
            "aggregateName": self.aggregate_name,
            "type": self.type,
            "version": self.version,
            "timestamp": self.timestamp,
            "payload": payload,
        }
