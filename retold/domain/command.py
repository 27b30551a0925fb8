"""Command envelope for the write side of CQRS.

Commands represent intentions to change state and are dispatched to the
aggregate named in the envelope.
"""

from typing import Any

from pydantic import BaseModel, Field
from ulid import ULID

from .payload import Payload, payload_type_name


class Command(BaseModel):
    """An intent to change the state of one aggregate.

    Commands are transient: they are validated and executed, or rejected,
    and never stored as such. Only the events they produce are persisted.

    Attributes:
        aggregate_name: Name of the aggregate type that handles the command.
        aggregate_id: Id of the aggregate instance to operate on.
        type: Command type tag used to pick the handler.
        payload: Command data, validated against the handler's payload model.
        meta: Free-form metadata copied onto the resulting events.
        command_id: Unique identifier for this command instance.
        correlation_id: Optional correlation ID for distributed tracing.
        causation_id: Optional ID of what caused this command.

    Examples:
        From raw values, as received from a transport:

        >>> cmd = Command(
        ...     aggregate_name="ShoppingList",
        ...     aggregate_id="A1",
        ...     type="createShoppingList",
        ...     payload={"name": "Groceries"},
        ... )

        From a typed payload:

        >>> cmd = Command.create("ShoppingList", "A1", CreateShoppingList(name="Groceries"))
    """

    aggregate_name: str
    aggregate_id: str
    type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    meta: dict[str, Any] = Field(default_factory=dict)
    command_id: ULID = Field(default_factory=ULID)
    correlation_id: ULID | None = None
    causation_id: ULID | None = None

    @classmethod
    def create(
        cls,
        aggregate_name: str,
        aggregate_id: str,
        payload: Payload,
        **kwargs: Any,
    ) -> "Command":
        """Build a command whose type tag and payload come from a payload model."""
        return cls(
            aggregate_name=aggregate_name,
            aggregate_id=aggregate_id,
            type=payload_type_name(type(payload)),
            payload=payload.to_value(),
            **kwargs,
        )
