"""Typed payloads carried by commands and events.

Commands and events travel as type-tagged envelopes whose payload is a plain
structured value. Each tag maps to a ``Payload`` subclass that validates the
raw value and gives handlers a typed object to work with.
"""

from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict


class Payload(BaseModel):
    """Base class for command and event payload schemas.

    The type tag defaults to the class name and can be overridden with the
    ``type_name`` class variable. ``schema_version`` identifies the payload
    shape so that older events can be upcast when they are replayed.

    Examples:
        >>> class ShoppingListCreated(Payload):
        ...     name: str
        >>>
        >>> class CreateShoppingList(Payload):
        ...     type_name = "createShoppingList"
        ...     name: str
        >>>
        >>> payload_type_name(CreateShoppingList)
        'createShoppingList'
    """

    model_config = ConfigDict(frozen=True)

    type_name: ClassVar[str | None] = None
    schema_version: ClassVar[int] = 1

    def to_value(self) -> dict[str, Any]:
        """Dump the payload to the JSON-compatible value that gets stored."""
        return self.model_dump(mode="json")


def payload_type_name(payload_type: type[BaseModel]) -> str:
    """Return the type tag for a payload class.

    Only a ``type_name`` declared on the class itself counts, so a subclass
    never silently inherits its parent's tag.
    """
    return vars(payload_type).get("type_name") or payload_type.__name__


def payload_schema_version(payload_type: type[BaseModel]) -> int:
    return vars(payload_type).get("schema_version", 1)
