from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import BaseModel

from ...domain import Event
from ...routing import setup_event_applying

if TYPE_CHECKING:
    from ...routing import MessageRouter


class ViewModel(BaseModel):
    """Base class for in-memory, per-session views of a few aggregates.

    A view model is a throwaway fold of events, like an aggregate's state,
    but built for display: it is computed on demand, never stored, and kept
    up to date only while a client session is open. Field defaults are the
    initial state; ``@applies_event`` reducers fold events into it.

    Example:
        >>> class ShoppingListView(ViewModel):
        ...     view_model_name = "ShoppingListView"
        ...     lists: dict[str, str] = {}
        ...
        ...     @applies_event
        ...     def created(self, event: Event[ShoppingListCreated]) -> None:
        ...         self.lists[event.aggregate_id] = event.payload.name
    """

    view_model_name: ClassVar[str | None] = None

    _event_router: ClassVar["MessageRouter"]

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        cls._event_router = setup_event_applying(cls)

    @classmethod
    def get_name(cls) -> str:
        return vars(cls).get("view_model_name") or cls.__name__

    def apply(self, event: Event[Any]) -> bool:
        """Fold one event into the view. Returns False if nothing handles it."""
        if not self._event_router.handles(event.type):
            return False
        self._event_router.route(self, event.type, event.payload, event=event)
        return True

    def snapshot(self) -> dict[str, Any]:
        return self.model_dump(mode="json")
