from retold import Event, ViewModel, applies_event

from .payloads import (
    ShoppingItemAdded,
    ShoppingListCreated,
    ShoppingListRemoved,
    ShoppingListRenamed,
)


class ShoppingListView(ViewModel):
    view_model_name = "ShoppingListView"

    names: dict[str, str] = {}
    items: dict[str, list[str]] = {}

    @applies_event
    def created(self, event: Event[ShoppingListCreated]) -> None:
        self.names[event.aggregate_id] = event.payload.name
        self.items[event.aggregate_id] = []

    @applies_event
    def renamed(self, event: Event[ShoppingListRenamed]) -> None:
        self.names[event.aggregate_id] = event.payload.name

    @applies_event
    def removed(self, event: Event[ShoppingListRemoved]) -> None:
        self.names.pop(event.aggregate_id, None)
        self.items.pop(event.aggregate_id, None)

    @applies_event
    def item_added(self, event: Event[ShoppingItemAdded]) -> None:
        self.items.setdefault(event.aggregate_id, []).append(event.payload.text)
