"""Shopping list application used across the test suite."""

from .aggregates import ShoppingList
from .payloads import (
    AddShoppingItem,
    CreateShoppingList,
    RemoveShoppingList,
    RenameShoppingList,
    ShoppingItemAdded,
    ShoppingListCreated,
    ShoppingListRemoved,
    ShoppingListRenamed,
)
from .read_models import ShoppingLists
from .view_models import ShoppingListView

__all__ = [
    "ShoppingList",
    "ShoppingLists",
    "ShoppingListView",
    "AddShoppingItem",
    "CreateShoppingList",
    "RemoveShoppingList",
    "RenameShoppingList",
    "ShoppingItemAdded",
    "ShoppingListCreated",
    "ShoppingListRemoved",
    "ShoppingListRenamed",
]
