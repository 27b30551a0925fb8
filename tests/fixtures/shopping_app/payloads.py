from pydantic import Field

from retold import Payload


class CreateShoppingList(Payload):
    type_name = "createShoppingList"
    name: str = Field(min_length=1)


class RenameShoppingList(Payload):
    type_name = "renameShoppingList"
    name: str = Field(min_length=1)


class RemoveShoppingList(Payload):
    type_name = "removeShoppingList"


class AddShoppingItem(Payload):
    type_name = "addShoppingItem"
    text: str


class ShoppingListCreated(Payload):
    name: str


class ShoppingListRenamed(Payload):
    name: str


class ShoppingListRemoved(Payload):
    pass


class ShoppingItemAdded(Payload):
    text: str
