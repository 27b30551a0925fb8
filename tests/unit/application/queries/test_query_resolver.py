from typing import Any

import pytest

from retold import Command, Query, ReadModelReader, resolves
from retold.application import Application
from retold.domain import (
    ReadModelAccessError,
    ReadModelNotFound,
    ReadModelSchemaError,
    ResolverExecutionError,
    ResolverNotFound,
    ViewModelNotFound,
)
from tests.fixtures.shopping_app import CreateShoppingList, ShoppingLists


class BrokenLists(ShoppingLists):
    read_model_name = "BrokenLists"

    @resolves
    async def explode(self, store: ReadModelReader, args: dict[str, Any]) -> Any:
        raise KeyError("missing")

    @resolves
    async def sneaky(self, store: ReadModelReader, args: dict[str, Any]) -> Any:
        await store.insert("lists", {"id": "X"})


@pytest.fixture
def app(app_builder) -> Application:
    return app_builder.register_read_model(BrokenLists).build()


async def create(app: Application, *names: str) -> None:
    for index, name in enumerate(names, start=1):
        await app.execute_command(
            Command.create("ShoppingList", f"A{index}", CreateShoppingList(name=name))
        )
    await app.catch_up()


@pytest.mark.asyncio
async def test_resolvers_run_against_their_read_model(app: Application):
    await create(app, "Groceries", "Hardware")

    assert await app.execute_query(Query(read_model_name="ShoppingLists", resolver_name="count")) == 2
    found = await app.execute_query(
        Query(read_model_name="ShoppingLists", resolver_name="by-id", args={"id": "A2"})
    )
    assert found["name"] == "Hardware"


def test_resolver_names():
    assert set(ShoppingLists.resolver_names()) == {"all", "by-id", "count"}
    assert {"all", "explode", "sneaky"} <= set(BrokenLists.resolver_names())


@pytest.mark.asyncio
async def test_unknown_read_model(app: Application):
    with pytest.raises(ReadModelNotFound):
        await app.execute_query(Query(read_model_name="Nope", resolver_name="all"))


@pytest.mark.asyncio
async def test_unknown_resolver(app: Application):
    with pytest.raises(ResolverNotFound):
        await app.execute_query(Query(read_model_name="ShoppingLists", resolver_name="nope"))


@pytest.mark.asyncio
async def test_failing_resolver_is_wrapped(app: Application):
    await create(app, "Groceries")

    with pytest.raises(ResolverExecutionError) as exc_info:
        await app.execute_query(Query(read_model_name="BrokenLists", resolver_name="explode"))

    assert isinstance(exc_info.value.__cause__, KeyError)


@pytest.mark.asyncio
async def test_resolvers_cannot_write(app: Application):
    """A resolver only gets the read-only view of its tables."""
    await create(app, "Groceries")

    with pytest.raises(ResolverExecutionError) as exc_info:
        await app.execute_query(Query(read_model_name="BrokenLists", resolver_name="sneaky"))

    assert isinstance(exc_info.value.__cause__, ReadModelAccessError)
    assert await app.execute_query(Query(read_model_name="BrokenLists", resolver_name="count")) == 1


@pytest.mark.asyncio
async def test_view_model_query(app: Application):
    await create(app, "Groceries", "Hardware")

    state = await app.execute_query(
        Query(view_model_name="ShoppingListView", args={"aggregate_ids": ["A1"]})
    )

    assert state == {"names": {"A1": "Groceries"}, "items": {"A1": []}}


@pytest.mark.asyncio
async def test_unknown_view_model(app: Application):
    with pytest.raises(ViewModelNotFound):
        await app.execute_query(Query(view_model_name="Nope"))


def test_query_needs_exactly_one_target():
    with pytest.raises(ValueError):
        Query(resolver_name="all")
    with pytest.raises(ValueError):
        Query(read_model_name="A", view_model_name="B")


@pytest.mark.asyncio
async def test_query_before_read_model_is_initialized(app: Application):
    with pytest.raises(ReadModelSchemaError):
        await app.execute_query(Query(read_model_name="ShoppingLists", resolver_name="count"))

    await app.projection("ShoppingLists").initialize()
    assert await app.execute_query(Query(read_model_name="ShoppingLists", resolver_name="count")) == 0


@pytest.mark.asyncio
async def test_view_model_query_with_a_single_aggregate_id(app: Application):
    await create(app, "Groceries", "Hardware")

    state = await app.execute_query(
        Query(view_model_name="ShoppingListView", args={"aggregate_ids": "A1"})
    )

    assert state == {"names": {"A1": "Groceries"}, "items": {"A1": []}}


@pytest.mark.asyncio
async def test_view_model_query_rejects_malformed_aggregate_ids(app: Application):
    with pytest.raises(TypeError):
        await app.execute_query(Query(view_model_name="ShoppingListView", args={"aggregate_ids": 7}))
