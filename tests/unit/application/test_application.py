"""Tests for Application wiring and lifecycle."""

import asyncio

import pytest

from retold import ApplicationBuilder, Command, Query
from retold.application import Application, InMemoryEventStore, Registry
from retold.domain import AggregateNotFound, ReadModelNotFound
from tests.fixtures.shopping_app import (
    CreateShoppingList,
    RenameShoppingList,
    ShoppingList,
    ShoppingLists,
    ShoppingListView,
)


class LifecycleEventStore(InMemoryEventStore):
    def __init__(self, calls: list[str]):
        super().__init__()
        self.calls = calls

    async def on_startup(self) -> None:
        self.calls.append("store:startup")

    async def on_shutdown(self) -> None:
        self.calls.append("store:shutdown")


async def eventually(predicate, attempts: int = 100) -> None:
    for _ in range(attempts):
        if await predicate():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("condition not met in time")


def lists_query() -> Query:
    return Query(read_model_name="ShoppingLists", resolver_name="all")


def test_registry_rejects_duplicate_names():
    registry = Registry()
    registry.add_aggregate(ShoppingList)
    registry.add_read_model(ShoppingLists())
    registry.add_view_model(ShoppingListView)

    with pytest.raises(ValueError):
        registry.add_aggregate(ShoppingList)
    with pytest.raises(ValueError):
        registry.add_read_model(ShoppingLists())
    with pytest.raises(ValueError):
        registry.add_view_model(ShoppingListView)


def test_registry_lookups(app: Application):
    assert app.registry.aggregate("ShoppingList") is ShoppingList
    assert isinstance(app.registry.read_model("ShoppingLists"), ShoppingLists)
    with pytest.raises(AggregateNotFound):
        app.registry.aggregate("Nope")
    with pytest.raises(ReadModelNotFound):
        app.projection("Nope")


def test_builder_instantiates_registered_classes():
    app = ApplicationBuilder().register_read_model(ShoppingLists).build()

    assert isinstance(app.registry.read_model("ShoppingLists"), ShoppingLists)
    assert set(app.engines) == {"ShoppingLists"}


@pytest.mark.asyncio
async def test_background_projections_follow_commands(app: Application, aggregate_id: str):
    async with app:
        assert set(app.projection_tasks) == {"ShoppingLists"}
        await app.execute_command(
            Command.create("ShoppingList", aggregate_id, CreateShoppingList(name="Groceries"))
        )

        async def visible() -> bool:
            return len(await app.execute_query(lists_query())) == 1

        await eventually(visible)

    assert app.projection_tasks == {}


@pytest.mark.asyncio
async def test_startup_catches_up_on_existing_events(event_store, settings, aggregate_id: str):
    writer = ApplicationBuilder().use_event_store(event_store).register_aggregate(ShoppingList).build()
    await writer.execute_command(
        Command.create("ShoppingList", aggregate_id, CreateShoppingList(name="Groceries"))
    )
    reader = (
        ApplicationBuilder()
        .use_settings(settings)
        .use_event_store(event_store)
        .register_read_model(ShoppingLists)
        .build()
    )

    async with reader:

        async def visible() -> bool:
            return len(await reader.execute_query(lists_query())) == 1

        await eventually(visible)


@pytest.mark.asyncio
async def test_lifecycle_dependencies_are_started_and_stopped(settings):
    calls: list[str] = []
    app = (
        ApplicationBuilder()
        .use_settings(settings)
        .use_event_store(LifecycleEventStore(calls))
        .register_aggregate(ShoppingList)
        .build()
    )

    async with app:
        assert calls == ["store:startup"]

    assert calls == ["store:startup", "store:shutdown"]


@pytest.mark.asyncio
async def test_rebuild_while_running(app: Application):
    async with app:
        await app.execute_command(Command.create("ShoppingList", "A1", CreateShoppingList(name="G")))
        await app.execute_command(Command.create("ShoppingList", "A1", RenameShoppingList(name="W")))

        async def renamed() -> bool:
            lists = await app.execute_query(lists_query())
            return [record["name"] for record in lists] == ["W"]

        await eventually(renamed)
        assert await app.rebuild("ShoppingLists") == 2
        assert await renamed()
        assert "ShoppingLists" in app.projection_tasks


@pytest.mark.asyncio
async def test_query_timeout():
    class SlowLists(ShoppingLists):
        read_model_name = "SlowLists"

        async def resolve(self, resolver_name, store, args):
            await asyncio.sleep(10)

    slow_app = ApplicationBuilder().register_read_model(SlowLists).build()

    with pytest.raises(TimeoutError):
        await slow_app.execute_query(
            Query(read_model_name="SlowLists", resolver_name="all"), timeout=0.01
        )
