"""Central test fixtures built around the shopping list test application."""

import pytest
from ulid import ULID

from retold import ApplicationBuilder, Command, RetoldSettings
from retold.application import Application, InMemoryEventStore
from retold.context import clear_context
from tests.fixtures.shopping_app import (
    CreateShoppingList,
    ShoppingList,
    ShoppingLists,
    ShoppingListView,
)


@pytest.fixture
def aggregate_id() -> str:
    """Generate a unique aggregate ID."""
    return str(ULID())


@pytest.fixture
def settings() -> RetoldSettings:
    """Settings with short delays so retry paths run fast."""
    return RetoldSettings(
        command_retry_delay=0,
        projection_retry_delay=0.001,
        projection_retry_max_delay=0.01,
    )


@pytest.fixture
def event_store() -> InMemoryEventStore:
    """Create an in-memory event store."""
    return InMemoryEventStore()


@pytest.fixture
def app_builder(event_store: InMemoryEventStore, settings: RetoldSettings) -> ApplicationBuilder:
    """Builder with the shopping list domain and in-memory backends."""
    return (
        ApplicationBuilder()
        .use_settings(settings)
        .use_event_store(event_store)
        .register_aggregate(ShoppingList)
        .register_read_model(ShoppingLists())
        .register_view_model(ShoppingListView)
    )


@pytest.fixture
def app(app_builder: ApplicationBuilder) -> Application:
    return app_builder.build()


@pytest.fixture
def create_command(aggregate_id: str) -> Command:
    return Command.create("ShoppingList", aggregate_id, CreateShoppingList(name="Groceries"))


@pytest.fixture(autouse=True)
def clear_execution_context():
    """Automatically clear execution context after each test."""
    yield
    clear_context()
