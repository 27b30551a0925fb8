"""Pytest fixtures for MongoDB integration tests."""

from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
from testcontainers.mongodb import MongoDbContainer

from retold.integrations.mongodb import MongoConfiguration, MongoEventStore


@pytest.fixture(scope="module")
def mongodb_container():
    """Start MongoDB container for tests."""
    container = MongoDbContainer("mongo:7")
    with container:
        yield container


@pytest_asyncio.fixture
async def mongo_config(
    mongodb_container, request: pytest.FixtureRequest
) -> AsyncIterator[MongoConfiguration]:
    """A configuration pointing at a fresh database per test."""
    config = MongoConfiguration(
        uri=mongodb_container.get_connection_url(),
        database=f"test_{request.node.name}"[:63],
    )
    await config.client.drop_database(config.database)
    try:
        yield config
    finally:
        await config.on_shutdown()


@pytest_asyncio.fixture
async def mongo_event_store(mongo_config: MongoConfiguration) -> MongoEventStore:
    store = MongoEventStore(mongo_config)
    await store.initialize_schema()
    return store
