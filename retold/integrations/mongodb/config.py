"""MongoDB configuration using pydantic-settings."""

from functools import cached_property
from typing import Any

from pydantic_settings import BaseSettings, SettingsConfigDict
from pymongo.asynchronous.collection import AsyncCollection
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.asynchronous.mongo_client import AsyncMongoClient


class MongoConfiguration(BaseSettings):
    """Configuration and factory for MongoDB resources.

    All settings can be configured via environment variables with the
    RETOLD_MONGO_ prefix. For example:
    - RETOLD_MONGO_URI=mongodb://localhost:27017
    - RETOLD_MONGO_DATABASE=myapp
    - RETOLD_MONGO_COMMITS_COLLECTION=domain_commits

    The configuration also acts as a factory, providing lazily created
    client, database and collection handles.

    Attributes:
        uri: MongoDB connection URI.
        database: Database name to use.
        commits_collection: Collection storing one document per append.
        counters_collection: Collection holding the global position counter.
        server_selection_timeout_ms: How long an operation waits for a
            reachable server before failing with StoreUnavailable.

    Example:
        >>> config = MongoConfiguration(database="shop")
        >>> app = (ApplicationBuilder()
        ...     .use_event_store(MongoEventStore(config))
        ...     .build())
        >>> async with app:  # creates indexes, closes the client on exit
        ...     ...
    """

    uri: str = "mongodb://localhost:27017"
    database: str = "retold"

    commits_collection: str = "commits"
    counters_collection: str = "counters"

    server_selection_timeout_ms: int = 5000

    model_config = SettingsConfigDict(env_prefix="RETOLD_MONGO_")

    @cached_property
    def client(self) -> AsyncMongoClient[dict[str, Any]]:
        """Get the MongoDB async client.

        The client is lazily created and cached for reuse.
        """
        return AsyncMongoClient(self.uri, serverSelectionTimeoutMS=self.server_selection_timeout_ms)

    @cached_property
    def db(self) -> AsyncDatabase[dict[str, Any]]:
        return self.client[self.database]

    @cached_property
    def commits(self) -> AsyncCollection[dict[str, Any]]:
        return self.db[self.commits_collection]

    @cached_property
    def counters(self) -> AsyncCollection[dict[str, Any]]:
        return self.db[self.counters_collection]

    async def on_shutdown(self) -> None:
        """Close the MongoDB client if it was created."""
        if "client" in self.__dict__:
            await self.client.close()
