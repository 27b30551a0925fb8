"""MongoDB implementation of EventStore.

Every append is stored as a single "commit" document holding all of the
appended events, so a batch is written atomically without multi-document
transactions. Optimistic concurrency relies on a unique index on
``(aggregate_id, version_from)``: two appends made against the same
expected version both try to create the commit starting at the next
version, and only one insert can win.

Global positions are allocated from a counter document. Positions are
increasing but may have gaps (a losing append burns its positions).
"""

import asyncio
from collections.abc import AsyncIterator, Sequence
from typing import Any

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError
from ulid import ULID

from ...application.events import AppendResult, EventStore
from ...domain import ConcurrencyConflict, Event, PendingEvent, StoreUnavailable, epoch_millis
from .config import MongoConfiguration

_POSITION_COUNTER = "position"


def _ulid_or_none(value: str | None) -> ULID | None:
    return ULID.from_str(value) if value else None


class MongoEventStore(EventStore):
    """MongoDB-backed event store.

    Appends from one process are serialized so that positions become
    visible in the order they were allocated. Running several writer
    processes against one database is not supported.

    Examples:
        >>> store = MongoEventStore(MongoConfiguration(database="shop"))
        >>> await store.on_startup()  # creates the indexes
        >>> result = await store.append("A1", "ShoppingList", 0, [pending])
    """

    def __init__(self, config: MongoConfiguration):
        self.config = config
        self._append_lock = asyncio.Lock()

    async def on_startup(self) -> None:
        await self.initialize_schema()

    async def on_shutdown(self) -> None:
        await self.config.on_shutdown()

    async def initialize_schema(self) -> None:
        """Create the indexes the store relies on.

        Creates:
            - Unique index on (aggregate_id, version_from): concurrency control
            - Unique index on position_from: commit order
        """
        try:
            await self.config.commits.create_index(
                [("aggregate_id", ASCENDING), ("version_from", ASCENDING)], unique=True
            )
            await self.config.commits.create_index([("position_from", ASCENDING)], unique=True)
        except PyMongoError as error:
            raise StoreUnavailable(f"Could not create event store indexes: {error}") from error

    async def append(
        self,
        aggregate_id: str,
        aggregate_name: str,
        expected_version: int,
        events: Sequence[PendingEvent],
    ) -> AppendResult:
        if not events:
            current_version = await self.current_version(aggregate_id)
            if current_version != expected_version:
                raise ConcurrencyConflict(aggregate_id, expected_version, current_version)
            return AppendResult(new_version=expected_version)

        async with self._append_lock:
            try:
                current_version = await self.current_version(aggregate_id)
                if current_version != expected_version:
                    raise ConcurrencyConflict(aggregate_id, expected_version, current_version)

                last_position = await self._allocate_positions(len(events))
                first_position = last_position - len(events) + 1
                timestamp = epoch_millis()
                appended = [
                    Event(
                        aggregate_id=aggregate_id,
                        aggregate_name=aggregate_name,
                        type=pending.type,
                        version=expected_version + offset,
                        position=first_position + offset - 1,
                        timestamp=timestamp,
                        payload=pending.payload,
                        schema_version=pending.schema_version,
                        meta=pending.meta,
                        correlation_id=pending.correlation_id,
                        causation_id=pending.causation_id,
                    )
                    for offset, pending in enumerate(events, start=1)
                ]
                await self.config.commits.insert_one(
                    {
                        "aggregate_id": aggregate_id,
                        "aggregate_name": aggregate_name,
                        "version_from": expected_version + 1,
                        "version_to": expected_version + len(appended),
                        "position_from": first_position,
                        "position_to": last_position,
                        "timestamp": timestamp,
                        "events": [self._event_document(event) for event in appended],
                    }
                )
            except DuplicateKeyError:
                raise ConcurrencyConflict(
                    aggregate_id, expected_version, await self.current_version(aggregate_id)
                ) from None
            except PyMongoError as error:
                raise StoreUnavailable(f"Could not append events: {error}") from error

        return AppendResult(new_version=appended[-1].version, events=appended)

    async def load_events(
        self, aggregate_id: str, from_version: int = 0
    ) -> AsyncIterator[Event[Any]]:
        cursor = self.config.commits.find(
            {"aggregate_id": aggregate_id, "version_to": {"$gte": from_version}}
        ).sort("version_from", ASCENDING)
        try:
            async for commit in cursor:
                for event in self._commit_events(commit):
                    if event.version >= from_version:
                        yield event
        except PyMongoError as error:
            raise StoreUnavailable(f"Could not load events of {aggregate_id}: {error}") from error

    async def load_all(self, from_position: int = 0) -> AsyncIterator[Event[Any]]:
        cursor = self.config.commits.find({"position_to": {"$gt": from_position}}).sort(
            "position_from", ASCENDING
        )
        try:
            async for commit in cursor:
                for event in self._commit_events(commit):
                    if event.position > from_position:
                        yield event
        except PyMongoError as error:
            raise StoreUnavailable(f"Could not load events: {error}") from error

    async def current_version(self, aggregate_id: str) -> int:
        try:
            commit = await self.config.commits.find_one(
                {"aggregate_id": aggregate_id},
                projection={"version_to": 1},
                sort=[("version_from", DESCENDING)],
            )
        except PyMongoError as error:
            raise StoreUnavailable(f"Could not read version of {aggregate_id}: {error}") from error
        return commit["version_to"] if commit else 0

    async def head_position(self) -> int:
        try:
            commit = await self.config.commits.find_one(
                {}, projection={"position_to": 1}, sort=[("position_from", DESCENDING)]
            )
        except PyMongoError as error:
            raise StoreUnavailable(f"Could not read head position: {error}") from error
        return commit["position_to"] if commit else 0

    async def aggregate_ids(self) -> list[str]:
        try:
            return list(await self.config.commits.distinct("aggregate_id"))
        except PyMongoError as error:
            raise StoreUnavailable(f"Could not list aggregates: {error}") from error

    async def _allocate_positions(self, count: int) -> int:
        counter = await self.config.counters.find_one_and_update(
            {"_id": _POSITION_COUNTER},
            {"$inc": {"value": count}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return counter["value"]

    @staticmethod
    def _event_document(event: Event[Any]) -> dict[str, Any]:
        return {
            "id": str(event.id),
            "type": event.type,
            "version": event.version,
            "position": event.position,
            "payload": event.payload,
            "schema_version": event.schema_version,
            "meta": event.meta,
            "correlation_id": str(event.correlation_id) if event.correlation_id else None,
            "causation_id": str(event.causation_id) if event.causation_id else None,
        }

    @staticmethod
    def _commit_events(commit: dict[str, Any]) -> list[Event[Any]]:
        return [
            Event(
                id=ULID.from_str(doc["id"]),
                aggregate_id=commit["aggregate_id"],
                aggregate_name=commit["aggregate_name"],
                type=doc["type"],
                version=doc["version"],
                position=doc["position"],
                timestamp=commit["timestamp"],
                payload=doc["payload"],
                schema_version=doc.get("schema_version", 1),
                meta=doc.get("meta", {}),
                correlation_id=_ulid_or_none(doc.get("correlation_id")),
                causation_id=_ulid_or_none(doc.get("causation_id")),
            )
            for doc in commit["events"]
        ]
