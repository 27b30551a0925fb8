import asyncio
import logging

import pytest

from retold import ApplicationBuilder, Command, RetoldSettings
from retold.application import Application, InMemoryEventStore, fold
from retold.domain import (
    AggregateNotFound,
    CommandNotFound,
    ConcurrencyConflict,
    Contention,
    DomainRuleViolation,
)
from tests.fixtures.shopping_app import (
    AddShoppingItem,
    CreateShoppingList,
    RemoveShoppingList,
    RenameShoppingList,
    ShoppingList,
)


class InterleavingEventStore(InMemoryEventStore):
    """Holds the first ``readers`` loads until all of them happened, so commands interleave."""

    def __init__(self, readers: int = 2):
        super().__init__()
        self.waiting = readers
        self.all_loaded = asyncio.Event()

    async def load_events(self, aggregate_id: str, from_version: int = 0):
        events = [event async for event in super().load_events(aggregate_id, from_version)]
        if self.waiting > 0:
            self.waiting -= 1
            if self.waiting == 0:
                self.all_loaded.set()
            await self.all_loaded.wait()
        for event in events:
            yield event


class AlwaysConflictingEventStore(InMemoryEventStore):
    def __init__(self) -> None:
        super().__init__()
        self.append_attempts = 0

    async def append(self, aggregate_id, aggregate_name, expected_version, events):
        self.append_attempts += 1
        raise ConcurrencyConflict(aggregate_id, expected_version, expected_version + 1)


def command(aggregate_id: str, payload) -> Command:
    return Command.create("ShoppingList", aggregate_id, payload)


@pytest.mark.asyncio
async def test_execute_appends_proposed_events(app: Application, aggregate_id: str):
    events = await app.execute_command(command(aggregate_id, CreateShoppingList(name="Groceries")))

    assert len(events) == 1
    assert events[0].type == "ShoppingListCreated"
    assert events[0].payload == {"name": "Groceries"}
    assert events[0].version == 1
    assert events[0].aggregate_name == "ShoppingList"


@pytest.mark.asyncio
async def test_versions_have_no_gaps(app: Application, aggregate_id: str):
    await app.execute_command(command(aggregate_id, CreateShoppingList(name="G")))
    await app.execute_command(command(aggregate_id, AddShoppingItem(text="milk, eggs")))
    await app.execute_command(command(aggregate_id, RenameShoppingList(name="Weekend")))

    versions = [event.version async for event in app.load_events(aggregate_id)]

    assert versions == [1, 2, 3, 4]


@pytest.mark.asyncio
async def test_round_trip_state(app: Application):
    created = await app.execute_command(command("A1", CreateShoppingList(name="Groceries")))
    await app.execute_command(command("A1", RenameShoppingList(name="Weekend")))

    state = await app.load_state("ShoppingList", "A1")

    assert state.created_at == created[0].timestamp
    assert state.name == "Weekend"
    assert state.version == 2


@pytest.mark.asyncio
async def test_incremental_and_batch_folds_agree(app: Application, aggregate_id: str):
    incremental = ShoppingList(id=aggregate_id)
    for payload in (
        CreateShoppingList(name="G"),
        AddShoppingItem(text="milk"),
        RenameShoppingList(name="Food"),
        AddShoppingItem(text="eggs, bread"),
    ):
        for event in await app.execute_command(command(aggregate_id, payload)):
            incremental.apply(event)

    history = [event async for event in app.load_events(aggregate_id)]

    assert fold(ShoppingList, aggregate_id, history) == incremental


@pytest.mark.asyncio
async def test_rejected_command_appends_nothing(app: Application, aggregate_id: str):
    with pytest.raises(DomainRuleViolation) as exc_info:
        await app.execute_command(command(aggregate_id, RenameShoppingList(name="Weekend")))

    assert exc_info.value.code == "not_found"
    assert [event async for event in app.load_events(aggregate_id)] == []


@pytest.mark.asyncio
async def test_command_without_events_appends_nothing(app: Application, aggregate_id: str):
    await app.execute_command(command(aggregate_id, CreateShoppingList(name="G")))

    events = await app.execute_command(command(aggregate_id, RenameShoppingList(name="G")))

    assert events == []
    assert (await app.load_state("ShoppingList", aggregate_id)).version == 1


@pytest.mark.asyncio
async def test_invalid_payload_is_rejected(app: Application, aggregate_id: str):
    bad = Command(
        aggregate_name="ShoppingList",
        aggregate_id=aggregate_id,
        type="createShoppingList",
        payload={"name": ""},
    )

    with pytest.raises(DomainRuleViolation) as exc_info:
        await app.execute_command(bad)

    assert exc_info.value.code == "invalid_payload"


@pytest.mark.asyncio
async def test_unknown_aggregate(app: Application):
    with pytest.raises(AggregateNotFound):
        await app.execute_command(Command(aggregate_name="Nope", aggregate_id="A1", type="x"))


@pytest.mark.asyncio
async def test_unknown_command_type(app: Application):
    with pytest.raises(CommandNotFound):
        await app.execute_command(
            Command(aggregate_name="ShoppingList", aggregate_id="A1", type="archiveShoppingList")
        )


@pytest.mark.asyncio
async def test_events_carry_meta_and_command_ids(app: Application, aggregate_id: str):
    cmd = command(aggregate_id, CreateShoppingList(name="G")).model_copy(
        update={"meta": {"user": "u1"}}
    )

    (event,) = await app.execute_command(cmd)

    assert event.meta == {"user": "u1"}
    assert event.causation_id == cmd.command_id


@pytest.mark.asyncio
async def test_removed_list_keeps_full_history(app: Application):
    await app.execute_command(command("A1", CreateShoppingList(name="Groceries")))
    await app.execute_command(command("A1", RenameShoppingList(name="Weekend")))
    await app.execute_command(command("A1", RemoveShoppingList()))

    history = [event async for event in app.load_events("A1", 0)]

    assert [event.type for event in history] == [
        "ShoppingListCreated",
        "ShoppingListRenamed",
        "ShoppingListRemoved",
    ]


@pytest.mark.asyncio
async def test_concurrent_creates_one_wins_other_is_rejected_on_retry(
    settings: RetoldSettings, caplog: pytest.LogCaptureFixture
):
    store = InterleavingEventStore()
    app = (
        ApplicationBuilder()
        .use_settings(settings)
        .use_event_store(store)
        .register_aggregate(ShoppingList)
        .build()
    )

    with caplog.at_level(logging.WARNING, logger="retold.application.aggregates.runtime"):
        results = await asyncio.gather(
            app.execute_command(command("A1", CreateShoppingList(name="first"))),
            app.execute_command(command("A1", CreateShoppingList(name="second"))),
            return_exceptions=True,
        )

    succeeded = [r for r in results if isinstance(r, list)]
    rejected = [r for r in results if isinstance(r, DomainRuleViolation)]
    assert len(succeeded) == 1 and len(rejected) == 1
    assert succeeded[0][0].version == 1
    assert rejected[0].code == "already_exists"
    assert await store.current_version("A1") == 1
    assert "Concurrency conflict on attempt 1/5" in caplog.text


@pytest.mark.asyncio
async def test_contention_after_max_attempts():
    store = AlwaysConflictingEventStore()
    app = (
        ApplicationBuilder()
        .use_settings(RetoldSettings(command_max_attempts=3, command_retry_delay=0))
        .use_event_store(store)
        .register_aggregate(ShoppingList)
        .build()
    )

    with pytest.raises(Contention) as exc_info:
        await app.execute_command(command("A1", CreateShoppingList(name="G")))

    assert exc_info.value.attempts == 3
    assert exc_info.value.retryable
    assert isinstance(exc_info.value.__cause__, ConcurrencyConflict)
    assert store.append_attempts == 3


@pytest.mark.asyncio
async def test_command_timeout(aggregate_id: str):
    class SlowStore(InMemoryEventStore):
        async def append(self, *args, **kwargs):
            await asyncio.sleep(10)

    slow_app = (
        ApplicationBuilder().use_event_store(SlowStore()).register_aggregate(ShoppingList).build()
    )

    with pytest.raises(TimeoutError):
        await slow_app.execute_command(
            command(aggregate_id, CreateShoppingList(name="G")), timeout=0.01
        )
