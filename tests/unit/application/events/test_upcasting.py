import pytest

from retold import Payload
from retold.application.events import (
    EagerUpcastingStrategy,
    EventLog,
    EventUpcaster,
    InMemoryEventBus,
    InMemoryEventStore,
    LazyUpcastingStrategy,
    UpcasterMap,
    UpcastingPipeline,
)
from retold.application.events.upcasting import extract_upcaster_types
from retold.domain import Event, PendingEvent


class ListCreatedV1(Payload):
    type_name = "ListCreated"
    title: str


class ListCreatedV2(Payload):
    type_name = "ListCreated"
    schema_version = 2
    name: str


class ListCreatedV3(Payload):
    type_name = "ListCreated"
    schema_version = 3
    name: str
    shared: bool


class TitleToName(EventUpcaster[ListCreatedV1, ListCreatedV2]):
    async def upcast_payload(self, data: ListCreatedV1) -> ListCreatedV2:
        return ListCreatedV2(name=data.title)


class AddShared(EventUpcaster[ListCreatedV2, ListCreatedV3]):
    async def upcast_payload(self, data: ListCreatedV2) -> ListCreatedV3:
        return ListCreatedV3(name=data.name, shared=False)


def stored_v1(title: str = "Groceries") -> Event:
    return Event(
        aggregate_id="A1",
        aggregate_name="ShoppingList",
        type="ListCreated",
        version=1,
        position=1,
        payload={"title": title},
    )


def test_extract_upcaster_types():
    assert extract_upcaster_types(TitleToName) == (ListCreatedV1, ListCreatedV2)


def test_extract_upcaster_types_requires_generic_base():
    class NotAnUpcaster:
        pass

    with pytest.raises(ValueError):
        extract_upcaster_types(NotAnUpcaster)


def test_source_key():
    assert TitleToName().source_key == ("ListCreated", 1)
    assert AddShared().source_key == ("ListCreated", 2)


@pytest.mark.asyncio
async def test_upcast_single_step_keeps_metadata():
    pipeline = UpcastingPipeline(
        LazyUpcastingStrategy(), UpcasterMap.from_upcasters([TitleToName()])
    )
    event = stored_v1()

    upcasted = await pipeline.upcast(event)

    assert upcasted.payload == {"name": "Groceries"}
    assert upcasted.schema_version == 2
    assert upcasted.id == event.id
    assert upcasted.position == event.position


@pytest.mark.asyncio
async def test_upcast_chain_reaches_latest_schema():
    pipeline = UpcastingPipeline(
        LazyUpcastingStrategy(), UpcasterMap.from_upcasters([AddShared(), TitleToName()])
    )

    upcasted = await pipeline.upcast_chain(stored_v1())

    assert upcasted.payload == {"name": "Groceries", "shared": False}
    assert upcasted.schema_version == 3


@pytest.mark.asyncio
async def test_upcast_without_matching_upcaster_returns_same_event():
    pipeline = UpcastingPipeline(LazyUpcastingStrategy(), UpcasterMap())
    event = stored_v1()

    assert await pipeline.upcast(event) is event


@pytest.mark.asyncio
async def test_lazy_strategy_upcasts_on_read_but_stores_original():
    pipeline = UpcastingPipeline(
        LazyUpcastingStrategy(), UpcasterMap.from_upcasters([TitleToName()])
    )
    store = InMemoryEventStore()
    log = EventLog(store, InMemoryEventBus(store, pipeline), pipeline)

    await log.append(
        "A1", "ShoppingList", 0, [PendingEvent(type="ListCreated", payload={"title": "G"})]
    )

    stored = [e async for e in store.load_events("A1")]
    read = [e async for e in log.load_events("A1")]
    assert stored[0].payload == {"title": "G"}
    assert read[0].payload == {"name": "G"}


@pytest.mark.asyncio
async def test_eager_strategy_upcasts_before_append():
    pipeline = UpcastingPipeline(
        EagerUpcastingStrategy(), UpcasterMap.from_upcasters([TitleToName()])
    )
    store = InMemoryEventStore()
    log = EventLog(store, InMemoryEventBus(store, pipeline), pipeline)

    await log.append(
        "A1", "ShoppingList", 0, [PendingEvent(type="ListCreated", payload={"title": "G"})]
    )

    stored = [e async for e in store.load_events("A1")]
    assert stored[0].payload == {"name": "G"}
    assert stored[0].schema_version == 2


@pytest.mark.asyncio
async def test_circular_chain_is_detected():
    class Back(EventUpcaster[ListCreatedV2, ListCreatedV1]):
        async def upcast_payload(self, data: ListCreatedV2) -> ListCreatedV1:
            return ListCreatedV1(title=data.name)

    pipeline = UpcastingPipeline(
        LazyUpcastingStrategy(), UpcasterMap.from_upcasters([TitleToName(), Back()])
    )

    with pytest.raises(RuntimeError, match="max steps"):
        await pipeline.upcast_chain(stored_v1())
