import asyncio

import pytest

from models.processed_item import ItemSource, ItemStatus, ProcessedItem
from services.pipeline.event_bus import ITEM_PROCESSED, EventBus
from services.pipeline.history_store import HistoryStore
from utils.errors import ErrorKind, InvalidTransitionError


def _item(item_id):
    return ProcessedItem(id=item_id, source=ItemSource.IOS_PUSH, name=f"{item_id}.png", byte_size=1, mime_type="image/png")


def test_snapshot_is_most_recent_first_and_bounded():
    async def run():
        store = HistoryStore(limit=3)
        for i in range(5):
            await store.append(_item(f"i{i}"))
        return await store.snapshot()

    items = asyncio.run(run())
    assert [item.id for item in items] == ["i4", "i3", "i2"]


def test_update_keeps_append_order():
    async def run():
        store = HistoryStore()
        await store.append(_item("first"))
        await store.append(_item("second"))
        await store.update("first", lambda item: item.complete("done"))
        return await store.snapshot()

    items = asyncio.run(run())
    assert [item.id for item in items] == ["second", "first"]
    assert items[1].status is ItemStatus.COMPLETED


def test_update_of_evicted_item_returns_none():
    async def run():
        store = HistoryStore(limit=1)
        await store.append(_item("old"))
        await store.append(_item("new"))
        return await store.update("old", lambda item: item.complete("late"))

    assert asyncio.run(run()) is None


def test_items_transition_only_once():
    item = _item("x")
    item.complete("summary")
    with pytest.raises(InvalidTransitionError):
        item.fail(ErrorKind.TIMEOUT, "late failure")
    with pytest.raises(InvalidTransitionError):
        item.complete("again")
    assert item.analysis_summary == "summary"
    assert item.error_kind is None


def test_event_bus_drops_when_subscriber_is_full():
    async def run():
        bus = EventBus(queue_size=1)
        queue = bus.subscribe()
        bus.publish(ITEM_PROCESSED, {"id": "a"})
        bus.publish(ITEM_PROCESSED, {"id": "b"})
        return queue

    queue = asyncio.run(run())
    assert queue.qsize() == 1
    assert queue.get_nowait().data == {"id": "a"}


def test_set_limit_evicts_oldest_when_shrinking():
    async def run():
        store = HistoryStore(limit=5)
        for i in range(4):
            await store.append(_item(f"i{i}"))
        await store.set_limit(2)
        shrunk = await store.snapshot()
        await store.set_limit(10)
        await store.append(_item("i4"))
        return shrunk, await store.snapshot()

    shrunk, grown = asyncio.run(run())
    assert [item.id for item in shrunk] == ["i3", "i2"]
    assert [item.id for item in grown] == ["i4", "i3", "i2"]


def test_set_limit_rejects_zero():
    with pytest.raises(ValueError):
        asyncio.run(HistoryStore().set_limit(0))
