"""Tests for broadcasting newly pending assistance requests."""

import asyncio

import pytest
from bson import ObjectId
from pymongo.errors import OperationFailure

from assist_chat.repositories.assist_request_repository import AssistRequestRepository
from assist_chat.services.assist_watcher import AssistRequestWatcher, is_newly_pending
from helpers import add_device, expo_token


class FakeStream:

    def __init__(self, changes):
        self._changes = list(changes)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._changes:
            # an open stream waits for the next change
            await asyncio.Event().wait()
        return self._changes.pop(0)


class FakeCollection:

    def __init__(self, stream=None, error=None):
        self._stream = stream
        self._error = error
        self.watch_args = None

    def watch(self, pipeline, **kwargs):
        self.watch_args = (pipeline, kwargs)
        if self._error is not None:
            raise self._error
        return self._stream


class StubAssistRepository(AssistRequestRepository):

    def __init__(self, db, collection):
        super().__init__(db)
        self._fake = collection

    @property
    def collection(self):
        return self._fake


def insert_change(**doc):
    doc.setdefault("_id", ObjectId())
    return {"operationType": "insert", "fullDocument": doc, "documentKey": {"_id": doc["_id"]}}


@pytest.mark.parametrize(
    "change, expected",
    [
        ({"operationType": "insert", "fullDocument": {"status": "pending"}}, True),
        ({"operationType": "insert", "fullDocument": {}}, True),
        ({"operationType": "insert", "fullDocument": {"status": "accepted"}}, False),
        ({"operationType": "replace", "fullDocument": {"status": "pending"}}, True),
        ({"operationType": "update", "updateDescription": {"updatedFields": {"status": "pending"}}}, True),
        ({"operationType": "update", "updateDescription": {"updatedFields": {"status": "done"}}}, False),
        ({"operationType": "update", "updateDescription": {"updatedFields": {"note": "x"}}}, False),
        ({"operationType": "delete"}, False),
    ],
)
def test_is_newly_pending(change, expected):
    assert is_newly_pending(change) is expected


async def test_missing_change_streams_disable_the_watcher(db, context):
    error = OperationFailure("The $changeStream stage is only supported on replica sets", code=40573)
    watcher = AssistRequestWatcher(StubAssistRepository(db, FakeCollection(error=error)), context.connections)

    watcher.start()
    await asyncio.wait_for(watcher._task, timeout=1)

    assert watcher.enabled is False
    watcher.start()
    assert watcher._task.done()
    await watcher.stop()


async def test_stream_changes_reach_operators(db, context, connect):
    _, operator_ws = await connect("op-1", role="operator")
    _, customer_ws = await connect("customer-1")
    request_id = ObjectId()
    stream = FakeStream([
        insert_change(status="accepted"),
        insert_change(_id=request_id, status="pending", placeName="Garage", userId="customer-1"),
    ])
    collection = FakeCollection(stream=stream)
    watcher = AssistRequestWatcher(StubAssistRepository(db, collection), context.connections)

    watcher.start()
    for _ in range(20):
        if operator_ws.events("assist:created"):
            break
        await asyncio.sleep(0.01)
    await watcher.stop()

    created = operator_ws.events("assist:created")
    assert [c["id"] for c in created] == [str(request_id)]
    assert created[0]["placeName"] == "Garage"
    assert customer_ws.events("assist:created") == []
    assert collection.watch_args[1] == {"full_document": "updateLookup"}


async def test_operators_are_pushed(db, context, push_provider):
    await db["operators"].insert_one({"user_id": "op-1"})
    await add_device(db, "op-1", expo_token("op"))
    watcher = AssistRequestWatcher(context.assist_requests, context.connections, context.push)
    request_id = ObjectId()

    summary = await watcher.handle_change(
        insert_change(_id=request_id, placeName="Garage", address="1 Main St")
    )

    assert summary["id"] == str(request_id)
    assert push_provider.calls == [{
        "tokens": [expo_token("op")],
        "title": "New request",
        "body": "Garage, 1 Main St",
        "data": {"type": "assist", "requestId": str(request_id)},
    }]


async def test_ignored_changes_emit_nothing(context, connect):
    _, operator_ws = await connect("op-1", role="operator")
    watcher = AssistRequestWatcher(context.assist_requests, context.connections)

    result = await watcher.handle_change({"operationType": "update", "updateDescription": {"updatedFields": {"x": 1}}})

    assert result is None
    assert operator_ws.sent == []
