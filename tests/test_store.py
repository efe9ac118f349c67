import pytest
from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import AutoReconnect, ServerSelectionTimeoutError

from taskboard.errors import StoreUnavailable
from taskboard.store import DocumentStore, MemoryStore, MongoStore

pytestmark = pytest.mark.anyio

BOARD_ID = "507f1f77bcf86cd799439011"


def board_doc(_id="b1"):
    return {"_id": _id, "title": "B", "columns": [{"id": "todo", "taskIds": []}, {"id": "done", "taskIds": []}]}


async def test_unconnected_store_is_unavailable():
    store = MemoryStore()
    with pytest.raises(StoreUnavailable):
        await store.find("boards")
    assert await store.ping() is False


async def test_closed_store_is_unavailable(store):
    await store.close()
    with pytest.raises(StoreUnavailable):
        await store.insert_one("boards", board_doc())


async def test_documents_are_copied(store):
    doc = board_doc()
    await store.insert_one("boards", doc)
    doc["title"] = "changed"
    found = await store.find_one("boards", {"_id": "b1"})
    found["columns"][0]["taskIds"].append("x")
    again = await store.find_one("boards", {"_id": "b1"})
    assert again["title"] == "B"
    assert again["columns"][0]["taskIds"] == []


async def test_update_one_is_conditional(store):
    await store.insert_one("tasks", {"_id": "t1", "columnId": "todo"})
    assert await store.update_one("tasks", {"_id": "t1", "columnId": "done"}, {"columnId": "x"}) is None
    updated = await store.update_one("tasks", {"_id": "t1", "columnId": "todo"}, {"columnId": "done"})
    assert updated["columnId"] == "done"


async def test_push_does_not_duplicate(store):
    await store.insert_one("boards", board_doc())
    for _ in range(2):
        doc = await store.push_to_array("boards", {"_id": "b1"}, "columns", "id", "todo", "taskIds", "t1")
    assert doc["columns"][0]["taskIds"] == ["t1"]
    assert doc["columns"][1]["taskIds"] == []


async def test_push_to_unknown_element_changes_nothing(store):
    await store.insert_one("boards", board_doc())
    doc = await store.push_to_array(
        "boards", {"_id": "b1"}, "columns", "id", "nope", "taskIds", "t1", fields={"updatedAt": 1}
    )
    assert all(c["taskIds"] == [] for c in doc["columns"])
    assert doc["updatedAt"] == 1


async def test_pull_removes_every_occurrence(store):
    doc = board_doc()
    doc["columns"][0]["taskIds"] = ["t1", "t2", "t1"]
    await store.insert_one("boards", doc)
    doc = await store.pull_from_array("boards", {"_id": "b1"}, "columns", "id", "todo", "taskIds", "t1")
    assert doc["columns"][0]["taskIds"] == ["t2"]


async def test_array_ops_on_missing_document_return_none(store):
    assert await store.push_to_array("boards", {"_id": "zz"}, "columns", "id", "todo", "taskIds", "t") is None
    assert await store.pull_from_array("boards", {"_id": "zz"}, "columns", "id", "todo", "taskIds", "t") is None


async def test_delete_many_counts(store):
    for i in range(3):
        await store.insert_one("tasks", {"_id": f"t{i}", "boardId": "b1" if i < 2 else "b2"})
    assert await store.delete_many("tasks", {"boardId": "b1"}) == 2
    assert [d["_id"] for d in await store.find("tasks")] == ["t2"]
    assert await store.delete_one("tasks", {"_id": "t0"}) is None


async def test_duplicate_insert_is_rejected(store):
    await store.insert_one("boards", board_doc())
    with pytest.raises(ValueError):
        await store.insert_one("boards", board_doc())



async def test_incomplete_backend_cannot_be_built():
    class Partial(DocumentStore):
        async def connect(self):
            pass

    with pytest.raises(TypeError):
        Partial()


# === MongoStore ===


class FakeCollection:
    def __init__(self, doc=None, error=None):
        self.doc = doc
        self.error = error
        self.calls = []

    async def find_one_and_update(self, query, update, **kwargs):
        self.calls.append((query, update, kwargs))
        if self.error is not None:
            raise self.error
        return dict(self.doc) if self.doc is not None else None


def mongo_with(collection):
    store = MongoStore("mongodb://localhost:27017", "taskmanager")
    store._db = {"boards": collection}
    return store


def fake_motor(monkeypatch, failures):
    clients = []

    class FakeClient:
        def __init__(self, url, **kwargs):
            self.url = url
            self.kwargs = kwargs
            self.closed = False
            self.admin = self
            clients.append(self)

        async def command(self, name):
            if len(clients) <= failures:
                raise ServerSelectionTimeoutError("no servers available")
            return {"ok": 1}

        def close(self):
            self.closed = True

        def __getitem__(self, name):
            return {"db": name}

    monkeypatch.setattr("taskboard.store.AsyncIOMotorClient", FakeClient)
    return clients


async def test_ids_are_stored_as_object_ids():
    store = MongoStore("mongodb://localhost:27017", "taskmanager")
    doc = {"_id": BOARD_ID, "boardId": BOARD_ID, "columnId": "todo"}
    stored = store._to_mongo(doc)
    assert stored["_id"] == ObjectId(BOARD_ID)
    assert stored["boardId"] == ObjectId(BOARD_ID)
    assert stored["columnId"] == "todo"
    assert doc["_id"] == BOARD_ID
    assert store._from_mongo(stored) == {"_id": BOARD_ID, "boardId": BOARD_ID, "columnId": "todo"}
    assert store._to_mongo(None) == {}
    assert store._from_mongo(None) is None


async def test_push_uses_add_to_set_with_array_filters():
    collection = FakeCollection({"_id": ObjectId(BOARD_ID), "columns": []})
    store = mongo_with(collection)
    doc = await store.push_to_array(
        "boards", {"_id": BOARD_ID}, "columns", "id", "todo", "taskIds", "t1", fields={"updatedAt": 1}
    )
    query, update, kwargs = collection.calls[0]
    assert query == {"_id": ObjectId(BOARD_ID)}
    assert update == {"$addToSet": {"columns.$[elem].taskIds": "t1"}, "$set": {"updatedAt": 1}}
    assert kwargs == {"array_filters": [{"elem.id": "todo"}], "return_document": ReturnDocument.AFTER}
    assert doc["_id"] == BOARD_ID


async def test_pull_uses_pull_with_array_filters():
    collection = FakeCollection({"_id": ObjectId(BOARD_ID), "columns": []})
    store = mongo_with(collection)
    await store.pull_from_array("boards", {"_id": BOARD_ID}, "columns", "id", "done", "taskIds", "t1")
    _, update, kwargs = collection.calls[0]
    assert update == {"$pull": {"columns.$[elem].taskIds": "t1"}}
    assert kwargs["array_filters"] == [{"elem.id": "done"}]


async def test_array_update_on_missing_document_returns_none():
    store = mongo_with(FakeCollection(None))
    assert await store.push_to_array("boards", {"_id": BOARD_ID}, "columns", "id", "todo", "taskIds", "t") is None


async def test_lost_connection_is_unavailable():
    store = mongo_with(FakeCollection(error=AutoReconnect("connection reset")))
    with pytest.raises(StoreUnavailable):
        await store.push_to_array("boards", {"_id": BOARD_ID}, "columns", "id", "todo", "taskIds", "t")


async def test_unconnected_mongo_store_is_unavailable():
    store = MongoStore("mongodb://localhost:27017", "taskmanager")
    assert store.connected is False
    assert await store.ping() is False
    with pytest.raises(StoreUnavailable):
        await store.find("boards")


async def test_connect_retries_then_succeeds(monkeypatch):
    clients = fake_motor(monkeypatch, failures=1)
    store = MongoStore("mongodb://db:27017", "taskmanager", retries=2, backoff=0)
    await store.connect()
    assert store.connected
    assert len(clients) == 2
    assert clients[0].closed and not clients[1].closed
    assert clients[1].kwargs["tz_aware"] is True
    assert store._db == {"db": "taskmanager"}
    await store.close()
    assert clients[1].closed
    assert store.connected is False


async def test_connect_gives_up_after_retries(monkeypatch):
    clients = fake_motor(monkeypatch, failures=10)
    store = MongoStore("mongodb://db:27017", "taskmanager", retries=2, backoff=0)
    with pytest.raises(StoreUnavailable):
        await store.connect()
    assert len(clients) == 3
    assert all(c.closed for c in clients)
    assert store.connected is False
