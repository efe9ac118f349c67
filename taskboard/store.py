"""Document store client handles.

The store is an explicitly constructed object with a ``connect`` / ``ping`` /
``close`` lifecycle. It is created by the process entry point (see
:func:`taskboard.main.create_app`) and handed to the repositories; nothing in
the package reaches for a global connection.

Both backends expose the same small set of primitives. Filters are equality
matches on top-level fields. Every primitive is atomic on a single document;
nothing here spans documents.
"""
from __future__ import annotations

import asyncio
import copy
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ReturnDocument
from pymongo.errors import ConnectionFailure, PyMongoError

from .config import Settings
from .errors import StoreUnavailable

logger = logging.getLogger(__name__)

Document = Dict[str, Any]
Query = Dict[str, Any]


class DocumentStore(ABC):
    backend = "abstract"

    @property
    @abstractmethod
    def connected(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def connect(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def ping(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        raise NotImplementedError

    @abstractmethod
    async def insert_one(self, collection: str, doc: Document) -> Document:
        raise NotImplementedError

    @abstractmethod
    async def find_one(self, collection: str, query: Query) -> Optional[Document]:
        raise NotImplementedError

    @abstractmethod
    async def find(self, collection: str, query: Optional[Query] = None) -> List[Document]:
        raise NotImplementedError

    @abstractmethod
    async def update_one(self, collection: str, query: Query, fields: Document) -> Optional[Document]:
        """Set ``fields`` on the first document matching ``query``.

        Returns the updated document, or ``None`` when nothing matched. Because
        the filter may include any top-level field this doubles as a
        compare-and-set.
        """
        raise NotImplementedError

    @abstractmethod
    async def delete_one(self, collection: str, query: Query) -> Optional[Document]:
        raise NotImplementedError

    @abstractmethod
    async def delete_many(self, collection: str, query: Query) -> int:
        raise NotImplementedError

    @abstractmethod
    async def push_to_array(
        self,
        collection: str,
        query: Query,
        array: str,
        key: str,
        key_value: Any,
        field: str,
        value: Any,
        fields: Optional[Document] = None,
    ) -> Optional[Document]:
        """Add ``value`` to ``field`` of the ``array`` element whose ``key`` equals ``key_value``.

        A value already present is not added again. ``fields`` are set on the
        document in the same write. No element matching leaves the array alone.
        """
        raise NotImplementedError

    @abstractmethod
    async def pull_from_array(
        self,
        collection: str,
        query: Query,
        array: str,
        key: str,
        key_value: Any,
        field: str,
        value: Any,
        fields: Optional[Document] = None,
    ) -> Optional[Document]:
        """Remove every occurrence of ``value`` from ``field`` of the matching ``array`` element."""
        raise NotImplementedError


# === In-memory backend ===


def _matches(doc: Document, query: Optional[Query]) -> bool:
    if not query:
        return True
    return all(doc.get(k) == v for k, v in query.items())


class MemoryStore(DocumentStore):
    """In-process store with the same semantics as :class:`MongoStore`.

    Documents are deep-copied on the way in and out so callers never share
    state with the store.
    """

    backend = "memory"

    def __init__(self) -> None:
        self.collections: Dict[str, Dict[str, Document]] = {}
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    async def connect(self) -> None:
        self._connected = True

    async def ping(self) -> bool:
        return self._connected

    async def close(self) -> None:
        self._connected = False

    def _collection(self, name: str) -> Dict[str, Document]:
        if not self._connected:
            raise StoreUnavailable("memory store is not connected")
        return self.collections.setdefault(name, {})

    def _first(self, collection: str, query: Query) -> Optional[Document]:
        docs = self._collection(collection)
        if "_id" in query:
            doc = docs.get(query["_id"])
            return doc if doc is not None and _matches(doc, query) else None
        for doc in docs.values():
            if _matches(doc, query):
                return doc
        return None

    async def insert_one(self, collection: str, doc: Document) -> Document:
        docs = self._collection(collection)
        if doc["_id"] in docs:
            raise ValueError(f"duplicate key {doc['_id']!r} in {collection}")
        docs[doc["_id"]] = copy.deepcopy(doc)
        return copy.deepcopy(doc)

    async def find_one(self, collection: str, query: Query) -> Optional[Document]:
        return copy.deepcopy(self._first(collection, query))

    async def find(self, collection: str, query: Optional[Query] = None) -> List[Document]:
        return [copy.deepcopy(d) for d in self._collection(collection).values() if _matches(d, query)]

    async def update_one(self, collection: str, query: Query, fields: Document) -> Optional[Document]:
        doc = self._first(collection, query)
        if doc is None:
            return None
        doc.update(copy.deepcopy(fields))
        return copy.deepcopy(doc)

    async def delete_one(self, collection: str, query: Query) -> Optional[Document]:
        doc = self._first(collection, query)
        if doc is None:
            return None
        del self._collection(collection)[doc["_id"]]
        return doc

    async def delete_many(self, collection: str, query: Query) -> int:
        docs = self._collection(collection)
        doomed = [k for k, d in docs.items() if _matches(d, query)]
        for k in doomed:
            del docs[k]
        return len(doomed)

    async def push_to_array(self, collection, query, array, key, key_value, field, value, fields=None):
        doc = self._first(collection, query)
        if doc is None:
            return None
        for element in doc.get(array) or []:
            if element.get(key) == key_value:
                values = element.setdefault(field, [])
                if value not in values:
                    values.append(value)
        if fields:
            doc.update(copy.deepcopy(fields))
        return copy.deepcopy(doc)

    async def pull_from_array(self, collection, query, array, key, key_value, field, value, fields=None):
        doc = self._first(collection, query)
        if doc is None:
            return None
        for element in doc.get(array) or []:
            if element.get(key) == key_value:
                element[field] = [v for v in element.get(field) or [] if v != value]
        if fields:
            doc.update(copy.deepcopy(fields))
        return copy.deepcopy(doc)


# === MongoDB backend ===


class MongoStore(DocumentStore):
    """Motor-backed store.

    Canonical ids travel as strings through the package; the fields listed in
    ``object_id_fields`` are stored as native ``ObjectId`` values.
    """

    backend = "mongo"
    object_id_fields = ("_id", "boardId")

    def __init__(
        self,
        url: str,
        db_name: str,
        retries: int = 3,
        server_selection_timeout_ms: int = 5000,
        backoff: float = 1.0,
    ) -> None:
        self.url = url
        self.db_name = db_name
        self.retries = retries
        self.server_selection_timeout_ms = server_selection_timeout_ms
        self.backoff = backoff
        self._client = None
        self._db = None

    @property
    def connected(self) -> bool:
        return self._db is not None

    async def connect(self) -> None:
        attempt = 0
        while True:
            logger.info("MongoDB connection attempt %d/%d", attempt + 1, self.retries + 1)
            client = AsyncIOMotorClient(
                self.url,
                serverSelectionTimeoutMS=self.server_selection_timeout_ms,
                tz_aware=True,
            )
            try:
                await client.admin.command("ping")
            except PyMongoError as exc:
                client.close()
                attempt += 1
                if attempt > self.retries:
                    raise StoreUnavailable(f"could not connect to MongoDB: {exc}") from exc
                delay = self.backoff * 2**attempt
                logger.warning("MongoDB connection failed (%s), retrying in %ss", exc, delay)
                await asyncio.sleep(delay)
                continue
            self._client = client
            self._db = client[self.db_name]
            logger.info("Connected to MongoDB database %s", self.db_name)
            return

    async def ping(self) -> bool:
        if self._client is None:
            return False
        try:
            await self._client.admin.command("ping")
        except PyMongoError as exc:
            logger.warning("MongoDB ping failed: %s", exc)
            return False
        return True

    async def close(self) -> None:
        if self._client is not None:
            self._client.close()
            logger.info("Disconnected from MongoDB")
        self._client = None
        self._db = None

    # -- conversions between canonical strings and ObjectId --

    def _to_mongo(self, doc: Optional[Document]) -> Document:
        out = dict(doc or {})
        for name in self.object_id_fields:
            if isinstance(out.get(name), str):
                out[name] = ObjectId(out[name])
        return out

    def _from_mongo(self, doc: Optional[Document]) -> Optional[Document]:
        if doc is None:
            return None
        for name in self.object_id_fields:
            if name in doc and doc[name] is not None:
                doc[name] = str(doc[name])
        return doc

    @asynccontextmanager
    async def _collection(self, name: str) -> AsyncIterator[Any]:
        if self._db is None:
            raise StoreUnavailable("MongoDB is not connected")
        try:
            yield self._db[name]
        except ConnectionFailure as exc:
            raise StoreUnavailable(f"MongoDB unavailable: {exc}") from exc

    async def insert_one(self, collection: str, doc: Document) -> Document:
        async with self._collection(collection) as coll:
            await coll.insert_one(self._to_mongo(doc))
        return dict(doc)

    async def find_one(self, collection: str, query: Query) -> Optional[Document]:
        async with self._collection(collection) as coll:
            return self._from_mongo(await coll.find_one(self._to_mongo(query)))

    async def find(self, collection: str, query: Optional[Query] = None) -> List[Document]:
        async with self._collection(collection) as coll:
            docs = await coll.find(self._to_mongo(query)).to_list(length=None)
        return [self._from_mongo(d) for d in docs]

    async def update_one(self, collection: str, query: Query, fields: Document) -> Optional[Document]:
        async with self._collection(collection) as coll:
            doc = await coll.find_one_and_update(
                self._to_mongo(query),
                {"$set": self._to_mongo(fields)},
                return_document=ReturnDocument.AFTER,
            )
        return self._from_mongo(doc)

    async def delete_one(self, collection: str, query: Query) -> Optional[Document]:
        async with self._collection(collection) as coll:
            return self._from_mongo(await coll.find_one_and_delete(self._to_mongo(query)))

    async def delete_many(self, collection: str, query: Query) -> int:
        async with self._collection(collection) as coll:
            result = await coll.delete_many(self._to_mongo(query))
        return result.deleted_count

    async def _array_update(self, op, collection, query, array, key, key_value, field, value, fields):
        update: Document = {op: {f"{array}.$[elem].{field}": value}}
        if fields:
            update["$set"] = self._to_mongo(fields)
        async with self._collection(collection) as coll:
            doc = await coll.find_one_and_update(
                self._to_mongo(query),
                update,
                array_filters=[{f"elem.{key}": key_value}],
                return_document=ReturnDocument.AFTER,
            )
        return self._from_mongo(doc)

    async def push_to_array(self, collection, query, array, key, key_value, field, value, fields=None):
        return await self._array_update("$addToSet", collection, query, array, key, key_value, field, value, fields)

    async def pull_from_array(self, collection, query, array, key, key_value, field, value, fields=None):
        return await self._array_update("$pull", collection, query, array, key, key_value, field, value, fields)


def create_store(settings: Settings) -> DocumentStore:
    if settings.STORE_BACKEND == "memory":
        return MemoryStore()
    return MongoStore(
        settings.MONGO_URL,
        settings.DB_NAME,
        retries=settings.MONGO_CONNECT_RETRIES,
        server_selection_timeout_ms=settings.MONGO_SERVER_SELECTION_TIMEOUT_MS,
    )
