"""
Document Store - Order Persistence
==================================
Generic key-document store with two interchangeable backends:

- InMemoryDocumentStore: asyncio-locked dict, for tests and local runs
- RedisDocumentStore: one JSON string per document plus an id index set

Each store instance is bound to one collection ("orders", "deliveries").
Writes are whole-field partial updates; there is no cross-field or
cross-document transaction. Backend failures surface as TransientStoreError.

pip install redis structlog
"""

import asyncio
import copy
import json
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

from pipeline.errors import TransientStoreError

Document = Dict[str, Any]


# =============================================================================
# PERSISTENCE INTERFACE
# =============================================================================

class IDocumentStore(ABC):
    """Abstract key-document store"""

    collection: str

    @abstractmethod
    async def get(self, id: str) -> Optional[Document]:
        """Return the document or None when absent."""
        pass

    @abstractmethod
    async def create(self, id: str, fields: Document) -> Document:
        pass

    @abstractmethod
    async def update(self, id: str, partial: Document) -> Optional[Document]:
        """Merge partial fields; None when the document does not exist."""
        pass

    @abstractmethod
    async def delete(self, id: str) -> bool:
        pass

    @abstractmethod
    async def list_where(self, field: str, value: Any) -> List[Document]:
        pass

    async def close(self) -> None:
        return None


# =============================================================================
# IN-MEMORY IMPLEMENTATION
# =============================================================================

class InMemoryDocumentStore(IDocumentStore):
    """Thread-safe in-memory store. Returns copies, never live references."""

    def __init__(self, collection: str):
        self.collection = collection
        self._docs: Dict[str, Document] = {}
        self._lock = asyncio.Lock()

    async def get(self, id: str) -> Optional[Document]:
        async with self._lock:
            doc = self._docs.get(id)
            return copy.deepcopy(doc) if doc is not None else None

    async def create(self, id: str, fields: Document) -> Document:
        async with self._lock:
            doc = copy.deepcopy(fields)
            doc["id"] = id
            self._docs[id] = doc
            return copy.deepcopy(doc)

    async def update(self, id: str, partial: Document) -> Optional[Document]:
        async with self._lock:
            doc = self._docs.get(id)
            if doc is None:
                return None
            doc.update(copy.deepcopy(partial))
            doc["id"] = id
            return copy.deepcopy(doc)

    async def delete(self, id: str) -> bool:
        async with self._lock:
            return self._docs.pop(id, None) is not None

    async def list_where(self, field: str, value: Any) -> List[Document]:
        async with self._lock:
            return [
                copy.deepcopy(doc)
                for doc in self._docs.values()
                if doc.get(field) == value
            ]


# =============================================================================
# REDIS IMPLEMENTATION
# =============================================================================

class RedisDocumentStore(IDocumentStore):
    """
    Redis-backed store.

    Layout:
        {prefix}:{collection}:{id}   -> JSON document
        {prefix}:{collection}:ids    -> set of ids (for list_where)
    """

    def __init__(self, redis_client, collection: str, prefix: str = "foodie"):
        self.collection = collection
        self._redis = redis_client
        self._prefix = f"{prefix}:{collection}"
        self._logger = structlog.get_logger().bind(
            component="document_store", backend="redis", collection=collection
        )

    def _key(self, id: str) -> str:
        return f"{self._prefix}:{id}"

    @property
    def _index_key(self) -> str:
        return f"{self._prefix}:ids"

    def _fail(self, operation: str, id: Optional[str], error: Exception) -> TransientStoreError:
        self._logger.error("redis_operation_failed", operation=operation, id=id, error=str(error))
        return TransientStoreError(
            f"Store {operation} failed",
            collection=self.collection,
            operation=operation,
        )

    async def get(self, id: str) -> Optional[Document]:
        try:
            raw = await self._redis.get(self._key(id))
        except RedisError as e:
            raise self._fail("get", id, e) from e
        return json.loads(raw) if raw else None

    async def create(self, id: str, fields: Document) -> Document:
        doc = dict(fields)
        doc["id"] = id
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.set(self._key(id), json.dumps(doc))
                pipe.sadd(self._index_key, id)
                await pipe.execute()
        except RedisError as e:
            raise self._fail("create", id, e) from e
        return doc

    async def update(self, id: str, partial: Document) -> Optional[Document]:
        doc = await self.get(id)
        if doc is None:
            return None
        doc.update(partial)
        doc["id"] = id
        try:
            # xx=True: never resurrect a document deleted since the read
            written = await self._redis.set(self._key(id), json.dumps(doc), xx=True)
        except RedisError as e:
            raise self._fail("update", id, e) from e
        return doc if written else None

    async def delete(self, id: str) -> bool:
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.delete(self._key(id))
                pipe.srem(self._index_key, id)
                removed, _ = await pipe.execute()
        except RedisError as e:
            raise self._fail("delete", id, e) from e
        return bool(removed)

    async def list_where(self, field: str, value: Any) -> List[Document]:
        try:
            ids = await self._redis.smembers(self._index_key)
            if not ids:
                return []
            raws = await self._redis.mget([self._key(i) for i in sorted(ids)])
        except RedisError as e:
            raise self._fail("list_where", None, e) from e

        results = []
        for raw in raws:
            if not raw:
                continue
            doc = json.loads(raw)
            if doc.get(field) == value:
                results.append(doc)
        return results


# =============================================================================
# FACTORY
# =============================================================================

class StoreFactory:
    """Builds one store per collection on a shared backend connection"""

    def __init__(self, backend: str = "memory", redis_url: Optional[str] = None, prefix: str = "foodie"):
        self.backend = backend
        self.redis_url = redis_url
        self.prefix = prefix
        self._redis = None
        self._logger = structlog.get_logger().bind(component="store_factory")

    def _redis_client(self):
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url, decode_responses=True)
        return self._redis

    def create(self, collection: str) -> IDocumentStore:
        if self.backend == "redis":
            self._logger.info("store_created", backend="redis", collection=collection)
            return RedisDocumentStore(self._redis_client(), collection, prefix=self.prefix)
        if self.backend != "memory":
            raise ValueError(f"Unknown store backend: {self.backend}")
        self._logger.info("store_created", backend="memory", collection=collection)
        return InMemoryDocumentStore(collection)

    async def ping(self) -> bool:
        if self._redis is None:
            return self.backend == "memory"
        try:
            return bool(await self._redis.ping())
        except RedisError as e:
            self._logger.warning("redis_ping_failed", error=str(e))
            return False

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
