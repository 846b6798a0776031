"""
MongoDB Document Store - the production backend.

Translates the Store contract into native MongoDB operations:
- equality and tag filters become a find() filter ($in on the tags array)
- sort is createdAt descending, then _id ascending (insertion order)
- skip/limit are passed straight to the cursor
- unique indexes enforce key, username, email and apiKey uniqueness
- a TTL index on contexts.expiresAt lets the server purge expired contexts

TTL purging runs on the server roughly once a minute, so queries also filter
on expiresAt to hide contexts that have expired but not yet been removed.
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import (
    ConfigurationError,
    ConnectionFailure,
    DuplicateKeyError,
    OperationFailure,
    PyMongoError,
)

from amem.core.config import get_logger
from amem.core.errors import Conflict, NotFound, StorageError, StorageUnavailable
from amem.core.types import Record, utcnow
from amem.storage.base import (
    COLLECTIONS,
    CollectionSpec,
    Store,
    coerce_changes,
    get_spec,
    load_record,
    stamp_new,
)
from amem.storage.query import Page, Query

logger = get_logger("storage.document")

# Secondary (non-unique) indexes used by the common queries
SECONDARY_INDEXES: dict[str, list[list[tuple[str, int]]]] = {
    "contexts": [[("userId", ASCENDING), ("createdAt", DESCENDING)], [("sessionId", ASCENDING)]],
    "tasks": [[("userId", ASCENDING), ("createdAt", DESCENDING)], [("status", ASCENDING)]],
    "structured_data": [
        [("userId", ASCENDING), ("collection", ASCENDING)],
        [("userId", ASCENDING), ("createdAt", DESCENDING)],
    ],
}


def to_bson(value: Any) -> Any:
    """Convert stored values to what BSON round-trips cleanly.

    Aware datetimes become naive UTC; BSON dates carry no zone and the
    driver returns them naive.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, dict):
        return {k: to_bson(v) for k, v in value.items()}
    if isinstance(value, list):
        return [to_bson(v) for v in value]
    return value


def build_filter(spec: CollectionSpec, query: Query, now: datetime) -> dict[str, Any]:
    """Translate a Query into a MongoDB filter document."""
    clauses: dict[str, Any] = {}
    if query.user_id is not None and spec.owner:
        clauses[spec.owner] = query.user_id
    for name, value in query.equals.items():
        clauses[name] = value
    if query.tags is not None:
        clauses["tags"] = {"$in": sorted(query.tags)}
    if spec.ttl:
        clauses.update(_live(spec, now))
    return clauses


def _live(spec: CollectionSpec, now: datetime) -> dict[str, Any]:
    # {field: None} matches both null and missing
    return {"$or": [{spec.ttl: None}, {spec.ttl: {"$gt": to_bson(now)}}]}


class MongoStore(Store):
    """
    Store backed by a MongoDB database via the async motor driver.

    Collections map one-to-one onto MongoDB collections of the same name.
    Records keep their own string key field; MongoDB's `_id` is internal
    and stripped on the way out.
    """

    mode = "database"

    def __init__(self, client: AsyncIOMotorClient, database: str):
        """Wrap an already-constructed client."""
        self.client = client
        self.db: AsyncIOMotorDatabase = client[database]

    @classmethod
    async def connect(cls, uri: str, database: str, timeout_ms: int = 5000) -> "MongoStore":
        """Connect, verify the server answers, and ensure indexes.

        Raises StorageUnavailable if the server cannot be reached within
        `timeout_ms` or rejects the credentials.
        """
        try:
            client = AsyncIOMotorClient(
                uri,
                serverSelectionTimeoutMS=timeout_ms,
                connectTimeoutMS=timeout_ms,
            )
        except PyMongoError as e:
            raise StorageUnavailable(f"Invalid MongoDB URI: {e}") from e

        try:
            await client.admin.command("ping")
        except PyMongoError as e:
            client.close()
            raise StorageUnavailable(f"MongoDB unreachable: {e}") from e

        try:
            name = client.get_default_database().name
        except ConfigurationError:
            # the URI names no database
            name = database

        store = cls(client, name)
        try:
            await store.ensure_indexes()
        except StorageError:
            client.close()
            raise
        logger.info(f"Connected to MongoDB database '{name}'")
        return store

    async def close(self) -> None:
        """Close the client connection."""
        self.client.close()

    async def ensure_indexes(self) -> None:
        """
        Ensure unique, TTL and query indexes exist.

        Idempotent; safe to call on every startup.
        """
        with self._translate("indexes"):
            for spec in COLLECTIONS.values():
                collection = self.db[spec.name]
                for field in spec.unique_fields:
                    await collection.create_index(field, unique=True)
                if spec.ttl:
                    await collection.create_index(spec.ttl, expireAfterSeconds=0)
                for keys in SECONDARY_INDEXES.get(spec.name, []):
                    await collection.create_index(keys)
        logger.debug("MongoDB indexes ensured")

    @contextmanager
    def _translate(self, collection: str) -> Iterator[None]:
        """Map driver exceptions onto the storage error kinds."""
        try:
            yield
        except DuplicateKeyError as e:
            field = next(iter((e.details or {}).get("keyValue") or {}), "key")
            raise Conflict(collection, field) from e
        except ConnectionFailure as e:
            logger.error(f"MongoDB connection failure on {collection}: {e}")
            raise StorageUnavailable(str(e)) from e
        except OperationFailure as e:
            logger.error(f"MongoDB operation failed on {collection}: {e}")
            raise StorageError(str(e)) from e
        except PyMongoError as e:
            logger.error(f"MongoDB error on {collection}: {e}")
            raise StorageUnavailable(str(e)) from e

    @staticmethod
    def _record(spec: CollectionSpec, document: dict[str, Any]) -> Record:
        document.pop("_id", None)
        return load_record(spec, document)

    def _selector(self, spec: CollectionSpec, key: str, user_id: str | None) -> dict[str, Any]:
        selector = spec.lookup(key, user_id)
        if spec.ttl:
            selector.update(_live(spec, utcnow()))
        return selector

    # ==========================================
    # Store operations
    # ==========================================

    async def create(self, collection: str, record: Record) -> Record:
        spec = get_spec(collection)
        record = stamp_new(spec, record)
        document = to_bson(record.model_dump(by_alias=True))
        with self._translate(collection):
            await self.db[collection].insert_one(document)
        logger.debug(f"Created {collection}/{document[spec.key]}")
        return record

    async def get_by_id(self, collection: str, key: str, user_id: str | None = None) -> Record:
        spec = get_spec(collection)
        with self._translate(collection):
            document = await self.db[collection].find_one(self._selector(spec, key, user_id))
        if document is None:
            raise NotFound(collection, key)
        return self._record(spec, document)

    async def query(self, collection: str, query: Query) -> Page[Record]:
        spec = get_spec(collection)
        spec.require_owner(query.user_id)
        mongo_filter = build_filter(spec, query, utcnow())
        with self._translate(collection):
            cursor = self.db[collection].find(
                mongo_filter,
                sort=[("createdAt", DESCENDING), ("_id", ASCENDING)],
                skip=query.skip,
                limit=query.limit,
            )
            documents = await cursor.to_list(length=None)
        return Page([self._record(spec, d) for d in documents])

    async def update_by_id(
        self,
        collection: str,
        key: str,
        user_id: str | None,
        changes: dict[str, Any],
    ) -> Record:
        spec = get_spec(collection)
        coerced = coerce_changes(spec, changes)
        current = await self.get_by_id(collection, key, user_id)

        # Validate the merged record so both backends reject the same input
        load_record(spec, {**current.model_dump(by_alias=True), **coerced})
        update = {**coerced, "updatedAt": utcnow()}

        with self._translate(collection):
            document = await self.db[collection].find_one_and_update(
                self._selector(spec, key, user_id),
                {"$set": to_bson(update)},
                return_document=ReturnDocument.AFTER,
            )
        if document is None:
            raise NotFound(collection, key)
        return self._record(spec, document)

    async def delete_by_id(self, collection: str, key: str, user_id: str | None = None) -> None:
        spec = get_spec(collection)
        with self._translate(collection):
            result = await self.db[collection].delete_one(self._selector(spec, key, user_id))
        if result.deleted_count == 0:
            raise NotFound(collection, key)
        logger.debug(f"Deleted {collection}/{key}")

    async def count(self, collection: str) -> int:
        spec = get_spec(collection)
        live = _live(spec, utcnow()) if spec.ttl else {}
        with self._translate(collection):
            return await self.db[collection].count_documents(live)
