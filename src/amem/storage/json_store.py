"""
JSON File Store - flat-file persistence for development mode.

Each collection lives in one pretty-printed UTF-8 file:

    <root>/users.json
    <root>/contexts.json
    <root>/tasks.json
    <root>/preferences.json
    <root>/structured_data.json

holding a JSON array of records in insertion order.

Every read-modify-write of a collection runs under that collection's
asyncio.Lock, so concurrent writers to the same file never lose updates.
Writes land in a temporary file first and are renamed over the target,
so a failed write leaves the previous content intact.
"""

import asyncio
import json
from collections import defaultdict
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, TypeVar
from uuid import uuid4

import aiofiles
import aiofiles.os

from amem.core.config import get_logger
from amem.core.errors import Conflict, CorruptData, NotFound
from amem.core.types import Record, utcnow
from amem.storage.base import (
    CollectionSpec,
    Store,
    coerce_changes,
    get_spec,
    load_record,
    stamp_new,
)
from amem.storage.query import Page, Query, apply_query, is_expired

logger = get_logger("storage.json")

T = TypeVar("T")


class JsonFileStore(Store):
    """
    Store backed by one JSON array file per collection.

    Besides the Store operations it exposes the raw collection primitives
    `read`, `write` and `delete`.
    """

    mode = "json"

    def __init__(self, root: Path | str):
        """Initialize the store. The root directory is created if missing."""
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def _path(self, collection: str) -> Path:
        return self.root / f"{collection}.json"

    # ==========================================
    # Collection primitives
    # ==========================================

    async def _load(self, collection: str) -> list[dict[str, Any]] | None:
        path = self._path(collection)
        try:
            async with aiofiles.open(path, "r", encoding="utf-8") as f:
                raw = await f.read()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.error(f"Failed to read {collection}: {e}")
            raise

        try:
            records = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error(f"Corrupt collection file {path}: {e}")
            raise CorruptData(collection, f"invalid JSON at line {e.lineno}") from e
        if not isinstance(records, list):
            logger.error(f"Corrupt collection file {path}: top level is {type(records).__name__}")
            raise CorruptData(collection, "top level is not an array")
        return records

    async def _dump(self, collection: str, records: list[dict[str, Any]]) -> None:
        path = self._path(collection)
        tmp = path.with_name(f".{path.name}.{uuid4().hex}.tmp")
        payload = json.dumps(records, indent=2, ensure_ascii=False)
        try:
            async with aiofiles.open(tmp, "w", encoding="utf-8") as f:
                await f.write(payload)
                await f.flush()
            await aiofiles.os.replace(tmp, path)
        except OSError as e:
            logger.error(f"Failed to write {collection}: {e}")
            try:
                await aiofiles.os.remove(tmp)
            except FileNotFoundError:
                pass
            raise

    async def read(self, collection: str) -> list[dict[str, Any]] | None:
        """Read a whole collection. Returns None if it has never been written."""
        return await self._load(collection)

    async def write(self, collection: str, records: list[dict[str, Any]]) -> bool:
        """Replace a whole collection atomically."""
        async with self._locks[collection]:
            await self._dump(collection, records)
        return True

    async def delete(self, collection: str) -> bool:
        """Remove a collection file. Deleting an absent collection succeeds."""
        async with self._locks[collection]:
            try:
                await aiofiles.os.remove(self._path(collection))
            except FileNotFoundError:
                pass
        return True

    async def _mutate(
        self,
        collection: str,
        change: Callable[[list[dict[str, Any]], datetime], T],
    ) -> T:
        """Read, change and write back one collection under its lock.

        `change` edits the list in place and returns the operation result.
        If it raises, nothing is written. Expired records are swept from
        TTL collections on every write.
        """
        spec = get_spec(collection)
        async with self._locks[collection]:
            records = await self._load(collection) or []
            now = utcnow()
            if spec.ttl:
                records = [r for r in records if not is_expired(r, now)]
            result = change(records, now)
            await self._dump(collection, records)
            return result

    # ==========================================
    # Store operations
    # ==========================================

    def _find(
        self,
        spec: CollectionSpec,
        records: list[dict[str, Any]],
        key: str,
        user_id: str | None,
        now: datetime,
    ) -> int:
        criteria = spec.lookup(key, user_id)
        for index, record in enumerate(records):
            if all(record.get(name) == value for name, value in criteria.items()):
                if spec.ttl and is_expired(record, now):
                    break
                return index
        raise NotFound(spec.name, key)

    @staticmethod
    def _check_unique(
        spec: CollectionSpec,
        records: list[dict[str, Any]],
        candidate: dict[str, Any],
        skip_index: int | None = None,
    ) -> None:
        for name in spec.unique_fields:
            value = candidate.get(name)
            if value is None:
                continue
            for index, record in enumerate(records):
                if index != skip_index and record.get(name) == value:
                    raise Conflict(spec.name, name, value)

    async def create(self, collection: str, record: Record) -> Record:
        spec = get_spec(collection)
        record = stamp_new(spec, record)
        document = record.to_document()

        def insert(records: list[dict[str, Any]], now: datetime) -> None:
            self._check_unique(spec, records, document)
            records.append(document)

        await self._mutate(collection, insert)
        logger.debug(f"Created {collection}/{document[spec.key]}")
        return record

    async def get_by_id(self, collection: str, key: str, user_id: str | None = None) -> Record:
        spec = get_spec(collection)
        records = await self._load(collection) or []
        index = self._find(spec, records, key, user_id, utcnow())
        return load_record(spec, records[index])

    async def query(self, collection: str, query: Query) -> Page[Record]:
        spec = get_spec(collection)
        spec.require_owner(query.user_id)
        records = await self._load(collection) or []
        return Page([load_record(spec, r) for r in apply_query(records, query)])

    async def update_by_id(
        self,
        collection: str,
        key: str,
        user_id: str | None,
        changes: dict[str, Any],
    ) -> Record:
        spec = get_spec(collection)
        coerced = coerce_changes(spec, changes)
        # Resolve the target before locking so a miss never rewrites the file.
        records = await self._load(collection) or []
        self._find(spec, records, key, user_id, utcnow())

        def merge(records: list[dict[str, Any]], now: datetime) -> Record:
            index = self._find(spec, records, key, user_id, now)
            current = records[index]
            updated = load_record(spec, {**current, **coerced, "updatedAt": now})
            document = updated.to_document()
            self._check_unique(spec, records, document, skip_index=index)
            records[index] = document
            return updated

        return await self._mutate(collection, merge)

    async def delete_by_id(self, collection: str, key: str, user_id: str | None = None) -> None:
        spec = get_spec(collection)
        records = await self._load(collection) or []
        self._find(spec, records, key, user_id, utcnow())

        def remove(records: list[dict[str, Any]], now: datetime) -> None:
            index = self._find(spec, records, key, user_id, now)
            del records[index]

        await self._mutate(collection, remove)
        logger.debug(f"Deleted {collection}/{key}")

    async def count(self, collection: str) -> int:
        spec = get_spec(collection)
        records = await self._load(collection) or []
        if spec.ttl:
            now = utcnow()
            records = [r for r in records if not is_expired(r, now)]
        return len(records)
