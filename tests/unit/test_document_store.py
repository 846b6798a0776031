"""Tests specific to the MongoDB document store."""

from datetime import datetime, timedelta, timezone

import pytest
from pymongo.errors import DuplicateKeyError, OperationFailure, ServerSelectionTimeoutError

from amem.core.errors import Conflict, StorageError, StorageUnavailable
from amem.storage.base import CONTEXTS, TASKS, USERS
from amem.storage.document import MongoStore, build_filter, to_bson
from amem.storage.query import Query

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


class TestToBson:
    """Tests for BSON value conversion."""

    def test_aware_datetime_becomes_naive_utc(self):
        value = datetime(2026, 6, 1, 14, 0, tzinfo=timezone(timedelta(hours=2)))
        assert to_bson(value) == datetime(2026, 6, 1, 12, 0)

    def test_nested_values(self):
        """Test datetimes nested in dicts and lists are converted."""
        doc = {"a": [NOW, {"b": NOW}], "c": "text"}
        naive = NOW.replace(tzinfo=None)
        assert to_bson(doc) == {"a": [naive, {"b": naive}], "c": "text"}


class TestBuildFilter:
    """Tests for Query translation."""

    def test_owner_and_equality(self):
        query = Query(user_id="u1", equals={"status": "pending"})
        assert build_filter(TASKS, query, NOW) == {"userId": "u1", "status": "pending"}

    def test_tags_use_in(self):
        """Test tag intersection maps to $in."""
        query = Query(user_id="u1", tags=["b", "a"])
        assert build_filter(TASKS, query, NOW)["tags"] == {"$in": ["a", "b"]}

    def test_contexts_hide_expired(self):
        """Test TTL collections filter out expired records."""
        mongo_filter = build_filter(CONTEXTS, Query(user_id="u1"), NOW)
        assert mongo_filter["$or"] == [
            {"expiresAt": None},
            {"expiresAt": {"$gt": NOW.replace(tzinfo=None)}},
        ]

    def test_users_have_no_owner(self):
        """Test collections without an owner ignore user_id."""
        query = Query(user_id="u1", equals={"apiKey": "k"})
        assert build_filter(USERS, query, NOW) == {"apiKey": "k"}


class TestMongoStore:
    """Tests against an in-memory MongoDB."""

    async def test_indexes(self, mongo_store):
        """Test unique and TTL indexes are created."""
        info = await mongo_store.db["users"].index_information()
        unique = {spec["key"][0][0] for spec in info.values() if spec.get("unique")}
        assert {"id", "username", "email", "apiKey"} <= unique

        info = await mongo_store.db["contexts"].index_information()
        ttl = [spec for spec in info.values() if "expireAfterSeconds" in spec]
        assert ttl and ttl[0]["key"][0][0] == "expiresAt"

    async def test_ensure_indexes_is_idempotent(self, mongo_store):
        await mongo_store.ensure_indexes()
        await mongo_store.ensure_indexes()

    async def test_internal_id_is_hidden(self, mongo_store, make_task):
        """Test MongoDB's _id never reaches the record."""
        task = await mongo_store.create("tasks", make_task())
        fetched = await mongo_store.get_by_id("tasks", task.task_id, "user-1")
        assert "_id" not in fetched.to_document()

    async def test_datetimes_stored_as_dates(self, mongo_store, make_task):
        """Test timestamps are native dates, not strings."""
        task = await mongo_store.create("tasks", make_task())
        raw = await mongo_store.db["tasks"].find_one({"taskId": task.task_id})
        assert isinstance(raw["createdAt"], datetime)

    async def test_duplicate_key_is_conflict(self, mongo_store, sample_user):
        await mongo_store.create("users", sample_user)
        with pytest.raises(Conflict):
            await mongo_store.create("users", sample_user)


class TestErrorTranslation:
    """Tests for mapping driver errors onto storage errors."""

    @pytest.mark.parametrize(
        "error, expected",
        [
            (DuplicateKeyError("dup", details={"keyValue": {"email": "a@b.c"}}), Conflict),
            (ServerSelectionTimeoutError("timed out"), StorageUnavailable),
            (OperationFailure("bad op"), StorageError),
        ],
    )
    async def test_translate(self, mongo_store, error, expected):
        with pytest.raises(expected):
            with mongo_store._translate("users"):
                raise error

    async def test_conflict_names_field(self, mongo_store):
        """Test the duplicated field is reported."""
        error = DuplicateKeyError("dup", details={"keyValue": {"email": "a@b.c"}})
        with pytest.raises(Conflict) as info:
            with mongo_store._translate("users"):
                raise error
        assert info.value.field == "email"


class TestConnect:
    """Tests for the startup connection."""

    async def test_unreachable_server(self):
        """Test an unreachable server raises StorageUnavailable within the timeout."""
        with pytest.raises(StorageUnavailable):
            await MongoStore.connect("mongodb://127.0.0.1:1", "amem_test", timeout_ms=200)
