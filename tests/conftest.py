"""
Pytest configuration and fixtures for Assistant Memory tests.
"""

import os
import tempfile
from collections.abc import AsyncGenerator, Generator
from pathlib import Path

import pytest

# Set test environment before importing app modules
os.environ["STORAGE_MODE"] = "json"
os.environ["JSON_STORAGE_PATH"] = tempfile.mkdtemp()
os.environ.pop("MONGODB_URI", None)

from amem.core.types import Context, StructuredData, Task, User  # noqa: E402
from amem.storage.base import Store  # noqa: E402
from amem.storage.document import MongoStore  # noqa: E402
from amem.storage.json_store import JsonFileStore  # noqa: E402


@pytest.fixture
def temp_data_dir() -> Generator[Path, None, None]:
    """Create a temporary data directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def json_store(temp_data_dir) -> JsonFileStore:
    """File-backed store rooted in a fresh temporary directory."""
    return JsonFileStore(temp_data_dir)


@pytest.fixture
async def mongo_store() -> AsyncGenerator[MongoStore, None]:
    """MongoDB-backed store running against an in-memory mongomock client."""
    from mongomock_motor import AsyncMongoMockClient

    store = MongoStore(AsyncMongoMockClient(), "amem_test")
    await store.ensure_indexes()
    yield store
    await store.close()


@pytest.fixture(params=["json", "database"])
async def store(request, temp_data_dir) -> AsyncGenerator[Store, None]:
    """Each backend in turn, for tests of the shared Store contract."""
    if request.param == "json":
        yield JsonFileStore(temp_data_dir)
        return

    from mongomock_motor import AsyncMongoMockClient

    mongo = MongoStore(AsyncMongoMockClient(), "amem_contract")
    await mongo.ensure_indexes()
    yield mongo
    await mongo.close()


# ============================================
# Sample Records
# ============================================

@pytest.fixture
def sample_user() -> User:
    return User(
        username="Clara",
        email="Clara@Example.com",
        password="pbkdf2_sha256$1$salt$digest",
    )


@pytest.fixture
def make_context():
    """Factory for contexts owned by a given user."""
    def _make(user_id: str = "user-1", **fields) -> Context:
        fields.setdefault("content", "User prefers short answers")
        return Context(user_id=user_id, **fields)
    return _make


@pytest.fixture
def make_task():
    """Factory for tasks owned by a given user."""
    def _make(user_id: str = "user-1", **fields) -> Task:
        fields.setdefault("title", "Summarize inbox")
        return Task(user_id=user_id, **fields)
    return _make


@pytest.fixture
def make_data():
    """Factory for structured data items owned by a given user."""
    def _make(user_id: str = "user-1", **fields) -> StructuredData:
        fields.setdefault("collection", "contacts")
        fields.setdefault("data", {"name": "Marcus", "phones": ["+1-555-0123"]})
        return StructuredData(user_id=user_id, **fields)
    return _make
