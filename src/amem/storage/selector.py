"""
Storage Selector - picks the backend once, at startup.

    json      -> JsonFileStore, never touches the network
    database  -> MongoStore, or StorageUnavailable (startup must abort)
    auto      -> MongoStore if a URI is configured and reachable,
                 otherwise JsonFileStore (logged, not fatal)

The returned Store is the only one the process uses; callers receive it
explicitly and it is never swapped at runtime.
"""

from amem.core.config import Settings, get_logger
from amem.core.errors import StorageUnavailable
from amem.storage.base import Store
from amem.storage.document import MongoStore
from amem.storage.json_store import JsonFileStore

logger = get_logger("storage.selector")


def _json_store(settings: Settings) -> JsonFileStore:
    store = JsonFileStore(settings.json_storage_path)
    logger.info(f"Using JSON file storage at {store.root}")
    return store


async def _mongo_store(settings: Settings) -> MongoStore:
    return await MongoStore.connect(
        settings.mongodb_uri,
        settings.mongodb_database,
        timeout_ms=settings.mongodb_timeout_ms,
    )


async def select_store(settings: Settings) -> Store:
    """
    Build the Store for this process according to `settings.storage_mode`.

    Raises:
        StorageUnavailable: in database mode, when no URI is configured or
            the server cannot be reached within the timeout.
    """
    mode = settings.storage_mode

    if mode == "json":
        return _json_store(settings)

    if not settings.mongodb_uri:
        if mode == "database":
            raise StorageUnavailable("MONGODB_URI is required when STORAGE_MODE is database")
        logger.info("No MONGODB_URI configured, falling back to JSON storage")
        return _json_store(settings)

    try:
        store = await _mongo_store(settings)
    except StorageUnavailable as e:
        if mode == "database":
            logger.error(f"MongoDB connection failed: {e}")
            raise
        logger.warning(f"MongoDB connection failed, falling back to JSON storage: {e}")
        return _json_store(settings)

    logger.info("Using MongoDB storage")
    return store
