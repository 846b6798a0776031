"""
Typed storage errors.

Every failure the storage layer reports is one of these kinds. Callers
(the HTTP layer, the CLI) decide how to present them; the storage layer
never builds a response itself.
"""


class StorageError(Exception):
    """Base class for all storage-layer failures."""


class NotFound(StorageError):
    """No record exists for the requested key and owner."""

    def __init__(self, collection: str, key: str):
        self.collection = collection
        self.key = key
        super().__init__(f"{collection}: no record with key {key!r}")


class Conflict(StorageError):
    """A unique constraint would be violated."""

    def __init__(self, collection: str, field: str, value: object = None):
        self.collection = collection
        self.field = field
        self.value = value
        super().__init__(f"{collection}: duplicate value for unique field {field!r}")


class ValidationError(StorageError):
    """Input was rejected before it reached the backend."""


class StorageUnavailable(StorageError):
    """The backend could not be reached (connection refused, timeout, auth)."""


class CorruptData(StorageError):
    """Persisted content could not be decoded."""

    def __init__(self, collection: str, reason: str):
        self.collection = collection
        self.reason = reason
        super().__init__(f"{collection}: unreadable persisted data ({reason})")
