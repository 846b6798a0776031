"""
Core module - Configuration, record types, errors and password hashing.
"""

from amem.core.config import Settings, settings
from amem.core.errors import (
    Conflict,
    CorruptData,
    NotFound,
    StorageError,
    StorageUnavailable,
    ValidationError,
)
from amem.core.types import (
    Context,
    Preference,
    Record,
    StructuredData,
    Task,
    TaskPriority,
    TaskStatus,
    User,
)

__all__ = [
    "Settings",
    "settings",
    "Conflict",
    "CorruptData",
    "NotFound",
    "StorageError",
    "StorageUnavailable",
    "ValidationError",
    "Context",
    "Preference",
    "Record",
    "StructuredData",
    "Task",
    "TaskPriority",
    "TaskStatus",
    "User",
]
