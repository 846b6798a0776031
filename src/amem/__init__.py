"""
Assistant Memory (amem)

Per-user memory for assistants: contexts, tasks, preferences and
structured data, served over HTTP from MongoDB or flat JSON files.
"""

__version__ = "0.1.0"

from amem.core.config import settings
from amem.core.types import (
    Context,
    Preference,
    StructuredData,
    Task,
    User,
)

__all__ = [
    "settings",
    "Context",
    "Preference",
    "StructuredData",
    "Task",
    "User",
]
