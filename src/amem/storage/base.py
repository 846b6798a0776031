"""
Store contract shared by both backends.

A `Store` exposes the same five operations whichever backend is active:

- create(collection, record)
- get_by_id(collection, key, user_id)
- query(collection, query)
- update_by_id(collection, key, user_id, changes)
- delete_by_id(collection, key, user_id)

Each collection is described once by a `CollectionSpec` (model, key field,
owner field, unique fields, TTL field); backends read that description instead of
special-casing collections.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from functools import lru_cache
from typing import Annotated, Any, Literal

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from amem.core.errors import ValidationError
from amem.core.types import (
    Context,
    Preference,
    Record,
    StructuredData,
    Task,
    User,
    to_millis,
    utcnow,
)
from amem.storage.query import Page, Query

StoreMode = Literal["json", "database"]


# ============================================
# Collection Registry
# ============================================

@dataclass(frozen=True)
class CollectionSpec:
    """How one collection is keyed, owned and constrained."""

    name: str
    model: type[Record]
    key: str
    """Stored name of the primary key field."""

    owner: str | None = "userId"
    """Stored name of the owner field; None for collections not scoped to a user."""

    unique: tuple[str, ...] = ()
    """Fields (besides the key) that must be unique across the collection."""

    ttl: str | None = None
    """Timestamp field after which a record becomes unreachable."""

    @property
    def unique_fields(self) -> tuple[str, ...]:
        return tuple(dict.fromkeys((self.key, *self.unique)))

    @property
    def immutable_fields(self) -> frozenset[str]:
        fields = {self.key, "createdAt", "updatedAt"}
        if self.owner:
            fields.add(self.owner)
        return frozenset(fields)

    def require_owner(self, user_id: str | None) -> None:
        """Owned collections are only ever read or written for one owner."""
        if self.owner is not None and user_id is None:
            raise ValidationError(f"{self.name}: an owner is required")

    def lookup(self, key: str, user_id: str | None) -> dict[str, Any]:
        """Filter selecting one record by key, restricted to its owner."""
        self.require_owner(user_id)
        if self.owner is None:
            return {self.key: key}
        return {self.key: key, self.owner: user_id}


USERS = CollectionSpec("users", User, key="id", owner=None, unique=("username", "email", "apiKey"))
CONTEXTS = CollectionSpec("contexts", Context, key="contextId", ttl="expiresAt")
TASKS = CollectionSpec("tasks", Task, key="taskId")
PREFERENCES = CollectionSpec("preferences", Preference, key="userId")
STRUCTURED_DATA = CollectionSpec("structured_data", StructuredData, key="dataId")

COLLECTIONS: dict[str, CollectionSpec] = {
    spec.name: spec for spec in (USERS, CONTEXTS, TASKS, PREFERENCES, STRUCTURED_DATA)
}


def get_spec(collection: str) -> CollectionSpec:
    """Look up a collection by name."""
    try:
        return COLLECTIONS[collection]
    except KeyError:
        raise ValidationError(f"unknown collection: {collection!r}") from None


# ============================================
# Validation Helpers
# ============================================

@lru_cache(maxsize=None)
def _field_adapters(model: type[Record]) -> dict[str, TypeAdapter]:
    """One validator per stored field name, carrying the field's constraints."""
    adapters = {}
    for name, info in model.model_fields.items():
        annotation = info.annotation
        if info.metadata:
            annotation = Annotated[(annotation, *info.metadata)]
        adapters[info.alias or name] = TypeAdapter(annotation)
    return adapters


def coerce_changes(spec: CollectionSpec, changes: dict[str, Any]) -> dict[str, Any]:
    """Validate a partial update field by field.

    Returns the changes keyed by stored name, holding Python values
    (datetimes, plain dicts for nested models). Unknown fields and fields
    that identify the record (key, owner, timestamps) are rejected.
    """
    adapters = _field_adapters(spec.model)
    coerced = {}
    for name, value in changes.items():
        if name in spec.immutable_fields:
            raise ValidationError(f"{spec.name}: field {name!r} cannot be changed")
        adapter = adapters.get(name)
        if adapter is None:
            raise ValidationError(f"{spec.name}: unknown field {name!r}")
        try:
            validated = adapter.validate_python(value)
        except PydanticValidationError as e:
            raise ValidationError(f"{spec.name}.{name}: {e.errors()[0]['msg']}") from e
        coerced[name] = _plain(adapter.dump_python(validated, by_alias=True))
    return coerced


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


def load_record(spec: CollectionSpec, document: dict[str, Any]) -> Record:
    """Build the collection's model from a stored document."""
    try:
        return spec.model.model_validate(document)
    except PydanticValidationError as e:
        raise ValidationError(f"{spec.name}: {e.errors()[0]['msg']}") from e


def stamp_new(spec: CollectionSpec, record: Record, now: datetime | None = None) -> Record:
    """Check the record type and assign server-side timestamps."""
    if not isinstance(record, spec.model):
        raise ValidationError(
            f"{spec.name} holds {spec.model.__name__} records, got {type(record).__name__}"
        )
    now = to_millis(now or utcnow())
    return record.model_copy(update={"created_at": now, "updated_at": now})


# ============================================
# Store Interface
# ============================================

class Store(ABC):
    """CRUD and filtered queries over the five collections.

    Implementations must be observably interchangeable: the only visible
    difference is `mode`.
    """

    mode: StoreMode

    @abstractmethod
    async def create(self, collection: str, record: Record) -> Record:
        """Insert a new record. Raises Conflict on a duplicate unique field."""

    @abstractmethod
    async def get_by_id(self, collection: str, key: str, user_id: str | None = None) -> Record:
        """Fetch one record by key and owner. Raises NotFound."""

    @abstractmethod
    async def query(self, collection: str, query: Query) -> Page[Record]:
        """Run a filtered, sorted, paginated query."""

    @abstractmethod
    async def update_by_id(
        self,
        collection: str,
        key: str,
        user_id: str | None,
        changes: dict[str, Any],
    ) -> Record:
        """Merge `changes` into one record and return the full result.

        Only supplied fields change; `updatedAt` always refreshes. Raises
        NotFound (without writing) when no record matches key and owner.
        """

    @abstractmethod
    async def delete_by_id(self, collection: str, key: str, user_id: str | None = None) -> None:
        """Remove one record. Raises NotFound."""

    @abstractmethod
    async def count(self, collection: str) -> int:
        """Number of live records in a collection, across all owners."""

    async def close(self) -> None:
        """Release backend resources."""
