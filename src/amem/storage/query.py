"""
Query Engine - shared filter/sort/paginate semantics.

The File Store runs these functions directly over the records it loads.
The Document Store translates the same `Query` into a native MongoDB
filter; `apply_query` is the reference it must reproduce:

1. Owner filter: only records whose `userId` equals `Query.user_id`.
2. Equality filter: every `field -> value` pair must match exactly.
3. Tag filter: the record's tags must intersect the requested tags.
4. Expiry: records whose `expiresAt` has passed are invisible.
5. Sort by `createdAt` descending; equal timestamps keep insertion order.
6. Skip, then limit. A skip past the end yields an empty page.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, JsonValue, field_validator

DEFAULT_LIMIT = 50

T = TypeVar("T")


class Query(BaseModel):
    """A filtered, paginated request against one collection.

    Field names in `equals` are stored (camelCase) names.
    """

    model_config = ConfigDict(frozen=True)

    user_id: str | None = None
    """Owner filter. None only for collections that are not owner-scoped."""

    equals: dict[str, JsonValue] = Field(default_factory=dict)
    """Exact-match filters, applied only for fields present in the request."""

    tags: frozenset[str] | None = None
    """Match records carrying any of these tags."""

    limit: int = Field(default=DEFAULT_LIMIT, ge=1)
    skip: int = Field(default=0, ge=0)

    @field_validator("equals")
    @classmethod
    def _drop_absent(cls, value: dict[str, Any]) -> dict[str, Any]:
        return {k: v for k, v in value.items() if v is not None}

    @field_validator("tags", mode="before")
    @classmethod
    def _parse_tags(cls, value):
        if value is None:
            return None
        if isinstance(value, str):
            value = value.split(",")
        tags = frozenset(t.strip() for t in value if t and t.strip())
        return tags or None


@dataclass
class Page(Generic[T]):
    """One page of query results."""

    items: list[T] = field(default_factory=list)

    @property
    def count(self) -> int:
        """Number of items on this page (not the total match count)."""
        return len(self.items)


def parse_timestamp(value: Any) -> datetime | None:
    """Read a stored timestamp (ISO string or datetime) as aware UTC."""
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def is_expired(record: dict[str, Any], now: datetime) -> bool:
    expires_at = parse_timestamp(record.get("expiresAt"))
    return expires_at is not None and expires_at <= now


def matches(record: dict[str, Any], query: Query, now: datetime) -> bool:
    """Whether a stored record satisfies every clause of the query."""
    if query.user_id is not None and record.get("userId") != query.user_id:
        return False
    for name, expected in query.equals.items():
        if name not in record or record[name] != expected:
            return False
    if query.tags is not None and query.tags.isdisjoint(record.get("tags") or ()):
        return False
    return not is_expired(record, now)


def _created_at(record: dict[str, Any]) -> datetime:
    return parse_timestamp(record.get("createdAt")) or datetime.min.replace(tzinfo=timezone.utc)


def apply_query(
    records: Iterable[dict[str, Any]],
    query: Query,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    """Filter, sort and paginate stored records.

    `records` must be in insertion order; `sorted` is stable, so records
    with equal `createdAt` keep that order.
    """
    now = now or datetime.now(timezone.utc)
    selected = [r for r in records if matches(r, query, now)]
    selected.sort(key=_created_at, reverse=True)
    return selected[query.skip:query.skip + query.limit]
