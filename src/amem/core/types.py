"""
Core type definitions for Assistant Memory.

These types describe the records kept for each user:
- User, Context, Task, Preference, StructuredData

Field names are snake_case in Python and camelCase on disk and on the wire
(`user_id` <-> `userId`). Open-ended payloads (metadata, structured data,
task results) are typed as `JsonValue`, the recursive union of
str | int | float | bool | None | list | dict.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any
from uuid import uuid4

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    JsonValue,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


def to_millis(value: datetime) -> datetime:
    """Drop sub-millisecond precision. BSON dates hold milliseconds only."""
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime, at millisecond precision."""
    return to_millis(datetime.now(timezone.utc))


def new_id() -> str:
    """Generate an opaque, globally unique record identifier."""
    return str(uuid4())


def _as_utc(value: datetime) -> datetime:
    # BSON dates come back naive; they are always UTC.
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return to_millis(value.astimezone(timezone.utc))


def _dedupe(tags: list[str]) -> list[str]:
    return list(dict.fromkeys(tag.strip() for tag in tags if tag and tag.strip()))


UTCDateTime = Annotated[datetime, AfterValidator(_as_utc)]
"""Datetime normalized to timezone-aware UTC, truncated to milliseconds."""

Tags = Annotated[list[str], AfterValidator(_dedupe)]
"""A set of tags, stored as a de-duplicated list."""

LowerStr = Annotated[str, AfterValidator(lambda v: v.strip().lower())]
"""Case-insensitive identifier, stored lowercased."""


# ============================================
# Enums
# ============================================

class TaskStatus(str, Enum):
    """Lifecycle states of a task."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED)


class TaskPriority(str, Enum):
    """Task priority levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class Theme(str, Enum):
    """UI theme preference."""
    LIGHT = "light"
    DARK = "dark"
    AUTO = "auto"


# ============================================
# Base Models
# ============================================

class Schema(BaseModel):
    """Base for every model that crosses the storage or HTTP boundary."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )


class Record(Schema):
    """Base class for all stored records."""

    created_at: UTCDateTime = Field(default_factory=utcnow)
    """When the record was created. Assigned by the store."""

    updated_at: UTCDateTime = Field(default_factory=utcnow)
    """When the record was last changed. Refreshed on every update."""

    @model_validator(mode="after")
    def _timestamps_ordered(self):
        if self.updated_at < self.created_at:
            raise ValueError("updatedAt must not precede createdAt")
        return self

    def to_document(self) -> dict[str, Any]:
        """Serialize to the JSON-compatible stored form (camelCase keys)."""
        return self.model_dump(mode="json", by_alias=True)


# ============================================
# Records
# ============================================

class User(Record):
    """An account (usually an assistant) that owns memory records."""

    id: str = Field(default_factory=new_id)

    username: LowerStr = Field(min_length=1, max_length=100)
    """Unique, case-insensitive."""

    email: LowerStr = Field(min_length=3, max_length=320)
    """Unique, case-insensitive."""

    password: str
    """Password hash, never the plain text."""

    role: str = "assistant"

    api_key: str = Field(default_factory=new_id)
    """Opaque credential sent in the X-API-Key header."""

    last_login: UTCDateTime | None = None

    def public(self) -> dict[str, Any]:
        """Wire representation without the password hash."""
        return self.model_dump(mode="json", by_alias=True, exclude={"password"})


class Context(Record):
    """A chunk of conversational context, optionally expiring."""

    user_id: str
    context_id: str = Field(default_factory=new_id)
    session_id: str = Field(default_factory=new_id)

    content: str = Field(min_length=1, max_length=100_000)

    metadata: dict[str, JsonValue] = Field(default_factory=dict)
    tags: Tags = Field(default_factory=list)

    expires_at: UTCDateTime | None = None
    """Once this passes, the context is unreachable."""


class Task(Record):
    """A unit of work tracked for a user."""

    user_id: str
    task_id: str = Field(default_factory=new_id)

    title: str = Field(min_length=1, max_length=500)
    description: str = Field(default="", max_length=5000)

    status: TaskStatus = TaskStatus.PENDING
    priority: TaskPriority = TaskPriority.MEDIUM
    progress: int = Field(default=0, ge=0, le=100)

    result: JsonValue = None
    error: str | None = None

    metadata: dict[str, JsonValue] = Field(default_factory=dict)
    tags: Tags = Field(default_factory=list)

    started_at: UTCDateTime | None = None
    completed_at: UTCDateTime | None = None
    due_date: UTCDateTime | None = None


class NotificationSettings(Schema):
    """Which channels may notify the user."""

    email: bool = True
    push: bool = False
    sms: bool = False


class Preference(Record):
    """Per-user settings. Exactly one per user, created on first read."""

    user_id: str

    preferences: dict[str, JsonValue] = Field(default_factory=dict)
    """Free-form key/value preferences."""

    theme: Theme = Theme.AUTO
    language: str = "en"
    timezone: str = "UTC"
    notification_settings: NotificationSettings = Field(default_factory=NotificationSettings)

    def lookup(self, key: str) -> Any:
        """Find a preference by key: free-form map first, then named settings."""
        if key in self.preferences:
            return self.preferences[key]
        document = self.to_document()
        return document.get(key)


class StructuredData(Record):
    """An arbitrary structured payload filed under a logical collection tag."""

    user_id: str
    data_id: str = Field(default_factory=new_id)

    collection: str = Field(min_length=1, max_length=200)
    """Free-form grouping tag, not a storage partition."""

    data: JsonValue
    data_schema: JsonValue = Field(default=None, alias="schema")

    metadata: dict[str, JsonValue] = Field(default_factory=dict)
    tags: Tags = Field(default_factory=list)

    @field_validator("data")
    @classmethod
    def _data_present(cls, value):
        if value is None:
            raise ValueError("data is required")
        return value


# ============================================
# Request Payloads
# ============================================

class Changes(Schema):
    """Base for partial updates: only fields the caller supplied are applied.

    An explicit null is a change too: it clears a nullable field and is
    rejected by the store for a required one.
    """

    def changes(self) -> dict[str, Any]:
        """The supplied fields, keyed by stored (camelCase) name."""
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)


class RegisterRequest(Schema):
    username: str = Field(min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(min_length=1)
    role: str | None = None


class LoginRequest(Schema):
    username: str
    password: str


class ContextCreate(Schema):
    content: str = Field(min_length=1, max_length=100_000)
    session_id: str | None = None
    metadata: dict[str, JsonValue] | None = None
    tags: list[str] | None = None
    expires_at: UTCDateTime | None = None

    def to_record(self, user_id: str) -> Context:
        fields = self.model_dump(exclude_none=True)
        return Context(user_id=user_id, **fields)


class ContextUpdate(Changes):
    content: str | None = Field(default=None, min_length=1, max_length=100_000)
    metadata: dict[str, JsonValue] | None = None
    tags: list[str] | None = None
    expires_at: UTCDateTime | None = None


class TaskCreate(Schema):
    title: str = Field(min_length=1, max_length=500)
    description: str | None = None
    priority: TaskPriority | None = None
    tags: list[str] | None = None
    metadata: dict[str, JsonValue] | None = None
    due_date: UTCDateTime | None = None

    def to_record(self, user_id: str) -> Task:
        fields = self.model_dump(exclude_none=True)
        return Task(user_id=user_id, **fields)


class TaskUpdate(Changes):
    title: str | None = Field(default=None, min_length=1, max_length=500)
    description: str | None = Field(default=None, max_length=5000)
    status: TaskStatus | None = None
    priority: TaskPriority | None = None
    progress: int | None = Field(default=None, ge=0, le=100)
    result: JsonValue = None
    error: str | None = None
    metadata: dict[str, JsonValue] | None = None
    tags: list[str] | None = None
    started_at: UTCDateTime | None = None

    def changes(self, now: datetime | None = None) -> dict[str, Any]:
        """Supplied fields plus the timestamps implied by a status transition."""
        changes = super().changes()
        now = now or utcnow()
        if self.status == TaskStatus.IN_PROGRESS and self.started_at is None:
            changes["startedAt"] = now.isoformat()
        if self.status in TERMINAL_STATUSES:
            changes["completedAt"] = now.isoformat()
        return changes


class PreferenceUpdate(Changes):
    preferences: dict[str, JsonValue] | None = None
    theme: Theme | None = None
    language: str | None = None
    timezone: str | None = None
    notification_settings: NotificationSettings | None = None


class StructuredDataCreate(Schema):
    collection: str = Field(min_length=1, max_length=200)
    data: JsonValue
    data_schema: JsonValue = Field(default=None, alias="schema")
    tags: list[str] | None = None
    metadata: dict[str, JsonValue] | None = None

    def to_record(self, user_id: str) -> StructuredData:
        fields = self.model_dump(exclude_none=True)
        return StructuredData(user_id=user_id, **fields)


class StructuredDataUpdate(Changes):
    data: JsonValue = None
    data_schema: JsonValue = Field(default=None, alias="schema")
    tags: list[str] | None = None
    metadata: dict[str, JsonValue] | None = None
