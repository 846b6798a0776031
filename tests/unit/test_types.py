"""Tests for core types."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from amem.core.types import (
    Context,
    ContextCreate,
    Preference,
    PreferenceUpdate,
    StructuredData,
    Task,
    TaskPriority,
    TaskStatus,
    TaskUpdate,
    User,
)


class TestUser:
    """Tests for User records."""

    def test_username_and_email_are_lowercased(self, sample_user):
        """Test case-insensitive identifiers are stored lowercased."""
        assert sample_user.username == "clara"
        assert sample_user.email == "clara@example.com"

    def test_defaults(self, sample_user):
        """Test generated identifiers and default role."""
        assert sample_user.role == "assistant"
        assert sample_user.id
        assert sample_user.api_key
        assert sample_user.api_key != sample_user.id

    def test_public_view_hides_password(self, sample_user):
        """Test the wire view omits the password hash."""
        public = sample_user.public()
        assert "password" not in public
        assert public["apiKey"] == sample_user.api_key


class TestContext:
    """Tests for Context records."""

    def test_camel_case_document(self, make_context):
        """Test stored form uses camelCase keys."""
        context = make_context(session_id="s-1", tags=["a", "b"])
        doc = context.to_document()

        assert doc["userId"] == "user-1"
        assert doc["sessionId"] == "s-1"
        assert doc["contextId"] == context.context_id
        assert doc["expiresAt"] is None

    def test_session_defaults_to_fresh_id(self, make_context):
        """Test a missing session id is generated."""
        first = make_context()
        second = make_context()
        assert first.session_id != second.session_id

    def test_tags_are_deduplicated(self, make_context):
        """Test tags behave like a set."""
        context = make_context(tags=["work", "work", " home ", ""])
        assert context.tags == ["work", "home"]

    def test_content_limit(self):
        """Test content longer than 100,000 characters is rejected."""
        with pytest.raises(ValidationError):
            Context(user_id="u", content="x" * 100_001)

    def test_datetimes_keep_milliseconds_only(self, make_context):
        """Test supplied datetimes are truncated to what BSON can hold."""
        context = make_context(expires_at=datetime(2030, 1, 1, 9, 30, 0, 123456, tzinfo=timezone.utc))
        assert context.expires_at.microsecond == 123000

    def test_naive_datetimes_are_utc(self, make_context):
        """Test naive datetimes (as returned by MongoDB) are read as UTC."""
        context = make_context(expires_at=datetime(2030, 1, 1, 12, 0))
        assert context.expires_at.tzinfo == timezone.utc
        assert context.expires_at.hour == 12

    def test_create_payload(self):
        """Test building a record from a create request."""
        body = ContextCreate.model_validate({"content": "hello", "sessionId": "s-9"})
        context = body.to_record("user-7")
        assert context.user_id == "user-7"
        assert context.session_id == "s-9"
        assert context.metadata == {}


class TestTask:
    """Tests for Task records."""

    def test_defaults(self, make_task):
        """Test default status, priority and progress."""
        task = make_task()
        assert task.status == TaskStatus.PENDING
        assert task.priority == TaskPriority.MEDIUM
        assert task.progress == 0
        assert task.to_document()["status"] == "pending"

    @pytest.mark.parametrize("progress", [-1, 101])
    def test_progress_range(self, progress):
        """Test progress must stay within 0-100."""
        with pytest.raises(ValidationError):
            Task(user_id="u", title="t", progress=progress)

    def test_title_limit(self):
        """Test titles over 500 characters are rejected."""
        with pytest.raises(ValidationError):
            Task(user_id="u", title="t" * 501)

    def test_nested_result_payload(self, make_task):
        """Test arbitrary nested JSON survives as a result."""
        result = {"rows": [1, 2.5, None, True, {"deep": ["x"]}]}
        task = make_task(result=result)
        assert task.to_document()["result"] == result

    def test_updated_not_before_created(self):
        """Test updatedAt may not precede createdAt."""
        now = datetime.now(timezone.utc)
        with pytest.raises(ValidationError):
            Task(user_id="u", title="t", created_at=now, updated_at=now - timedelta(seconds=1))


class TestTaskUpdate:
    """Tests for task status transitions."""

    def test_only_supplied_fields(self):
        """Test unset fields are not part of the changes."""
        changes = TaskUpdate(progress=40).changes()
        assert changes == {"progress": 40}

    def test_explicit_null_clears(self):
        """Test a supplied null is kept so the field can be cleared."""
        body = TaskUpdate.model_validate({"result": None, "error": None})
        assert body.changes() == {"result": None, "error": None}

    def test_in_progress_sets_started_at(self):
        """Test moving to in_progress stamps startedAt."""
        now = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        changes = TaskUpdate(status=TaskStatus.IN_PROGRESS).changes(now)

        assert changes["status"] == "in_progress"
        assert changes["startedAt"] == now.isoformat()
        assert "completedAt" not in changes

    def test_explicit_started_at_wins(self):
        """Test a supplied startedAt is not overwritten."""
        body = TaskUpdate.model_validate(
            {"status": "in_progress", "startedAt": "2026-01-01T00:00:00Z"}
        )
        changes = body.changes()
        assert changes["startedAt"].startswith("2026-01-01T00:00:00")

    @pytest.mark.parametrize("status", ["completed", "failed", "cancelled"])
    def test_terminal_status_sets_completed_at(self, status):
        """Test terminal statuses stamp completedAt."""
        changes = TaskUpdate(status=status).changes()
        assert "completedAt" in changes
        assert "startedAt" not in changes


class TestPreference:
    """Tests for Preference records."""

    def test_defaults(self):
        """Test default theme, language, timezone and notifications."""
        prefs = Preference(user_id="u")
        doc = prefs.to_document()

        assert doc["theme"] == "auto"
        assert doc["language"] == "en"
        assert doc["timezone"] == "UTC"
        assert doc["notificationSettings"] == {"email": True, "push": False, "sms": False}

    def test_invalid_theme(self):
        """Test theme must be light, dark or auto."""
        with pytest.raises(ValidationError):
            Preference(user_id="u", theme="neon")

    def test_lookup(self):
        """Test lookup prefers the free-form map, then named settings."""
        prefs = Preference(user_id="u", preferences={"tone": "formal", "language": "fr"})
        assert prefs.lookup("tone") == "formal"
        assert prefs.lookup("language") == "fr"
        assert prefs.lookup("timezone") == "UTC"
        assert prefs.lookup("missing") is None

    def test_update_changes(self):
        """Test only supplied fields are dumped, under stored names."""
        body = PreferenceUpdate.model_validate(
            {"theme": "dark", "notificationSettings": {"push": True}}
        )
        assert body.changes() == {
            "theme": "dark",
            "notificationSettings": {"push": True},
        }


class TestStructuredData:
    """Tests for StructuredData records."""

    def test_schema_alias(self, make_data):
        """Test the optional schema is stored under 'schema'."""
        item = make_data(schema={"type": "object"})
        doc = item.to_document()
        assert doc["schema"] == {"type": "object"}
        assert doc["collection"] == "contacts"

    def test_data_required(self):
        """Test data may not be null."""
        with pytest.raises(ValidationError):
            StructuredData(user_id="u", collection="c", data=None)

    def test_scalar_payload(self):
        """Test a bare scalar is a valid payload."""
        item = StructuredData(user_id="u", collection="c", data=42)
        assert item.data == 42


class TestUserValidation:
    """Tests for User constraints."""

    def test_username_required(self):
        with pytest.raises(ValidationError):
            User(username="", email="a@b.c", password="x")
