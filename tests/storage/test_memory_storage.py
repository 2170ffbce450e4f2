"""Tests for MemoryStorage: the dict-backed storage collaborator."""

from datetime import UTC, datetime, timedelta

import pytest
from letterbox.errors import DuplicateItemError, SourceNotFoundError, StorageError
from letterbox.intake.models import (
    Item,
    Source,
    SourcePatch,
    SourceType,
    SyncStatus,
    User,
)
from letterbox.storage import MemoryStorage, Storage, open_storage

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


def _make_item(
    user_id: str = "u1", normalized_hash: str = "h1", fingerprint: str = "fp1", **kwargs: object
) -> Item:
    """Helper to build an Item with sensible defaults."""
    return Item(
        user_id=user_id,
        source_id="s1",
        title="Title",
        normalized_hash=normalized_hash,
        fingerprint=fingerprint,
        **kwargs,  # type: ignore[arg-type]
    )


def _make_source(**kwargs: object) -> Source:
    return Source(user_id="u1", configuration={"url": "https://example.com/feed"}, **kwargs)  # type: ignore[arg-type]


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


class TestProtocol:
    def test_satisfies_storage_protocol(self, storage):
        assert isinstance(storage, Storage)

    def test_open_storage_without_directory(self):
        assert isinstance(open_storage(None), MemoryStorage)


# ── Items ───────────────────────────────────────────────────────────────

class TestItems:
    def test_create_and_find_by_hash(self, storage):
        created = storage.create_item(_make_item())
        found = storage.find_item_by_exact_hash("u1", "h1")
        assert found is not None
        assert found.id == created.id

    def test_hash_unique_per_user(self, storage):
        first = storage.create_item(_make_item())
        with pytest.raises(DuplicateItemError) as exc_info:
            storage.create_item(_make_item())
        assert exc_info.value.existing_item_id == first.id

    def test_same_hash_other_user_allowed(self, storage):
        storage.create_item(_make_item(user_id="u1"))
        storage.create_item(_make_item(user_id="u2"))
        assert storage.find_item_by_exact_hash("u2", "h1") is not None

    def test_find_by_fingerprint_newest_first(self, storage):
        old = storage.create_item(_make_item(normalized_hash="a", created_at=NOW - timedelta(days=2)))
        new = storage.create_item(_make_item(normalized_hash="b", created_at=NOW))
        storage.create_item(_make_item(normalized_hash="c", fingerprint="other"))
        matches = storage.find_items_by_fingerprint("u1", "fp1")
        assert [i.id for i in matches] == [new.id, old.id]

    def test_returns_copies(self, storage):
        created = storage.create_item(_make_item())
        created.title = "Mutated"
        assert storage.find_item_by_exact_hash("u1", "h1").title == "Title"

    def test_list_items_by_source(self, storage):
        storage.create_item(_make_item(normalized_hash="a"))
        other = _make_item(normalized_hash="b")
        other.source_id = "s2"
        storage.create_item(other)
        assert len(storage.list_items("u1")) == 2
        assert [i.normalized_hash for i in storage.list_items("u1", source_id="s2")] == ["b"]

    def test_mark_read(self, storage):
        created = storage.create_item(_make_item())
        assert storage.mark_read(created.id).is_read is True
        assert storage.mark_read(created.id, False).is_read is False

    def test_mark_read_missing(self, storage):
        with pytest.raises(StorageError):
            storage.mark_read("missing")


# ── Sources ─────────────────────────────────────────────────────────────

class TestSources:
    def test_update_applies_only_set_fields(self, storage):
        source = storage.create_source(_make_source(name="Feed", etag='"v1"'))
        updated = storage.update_source(source.id, SourcePatch(sync_status=SyncStatus.SYNCING))
        assert updated.sync_status == SyncStatus.SYNCING
        assert updated.etag == '"v1"'
        assert updated.name == "Feed"

    def test_update_can_clear_field(self, storage):
        source = storage.create_source(_make_source(sync_error="boom"))
        updated = storage.update_source(source.id, SourcePatch(sync_error=None))
        assert updated.sync_error is None

    def test_update_missing(self, storage):
        with pytest.raises(SourceNotFoundError):
            storage.update_source("missing", SourcePatch(name="x"))

    def test_increment_item_count(self, storage):
        source = storage.create_source(_make_source())
        storage.increment_item_count(source.id, 3)
        assert storage.increment_item_count(source.id).item_count == 4

    def test_deactivate(self, storage):
        source = storage.create_source(_make_source())
        assert storage.deactivate_source(source.id).is_active is False

    def test_list_sources_by_user(self, storage):
        storage.create_source(_make_source())
        storage.create_source(Source(user_id="u2"))
        assert len(storage.list_sources()) == 2
        assert len(storage.list_sources("u2")) == 1

    def test_forwarding_source_get_or_create(self, storage):
        first = storage.get_or_create_forwarding_source("u1", "alice@newsletters.app")
        second = storage.get_or_create_forwarding_source("u1", "ALICE@newsletters.app")
        assert first.id == second.id
        assert first.type == SourceType.EMAIL_FORWARDING
        assert first.configuration == {"address": "alice@newsletters.app"}


class TestDueSelection:
    def test_pending_and_error_due(self, storage):
        pending = storage.create_source(_make_source())
        errored = storage.create_source(
            _make_source(sync_status=SyncStatus.ERROR, next_retry_at=NOW - timedelta(minutes=1))
        )
        due = storage.find_sources_due_for_sync(now=NOW)
        assert {s.id for s in due} == {pending.id, errored.id}

    def test_excludes_syncing_inactive_and_future(self, storage):
        storage.create_source(_make_source(sync_status=SyncStatus.SYNCING))
        storage.create_source(_make_source(is_active=False))
        storage.create_source(
            _make_source(sync_status=SyncStatus.ERROR, next_retry_at=NOW + timedelta(minutes=5))
        )
        storage.create_source(
            _make_source(sync_status=SyncStatus.SUCCESS, next_retry_at=NOW + timedelta(minutes=5))
        )
        assert storage.find_sources_due_for_sync(now=NOW) == []

    def test_success_due_after_interval(self, storage):
        source = storage.create_source(
            _make_source(sync_status=SyncStatus.SUCCESS, next_retry_at=NOW - timedelta(seconds=1))
        )
        assert [s.id for s in storage.find_sources_due_for_sync(now=NOW)] == [source.id]

    def test_never_synced_first_then_most_stale(self, storage):
        recent = storage.create_source(
            _make_source(sync_status=SyncStatus.SUCCESS, last_sync_at=NOW - timedelta(hours=1),
                         next_retry_at=NOW - timedelta(minutes=1))
        )
        stale = storage.create_source(
            _make_source(sync_status=SyncStatus.SUCCESS, last_sync_at=NOW - timedelta(days=1),
                         next_retry_at=NOW - timedelta(minutes=1))
        )
        fresh = storage.create_source(_make_source())
        due = storage.find_sources_due_for_sync(now=NOW)
        assert [s.id for s in due] == [fresh.id, stale.id, recent.id]

    def test_limit(self, storage):
        for _ in range(5):
            storage.create_source(_make_source())
        assert len(storage.find_sources_due_for_sync(2, now=NOW)) == 2

    def test_forwarding_sources_never_fill_the_page(self, storage):
        for n in range(3):
            storage.get_or_create_forwarding_source(f"u{n}", f"user{n}@newsletters.app")
        feed = storage.create_source(_make_source())
        due = storage.find_sources_due_for_sync(3, now=NOW)
        assert [s.id for s in due] == [feed.id]


# ── Users ───────────────────────────────────────────────────────────────

class TestUsers:
    def test_find_by_forwarding_address(self, storage):
        user = storage.create_user(User(email="a@example.com", forwarding_address="Alice@Newsletters.app"))
        found = storage.find_user_by_forwarding_address(" alice@newsletters.app ")
        assert found is not None
        assert found.id == user.id

    def test_unknown_address(self, storage):
        assert storage.find_user_by_forwarding_address("nobody@newsletters.app") is None

    def test_get_user(self, storage):
        user = storage.create_user(User(email="a@example.com"))
        assert storage.get_user(user.id).email == "a@example.com"
        assert storage.get_user("missing") is None
