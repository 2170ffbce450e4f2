"""Tests for the duplicate lookup policy."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from letterbox.intake.dedup import (
    EMAIL_NEAR_DUPLICATE_WINDOW,
    FEED_NEAR_DUPLICATE_WINDOW,
    find_duplicate,
)
from letterbox.intake.fingerprint import fingerprint_pair
from letterbox.intake.models import DuplicateKind, Item
from letterbox.storage.memory import MemoryStorage

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


def _make_item(storage, *, user_id="u1", title="Title", content="Content", created_at=NOW):
    normalized_hash, fingerprint = fingerprint_pair(title, content)
    return storage.create_item(
        Item(
            user_id=user_id,
            source_id="s1",
            title=title,
            content=content,
            normalized_hash=normalized_hash,
            fingerprint=fingerprint,
            created_at=created_at,
        )
    )


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


class TestWindows:
    def test_defaults(self):
        assert FEED_NEAR_DUPLICATE_WINDOW == timedelta(days=7)
        assert EMAIL_NEAR_DUPLICATE_WINDOW == timedelta(hours=24)


class TestFindDuplicate:
    def test_no_items(self, storage):
        h, fp = fingerprint_pair("Title", "Content")
        assert find_duplicate(storage, "u1", h, fp, FEED_NEAR_DUPLICATE_WINDOW, NOW) is None

    def test_exact_duplicate_any_age(self, storage):
        existing = _make_item(storage, created_at=NOW - timedelta(days=365))
        h, fp = fingerprint_pair("title", "  content ")
        match = find_duplicate(storage, "u1", h, fp, FEED_NEAR_DUPLICATE_WINDOW, NOW)
        assert match is not None
        assert match.kind == DuplicateKind.EXACT
        assert match.existing_item_id == existing.id

    def test_exact_duplicate_scoped_to_user(self, storage):
        _make_item(storage, user_id="other")
        h, fp = fingerprint_pair("Title", "Content")
        assert find_duplicate(storage, "u1", h, fp, FEED_NEAR_DUPLICATE_WINDOW, NOW) is None

    def test_near_duplicate_within_window(self, storage):
        existing = _make_item(storage, created_at=NOW - timedelta(hours=2))
        _, fp = fingerprint_pair("Title", "Content")
        match = find_duplicate(storage, "u1", "different-hash", fp, EMAIL_NEAR_DUPLICATE_WINDOW, NOW)
        assert match is not None
        assert match.kind == DuplicateKind.NEAR
        assert match.existing_item_id == existing.id

    def test_near_duplicate_outside_window_is_new(self, storage):
        _make_item(storage, created_at=NOW - timedelta(hours=25))
        _, fp = fingerprint_pair("Title", "Content")
        assert find_duplicate(storage, "u1", "different-hash", fp, EMAIL_NEAR_DUPLICATE_WINDOW, NOW) is None

    def test_feed_window_is_wider(self, storage):
        _make_item(storage, created_at=NOW - timedelta(days=6))
        _, fp = fingerprint_pair("Title", "Content")
        match = find_duplicate(storage, "u1", "different-hash", fp, FEED_NEAR_DUPLICATE_WINDOW, NOW)
        assert match is not None
        assert match.kind == DuplicateKind.NEAR

    def test_exact_takes_precedence(self, storage):
        existing = _make_item(storage)
        h, fp = fingerprint_pair("Title", "Content")
        match = find_duplicate(storage, "u1", h, fp, FEED_NEAR_DUPLICATE_WINDOW, NOW)
        assert match.kind == DuplicateKind.EXACT
        assert match.existing_item_id == existing.id
