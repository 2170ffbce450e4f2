"""In-process storage backed by dicts, guarded by one lock."""

from __future__ import annotations

import logging
import threading
from datetime import datetime

from letterbox.errors import DuplicateItemError, SourceNotFoundError, StorageError
from letterbox.intake.models import (
    Item,
    Source,
    SourcePatch,
    SourceType,
    User,
    utcnow,
)

logger = logging.getLogger(__name__)


class MemoryStorage:
    """Dict-backed implementation of :class:`~letterbox.storage.base.Storage`.

    Enforces the ``(user_id, normalized_hash)`` uniqueness constraint so a
    racing second write surfaces as :class:`DuplicateItemError`.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._users: dict[str, User] = {}
        self._sources: dict[str, Source] = {}
        self._items: dict[str, Item] = {}
        self._hash_index: dict[tuple[str, str], str] = {}

    # ── Hooks ────────────────────────────────────────────────────

    def _after_write(self) -> None:
        """Called after every mutation; subclasses persist here."""

    # ── Items ────────────────────────────────────────────────────

    def create_item(self, item: Item) -> Item:
        with self._lock:
            key = (item.user_id, item.normalized_hash)
            existing_id = self._hash_index.get(key)
            if existing_id is not None:
                raise DuplicateItemError(
                    f"Item with hash {item.normalized_hash[:12]} already exists for user {item.user_id}",
                    existing_item_id=existing_id,
                )
            stored = item.model_copy(deep=True)
            self._items[stored.id] = stored
            self._hash_index[key] = stored.id
            self._after_write()
            return stored.model_copy(deep=True)

    def find_item_by_exact_hash(self, user_id: str, normalized_hash: str) -> Item | None:
        with self._lock:
            item_id = self._hash_index.get((user_id, normalized_hash))
            if item_id is None:
                return None
            return self._items[item_id].model_copy(deep=True)

    def find_items_by_fingerprint(self, user_id: str, fingerprint: str) -> list[Item]:
        with self._lock:
            matches = [
                i for i in self._items.values()
                if i.user_id == user_id and i.fingerprint == fingerprint
            ]
            matches.sort(key=lambda i: i.created_at, reverse=True)
            return [i.model_copy(deep=True) for i in matches]

    def list_items(self, user_id: str, *, source_id: str | None = None) -> list[Item]:
        with self._lock:
            results = [i for i in self._items.values() if i.user_id == user_id]
            if source_id is not None:
                results = [i for i in results if i.source_id == source_id]
            results.sort(key=lambda i: i.created_at, reverse=True)
            return [i.model_copy(deep=True) for i in results]

    def mark_read(self, item_id: str, is_read: bool = True) -> Item:
        with self._lock:
            item = self._items.get(item_id)
            if item is None:
                raise StorageError(f"Item not found: {item_id}")
            item.is_read = is_read
            self._after_write()
            return item.model_copy(deep=True)

    # ── Sources ──────────────────────────────────────────────────

    def create_source(self, source: Source) -> Source:
        with self._lock:
            stored = source.model_copy(deep=True)
            self._sources[stored.id] = stored
            self._after_write()
            return stored.model_copy(deep=True)

    def get_source(self, source_id: str) -> Source | None:
        with self._lock:
            source = self._sources.get(source_id)
            return source.model_copy(deep=True) if source else None

    def list_sources(self, user_id: str | None = None) -> list[Source]:
        with self._lock:
            results = list(self._sources.values())
            if user_id is not None:
                results = [s for s in results if s.user_id == user_id]
            results.sort(key=lambda s: s.created_at)
            return [s.model_copy(deep=True) for s in results]

    def update_source(self, source_id: str, patch: SourcePatch) -> Source:
        with self._lock:
            source = self._require_source(source_id)
            updated = source.model_copy(update=patch.model_dump(exclude_unset=True))
            self._sources[source_id] = updated
            self._after_write()
            return updated.model_copy(deep=True)

    def increment_item_count(self, source_id: str, by: int = 1) -> Source:
        with self._lock:
            source = self._require_source(source_id)
            source.item_count += by
            self._after_write()
            return source.model_copy(deep=True)

    def deactivate_source(self, source_id: str) -> Source:
        with self._lock:
            source = self._require_source(source_id)
            source.is_active = False
            self._after_write()
            return source.model_copy(deep=True)

    def find_sources_due_for_sync(
        self, limit: int = 50, *, now: datetime | None = None
    ) -> list[Source]:
        """Due sources, most stale first, at most ``limit``."""
        now = now or utcnow()
        with self._lock:
            due = [s for s in self._sources.values() if s.is_due(now)]
            due.sort(key=lambda s: (s.last_sync_at is not None, s.last_sync_at or now))
            return [s.model_copy(deep=True) for s in due[:limit]]

    def get_or_create_forwarding_source(self, user_id: str, address: str) -> Source:
        with self._lock:
            for source in self._sources.values():
                if (
                    source.user_id == user_id
                    and source.type == SourceType.EMAIL_FORWARDING
                    and source.configuration.get("address", "").lower() == address.lower()
                ):
                    return source.model_copy(deep=True)
            logger.info("Creating forwarding source for user %s (%s)", user_id, address)
            return self.create_source(
                Source(
                    user_id=user_id,
                    name="Email Forwarding",
                    type=SourceType.EMAIL_FORWARDING,
                    configuration={"address": address},
                )
            )

    def _require_source(self, source_id: str) -> Source:
        source = self._sources.get(source_id)
        if source is None:
            raise SourceNotFoundError(f"Source not found: {source_id}")
        return source

    # ── Users ────────────────────────────────────────────────────

    def create_user(self, user: User) -> User:
        with self._lock:
            stored = user.model_copy(deep=True)
            self._users[stored.id] = stored
            self._after_write()
            return stored.model_copy(deep=True)

    def get_user(self, user_id: str) -> User | None:
        with self._lock:
            user = self._users.get(user_id)
            return user.model_copy(deep=True) if user else None

    def find_user_by_forwarding_address(self, address: str) -> User | None:
        wanted = address.strip().lower()
        with self._lock:
            for user in self._users.values():
                if user.forwarding_address.lower() == wanted:
                    return user.model_copy(deep=True)
            return None
