"""The storage collaborator boundary consumed by the intake core."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from letterbox.intake.models import Item, Source, SourcePatch, User


@runtime_checkable
class Storage(Protocol):
    """Create/read/update calls the poller and email processor rely on.

    Implementations must reject a second item with the same
    ``(user_id, normalized_hash)`` by raising
    :class:`~letterbox.errors.DuplicateItemError`, and raise
    :class:`~letterbox.errors.StorageError` when unreachable.
    """

    # ── Items ────────────────────────────────────────────────────

    def create_item(self, item: Item) -> Item: ...

    def find_item_by_exact_hash(self, user_id: str, normalized_hash: str) -> Item | None: ...

    def find_items_by_fingerprint(self, user_id: str, fingerprint: str) -> list[Item]: ...

    def list_items(self, user_id: str, *, source_id: str | None = None) -> list[Item]: ...

    def mark_read(self, item_id: str, is_read: bool = True) -> Item: ...

    # ── Sources ──────────────────────────────────────────────────

    def create_source(self, source: Source) -> Source: ...

    def get_source(self, source_id: str) -> Source | None: ...

    def list_sources(self, user_id: str | None = None) -> list[Source]: ...

    def update_source(self, source_id: str, patch: SourcePatch) -> Source: ...

    def increment_item_count(self, source_id: str, by: int = 1) -> Source: ...

    def deactivate_source(self, source_id: str) -> Source: ...

    def find_sources_due_for_sync(
        self, limit: int = 50, *, now: datetime | None = None
    ) -> list[Source]: ...

    def get_or_create_forwarding_source(self, user_id: str, address: str) -> Source: ...

    # ── Users ────────────────────────────────────────────────────

    def create_user(self, user: User) -> User: ...

    def get_user(self, user_id: str) -> User | None: ...

    def find_user_by_forwarding_address(self, address: str) -> User | None: ...
