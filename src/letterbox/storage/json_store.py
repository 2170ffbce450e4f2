"""JSON-backed storage.

Persists users, sources and items in a single JSON file, loaded on init
and saved after every write operation.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from letterbox.errors import StorageError
from letterbox.intake.models import Item, Source, User
from letterbox.storage.memory import MemoryStorage

logger = logging.getLogger(__name__)

STORE_FILENAME = ".letterbox-store.json"


class _StoreData(BaseModel):
    """Internal wrapper for JSON serialization."""

    users: list[User] = Field(default_factory=list)
    sources: list[Source] = Field(default_factory=list)
    items: list[Item] = Field(default_factory=list)


class JsonStorage(MemoryStorage):
    """MemoryStorage that writes itself to ``<directory>/.letterbox-store.json``.

    A corrupt store file is logged and replaced by an empty store.
    """

    def __init__(self, directory: Path) -> None:
        super().__init__()
        self._path = Path(directory) / STORE_FILENAME
        self._load()

    @property
    def path(self) -> Path:
        return self._path

    # ── Private helpers ──────────────────────────────────────────

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            data = _StoreData.model_validate(raw)
        except (json.JSONDecodeError, ValidationError, OSError):
            logger.warning("Corrupt letterbox store at %s, starting fresh", self._path)
            return

        self._users = {u.id: u for u in data.users}
        self._sources = {s.id: s for s in data.sources}
        self._items = {i.id: i for i in data.items}
        self._hash_index = {(i.user_id, i.normalized_hash): i.id for i in data.items}
        logger.debug(
            "Loaded %d users, %d sources, %d items from %s",
            len(self._users), len(self._sources), len(self._items), self._path,
        )

    def _after_write(self) -> None:
        data = _StoreData(
            users=list(self._users.values()),
            sources=list(self._sources.values()),
            items=list(self._items.values()),
        )
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_suffix(".tmp")
            tmp_path.write_text(data.model_dump_json(indent=2), encoding="utf-8")
            tmp_path.replace(self._path)
        except OSError as exc:
            raise StorageError(f"Failed to write store {self._path}: {exc}") from exc
