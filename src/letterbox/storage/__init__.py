"""Storage collaborator: the boundary protocol and two reference backends."""

from __future__ import annotations

from pathlib import Path

from letterbox.storage.base import Storage
from letterbox.storage.json_store import JsonStorage
from letterbox.storage.memory import MemoryStorage

__all__ = ["JsonStorage", "MemoryStorage", "Storage", "open_storage"]


def open_storage(directory: str | Path | None) -> Storage:
    """Open the JSON store in ``directory``, or an in-memory store if None."""
    if directory is None:
        return MemoryStorage()
    return JsonStorage(Path(directory).expanduser())
