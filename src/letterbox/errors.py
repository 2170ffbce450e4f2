"""Exception hierarchy for the intake core.

Errors local to one source or one item are caught by the poller and the
email processor and recorded in that entity's state. Only storage
failures are meant to reach the caller.
"""

from __future__ import annotations


class LetterboxError(Exception):
    """Base error for all letterbox failures."""


class FetchError(LetterboxError):
    """A feed could not be retrieved (network, timeout, non-2xx)."""

    def __init__(self, message: str, *, url: str = "", status: int | None = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status


class FeedParseError(FetchError):
    """A feed was retrieved but its body is not a usable RSS/Atom document."""


class EmailParseError(LetterboxError):
    """A raw message could not be parsed as RFC 5322 email."""


class InvalidPayloadError(LetterboxError):
    """An inbound webhook payload is missing required fields."""


class SourceNotFoundError(LetterboxError):
    """A source id does not exist or is not of the expected type."""


class StorageError(LetterboxError):
    """The storage collaborator failed."""


class DuplicateItemError(StorageError):
    """An item with the same ``(user_id, normalized_hash)`` already exists."""

    def __init__(self, message: str, *, existing_item_id: str = "") -> None:
        super().__init__(message)
        self.existing_item_id = existing_item_id
