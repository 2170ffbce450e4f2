"""Duplicate lookup policy shared by the poller and the email processor."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from letterbox.intake.models import DuplicateKind, DuplicateMatch, utcnow
from letterbox.storage.base import Storage

logger = logging.getLogger(__name__)

FEED_NEAR_DUPLICATE_WINDOW = timedelta(days=7)
EMAIL_NEAR_DUPLICATE_WINDOW = timedelta(hours=24)


def find_duplicate(
    storage: Storage,
    user_id: str,
    normalized_hash: str,
    fingerprint: str,
    window: timedelta,
    now: datetime | None = None,
) -> DuplicateMatch | None:
    """Look for an existing item that makes a candidate redundant.

    An exact duplicate is any item of the same user with the same
    normalized hash, regardless of age. A near duplicate is an item of the
    same user with the same fingerprint created within ``window`` of ``now``.

    Args:
        storage: Storage collaborator to query.
        user_id: Owner of the candidate item.
        normalized_hash: Exact-duplicate key of the candidate.
        fingerprint: Near-duplicate key of the candidate.
        window: Trailing recency window for near duplicates.
        now: Reference time; defaults to the current UTC time.

    Returns:
        The first match found, or None if the candidate is new.
    """
    existing = storage.find_item_by_exact_hash(user_id, normalized_hash)
    if existing is not None:
        return DuplicateMatch(kind=DuplicateKind.EXACT, existing_item_id=existing.id)

    cutoff = (now or utcnow()) - window
    for item in storage.find_items_by_fingerprint(user_id, fingerprint):
        if item.created_at >= cutoff:
            logger.debug(
                "Near duplicate for user %s: fingerprint %s matches item %s",
                user_id, fingerprint, item.id,
            )
            return DuplicateMatch(kind=DuplicateKind.NEAR, existing_item_id=item.id)

    return None
