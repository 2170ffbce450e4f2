"""Exact and near-duplicate keys derived from normalized title+content.

The near fingerprint groups reposts and cross-posts of the same story;
different items may share one.
"""

from __future__ import annotations

import hashlib
import re

TITLE_TOKEN_LIMIT = 5
TITLE_TOKEN_MIN_LENGTH = 4
CONTENT_TOKEN_LIMIT = 10
CONTENT_TOKEN_MIN_LENGTH = 5
CONTENT_PREFIX_LENGTH = 50
FINGERPRINT_LENGTH = 8

# ASCII word classes: accented letters split tokens.
_NON_WORD_SPLIT = re.compile(r"\W+", re.ASCII)
_NON_WORD_CHAR = re.compile(r"\W", re.ASCII)


def _normalize(value: str | None) -> str:
    return re.sub(r"\s+", " ", (value or "").lower().strip())


def exact_hash(title: str | None, content: str | None) -> str:
    """SHA-256 hex of ``title|content`` after case and whitespace folding.

    Used as the per-user exact-duplicate key.
    """
    combined = f"{_normalize(title)}|{_normalize(content)}"
    return hashlib.sha256(combined.encode("utf-8")).hexdigest()


def near_fingerprint(title: str | None, content: str | None) -> str:
    """Eight hex chars summarizing the leading words of title and content."""
    title = title or ""
    content = content or ""

    title_words = [
        w for w in _NON_WORD_SPLIT.split(title.lower()) if len(w) >= TITLE_TOKEN_MIN_LENGTH
    ]
    content_words = [
        w for w in _NON_WORD_SPLIT.split(content.lower()) if len(w) >= CONTENT_TOKEN_MIN_LENGTH
    ]
    prefix = _NON_WORD_CHAR.sub("", content[:CONTENT_PREFIX_LENGTH].lower())

    features = "|".join(
        [
            *title_words[:TITLE_TOKEN_LIMIT],
            *content_words[:CONTENT_TOKEN_LIMIT],
            prefix,
        ]
    )
    digest = hashlib.md5(features.encode("utf-8"), usedforsecurity=False).hexdigest()
    return digest[:FINGERPRINT_LENGTH]


def fingerprint_pair(title: str | None, content: str | None) -> tuple[str, str]:
    """Return ``(exact_hash, near_fingerprint)`` for one title/content pair."""
    return exact_hash(title, content), near_fingerprint(title, content)
