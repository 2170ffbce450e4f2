"""Conditional RSS/Atom retrieval and feed envelope parsing."""

from __future__ import annotations

import hashlib
import logging
import time
import urllib.error
import urllib.request
from calendar import timegm
from collections.abc import Callable
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any
from urllib.parse import urlparse

import feedparser
from pydantic import BaseModel, Field

from letterbox.config import FetchConfig
from letterbox.errors import FeedParseError, FetchError
from letterbox.intake.fingerprint import fingerprint_pair
from letterbox.intake.models import (
    CacheTokens,
    FeedEnvelope,
    FeedItem,
    FeedValidation,
    NotModified,
    utcnow,
)
from letterbox.intake.normalizer import (
    clean_inline,
    count_words,
    reading_minutes,
    select_content,
    to_clean_text,
)

logger = logging.getLogger(__name__)

HTTP_NOT_MODIFIED = 304
ACCEPT_HEADER = "application/rss+xml, application/xml, text/xml, application/atom+xml"
SUMMARY_WORDS = 200
GUID_MIN_LENGTH = 20


class FeedEntryFields(BaseModel):
    """The raw values of one feed entry, read once from feedparser's dict."""

    guid: str = ""
    title: str = ""
    link: str = ""
    encoded_content: str = ""
    content: str = ""
    description: str = ""
    author: str = ""
    categories: list[str] = Field(default_factory=list)
    published: datetime | str | None = None
    updated: datetime | str | None = None
    created: datetime | str | None = None

    @classmethod
    def from_entry(cls, entry: feedparser.FeedParserDict) -> FeedEntryFields:
        contents = entry.get("content") or []
        html_values = [c.get("value", "") for c in contents if "html" in c.get("type", "")]
        any_values = [c.get("value", "") for c in contents]
        return cls(
            guid=entry.get("id", "") or "",
            title=entry.get("title", "") or "",
            link=entry.get("link", "") or "",
            encoded_content=select_content(html_values),
            content=select_content(any_values),
            description=entry.get("summary", "") or "",
            author=entry.get("author", "") or "",
            categories=[t.get("term", "") for t in entry.get("tags", []) if t.get("term")],
            published=_entry_date(entry, "published"),
            updated=_entry_date(entry, "updated"),
            created=_entry_date(entry, "created"),
        )


# Priority order for the item body.
CONTENT_ACCESSORS: tuple[tuple[str, Callable[[FeedEntryFields], str]], ...] = (
    ("content:encoded", lambda f: f.encoded_content),
    ("content", lambda f: f.content),
    ("description", lambda f: f.description),
)

# Priority order for the publish date.
DATE_ACCESSORS: tuple[tuple[str, Callable[[FeedEntryFields], datetime | str | None]], ...] = (
    ("published", lambda f: f.published),
    ("updated", lambda f: f.updated),
    ("created", lambda f: f.created),
)


class _BoundedRedirectHandler(urllib.request.HTTPRedirectHandler):
    def __init__(self, max_redirections: int) -> None:
        super().__init__()
        self.max_redirections = max_redirections
        self.max_repeats = min(self.max_repeats, max_redirections)


class FeedFetcher:
    """Fetches one feed URL at a time with HTTP cache validators.

    Args:
        config: Timeout, redirect bound and User-Agent.
        opener: Object with an ``open(request, timeout=...)`` method;
            defaults to a urllib opener with a bounded redirect handler.
    """

    def __init__(self, config: FetchConfig | None = None, opener: Any = None) -> None:
        self._config = config or FetchConfig()
        self._opener = opener or urllib.request.build_opener(
            _BoundedRedirectHandler(self._config.max_redirects)
        )

    def fetch(self, url: str, tokens: CacheTokens | None = None) -> NotModified | FeedEnvelope:
        """Conditionally GET ``url`` and parse the feed.

        Args:
            url: Feed URL.
            tokens: ETag / Last-Modified from the previous successful poll.

        Returns:
            NotModified on a 304, otherwise the parsed FeedEnvelope.

        Raises:
            FetchError: On network failure, timeout or a non-2xx status.
            FeedParseError: When the body is not a usable feed.
        """
        request = urllib.request.Request(url, headers=self._headers(tokens))
        logger.debug("Fetching feed %s", url)
        try:
            with self._opener.open(request, timeout=self._config.timeout) as resp:
                status = getattr(resp, "status", 200)
                headers = resp.headers
                body = resp.read() if status != HTTP_NOT_MODIFIED else b""
        except urllib.error.HTTPError as exc:
            if exc.code == HTTP_NOT_MODIFIED:
                return _not_modified(exc.headers)
            raise FetchError(f"HTTP {exc.code}: {exc.reason}", url=url, status=exc.code) from exc
        except urllib.error.URLError as exc:
            raise FetchError(f"Failed to fetch {url}: {exc.reason}", url=url) from exc
        except (TimeoutError, OSError) as exc:
            raise FetchError(f"Failed to fetch {url}: {exc}", url=url) from exc

        if status == HTTP_NOT_MODIFIED:
            return _not_modified(headers)
        if not 200 <= status < 300:
            raise FetchError(f"HTTP {status}", url=url, status=status)

        envelope = self.parse(body, url)
        envelope.etag = headers.get("ETag")
        envelope.last_modified = headers.get("Last-Modified")
        return envelope

    def parse(self, body: bytes | str, url: str = "") -> FeedEnvelope:
        """Parse a feed document into an envelope of normalized items.

        Raises:
            FeedParseError: When feedparser finds neither a feed title nor entries.
        """
        parsed = feedparser.parse(body)
        feed = parsed.get("feed", {})
        if parsed.get("bozo") and not parsed.entries and not feed.get("title"):
            reason = parsed.get("bozo_exception", "unrecognized document")
            raise FeedParseError(f"Failed to parse feed {url}: {reason}", url=url)

        envelope = FeedEnvelope(
            title=clean_inline(feed.get("title")) or "Untitled Feed",
            description=clean_inline(feed.get("subtitle") or feed.get("description")),
            link=feed.get("link") or url,
            language=feed.get("language") or "en",
            generator=feed.get("generator") or "",
        )

        for entry in parsed.entries:
            try:
                envelope.items.append(self._entry_to_item(entry, envelope))
            except Exception:
                logger.warning("Skipping unparseable entry in %s", url, exc_info=True)

        logger.debug("Parsed %d items from %s", len(envelope.items), url)
        return envelope

    def validate_feed(self, url: str) -> FeedValidation:
        """Trial fetch+parse before a feed is subscribed."""
        if urlparse(url).scheme not in ("http", "https"):
            return FeedValidation(
                valid=False, error="Invalid protocol. Only HTTP and HTTPS are supported."
            )

        try:
            result = self.fetch(url)
        except FetchError as exc:
            return FeedValidation(valid=False, error=f"Feed validation failed: {exc}")

        if isinstance(result, NotModified):
            return FeedValidation(valid=False, error="Unable to validate feed due to 304 response")
        if result.title == "Untitled Feed" and not result.items:
            return FeedValidation(valid=False, error="Feed appears to be empty or invalid")

        return FeedValidation(
            valid=True,
            title=result.title,
            description=result.description,
            link=result.link,
            language=result.language,
            item_count=len(result.items),
        )

    # ── Private helpers ──────────────────────────────────────────

    def _headers(self, tokens: CacheTokens | None) -> dict[str, str]:
        headers = {"User-Agent": self._config.user_agent, "Accept": ACCEPT_HEADER}
        if tokens is None or tokens.is_empty:
            return headers
        if tokens.etag:
            headers["If-None-Match"] = tokens.etag
        if tokens.last_modified:
            headers["If-Modified-Since"] = tokens.last_modified
        return headers

    def _entry_to_item(self, entry: feedparser.FeedParserDict, envelope: FeedEnvelope) -> FeedItem:
        fields = FeedEntryFields.from_entry(entry)
        raw_content = select_content(get(fields) for _, get in CONTENT_ACCESSORS)
        content = to_clean_text(raw_content)
        title = clean_inline(fields.title) or "Untitled"
        words = count_words(content)
        normalized_hash, fingerprint = fingerprint_pair(title, content)

        return FeedItem(
            id=item_id(fields, envelope.title),
            guid=fields.guid or fields.link,
            title=title,
            link=fields.link,
            content=content,
            raw_content=raw_content,
            summary=_summary(fields, content),
            author=clean_inline(fields.author),
            categories=[c for c in (clean_inline(t) for t in fields.categories) if c],
            published_at=published_at(fields),
            word_count=words,
            estimated_read_minutes=reading_minutes(words),
            normalized_hash=normalized_hash,
            fingerprint=fingerprint,
            metadata={
                "feed_title": envelope.title,
                "feed_link": envelope.link,
                "has_images": "<img" in raw_content,
                "content_type": "html" if "<" in raw_content else "text",
            },
        )


def item_id(fields: FeedEntryFields, feed_title: str) -> str:
    """Stable MD5 id: GUID if it looks like one, else link, else title+date."""
    if fields.guid and ("://" in fields.guid or len(fields.guid) > GUID_MIN_LENGTH):
        source = fields.guid
    elif fields.link:
        source = fields.link
    else:
        date = fields.published or ""
        if isinstance(date, datetime):
            date = date.isoformat()
        source = f"{feed_title}:{fields.title}:{date}"
    return hashlib.md5(source.encode("utf-8"), usedforsecurity=False).hexdigest()


def published_at(fields: FeedEntryFields) -> datetime:
    """First parseable date in DATE_ACCESSORS order, else now."""
    for name, get in DATE_ACCESSORS:
        value = get(fields)
        if isinstance(value, datetime):
            return value
        if isinstance(value, str) and value:
            parsed = _parse_date_string(value)
            if parsed is not None:
                return parsed
            logger.debug("Unparseable %s date %r", name, value)
    return utcnow()


def _summary(fields: FeedEntryFields, content: str) -> str:
    description = clean_inline(to_clean_text(fields.description))
    if description and description != content:
        return description
    words = content.split()
    if not words:
        return ""
    head = " ".join(words[:SUMMARY_WORDS])
    return head + "..." if len(words) > SUMMARY_WORDS else head


def _entry_date(entry: feedparser.FeedParserDict, name: str) -> datetime | str | None:
    parsed: time.struct_time | None = entry.get(f"{name}_parsed")
    if parsed:
        try:
            return datetime.fromtimestamp(timegm(parsed), tz=UTC)
        except (ValueError, OverflowError):
            pass
    return entry.get(name) or None


def _parse_date_string(value: str) -> datetime | None:
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _not_modified(headers: Any) -> NotModified:
    if headers is None:
        return NotModified()
    return NotModified(etag=headers.get("ETag"), last_modified=headers.get("Last-Modified"))
