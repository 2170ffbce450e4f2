"""Find RSS/Atom feeds advertised by, or conventionally hosted beside, a web page."""

from __future__ import annotations

import logging
import re
import urllib.request
from typing import Any
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from letterbox.config import FetchConfig
from letterbox.intake.models import DiscoveredFeed
from letterbox.intake.parsers.feed import FeedFetcher

logger = logging.getLogger(__name__)

COMMON_FEED_PATHS = ("/rss", "/feed", "/atom.xml", "/rss.xml", "/feed.xml")
FEED_MIME_TYPES = ("application/rss+xml", "application/atom+xml")

_FEED_URL_PATTERNS = (
    re.compile(r"/rss/?$", re.IGNORECASE),
    re.compile(r"/feed/?$", re.IGNORECASE),
    re.compile(r"/atom/?$", re.IGNORECASE),
    re.compile(r"\.rss$", re.IGNORECASE),
    re.compile(r"\.xml$", re.IGNORECASE),
)


def looks_like_feed(url: str) -> bool:
    """Whether ``url`` has a path conventionally used for feeds."""
    return any(p.search(url) for p in _FEED_URL_PATTERNS)


def discover_feeds(
    page_url: str,
    fetcher: FeedFetcher | None = None,
    *,
    config: FetchConfig | None = None,
    opener: Any = None,
) -> list[DiscoveredFeed]:
    """List feeds for a web page.

    A URL that already looks like a feed and validates is returned as is.
    Otherwise reads ``<link rel="alternate">`` feed tags from the page; when
    there are none, probes the common feed paths on the page's host.

    Args:
        page_url: Web page to inspect.
        fetcher: Fetcher used to validate probed paths.
        config: Fetch settings for the page request.
        opener: Object with ``open(request, timeout=...)``; defaults to urllib.

    Returns:
        Discovered feeds; empty on any failure.
    """
    config = config or FetchConfig()
    fetcher = fetcher or FeedFetcher(config)
    opener = opener or urllib.request.build_opener()

    if looks_like_feed(page_url):
        validation = fetcher.validate_feed(page_url)
        if validation.valid:
            return [DiscoveredFeed(url=page_url, title=validation.title or "RSS Feed")]

    try:
        request = urllib.request.Request(page_url, headers={"User-Agent": config.user_agent})
        with opener.open(request, timeout=config.timeout) as resp:
            html = resp.read().decode("utf-8", errors="replace")
    except Exception:
        logger.warning("Feed discovery failed for %s", page_url, exc_info=True)
        return []

    feeds = feeds_from_html(html, page_url)
    if feeds:
        return feeds

    parts = urlparse(page_url)
    base = f"{parts.scheme}://{parts.netloc}"
    for path in COMMON_FEED_PATHS:
        candidate = base + path
        validation = fetcher.validate_feed(candidate)
        if validation.valid:
            feeds.append(DiscoveredFeed(url=candidate, title=validation.title or "RSS Feed"))
    return feeds


def feeds_from_html(html: str, page_url: str) -> list[DiscoveredFeed]:
    """Absolute URLs of the feed ``<link>`` tags in ``html``."""
    soup = BeautifulSoup(html, "html.parser")
    feeds: list[DiscoveredFeed] = []
    for link in soup.find_all("link", href=True):
        if (link.get("type") or "").lower() not in FEED_MIME_TYPES:
            continue
        feeds.append(
            DiscoveredFeed(
                url=urljoin(page_url, link["href"]),
                title=link.get("title") or "RSS Feed",
            )
        )
    return feeds
