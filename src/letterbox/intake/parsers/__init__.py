"""Channel parsers: RSS/Atom feeds and raw forwarded email."""

from __future__ import annotations

from letterbox.intake.parsers.email import parse_email
from letterbox.intake.parsers.feed import FeedFetcher

__all__ = ["FeedFetcher", "parse_email"]
