"""Pure data models for the intake core.

All Pydantic models and enums live here. No I/O, no business logic.
Services import from this module; this module only imports from stdlib
and third-party packages.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(UTC)


def _new_id() -> str:
    return uuid.uuid4().hex


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class SourceType(StrEnum):
    """Intake channel a source belongs to."""

    RSS = "rss"
    EMAIL_FORWARDING = "email-forwarding"
    OTHER = "other"


class SyncStatus(StrEnum):
    """Per-source sync lifecycle: pending → syncing → success | error."""

    PENDING = "pending"
    SYNCING = "syncing"
    SUCCESS = "success"
    ERROR = "error"


class RiskLevel(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class DuplicateKind(StrEnum):
    EXACT = "exact"
    NEAR = "near"


class PollOutcome(StrEnum):
    SUCCESS = "success"
    NOT_MODIFIED = "not_modified"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Persisted entities
# ---------------------------------------------------------------------------


class User(BaseModel):
    """Owner of sources and items, reachable through a forwarding address."""

    id: str = Field(default_factory=_new_id)
    email: str = ""
    forwarding_address: str = ""
    email_notifications: bool = False
    created_at: datetime = Field(default_factory=utcnow)


class Source(BaseModel):
    """A user's subscription to a feed or an email-forwarding address."""

    id: str = Field(default_factory=_new_id)
    user_id: str
    name: str = ""
    type: SourceType = SourceType.RSS
    configuration: dict[str, str] = Field(default_factory=dict)
    is_active: bool = True

    sync_status: SyncStatus = SyncStatus.PENDING
    sync_error: str | None = None
    last_sync_at: datetime | None = None
    etag: str | None = None
    last_modified: str | None = None
    not_modified: bool = False
    error_count: int = 0
    next_retry_at: datetime | None = None

    item_count: int = 0
    metadata: dict[str, object] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def url(self) -> str:
        return self.configuration.get("url", "")

    @property
    def cache_tokens(self) -> CacheTokens:
        return CacheTokens(etag=self.etag, last_modified=self.last_modified)

    def is_due(self, now: datetime) -> bool:
        """Whether the scheduler may select this source at ``now``.

        Only RSS sources are polled. A source that is ``syncing`` is never
        due. ``success`` loops back to pending once its next-eligible time
        has passed.
        """
        if self.type != SourceType.RSS:
            return False
        if not self.is_active or self.sync_status == SyncStatus.SYNCING:
            return False
        eligible = self.next_retry_at is None or self.next_retry_at <= now
        if self.sync_status in (SyncStatus.PENDING, SyncStatus.ERROR):
            return eligible
        return self.next_retry_at is not None and eligible


class SourcePatch(BaseModel):
    """Partial update of a source; only explicitly-set fields are applied."""

    name: str | None = None
    is_active: bool | None = None
    sync_status: SyncStatus | None = None
    sync_error: str | None = None
    last_sync_at: datetime | None = None
    etag: str | None = None
    last_modified: str | None = None
    not_modified: bool | None = None
    error_count: int | None = None
    next_retry_at: datetime | None = None
    item_count: int | None = None
    metadata: dict[str, object] | None = None


class Item(BaseModel):
    """One piece of normalized newsletter content."""

    id: str = Field(default_factory=_new_id)
    user_id: str
    source_id: str
    title: str = ""
    content: str = ""
    raw_content: str = ""
    url: str | None = None
    published_at: datetime | None = None
    normalized_hash: str
    fingerprint: str
    is_read: bool = False
    metadata: dict[str, object] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Normalizer output
# ---------------------------------------------------------------------------


class NormalizedContent(BaseModel):
    clean_title: str = ""
    clean_content: str = ""
    word_count: int = 0
    estimated_read_minutes: int = 0


# ---------------------------------------------------------------------------
# Feed structures (ephemeral)
# ---------------------------------------------------------------------------


class CacheTokens(BaseModel):
    """HTTP cache validators carried between polls."""

    etag: str | None = None
    last_modified: str | None = None

    @property
    def is_empty(self) -> bool:
        return not (self.etag or self.last_modified)


class NotModified(BaseModel):
    """A 304 response; carries whatever validators the server re-sent."""

    etag: str | None = None
    last_modified: str | None = None


class FeedItem(BaseModel):
    """A candidate item parsed from one feed entry."""

    id: str
    guid: str = ""
    title: str = "Untitled"
    link: str = ""
    content: str = ""
    raw_content: str = ""
    summary: str = ""
    author: str = ""
    categories: list[str] = Field(default_factory=list)
    published_at: datetime = Field(default_factory=utcnow)
    word_count: int = 0
    estimated_read_minutes: int = 0
    normalized_hash: str
    fingerprint: str
    metadata: dict[str, object] = Field(default_factory=dict)


class FeedEnvelope(BaseModel):
    """A parsed remote feed and its items."""

    title: str = "Untitled Feed"
    description: str = ""
    link: str = ""
    language: str = "en"
    generator: str = ""
    items: list[FeedItem] = Field(default_factory=list)
    etag: str | None = None
    last_modified: str | None = None
    fetched_at: datetime = Field(default_factory=utcnow)


class FeedValidation(BaseModel):
    """Outcome of a trial fetch+parse when a feed is subscribed."""

    valid: bool
    error: str = ""
    title: str = ""
    description: str = ""
    link: str = ""
    language: str = ""
    item_count: int = 0


class DiscoveredFeed(BaseModel):
    url: str
    title: str = "RSS Feed"


# ---------------------------------------------------------------------------
# Email structures (ephemeral)
# ---------------------------------------------------------------------------


class EmailAddress(BaseModel):
    name: str = ""
    address: str = ""
    domain: str = ""


class Attachment(BaseModel):
    filename: str = ""
    content_type: str = ""
    size: int = 0


class ParsedEmail(BaseModel):
    """A forwarded message, alive for one validation+ingestion call."""

    model_config = ConfigDict(populate_by_name=True)

    message_id: str = ""
    subject: str = ""
    from_: list[EmailAddress] = Field(default_factory=list, alias="from")
    to: list[EmailAddress] = Field(default_factory=list)
    date: datetime = Field(default_factory=utcnow)
    html: str = ""
    text: str = ""
    attachments: list[Attachment] = Field(default_factory=list)
    clean_content: NormalizedContent = Field(default_factory=NormalizedContent)
    metadata: dict[str, object] = Field(default_factory=dict)

    @property
    def sender(self) -> EmailAddress | None:
        return self.from_[0] if self.from_ else None


# ---------------------------------------------------------------------------
# Validation results
# ---------------------------------------------------------------------------


class SenderCheck(BaseModel):
    valid: bool
    trusted: bool = False
    newsletter_like: bool = False
    domain: str = ""
    sender_name: str = ""
    sender_address: str = ""
    reason: str = ""


class RecipientCheck(BaseModel):
    valid: bool
    recipients: list[str] = Field(default_factory=list)
    matched_address: str = ""
    reason: str = ""


class NewsletterCheck(BaseModel):
    score: int = 0
    max_score: int = 0
    is_newsletter_like: bool = False
    indicators: dict[str, bool] = Field(default_factory=dict)


class SpamCheck(BaseModel):
    score: int = 0
    is_spammy: bool = False
    risk_level: RiskLevel = RiskLevel.LOW
    reasons: list[str] = Field(default_factory=list)


class RateLimitCheck(BaseModel):
    valid: bool
    current_count: int = 0
    limit: int = 0
    domain: str = ""
    reason: str = ""


class ContentCheck(BaseModel):
    valid: bool
    has_subject: bool = False
    has_content: bool = False
    has_substantial_content: bool = False
    content_length: int = 0


class ValidationChecks(BaseModel):
    """One partial verdict per check; input to the scoring function."""

    sender: SenderCheck
    recipient: RecipientCheck
    newsletter: NewsletterCheck
    spam: SpamCheck
    rate_limit: RateLimitCheck
    content: ContentCheck


class Verdict(BaseModel):
    is_valid: bool
    confidence: int
    risk_level: RiskLevel
    reason: str
    score: int
    max_score: int
    issues: list[str] = Field(default_factory=list)


class ValidationResult(BaseModel):
    is_valid: bool
    confidence: int = 0
    risk_level: RiskLevel = RiskLevel.LOW
    checks: ValidationChecks | None = None
    reason: str = ""
    issues: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Orchestration results
# ---------------------------------------------------------------------------


class DuplicateMatch(BaseModel):
    kind: DuplicateKind
    existing_item_id: str


class PollResult(BaseModel):
    source_id: str
    outcome: PollOutcome
    items_in_feed: int = 0
    items_created: int = 0
    duplicates_skipped: int = 0
    error: str = ""
    next_retry_at: datetime | None = None


class CycleReport(BaseModel):
    started_at: datetime
    finished_at: datetime | None = None
    sources_selected: int = 0
    results: list[PollResult] = Field(default_factory=list)
    crashed: int = 0

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.outcome != PollOutcome.ERROR)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.outcome == PollOutcome.ERROR) + self.crashed

    @property
    def items_created(self) -> int:
        return sum(r.items_created for r in self.results)


class PollerStats(BaseModel):
    total_polled: int = 0
    successful: int = 0
    failed: int = 0
    items_created: int = 0
    duplicates_skipped: int = 0


class ProcessingResult(BaseModel):
    """Structured outcome of one inbound email; never an exception."""

    success: bool
    reason: str = ""
    risk_level: RiskLevel | None = None
    user_id: str | None = None
    source_id: str | None = None
    item_id: str | None = None
    duplicate: bool = False
    duplicate_kind: DuplicateKind | None = None
    existing_item_id: str | None = None
    validation: ValidationResult | None = None
    retryable: bool = False


class ProcessorStats(BaseModel):
    total_processed: int = 0
    successful: int = 0
    failed: int = 0
    duplicates: int = 0
    spam: int = 0
    rate_limited: int = 0
