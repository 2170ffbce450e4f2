"""Inbound email path: locate user, validate, dedup, store, notify."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Mapping
from datetime import datetime

from letterbox.config import LetterboxConfig
from letterbox.errors import (
    DuplicateItemError,
    EmailParseError,
    InvalidPayloadError,
    StorageError,
)
from letterbox.intake.dedup import find_duplicate
from letterbox.intake.fingerprint import fingerprint_pair
from letterbox.intake.models import (
    DuplicateKind,
    EmailAddress,
    Item,
    ParsedEmail,
    ProcessingResult,
    ProcessorStats,
    RiskLevel,
    User,
    ValidationResult,
    utcnow,
)
from letterbox.intake.normalizer import generate_excerpt
from letterbox.intake.notify import Notifier, create_notifier
from letterbox.intake.parsers.email import extract_links, parse_email
from letterbox.intake.validator import EmailValidator
from letterbox.intake.webhook import WebhookPayload, parse_webhook_payload
from letterbox.storage.base import Storage

logger = logging.getLogger(__name__)

STORED_LINKS = 5
HEALTHY_RATE = 90
DEGRADED_RATE = 70


class EmailProcessor:
    """Turns forwarded newsletters into items.

    Every outcome is a :class:`ProcessingResult`; nothing here raises for a
    bad message. Storage failures come back with ``retryable=True``.

    Args:
        storage: Storage collaborator.
        validator: Legitimacy scorer; built from ``config.validator`` when omitted.
        config: Full configuration; email, dedup and notification sections are used.
        notifier: Overrides the notifier built from ``config.notifications``.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        storage: Storage,
        validator: EmailValidator | None = None,
        config: LetterboxConfig | None = None,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        config = config or LetterboxConfig()
        self._storage = storage
        self.validator = validator or EmailValidator(config=config.validator)
        self.notifier = notifier if notifier is not None else create_notifier(config.notifications)
        self._window = config.dedup.email_window
        self._forwarding_re = re.compile(
            rf"@{re.escape(config.email.forwarding_domain)}$", re.IGNORECASE
        )
        self._clock = clock
        self._stats = ProcessorStats()

    # ── Entry points ─────────────────────────────────────────────

    def process_webhook(self, payload: WebhookPayload | Mapping[str, object]) -> ProcessingResult:
        """Process one inbound-parse webhook delivery.

        Args:
            payload: A validated payload, or the raw body to validate first.

        Returns:
            The processing outcome.
        """
        if not isinstance(payload, WebhookPayload):
            try:
                payload = parse_webhook_payload(payload)
            except InvalidPayloadError as exc:
                return self._fail(str(exc))

        logger.info(
            "Processing webhook email to %s: %r", payload.envelope.to, payload.subject
        )
        address = self.extract_forwarding_address(payload.envelope.to)
        if address is None:
            return self._fail("Unable to extract forwarding address from envelope")
        return self._ingest(payload.email, address, force_recipient=False)

    def process_raw_email(self, raw: bytes | str, forwarding_address: str) -> ProcessingResult:
        """Process a raw message as if forwarded to ``forwarding_address``."""
        return self._ingest(raw, forwarding_address.strip(), force_recipient=True)

    def extract_forwarding_address(self, recipients: list[str]) -> str | None:
        for address in recipients:
            if self._forwarding_re.search(address.strip()):
                return address.strip()
        return None

    # ── Stats ────────────────────────────────────────────────────

    @property
    def stats(self) -> ProcessorStats:
        return self._stats.model_copy()

    def reset_stats(self) -> None:
        self._stats = ProcessorStats()

    def health_check(self) -> dict[str, object]:
        total = self._stats.total_processed
        rate = 100.0 if total == 0 else 100 * (total - self._stats.failed) / total
        if rate > HEALTHY_RATE:
            status = "healthy"
        elif rate > DEGRADED_RATE:
            status = "degraded"
        else:
            status = "unhealthy"
        return {
            "status": status,
            "success_rate": round(rate),
            "stats": self._stats.model_dump(),
            "timestamp": self._clock().isoformat(),
        }

    # ── Pipeline ─────────────────────────────────────────────────

    def _ingest(self, raw: bytes | str, address: str, *, force_recipient: bool) -> ProcessingResult:
        self._stats.total_processed += 1

        try:
            user = self._storage.find_user_by_forwarding_address(address)
        except StorageError as exc:
            return self._storage_failure(exc, None)
        if user is None:
            return self._fail(f"No user found for forwarding address: {address}")

        try:
            parsed = parse_email(raw)
        except EmailParseError as exc:
            logger.warning("Unparseable email for %s: %s", address, exc)
            return self._fail(str(exc), user_id=user.id)

        if force_recipient:
            parsed.to = [EmailAddress(address=address, domain=address.rpartition("@")[2].lower())]

        validation = self.validator.validate(parsed, address)
        if not validation.is_valid:
            if "Rate limit exceeded" in validation.issues:
                self._stats.rate_limited += 1
            elif "High spam score" in validation.issues:
                self._stats.spam += 1
            logger.info("Email %s rejected: %s", parsed.message_id, validation.reason)
            return self._fail(
                validation.reason,
                user_id=user.id,
                risk_level=validation.risk_level,
                validation=validation,
            )

        try:
            return self._store(parsed, user, address, validation)
        except StorageError as exc:
            return self._storage_failure(exc, user.id)

    def _store(
        self, parsed: ParsedEmail, user: User, address: str, validation: ValidationResult
    ) -> ProcessingResult:
        content = parsed.clean_content
        normalized_hash, fingerprint = fingerprint_pair(content.clean_title, content.clean_content)

        match = find_duplicate(
            self._storage, user.id, normalized_hash, fingerprint, self._window, self._clock()
        )
        if match is not None:
            return self._duplicate(user.id, match.kind, match.existing_item_id)

        source = self._storage.get_or_create_forwarding_source(user.id, address)
        try:
            item = self._storage.create_item(
                self._build_item(parsed, user.id, source.id, normalized_hash, fingerprint)
            )
        except DuplicateItemError as exc:
            return self._duplicate(user.id, DuplicateKind.EXACT, exc.existing_item_id)
        self._storage.increment_item_count(source.id)

        if user.email_notifications and self.notifier is not None:
            self.notifier.notify_item(user, item)

        self._stats.successful += 1
        logger.info("Stored email %s as item %s for user %s", parsed.message_id, item.id, user.id)
        return ProcessingResult(
            success=True,
            reason="Email processed",
            risk_level=validation.risk_level,
            user_id=user.id,
            source_id=source.id,
            item_id=item.id,
            validation=validation,
        )

    def _build_item(
        self,
        parsed: ParsedEmail,
        user_id: str,
        source_id: str,
        normalized_hash: str,
        fingerprint: str,
    ) -> Item:
        content = parsed.clean_content
        links = extract_links(parsed.html)
        sender = parsed.sender or EmailAddress()
        metadata = {k: v for k, v in parsed.metadata.items() if k != "links"}
        metadata.update(
            {
                "sender": {"name": sender.name, "address": sender.address, "domain": sender.domain},
                "processing": {
                    "processed_at": self._clock().isoformat(),
                    "word_count": content.word_count,
                    "estimated_read_minutes": content.estimated_read_minutes,
                    "excerpt": generate_excerpt(content.clean_content),
                    "has_attachments": bool(parsed.attachments),
                    "attachment_count": len(parsed.attachments),
                },
                "links": links[:STORED_LINKS],
                "original_subject": parsed.subject,
                "message_id": parsed.message_id,
            }
        )
        return Item(
            user_id=user_id,
            source_id=source_id,
            title=content.clean_title,
            content=content.clean_content,
            raw_content=parsed.html or parsed.text,
            url=links[0]["url"] if links else None,
            published_at=parsed.date,
            normalized_hash=normalized_hash,
            fingerprint=fingerprint,
            metadata=metadata,
        )

    # ── Results ──────────────────────────────────────────────────

    def _duplicate(self, user_id: str, kind: DuplicateKind, existing_id: str) -> ProcessingResult:
        self._stats.duplicates += 1
        logger.info("Duplicate email for user %s (%s match %s)", user_id, kind, existing_id)
        return ProcessingResult(
            success=True,
            reason="Duplicate content",
            user_id=user_id,
            duplicate=True,
            duplicate_kind=kind,
            existing_item_id=existing_id,
        )

    def _fail(
        self,
        reason: str,
        *,
        user_id: str | None = None,
        risk_level: RiskLevel | None = None,
        validation: ValidationResult | None = None,
        retryable: bool = False,
    ) -> ProcessingResult:
        self._stats.failed += 1
        return ProcessingResult(
            success=False,
            reason=reason,
            user_id=user_id,
            risk_level=risk_level,
            validation=validation,
            retryable=retryable,
        )

    def _storage_failure(self, exc: StorageError, user_id: str | None) -> ProcessingResult:
        logger.error("Storage failure while processing email: %s", exc, exc_info=True)
        return self._fail(f"Storage unavailable: {exc}", user_id=user_id, retryable=True)
