"""Legitimacy scoring for forwarded newsletter email.

Six independent checks each produce a partial verdict; ``score_checks``
turns them into a confidence percentage, a list of hard-failing issues
and a risk level.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import re

from letterbox.config import ValidatorConfig
from letterbox.intake.models import (
    ContentCheck,
    NewsletterCheck,
    ParsedEmail,
    RateLimitCheck,
    RecipientCheck,
    RiskLevel,
    SenderCheck,
    SpamCheck,
    ValidationChecks,
    ValidationResult,
    Verdict,
)
from letterbox.intake.ratelimit import DomainRateLimiter

logger = logging.getLogger(__name__)

# Check weights
SENDER_WEIGHT = 3
UNTRUSTED_SENDER_SCORE = 2
RECIPIENT_WEIGHT = 2
NEWSLETTER_WEIGHT = 2
SPAM_WEIGHT = 2
RATE_LIMIT_WEIGHT = 1
CONTENT_WEIGHT = 1
TOTAL_WEIGHT = (
    SENDER_WEIGHT + RECIPIENT_WEIGHT + NEWSLETTER_WEIGHT
    + SPAM_WEIGHT + RATE_LIMIT_WEIGHT + CONTENT_WEIGHT
)

DEFAULT_MIN_CONFIDENCE = 70
NEWSLETTER_MIN_INDICATORS = 3
SPAM_THRESHOLD = 3
SUBSTANTIAL_BODY_CHARS = 500
EXCESSIVE_LINK_COUNT = 20
ALL_CAPS_MIN_LENGTH = 10

TRUSTED_DOMAINS = frozenset({
    "substack.com",
    "buttondown.email",
    "convertkit.com",
    "mailchimp.com",
    "constantcontact.com",
    "aweber.com",
    "getresponse.com",
    "activecampaign.com",
    "campaignmonitor.com",
    "sendinblue.com",
    "newsletter.com",
    "beehiiv.com",
    "ghost.org",
})

TRUSTED_DOMAIN_PATTERNS = (
    re.compile(r"\.substack\.com$"),
    re.compile(r"\.ghost\.io$"),
    re.compile(r"\.beehiiv\.com$"),
    re.compile(r"mail\..*\.com$"),
    re.compile(r"newsletter\."),
    re.compile(r"updates\."),
    re.compile(r"news\."),
)

NEWSLETTER_KEYWORDS = (
    "newsletter", "news", "digest", "weekly", "daily", "update",
    "bulletin", "briefing", "report", "journal", "magazine",
    "blog", "post", "dispatch", "roundup", "summary",
)

SPAM_KEYWORDS = (
    "urgent", "act now", "limited time", "free money", "make money fast",
    "click here now", "congratulations", "you have won", "claim now",
    "no obligation", "risk free", "guarantee", "amazing deal",
)

SUSPICIOUS_SENDER_PATTERNS = (
    re.compile(r"^no-?reply@.*\.temp$"),
    re.compile(r"^[a-z0-9]{20,}@"),
    re.compile(r"\d{10,}"),
    re.compile(r"[a-z]{1,2}\d{8,}@"),
)

DISPOSABLE_DOMAIN_MARKERS = (
    "mailinator", "guerrillamail", "10minutemail", "tempmail", "throwaway", "yopmail",
)

_ISSUE_RE = re.compile(r"issue\s*#?\d+")
_VOLUME_RE = re.compile(r"vol(?:ume)?\s*\d+")
_LINK_RE = re.compile(r"<a[^>]+href", re.IGNORECASE)


# ── Individual checks ───────────────────────────────────────────────────


def is_trusted_domain(domain: str, extra: frozenset[str] | set[str] = frozenset()) -> bool:
    domain = domain.lower()
    if domain in TRUSTED_DOMAINS or domain in extra:
        return True
    return any(p.search(domain) for p in TRUSTED_DOMAIN_PATTERNS)


def has_suspicious_sender(name: str, address: str, domain: str) -> bool:
    name = name.lower()
    address = address.lower()
    if any(p.search(address) or p.search(name) for p in SUSPICIOUS_SENDER_PATTERNS):
        return True
    return any(marker in domain.lower() for marker in DISPOSABLE_DOMAIN_MARKERS)


def check_sender(email: ParsedEmail, trusted_domains: frozenset[str] = frozenset()) -> SenderCheck:
    sender = email.sender
    if sender is None or not sender.address:
        return SenderCheck(valid=False, reason="No sender address")

    name = sender.name.lower()
    address = sender.address.lower()
    return SenderCheck(
        valid=not has_suspicious_sender(sender.name, sender.address, sender.domain),
        trusted=is_trusted_domain(sender.domain, trusted_domains),
        newsletter_like=any(k in name or k in address for k in NEWSLETTER_KEYWORDS),
        domain=sender.domain,
        sender_name=sender.name,
        sender_address=sender.address,
    )


def check_recipient(email: ParsedEmail, expected: str) -> RecipientCheck:
    if not email.to:
        return RecipientCheck(valid=False, reason="No recipient address")

    wanted = expected.strip().lower()
    recipients = [r.address for r in email.to]
    matched = any(r.lower() == wanted for r in recipients if r)
    return RecipientCheck(
        valid=matched,
        recipients=recipients,
        matched_address=expected,
        reason="" if matched else f"No recipient matches {expected}",
    )


def check_newsletter(email: ParsedEmail) -> NewsletterCheck:
    subject = email.subject.lower()
    content = (email.text + email.html).lower()
    html = email.html

    indicators = {
        "newsletter_subject": "newsletter" in subject,
        "digest_subject": "digest" in subject,
        "weekly_subject": "weekly" in subject,
        "monthly_subject": "monthly" in subject,
        "update_subject": "update" in subject,
        "issue_number": bool(_ISSUE_RE.search(subject)),
        "volume_number": bool(_VOLUME_RE.search(subject)),
        "unsubscribe": "unsubscribe" in content,
        "manage_preferences": "manage preferences" in content,
        "view_in_browser": "view in browser" in content,
        "forward_to_friend": "forward to a friend" in content,
        "substantial_content": len(content) > SUBSTANTIAL_BODY_CHARS,
        "html_tables": "<table" in html,
        "html_mentions_newsletter": "newsletter" in html,
    }
    score = sum(indicators.values())
    return NewsletterCheck(
        score=score,
        max_score=len(indicators),
        is_newsletter_like=score >= NEWSLETTER_MIN_INDICATORS,
        indicators=indicators,
    )


def check_spam(email: ParsedEmail) -> SpamCheck:
    subject = email.subject
    lowered = subject.lower()
    content = (email.text + email.html).lower()

    score = 0
    reasons: list[str] = []
    for keyword in SPAM_KEYWORDS:
        if keyword in lowered or keyword in content:
            score += 1
            reasons.append(f"Contains spam keyword: {keyword}")

    if "!!!" in subject or "???" in subject:
        score += 1
        reasons.append("Excessive punctuation in subject")

    if len(subject) > ALL_CAPS_MIN_LENGTH and subject == subject.upper():
        score += 1
        reasons.append("All caps subject line")

    if email.html and len(_LINK_RE.findall(email.html)) > EXCESSIVE_LINK_COUNT:
        score += 1
        reasons.append("Excessive number of links")

    if score >= SPAM_THRESHOLD:
        risk = RiskLevel.HIGH
    elif score >= 1:
        risk = RiskLevel.MEDIUM
    else:
        risk = RiskLevel.LOW
    return SpamCheck(score=score, is_spammy=score >= SPAM_THRESHOLD, risk_level=risk, reasons=reasons)


def check_rate_limit(email: ParsedEmail, limiter: DomainRateLimiter) -> RateLimitCheck:
    sender = email.sender
    if sender is None or not sender.domain:
        return RateLimitCheck(valid=False, reason="No sender domain")

    decision = limiter.check(sender.domain)
    return RateLimitCheck(
        valid=decision.allowed,
        current_count=decision.count,
        limit=decision.limit,
        domain=decision.domain,
        reason="" if decision.allowed else f"Rate limit exceeded for domain {decision.domain}",
    )


def check_content(email: ParsedEmail) -> ContentCheck:
    has_content = bool(email.text.strip() or email.html.strip())
    has_subject = bool(email.subject.strip())
    length = len(email.text) + len(email.html)
    return ContentCheck(
        valid=has_content and has_subject,
        has_subject=has_subject,
        has_content=has_content,
        has_substantial_content=length > 100,
        content_length=length,
    )


# ── Scoring ─────────────────────────────────────────────────────────────


def score_checks(checks: ValidationChecks, min_confidence: int = DEFAULT_MIN_CONFIDENCE) -> Verdict:
    """Combine per-check verdicts into an overall verdict.

    Args:
        checks: Partial verdicts from the six checks.
        min_confidence: Confidence percentage required to accept.

    Returns:
        Verdict with confidence, risk level and the hard-failing issues.
    """
    score = 0
    issues: list[str] = []

    if checks.sender.valid:
        score += SENDER_WEIGHT if checks.sender.trusted else UNTRUSTED_SENDER_SCORE
    else:
        issues.append("Invalid sender")

    if checks.recipient.valid:
        score += RECIPIENT_WEIGHT
    else:
        issues.append("Invalid recipient")

    if checks.newsletter.is_newsletter_like:
        score += NEWSLETTER_WEIGHT
    elif checks.newsletter.score > 0:
        score += 1

    if not checks.spam.is_spammy:
        score += SPAM_WEIGHT
    else:
        issues.append("High spam score")

    if checks.rate_limit.valid:
        score += RATE_LIMIT_WEIGHT
    else:
        issues.append("Rate limit exceeded")

    if checks.content.valid:
        score += CONTENT_WEIGHT
    else:
        issues.append("Invalid content")

    confidence = round(100 * score / TOTAL_WEIGHT)
    is_valid = confidence >= min_confidence and not issues

    if confidence < 50 or len(issues) > 2:
        risk = RiskLevel.HIGH
    elif confidence < min_confidence or issues:
        risk = RiskLevel.MEDIUM
    else:
        risk = RiskLevel.LOW

    reason = "Email passed validation" if is_valid else f"Email failed validation: {', '.join(issues)}"
    return Verdict(
        is_valid=is_valid,
        confidence=confidence,
        risk_level=risk,
        reason=reason,
        score=score,
        max_score=TOTAL_WEIGHT,
        issues=issues,
    )


class EmailValidator:
    """Runs every check against one parsed email and scores the result."""

    def __init__(
        self,
        rate_limiter: DomainRateLimiter | None = None,
        config: ValidatorConfig | None = None,
    ) -> None:
        self._config = config or ValidatorConfig()
        self.rate_limiter = rate_limiter or DomainRateLimiter(
            limit=self._config.rate_limit,
            window_seconds=self._config.rate_window_seconds,
        )
        self._trusted = frozenset(d.lower() for d in self._config.trusted_domains)

    def validate(self, email: ParsedEmail, expected_recipient: str) -> ValidationResult:
        """Score ``email`` as forwarded to ``expected_recipient``.

        Never raises: an unexpected failure yields an invalid, high-risk result.
        """
        try:
            checks = ValidationChecks(
                sender=check_sender(email, self._trusted),
                recipient=check_recipient(email, expected_recipient),
                newsletter=check_newsletter(email),
                spam=check_spam(email),
                rate_limit=check_rate_limit(email, self.rate_limiter),
                content=check_content(email),
            )
            verdict = score_checks(checks, self._config.min_confidence)
        except Exception as exc:
            logger.warning("Email validation failed for %s", email.message_id, exc_info=True)
            return ValidationResult(
                is_valid=False,
                confidence=0,
                risk_level=RiskLevel.HIGH,
                reason=f"Validation error: {exc}",
            )

        logger.debug(
            "Validated %s: confidence=%d risk=%s issues=%s",
            email.message_id, verdict.confidence, verdict.risk_level, verdict.issues,
        )
        return ValidationResult(
            is_valid=verdict.is_valid,
            confidence=verdict.confidence,
            risk_level=verdict.risk_level,
            checks=checks,
            reason=verdict.reason,
            issues=verdict.issues,
        )


# ── Signatures ──────────────────────────────────────────────────────────


def _signature_payload(email: ParsedEmail) -> bytes:
    sender = email.sender
    data = {
        "messageId": email.message_id,
        "from": sender.address if sender else "",
        "subject": email.subject,
        "date": email.date.isoformat(),
    }
    return json.dumps(data, separators=(",", ":")).encode("utf-8")


def sign_email(email: ParsedEmail, secret: str) -> str:
    """HMAC-SHA256 hex digest over message id, sender, subject and date."""
    return hmac.new(secret.encode("utf-8"), _signature_payload(email), hashlib.sha256).hexdigest()


def verify_email_signature(email: ParsedEmail, signature: str, secret: str) -> bool:
    return hmac.compare_digest(signature, sign_email(email, secret))
