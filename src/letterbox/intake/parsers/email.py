"""RFC 5322 parsing for forwarded newsletters."""

from __future__ import annotations

import logging
from datetime import datetime
from email import message_from_bytes, policy
from email.headerregistry import Address
from email.message import EmailMessage
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from bs4 import BeautifulSoup

from letterbox.errors import EmailParseError
from letterbox.intake.models import (
    Attachment,
    EmailAddress,
    NormalizedContent,
    ParsedEmail,
    utcnow,
)
from letterbox.intake.normalizer import clean_text, html_to_text, normalize

logger = logging.getLogger(__name__)

MAX_LINKS = 20
TRACKING_PARAMS = frozenset({"utm_source", "utm_medium", "utm_campaign", "utm_content", "utm_term"})
_SKIPPED_LINK_MARKERS = ("unsubscribe", "tracking", "pixel")

_ENGLISH_MARKERS = frozenset({"the", "and", "for", "you", "with", "this", "that", "from", "have", "will"})
_NEWSLETTER_SUBJECT_KEYWORDS = (
    "newsletter", "digest", "weekly", "monthly", "update", "bulletin",
    "roundup", "briefing", "summary", "edition", "issue", "volume",
)
_OPT_OUT_PHRASES = ("unsubscribe", "opt out", "manage preferences")


def parse_email(raw: bytes | str) -> ParsedEmail:
    """Parse a raw message into a ParsedEmail with clean content and metadata.

    Args:
        raw: The full message source, headers included.

    Returns:
        ParsedEmail with addresses split into name/address/domain.

    Raises:
        EmailParseError: If the message cannot be parsed.
    """
    if isinstance(raw, str):
        raw = raw.encode("utf-8", errors="replace")
    if not raw.strip():
        raise EmailParseError("Email parsing failed: empty message")

    try:
        msg = message_from_bytes(raw, policy=policy.default)
        html, text = _extract_bodies(msg)
        parsed = ParsedEmail(
            message_id=str(msg.get("Message-ID", "") or "").strip(),
            subject=str(msg.get("Subject", "") or ""),
            from_=_addresses(msg, "From"),
            to=_addresses(msg, "To"),
            date=_header_date(msg),
            html=html,
            text=text,
            attachments=_attachments(msg),
        )
    except EmailParseError:
        raise
    except Exception as exc:
        raise EmailParseError(f"Email parsing failed: {exc}") from exc

    parsed.clean_content = extract_clean_content(parsed)
    parsed.metadata = build_metadata(parsed)
    return parsed


def extract_clean_content(email: ParsedEmail) -> NormalizedContent:
    """Normalize the HTML body when present, else the plain-text body."""
    return normalize(email.subject, email.html or email.text)


def extract_links(html: str) -> list[dict[str, str]]:
    """Readable links from an HTML body.

    Skips unsubscribe, tracking and pixel URLs and anchors without text,
    strips ``utm_*`` query parameters and keeps at most ``MAX_LINKS``.
    """
    if not html:
        return []

    soup = BeautifulSoup(html, "html.parser")
    links: list[dict[str, str]] = []
    for anchor in soup.find_all("a", href=True):
        url = anchor["href"]
        text = anchor.get_text(strip=True)
        if not text or any(m in url for m in _SKIPPED_LINK_MARKERS):
            continue
        links.append({"url": clean_url(url), "text": text})
        if len(links) >= MAX_LINKS:
            break
    return links


def clean_url(url: str) -> str:
    """Remove tracking query parameters from ``url``."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    if not parts.scheme or not parts.query:
        return url
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k not in TRACKING_PARAMS]
    return urlunsplit(parts._replace(query=urlencode(query)))


def build_metadata(email: ParsedEmail) -> dict[str, object]:
    sender = email.sender
    content = email.clean_content
    return {
        "sender_domain": sender.domain if sender else "",
        "sender_name": sender.name if sender else "",
        "has_attachments": bool(email.attachments),
        "attachment_count": len(email.attachments),
        "word_count": content.word_count,
        "estimated_read_minutes": content.estimated_read_minutes,
        "message_id": email.message_id,
        "original_subject": email.subject,
        "parsed_at": utcnow().isoformat(),
        "content_type": "html" if email.html else "text",
        "size": estimate_size(email),
        "language": detect_language(content.clean_content),
        "is_newsletter": is_likely_newsletter(email.subject, content),
        "links": extract_links(email.html),
    }


def estimate_size(email: ParsedEmail) -> int:
    return len(email.text) + len(email.html) + sum(a.size for a in email.attachments)


def detect_language(text: str) -> str:
    """``"en"`` when common English words make up over 10% of the text."""
    words = text.lower().split()
    if not words:
        return "unknown"
    hits = sum(1 for w in words if w in _ENGLISH_MARKERS)
    return "en" if hits / min(len(words), 100) > 0.1 else "unknown"


def is_likely_newsletter(subject: str, content: NormalizedContent) -> bool:
    subject = subject.lower()
    body = content.clean_content.lower()
    if any(k in subject for k in _NEWSLETTER_SUBJECT_KEYWORDS):
        return True
    has_opt_out = any(p in body for p in _OPT_OUT_PHRASES)
    return has_opt_out and content.word_count > 50


# ── Private helpers ─────────────────────────────────────────────────────


def _addresses(msg: EmailMessage, header: str) -> list[EmailAddress]:
    value = msg.get(header)
    if value is None:
        return []
    result: list[EmailAddress] = []
    for addr in getattr(value, "addresses", ()):
        result.append(_to_email_address(addr))
    return result


def _to_email_address(addr: Address) -> EmailAddress:
    address = addr.addr_spec if addr.username else ""
    return EmailAddress(
        name=addr.display_name or "",
        address=address,
        domain=(addr.domain or "").lower() if address else "",
    )


def _header_date(msg: EmailMessage) -> datetime:
    value = msg.get("Date")
    parsed = getattr(value, "datetime", None) if value is not None else None
    return parsed or utcnow()


def _extract_bodies(msg: EmailMessage) -> tuple[str, str]:
    html_part = msg.get_body(preferencelist=("html",))
    text_part = msg.get_body(preferencelist=("plain",))
    html = _part_text(html_part)
    text = _part_text(text_part)
    if html and not text:
        text = clean_text(html_to_text(html))
    return html, text


def _part_text(part: EmailMessage | None) -> str:
    if part is None:
        return ""
    try:
        return part.get_content()
    except (LookupError, UnicodeDecodeError):
        payload = part.get_payload(decode=True) or b""
        return payload.decode("utf-8", errors="replace")


def _attachments(msg: EmailMessage) -> list[Attachment]:
    result: list[Attachment] = []
    for part in msg.iter_attachments():
        payload = part.get_payload(decode=True) or b""
        result.append(
            Attachment(
                filename=part.get_filename() or "",
                content_type=part.get_content_type(),
                size=len(payload),
            )
        )
    return result
