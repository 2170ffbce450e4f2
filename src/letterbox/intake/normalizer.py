"""Content normalization: raw HTML/text payloads → comparable clean text.

Used by both intake channels. Nothing here raises on bad input; HTML
conversion failures fall back to naive tag stripping so callers always
get a string back.
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Iterable

from bs4 import BeautifulSoup, Comment, NavigableString

from letterbox.intake.models import NormalizedContent

logger = logging.getLogger(__name__)

WORDS_PER_MINUTE = 200

_BLOCK_TAGS = (
    "address", "article", "aside", "blockquote", "dd", "div", "dl", "dt",
    "fieldset", "figcaption", "footer", "form", "h1", "h2", "h3", "h4", "h5",
    "h6", "header", "hr", "li", "main", "nav", "ol", "p", "pre", "section",
    "table", "tbody", "td", "tfoot", "th", "thead", "tr", "ul",
)

_ZERO_WIDTH_RE = re.compile("[\u200b-\u200d\ufeff]")
_MARKUP_RE = re.compile(r"<[a-zA-Z!/][^>]*>")

# Regex pre-pass, applied before the parser sees the document.
_PRE_STRIP: tuple[re.Pattern[str], ...] = (
    re.compile(r"<!--[\s\S]*?-->"),
    re.compile(r"<script[\s\S]*?</script>", re.IGNORECASE),
    re.compile(r"<style[\s\S]*?</style>", re.IGNORECASE),
    re.compile(r"<head\b[\s\S]*?</head>", re.IGNORECASE),
    re.compile(r"<img[^>]*\b1x1\b[^>]*>", re.IGNORECASE),
    re.compile(r"<img[^>]*(?:tracking|pixel|beacon)[^>]*>", re.IGNORECASE),
    re.compile(r"""\s(?:style|class|id)\s*=\s*(?:"[^"]*"|'[^']*')""", re.IGNORECASE),
)

_BOILERPLATE_LINES: tuple[re.Pattern[str], ...] = (
    re.compile(r"^view (?:this email |this |it )?in (?:your |a )?(?:web )?browser.*$", re.IGNORECASE),
    re.compile(r"^unsubscribe\b.*$", re.IGNORECASE),
    re.compile(r"^if you no longer wish to receive.*$", re.IGNORECASE),
    re.compile(r"^(?:manage|update) (?:your )?(?:email )?preferences.*$", re.IGNORECASE),
)

_TITLE_PREFIX_RE = re.compile(r"^(?:re|fwd?)\s*:\s*", re.IGNORECASE)
_TITLE_BRACKETS_RE = re.compile(r"\[.*?\]")
_TITLE_ORDINAL_RE = re.compile(r"^\d+[.)]\s*")


def normalize(title: str, html_or_text: str) -> NormalizedContent:
    """Normalize a title and an HTML or plain-text body.

    Args:
        title: Raw title or email subject.
        html_or_text: Body payload; markup is detected automatically.

    Returns:
        Clean title, clean content, word count and reading estimate.
    """
    content = to_clean_text(html_or_text)
    words = count_words(content)
    return NormalizedContent(
        clean_title=clean_title(title),
        clean_content=content,
        word_count=words,
        estimated_read_minutes=reading_minutes(words),
    )


def to_clean_text(payload: str) -> str:
    """Convert an HTML or plain-text payload to clean text."""
    if not payload:
        return ""
    if looks_like_html(payload):
        return html_to_text(payload)
    return clean_text(payload)


def looks_like_html(payload: str) -> bool:
    return bool(_MARKUP_RE.search(payload))


def select_content(candidates: Iterable[str | None]) -> str:
    """Return the first non-empty candidate, stripped, in priority order."""
    for candidate in candidates:
        if candidate and candidate.strip():
            return candidate.strip()
    return ""


def html_to_text(html: str) -> str:
    """Render HTML as text with block-level line breaks preserved.

    Scripts, styles, the head block, comments, presentation attributes and
    tracking images are removed first. If parsing fails the markup is
    stripped naively instead.
    """
    cleaned = html
    for pattern in _PRE_STRIP:
        cleaned = pattern.sub("", cleaned)

    try:
        text = _render_text(cleaned)
    except Exception:
        logger.warning("HTML to text conversion failed, stripping tags", exc_info=True)
        text = _strip_tags(cleaned)

    return clean_text(text)


def _render_text(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")

    for node in soup.find_all(string=lambda s: isinstance(s, Comment)):
        node.extract()
    for tag in soup.find_all(["script", "style", "head", "img", "figure", "noscript"]):
        tag.decompose()
    for br in soup.find_all("br"):
        br.replace_with(NavigableString("\n"))
    for block in soup.find_all(_BLOCK_TAGS):
        block.insert_before(NavigableString("\n"))
        block.insert_after(NavigableString("\n"))

    return soup.get_text()


def _strip_tags(html: str) -> str:
    """Rough tag stripping, the last-resort conversion."""
    return re.sub(r"<[^>]*>", " ", html)


def clean_text(text: str) -> str:
    """Collapse whitespace, drop invisible characters, entities and boilerplate."""
    if not text:
        return ""

    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = _ZERO_WIDTH_RE.sub("", text)
    text = text.replace("\xa0", " ").replace("&nbsp;", " ")
    text = re.sub(r"&(?:[a-zA-Z]+|#\d+|#x[0-9a-fA-F]+);", "", text)
    text = re.sub(r"\*{2,}|_{2,}|={2,}", "", text)

    lines: list[str] = []
    for raw_line in text.split("\n"):
        line = re.sub(r"[ \t\f\v]+", " ", raw_line).strip()
        if line and any(p.match(line) for p in _BOILERPLATE_LINES):
            continue
        lines.append(line)

    text = "\n".join(lines)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def clean_title(title: str) -> str:
    """Strip reply/forward prefixes, bracketed tags and leading ordinals."""
    if not title:
        return ""
    title = _ZERO_WIDTH_RE.sub("", title).strip()
    while True:
        stripped = _TITLE_PREFIX_RE.sub("", title)
        if stripped == title:
            break
        title = stripped
    title = _TITLE_BRACKETS_RE.sub("", title)
    title = _TITLE_ORDINAL_RE.sub("", title.strip())
    return re.sub(r"\s+", " ", title).strip()


def clean_inline(text: str | None) -> str:
    """Single-line cleanup for feed titles, author names and categories."""
    if not text:
        return ""
    return _ZERO_WIDTH_RE.sub("", re.sub(r"\s+", " ", text)).strip()


def count_words(text: str) -> int:
    return len(text.split()) if text else 0


def reading_minutes(word_count: int) -> int:
    return math.ceil(word_count / WORDS_PER_MINUTE)


def generate_excerpt(text: str, max_length: int = 200) -> str:
    """Cut text at a word boundary near ``max_length`` characters."""
    if not text:
        return ""
    cleaned = re.sub(r"\s+", " ", text).strip()
    if len(cleaned) <= max_length:
        return cleaned
    truncated = cleaned[:max_length]
    last_space = truncated.rfind(" ")
    if last_space > 0:
        return truncated[:last_space] + "..."
    return truncated + "..."
