"""Tests for content normalization."""

from __future__ import annotations

from unittest.mock import patch

from letterbox.intake.normalizer import (
    clean_inline,
    clean_text,
    clean_title,
    count_words,
    generate_excerpt,
    html_to_text,
    looks_like_html,
    normalize,
    reading_minutes,
    select_content,
    to_clean_text,
)


# ── HTML conversion ─────────────────────────────────────────────────────

class TestHtmlToText:
    def test_block_elements_break_lines(self):
        text = html_to_text("<p>First paragraph</p><p>Second paragraph</p>")
        assert text.splitlines()[0] == "First paragraph"
        assert "Second paragraph" in text.splitlines()

    def test_drops_script_style_and_head(self):
        html = (
            "<html><head><title>Ignored</title></head><body>"
            "<script>alert('x')</script><style>p {color: red}</style>"
            "<p>Kept</p></body></html>"
        )
        text = html_to_text(html)
        assert text == "Kept"

    def test_header_element_is_not_mistaken_for_head(self):
        text = html_to_text("<header>Masthead</header><p>Body</p>")
        assert "Masthead" in text
        assert "Body" in text

    def test_drops_comments(self):
        assert html_to_text("<p>a<!-- hidden -->b</p>") == "ab"

    def test_drops_tracking_pixels_and_images(self):
        html = (
            '<p>Story</p><img src="https://t.example.com/open.gif" width="1" height="1" alt="1x1">'
            '<img src="https://cdn.example.com/tracking/pixel.png">'
            '<figure><img src="photo.jpg"><figcaption>Caption</figcaption></figure>'
        )
        assert html_to_text(html) == "Story"

    def test_br_becomes_newline(self):
        assert html_to_text("line one<br>line two") == "line one\nline two"

    def test_removes_boilerplate_lines(self):
        html = (
            "<p>View this email in your browser</p>"
            "<p>Real content here</p>"
            "<p>Unsubscribe from this list</p>"
            "<p>Manage preferences</p>"
        )
        assert html_to_text(html) == "Real content here"

    def test_falls_back_to_tag_stripping(self):
        with patch(
            "letterbox.intake.normalizer._render_text", side_effect=RuntimeError("boom")
        ):
            text = html_to_text("<div>Hello <b>there</b></div>")
        assert text == "Hello there"


class TestCleanText:
    def test_normalizes_line_endings_and_trims(self):
        assert clean_text("  a  \r\n  b  ") == "a\nb"

    def test_collapses_blank_runs(self):
        assert clean_text("a\n\n\n\n\nb") == "a\n\nb"

    def test_collapses_intra_line_whitespace(self):
        assert clean_text("a    b\t\tc") == "a b c"

    def test_strips_zero_width_characters(self):
        assert clean_text("a\u200bb\ufeffc") == "abc"

    def test_strips_entities(self):
        assert clean_text("fish&nbsp;&amp;chips") == "fish chips"

    def test_strips_decoration_runs(self):
        assert clean_text("*** Header ***\n=====\n___") == "Header"

    def test_keeps_single_decoration_characters(self):
        assert clean_text("a * b = c") == "a * b = c"

    def test_removes_opt_out_line(self):
        text = clean_text("Body\nIf you no longer wish to receive these emails click here")
        assert text == "Body"

    def test_empty(self):
        assert clean_text("") == ""


# ── Titles ──────────────────────────────────────────────────────────────

class TestCleanTitle:
    def test_strips_forward_prefix(self):
        assert clean_title("Fwd: Weekly Digest") == "Weekly Digest"

    def test_strips_repeated_prefixes(self):
        assert clean_title("RE: FW: fwd: Hello") == "Hello"

    def test_strips_brackets(self):
        assert clean_title("[Newsletter] Issue 12 [promo]") == "Issue 12"

    def test_strips_leading_ordinal(self):
        assert clean_title("1. First Item") == "First Item"
        assert clean_title("2) Second Item") == "Second Item"

    def test_collapses_whitespace(self):
        assert clean_title("  Weekly   Update  ") == "Weekly Update"

    def test_strips_zero_width(self):
        assert clean_title("\u200bHello") == "Hello"

    def test_empty(self):
        assert clean_title("") == ""


class TestCleanInline:
    def test_single_line(self):
        assert clean_inline("  Multi\n line\ttitle ") == "Multi line title"

    def test_none(self):
        assert clean_inline(None) == ""


# ── Selection & dispatch ────────────────────────────────────────────────

class TestSelectContent:
    def test_first_non_empty_wins(self):
        assert select_content([None, "  ", "encoded", "summary"]) == "encoded"

    def test_all_empty(self):
        assert select_content(["", None]) == ""


class TestToCleanText:
    def test_plain_text_bypasses_html(self):
        assert looks_like_html("5 < 6 and 7 > 3") is False
        assert to_clean_text("5 < 6 and 7 > 3") == "5 < 6 and 7 > 3"

    def test_html_detected(self):
        assert looks_like_html("<p>x</p>") is True
        assert to_clean_text("<p>x</p>") == "x"

    def test_empty(self):
        assert to_clean_text("") == ""


# ── Counting ────────────────────────────────────────────────────────────

class TestCounts:
    def test_count_words(self):
        assert count_words("one two\nthree") == 3
        assert count_words("") == 0

    def test_reading_minutes_rounds_up(self):
        assert reading_minutes(0) == 0
        assert reading_minutes(1) == 1
        assert reading_minutes(200) == 1
        assert reading_minutes(201) == 2


class TestNormalize:
    def test_html_body(self):
        result = normalize("Fwd: [News] The Weekly", "<p>" + "word " * 250 + "</p>")
        assert result.clean_title == "The Weekly"
        assert result.word_count == 250
        assert result.estimated_read_minutes == 2

    def test_plain_body(self):
        result = normalize("Hello", "Just some text")
        assert result.clean_content == "Just some text"
        assert result.word_count == 3


class TestGenerateExcerpt:
    def test_short_text_unchanged(self):
        assert generate_excerpt("short text") == "short text"

    def test_cuts_at_word_boundary(self):
        excerpt = generate_excerpt("alpha beta gamma delta", max_length=12)
        assert excerpt == "alpha beta..."

    def test_empty(self):
        assert generate_excerpt("") == ""
