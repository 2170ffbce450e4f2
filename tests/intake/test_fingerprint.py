"""Tests for exact hashes and near-duplicate fingerprints."""

from __future__ import annotations

import hashlib

from letterbox.intake.fingerprint import exact_hash, fingerprint_pair, near_fingerprint


class TestExactHash:
    def test_case_and_whitespace_insensitive(self):
        assert exact_hash("  Weekly   Update  ", "Hello World") == exact_hash(
            "weekly update", "hello world"
        )

    def test_matches_direct_sha256(self):
        expected = hashlib.sha256(b"weekly update|hello world").hexdigest()
        assert exact_hash("  Weekly   Update  ", "Hello World") == expected

    def test_title_and_content_are_separated(self):
        assert exact_hash("ab", "c") != exact_hash("a", "bc")

    def test_deterministic(self):
        assert exact_hash("t", "c") == exact_hash("t", "c")

    def test_none_treated_as_empty(self):
        assert exact_hash(None, None) == hashlib.sha256(b"|").hexdigest()


class TestNearFingerprint:
    def test_eight_hex_chars(self):
        fp = near_fingerprint("Some Title", "Some content body")
        assert len(fp) == 8
        int(fp, 16)

    def test_matches_feature_string(self):
        title = "The Big Weekly News"
        content = "Markets rallied today, investors cheered."
        features = "|".join(
            ["weekly", "news", "markets", "rallied", "today", "investors", "cheered",
             "marketsralliedtodayinvestorscheered"]
        )
        expected = hashlib.md5(features.encode()).hexdigest()[:8]
        assert near_fingerprint(title, content) == expected

    def test_ignores_tail_of_long_content(self):
        head = "alpha bravo charlie delta echoes foxtrot golfs hotel india juliet kilos lima"
        a = near_fingerprint("Shared headline here", head + " ending one")
        b = near_fingerprint("Shared headline here", head + " different ending two")
        assert a == b

    def test_short_tokens_ignored_in_title(self):
        a = near_fingerprint("A to Z of news", "body")
        b = near_fingerprint("An of to news", "body")
        assert a == b

    def test_different_titles_differ(self):
        assert near_fingerprint("Python weekly", "x") != near_fingerprint("Rust monthly", "x")

    def test_ascii_word_classes(self):
        # "café" tokenizes to "caf", below the title length floor.
        fp = near_fingerprint("café news", "")
        features = "|".join(["news", ""])
        assert fp == hashlib.md5(features.encode()).hexdigest()[:8]


class TestFingerprintPair:
    def test_returns_both(self):
        h, fp = fingerprint_pair("Title", "Content")
        assert h == exact_hash("Title", "Content")
        assert fp == near_fingerprint("Title", "Content")
