"""Tests for ingestion notifications."""

from __future__ import annotations

import json
import urllib.error
from unittest.mock import patch

from letterbox.config import NotificationConfig
from letterbox.intake.models import Item, User
from letterbox.intake.notify import NtfyNotifier, SlackNotifier, create_notifier

USER = User(email="alice@example.com", forwarding_address="alice@newsletters.app")
ITEM = Item(user_id=USER.id, source_id="s1", title="Weekly Digest", normalized_hash="h", fingerprint="f")


class TestCreateNotifier:
    def test_unconfigured(self):
        assert create_notifier(NotificationConfig()) is None

    def test_disabled(self):
        config = NotificationConfig(slack_webhook="https://hooks.slack.com/x", enabled=False)
        assert create_notifier(config) is None

    def test_slack_preferred(self):
        config = NotificationConfig(slack_webhook="https://hooks.slack.com/x", ntfy_url="https://ntfy.sh")
        assert isinstance(create_notifier(config), SlackNotifier)

    def test_ntfy(self):
        notifier = create_notifier(NotificationConfig(ntfy_url="https://ntfy.sh/", ntfy_topic="mail"))
        assert isinstance(notifier, NtfyNotifier)
        assert notifier.endpoint == "https://ntfy.sh/mail"


class TestSlackNotifier:
    @patch("letterbox.intake.notify.urllib.request.urlopen")
    def test_posts_json(self, mock_urlopen):
        assert SlackNotifier("https://hooks.slack.com/x").notify_item(USER, ITEM) is True

        request = mock_urlopen.call_args.args[0]
        assert request.get_method() == "POST"
        assert request.full_url == "https://hooks.slack.com/x"
        body = json.loads(request.data)
        assert "Weekly Digest" in body["text"]

    @patch("letterbox.intake.notify.urllib.request.urlopen")
    def test_failure_is_swallowed(self, mock_urlopen):
        mock_urlopen.side_effect = urllib.error.URLError("offline")
        assert SlackNotifier("https://hooks.slack.com/x").notify_item(USER, ITEM) is False


class TestNtfyNotifier:
    @patch("letterbox.intake.notify.urllib.request.urlopen")
    def test_posts_plain_text(self, mock_urlopen):
        assert NtfyNotifier("https://ntfy.sh", "mail").notify_item(USER, ITEM) is True

        request = mock_urlopen.call_args.args[0]
        assert request.full_url == "https://ntfy.sh/mail"
        assert request.get_header("Title") == "Newsletter processed: Weekly Digest"
        assert b"alice@example.com" in request.data

    @patch("letterbox.intake.notify.urllib.request.urlopen")
    def test_timeout_is_swallowed(self, mock_urlopen):
        mock_urlopen.side_effect = TimeoutError("slow")
        assert NtfyNotifier("https://ntfy.sh", "mail").notify_item(USER, ITEM) is False

    def test_malformed_url_is_swallowed(self):
        assert NtfyNotifier("ntfy.example.com", "letterbox").notify_item(USER, ITEM) is False
