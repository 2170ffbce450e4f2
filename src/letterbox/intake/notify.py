"""Push notifications when a forwarded newsletter is ingested."""

from __future__ import annotations

import json
import logging
import urllib.error
import urllib.request

from letterbox.config import NotificationConfig
from letterbox.intake.models import Item, User

logger = logging.getLogger(__name__)

NOTIFY_TIMEOUT = 10


class Notifier:
    """Base notifier. Failures are logged and never raised."""

    def notify_item(self, user: User, item: Item) -> bool:
        title = f"Newsletter processed: {item.title}"
        body = f'"{item.title}" was added to your feed ({user.email}).'
        try:
            self._send(title, body)
        except (urllib.error.URLError, TimeoutError, OSError, ValueError):
            logger.warning("Notification for item %s failed", item.id, exc_info=True)
            return False
        return True

    def _send(self, title: str, body: str) -> None:
        raise NotImplementedError


class NtfyNotifier(Notifier):
    def __init__(self, url: str, topic: str) -> None:
        self.endpoint = f"{url.rstrip('/')}/{topic}"

    def _send(self, title: str, body: str) -> None:
        req = urllib.request.Request(
            self.endpoint,
            data=body.encode("utf-8"),
            method="POST",
            headers={"Title": title.encode("ascii", "replace").decode("ascii")},
        )
        with urllib.request.urlopen(req, timeout=NOTIFY_TIMEOUT) as resp:
            resp.read()


class SlackNotifier(Notifier):
    def __init__(self, webhook_url: str) -> None:
        self.webhook_url = webhook_url

    def _send(self, title: str, body: str) -> None:
        payload = json.dumps({"text": f"*{title}*\n{body}"}).encode("utf-8")
        req = urllib.request.Request(
            self.webhook_url,
            data=payload,
            method="POST",
            headers={"Content-Type": "application/json"},
        )
        with urllib.request.urlopen(req, timeout=NOTIFY_TIMEOUT) as resp:
            resp.read()


def create_notifier(config: NotificationConfig) -> Notifier | None:
    """Build the configured notifier; Slack wins when both are set."""
    if not config.is_configured:
        return None
    if config.slack_webhook:
        return SlackNotifier(config.slack_webhook)
    return NtfyNotifier(config.ntfy_url, config.ntfy_topic)
