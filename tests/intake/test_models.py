"""Tests for intake data models."""

from datetime import UTC, datetime, timedelta

from letterbox.intake.models import (
    CacheTokens,
    CycleReport,
    EmailAddress,
    ParsedEmail,
    PollOutcome,
    PollResult,
    Source,
    SourceType,
    SyncStatus,
)

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=UTC)


class TestSourceIsDue:
    def test_new_source_due(self):
        assert Source(user_id="u1").is_due(NOW) is True

    def test_syncing_never_due(self):
        source = Source(user_id="u1", sync_status=SyncStatus.SYNCING, next_retry_at=NOW - timedelta(days=1))
        assert source.is_due(NOW) is False

    def test_inactive_never_due(self):
        assert Source(user_id="u1", is_active=False).is_due(NOW) is False

    def test_forwarding_source_never_due(self):
        assert Source(user_id="u1", type=SourceType.EMAIL_FORWARDING).is_due(NOW) is False

    def test_error_waits_for_retry_time(self):
        source = Source(user_id="u1", sync_status=SyncStatus.ERROR, next_retry_at=NOW + timedelta(minutes=1))
        assert source.is_due(NOW) is False
        assert source.is_due(NOW + timedelta(minutes=1)) is True

    def test_success_without_schedule_not_due(self):
        assert Source(user_id="u1", sync_status=SyncStatus.SUCCESS).is_due(NOW) is False

    def test_success_due_after_interval(self):
        source = Source(user_id="u1", sync_status=SyncStatus.SUCCESS, next_retry_at=NOW)
        assert source.is_due(NOW) is True


class TestSourceAccessors:
    def test_url_and_tokens(self):
        source = Source(user_id="u1", configuration={"url": "https://x.com/rss"}, etag='"e"')
        assert source.url == "https://x.com/rss"
        assert source.cache_tokens == CacheTokens(etag='"e"')

    def test_empty_tokens(self):
        assert CacheTokens().is_empty is True
        assert CacheTokens(last_modified="Mon").is_empty is False


class TestParsedEmail:
    def test_from_alias(self):
        email = ParsedEmail.model_validate({"from": [{"address": "a@b.c", "domain": "b.c"}]})
        assert email.sender == EmailAddress(address="a@b.c", domain="b.c")

    def test_no_sender(self):
        assert ParsedEmail().sender is None


class TestCycleReport:
    def test_counts(self):
        report = CycleReport(
            started_at=NOW,
            results=[
                PollResult(source_id="a", outcome=PollOutcome.SUCCESS, items_created=3),
                PollResult(source_id="b", outcome=PollOutcome.NOT_MODIFIED),
                PollResult(source_id="c", outcome=PollOutcome.ERROR, error="boom"),
            ],
            crashed=1,
        )
        assert report.succeeded == 2
        assert report.failed == 2
        assert report.items_created == 3
