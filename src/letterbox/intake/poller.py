"""Periodic, batch-bounded polling of RSS sources.

Each source moves ``pending → syncing → success | error`` per poll. The
selection query never returns a source that is ``syncing``, so a source
has at most one poll in flight.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterator, Sequence
from datetime import datetime, timedelta

from letterbox.config import LetterboxConfig, PollerConfig
from letterbox.errors import DuplicateItemError, SourceNotFoundError, StorageError
from letterbox.intake.dedup import find_duplicate
from letterbox.intake.models import (
    CycleReport,
    FeedEnvelope,
    FeedItem,
    Item,
    NotModified,
    PollerStats,
    PollOutcome,
    PollResult,
    Source,
    SourcePatch,
    SourceType,
    SyncStatus,
    utcnow,
)
from letterbox.intake.normalizer import generate_excerpt
from letterbox.intake.parsers.feed import FeedFetcher
from letterbox.storage.base import Storage

logger = logging.getLogger(__name__)

HEALTHY_SUCCESS_RATE = 80


def next_retry_delay(error_count: int, config: PollerConfig | None = None) -> timedelta:
    """Backoff after ``error_count`` consecutive failures.

    5, 15, 45 minutes and so on, capped at 24 hours with the default config.
    """
    config = config or PollerConfig()
    exponent = max(error_count - 1, 0)
    minutes = min(
        config.backoff_base_minutes * config.backoff_factor**exponent,
        config.backoff_cap_minutes,
    )
    return timedelta(minutes=minutes)


def _chunks(items: Sequence[Source], size: int) -> Iterator[Sequence[Source]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class FeedPoller:
    """Drives RSS sources through fetch, dedup and write.

    Args:
        storage: Storage collaborator.
        fetcher: Feed fetcher; built from ``config.fetch`` when omitted.
        config: Full configuration; poller and dedup sections are used.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        storage: Storage,
        fetcher: FeedFetcher | None = None,
        config: LetterboxConfig | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        config = config or LetterboxConfig()
        self._storage = storage
        self._fetcher = fetcher or FeedFetcher(config.fetch)
        self._config = config.poller
        self._window = config.dedup.feed_window
        self._clock = clock
        self._stats = PollerStats()
        self._stop = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    # ── Cycle ────────────────────────────────────────────────────

    async def run_cycle(self) -> CycleReport:
        """Poll every due RSS source once, ``batch_width`` at a time."""
        now = self._clock()
        report = CycleReport(started_at=now)
        due = self._storage.find_sources_due_for_sync(self._config.page_size, now=now)
        sources = [s for s in due if s.type == SourceType.RSS]
        report.sources_selected = len(sources)
        logger.info("Polling %d due RSS sources", len(sources))

        for batch in _chunks(sources, max(self._config.batch_width, 1)):
            outcomes = await asyncio.gather(
                *(self.poll_source(s) for s in batch), return_exceptions=True
            )
            for source, outcome in zip(batch, outcomes):
                if isinstance(outcome, BaseException):
                    report.crashed += 1
                    self._stats.total_polled += 1
                    self._stats.failed += 1
                    logger.error(
                        "Poll of source %s crashed", source.id,
                        exc_info=(type(outcome), outcome, outcome.__traceback__),
                    )
                else:
                    report.results.append(outcome)

        report.finished_at = self._clock()
        logger.info(
            "Poll cycle finished: %d succeeded, %d failed, %d new items",
            report.succeeded, report.failed, report.items_created,
        )
        return report

    async def poll_source(self, source: Source) -> PollResult:
        """Poll one source and record the outcome on it.

        Fetch, parse and storage failures are recorded as the source's error
        state, leaving its cache tokens untouched. Only a failure to record
        that error propagates.
        """
        now = self._clock()
        self._storage.update_source(source.id, SourcePatch(sync_status=SyncStatus.SYNCING))
        logger.debug("Polling %s (%s)", source.name, source.url)

        try:
            fetched = await asyncio.to_thread(self._fetcher.fetch, source.url, source.cache_tokens)
        except Exception as exc:
            return self._record_failure(source, exc, now)

        try:
            if isinstance(fetched, NotModified):
                return self._record_not_modified(source, fetched, now)
            return self._record_envelope(source, fetched, now)
        except StorageError as exc:
            logger.error("Storage failed while polling %s", source.name, exc_info=True)
            return self._record_failure(source, exc, now)

    async def poll_now(self, source_id: str) -> PollResult:
        """Poll one RSS source immediately, ignoring its schedule.

        Raises:
            SourceNotFoundError: If the source is unknown or not an RSS feed.
        """
        source = self._storage.get_source(source_id)
        if source is None:
            raise SourceNotFoundError(f"RSS source not found: {source_id}")
        if source.type != SourceType.RSS:
            raise SourceNotFoundError(f"Source is not an RSS feed: {source_id}")
        logger.info("Manually polling %s", source.name)
        return await self.poll_source(source)

    # ── Periodic task ────────────────────────────────────────────

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task[None]:
        """Schedule ``run_forever`` on the running event loop."""
        if self.is_running:
            logger.info("Poller already running")
            return self._task
        self._stop.clear()
        self._task = asyncio.get_running_loop().create_task(self.run_forever())
        return self._task

    def stop(self) -> None:
        """Ask the loop to exit once the current cycle finishes."""
        self._stop.set()

    async def run_forever(self) -> None:
        """Run a cycle now, then one per interval until stopped."""
        interval = self._config.interval.total_seconds()
        logger.info("Poller started, interval %d minutes", self._config.interval_minutes)
        while not self._stop.is_set():
            try:
                await self.run_cycle()
            except Exception:
                logger.error("Poll cycle failed", exc_info=True)
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval)
            except TimeoutError:
                continue
        logger.info("Poller stopped")

    # ── Stats ────────────────────────────────────────────────────

    @property
    def stats(self) -> PollerStats:
        return self._stats.model_copy()

    def reset_stats(self) -> None:
        self._stats = PollerStats()

    def health(self) -> dict[str, object]:
        total = self._stats.total_polled
        success_rate = 100.0 if total == 0 else 100 * self._stats.successful / total
        return {
            "status": "running" if self.is_running else "stopped",
            "healthy": success_rate > HEALTHY_SUCCESS_RATE,
            "success_rate": round(success_rate),
            "stats": self._stats.model_dump(),
            "timestamp": self._clock().isoformat(),
        }

    # ── Outcomes ─────────────────────────────────────────────────

    def _record_not_modified(self, source: Source, result: NotModified, now: datetime) -> PollResult:
        next_at = now + self._config.interval
        self._storage.update_source(
            source.id,
            SourcePatch(
                sync_status=SyncStatus.SUCCESS,
                sync_error=None,
                last_sync_at=now,
                etag=result.etag or source.etag,
                last_modified=result.last_modified or source.last_modified,
                not_modified=True,
                error_count=0,
                next_retry_at=next_at,
                metadata={**source.metadata, "last_polled": now.isoformat()},
            ),
        )
        self._stats.total_polled += 1
        self._stats.successful += 1
        logger.info("Feed not modified: %s", source.name)
        return PollResult(source_id=source.id, outcome=PollOutcome.NOT_MODIFIED, next_retry_at=next_at)

    def _record_envelope(self, source: Source, envelope: FeedEnvelope, now: datetime) -> PollResult:
        created = 0
        duplicates = 0
        for feed_item in envelope.items:
            try:
                if self._store_item(source, feed_item, now):
                    created += 1
                else:
                    duplicates += 1
            except StorageError:
                raise
            except Exception:
                logger.warning(
                    "Failed to store item %s from %s", feed_item.id, source.name, exc_info=True
                )

        if created:
            self._storage.increment_item_count(source.id, created)

        next_at = now + self._config.interval
        self._storage.update_source(
            source.id,
            SourcePatch(
                sync_status=SyncStatus.SUCCESS,
                sync_error=None,
                last_sync_at=now,
                etag=envelope.etag,
                last_modified=envelope.last_modified,
                not_modified=False,
                error_count=0,
                next_retry_at=next_at,
                metadata={
                    **source.metadata,
                    "last_polled": now.isoformat(),
                    "items_in_feed": len(envelope.items),
                    "items_created": created,
                    "duplicates_skipped": duplicates,
                },
            ),
        )
        self._stats.total_polled += 1
        self._stats.successful += 1
        self._stats.items_created += created
        self._stats.duplicates_skipped += duplicates
        logger.info("Polled %s: %d new items, %d duplicates", source.name, created, duplicates)
        return PollResult(
            source_id=source.id,
            outcome=PollOutcome.SUCCESS,
            items_in_feed=len(envelope.items),
            items_created=created,
            duplicates_skipped=duplicates,
            next_retry_at=next_at,
        )

    def _record_failure(self, source: Source, exc: Exception, now: datetime) -> PollResult:
        error_count = source.error_count + 1
        next_at = now + next_retry_delay(error_count, self._config)
        self._storage.update_source(
            source.id,
            SourcePatch(
                sync_status=SyncStatus.ERROR,
                sync_error=str(exc),
                error_count=error_count,
                next_retry_at=next_at,
                metadata={**source.metadata, "last_error_at": now.isoformat()},
            ),
        )
        self._stats.total_polled += 1
        self._stats.failed += 1
        logger.warning(
            "Polling %s failed (%d consecutive), retry at %s: %s",
            source.name, error_count, next_at.isoformat(), exc,
        )
        return PollResult(
            source_id=source.id,
            outcome=PollOutcome.ERROR,
            error=str(exc),
            next_retry_at=next_at,
        )

    def _store_item(self, source: Source, feed_item: FeedItem, now: datetime) -> bool:
        """Write one feed item unless it duplicates an existing one."""
        match = find_duplicate(
            self._storage,
            source.user_id,
            feed_item.normalized_hash,
            feed_item.fingerprint,
            self._window,
            now,
        )
        if match is not None:
            return False

        item = Item(
            user_id=source.user_id,
            source_id=source.id,
            title=feed_item.title,
            content=feed_item.content,
            raw_content=feed_item.raw_content,
            url=feed_item.link or None,
            published_at=feed_item.published_at,
            normalized_hash=feed_item.normalized_hash,
            fingerprint=feed_item.fingerprint,
            metadata={
                **feed_item.metadata,
                "word_count": feed_item.word_count,
                "estimated_read_minutes": feed_item.estimated_read_minutes,
                "excerpt": generate_excerpt(feed_item.content),
                "rss": {
                    "guid": feed_item.guid,
                    "author": feed_item.author,
                    "categories": feed_item.categories,
                    "summary": feed_item.summary,
                },
                "source": {"type": "rss", "feed_title": source.name, "feed_url": source.url},
            },
        )
        try:
            self._storage.create_item(item)
        except DuplicateItemError:
            return False
        return True
