"""Scheduled release of admitted media (post queue).

Admitted items are persisted as ``pending`` records with a release time that
keeps moving forward by a random delay. A cooperative timer picks the oldest
due record, publishes it, and records the outcome:

    pending -> processing -> completed
                          -> failed

``completed`` and ``failed`` are terminal; a failed record is never retried
automatically. Only one publish is in flight at any moment.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
import logging
import random
from typing import Callable, Dict, List, Optional

from core.admission import LiveConfig
from core.config import PublishWindow, QueueTimings
from core.models import CorruptRecordError, FingerprintedMedia, QueueRecord, QueueStatus
from core.ports import ArchivePort, PublisherPort, QueueStorePort
from core.timers import PeriodicTask

LOGGER = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compute_release_time(
    now: datetime,
    last_scheduled_at: Optional[datetime],
    window: PublishWindow,
    rng: random.Random,
) -> datetime:
    """Return the next release time after both ``now`` and the last scheduled one."""

    base = now
    if last_scheduled_at is not None and last_scheduled_at > now:
        base = last_scheduled_at
    delay = rng.uniform(window.min_seconds, window.max_seconds)
    return base + timedelta(seconds=delay)


class PostQueue:
    """Persist admitted media and release it on a jittered schedule."""

    def __init__(
        self,
        store: QueueStorePort,
        archive: ArchivePort,
        publisher: PublisherPort,
        config: LiveConfig,
        timings: Optional[QueueTimings] = None,
        clock: Callable[[], datetime] = utcnow,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._store = store
        self._archive = archive
        self._publisher = publisher
        self._config = config
        self._timings = timings or QueueTimings()
        self._clock = clock
        self._rng = rng or random.Random()
        self._processing = False
        self._in_flight: Optional[asyncio.Task] = None
        self._timer = PeriodicTask("post-queue", self._timings.poll_seconds, self._on_timer)

    @property
    def running(self) -> bool:
        return self._timer.running

    @property
    def busy(self) -> bool:
        return self._processing

    def enqueue(
        self,
        media: FingerprintedMedia,
        source_channel_id: str,
        source_message_id: int,
    ) -> int:
        """Persist one pending record and return its id."""

        last_scheduled_at = self._store.latest_pending_scheduled_at()
        scheduled_at = compute_release_time(
            self._clock(),
            last_scheduled_at,
            self._config.current.window,
            self._rng,
        )
        record_id = self._store.insert_pending(media, source_channel_id, source_message_id, scheduled_at)
        LOGGER.info(
            "Queued %s from %s/%s as #%s for %s",
            media.fingerprint,
            source_channel_id,
            source_message_id,
            record_id,
            scheduled_at.isoformat(),
        )
        return record_id

    def enqueue_many(
        self,
        media_items: List[FingerprintedMedia],
        source_channel_id: str,
        source_message_id: int,
    ) -> List[int]:
        record_ids = [self.enqueue(media, source_channel_id, source_message_id) for media in media_items]
        LOGGER.debug("Queue stats after enqueue: %s", self.get_stats())
        return record_ids

    def start(self) -> bool:
        if not self._timer.start():
            return False
        LOGGER.info(
            "Post queue started (poll=%ss, window=%s..%ss, stats=%s)",
            self._timings.poll_seconds,
            self._config.current.window.min_seconds,
            self._config.current.window.max_seconds,
            self.get_stats(),
        )
        return True

    def stop(self) -> bool:
        """Cancel the timer; a publish already in flight is left to finish."""

        if not self._timer.stop():
            return False
        LOGGER.info("Post queue stopped")
        return True

    async def drain(self, timeout: float) -> bool:
        """Wait up to ``timeout`` seconds for the in-flight publish to finish."""

        task = self._in_flight
        if task is None or task.done():
            return True
        LOGGER.info("Waiting up to %ss for the in-flight publish", timeout)
        done, _ = await asyncio.wait({task}, timeout=timeout)
        if not done:
            LOGGER.warning("In-flight publish did not finish within %ss", timeout)
            return False
        return True

    def get_stats(self) -> Dict[str, int]:
        counts = self._store.count_by_status()
        stats = {status: int(counts.get(status, 0)) for status in QueueStatus.ALL}
        stats["total"] = sum(stats.values())
        return stats

    async def _on_timer(self) -> None:
        # The timer never awaits a publish itself, so stop() cannot cancel one.
        if self._processing or (self._in_flight is not None and not self._in_flight.done()):
            LOGGER.debug("Publish still in flight, skipping tick")
            return
        self._in_flight = asyncio.get_running_loop().create_task(self.tick())

    async def tick(self) -> bool:
        """Release at most one due record. Returns True if one was published."""

        if self._processing:
            return False
        self._processing = True
        try:
            return await self._process_next()
        except Exception:
            LOGGER.exception("Post queue tick failed")
            return False
        finally:
            self._processing = False

    async def _process_next(self) -> bool:
        try:
            record = self._store.next_due(self._clock())
        except CorruptRecordError as exc:
            self._fail_corrupt(exc)
            return False
        if record is None:
            return False

        if not self._store.set_status(
            record.id,
            QueueStatus.PROCESSING,
            expected_status=QueueStatus.PENDING,
        ):
            LOGGER.info("Queue record #%s is no longer pending, skipping", record.id)
            return False

        LOGGER.info(
            "Publishing queue record #%s (%s, scheduled %s)",
            record.id,
            record.media.fingerprint,
            record.scheduled_at.isoformat(),
        )
        target_id = self._config.current.target_id
        timeout = self._timings.publish_timeout_seconds
        try:
            result = await asyncio.wait_for(
                self._publisher.publish(record.media, target_id),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            self._fail(record, f"publish timed out after {timeout:g}s")
            return False
        except Exception as exc:
            self._fail(record, str(exc) or exc.__class__.__name__)
            return False

        try:
            self._archive.append(
                record.media.fingerprint,
                record.source_channel_id,
                record.source_message_id,
                result.target_message_id,
                result.file_path,
            )
        except Exception as exc:
            # The post is already on the target feed at this point.
            LOGGER.exception(
                "Queue record #%s (%s) was published as message %s but could not be archived",
                record.id,
                record.media.fingerprint,
                result.target_message_id,
            )
            self._fail(
                record,
                f"published as message {result.target_message_id} but archiving failed: "
                f"{str(exc) or exc.__class__.__name__}",
            )
            return False

        if not self._store.set_status(
            record.id,
            QueueStatus.COMPLETED,
            processed_at=self._clock(),
            expected_status=QueueStatus.PROCESSING,
        ):
            LOGGER.warning(
                "Queue record #%s (%s) was published as message %s but is no longer processing",
                record.id,
                record.media.fingerprint,
                result.target_message_id,
            )
            return True
        LOGGER.info(
            "Published queue record #%s (%s) as message %s; %s pending",
            record.id,
            record.media.fingerprint,
            result.target_message_id,
            self.get_stats()[QueueStatus.PENDING],
        )
        return True

    def _fail_corrupt(self, exc: CorruptRecordError) -> None:
        if not self._store.set_status(
            exc.record_id,
            QueueStatus.FAILED,
            processed_at=self._clock(),
            error_message=f"corrupt media payload: {exc.reason}",
            expected_status=QueueStatus.PENDING,
        ):
            LOGGER.info("Queue record #%s is no longer pending, skipping", exc.record_id)
            return
        LOGGER.error("Queue record #%s failed: %s", exc.record_id, exc)

    def _fail(self, record: QueueRecord, error_message: str) -> None:
        self._store.set_status(
            record.id,
            QueueStatus.FAILED,
            processed_at=self._clock(),
            error_message=error_message,
            expected_status=QueueStatus.PROCESSING,
        )
        LOGGER.error(
            "Queue record #%s (%s from %s/%s) failed: %s",
            record.id,
            record.media.fingerprint,
            record.source_channel_id,
            record.source_message_id,
            error_message,
        )
