"""Core message processing pipeline.

This module is integration-agnostic. It only relies on ports for storage and
publishing, enabling future frontends or adapters without changes here.

Order of checks for one incoming message:
1) Source whitelist
2) Ad/keyword suppression on text + caption
3) Media download (only for admitted messages)
4) Fingerprint dedup (within the message and against the archive)
5) Enqueue for scheduled release, or publish immediately when the queue is off
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Awaitable, Callable, List, Optional

from core.admission import LiveConfig
from core.config import QueueTimings
from core.dedup import partition_duplicates
from core.models import FingerprintedMedia, MediaItem, MessageContext
from core.ports import ArchivePort, PublisherPort
from core.post_queue import PostQueue

LOGGER = logging.getLogger(__name__)

CONTENT_PREVIEW_LENGTH = 120

MediaLoader = Callable[[], Awaitable[List[MediaItem]]]


class Outcome:
    NOT_WHITELISTED = "not_whitelisted"
    SUPPRESSED = "suppressed"
    NO_MEDIA = "no_media"
    DUPLICATE = "duplicate"
    QUEUED = "queued"
    PUBLISHED = "published"


@dataclass(frozen=True)
class ProcessResult:
    outcome: str
    admitted: int = 0
    duplicates: int = 0
    failed: int = 0


class MessageProcessor:
    """Orchestrates admission, dedup, and release of one message's media."""

    def __init__(
        self,
        config: LiveConfig,
        archive: ArchivePort,
        publisher: PublisherPort,
        queue: PostQueue,
        timings: Optional[QueueTimings] = None,
    ) -> None:
        self._config = config
        self._archive = archive
        self._publisher = publisher
        self._queue = queue
        self._timings = timings or QueueTimings()

    async def handle(self, context: MessageContext, load_media: MediaLoader) -> ProcessResult:
        """Process one message context through the core pipeline."""

        # One snapshot per message, so a concurrent reload can't mix rule sets.
        snapshot = self._config.current

        if not snapshot.channel_matcher.is_allowed(context.channel_id, context.username):
            LOGGER.debug("Source %s is not whitelisted, skipping", context.source_label)
            return ProcessResult(Outcome.NOT_WHITELISTED)

        if snapshot.ad_filter.is_suppressed(context.text, context.caption):
            LOGGER.info(
                "Suppressed message %s from %s: %r",
                context.message_id,
                context.source_label,
                context.text[:CONTENT_PREVIEW_LENGTH],
            )
            return ProcessResult(Outcome.SUPPRESSED)

        media = await load_media() if context.has_media else []
        if not media:
            LOGGER.debug(
                "Message %s from %s has no supported media, skipping",
                context.message_id,
                context.source_label,
            )
            return ProcessResult(Outcome.NO_MEDIA)

        # Lookup failures propagate: the whole message is dropped rather than
        # risking a re-post of something already published.
        dedup = partition_duplicates(media, self._archive.exists)
        if not dedup.admitted:
            LOGGER.info(
                "All %s attachment(s) of message %s from %s are duplicates",
                dedup.duplicate_count,
                context.message_id,
                context.source_label,
            )
            return ProcessResult(Outcome.DUPLICATE, duplicates=dedup.duplicate_count)

        source_channel_id = str(context.channel_id)
        if snapshot.enable_queue:
            self._queue.enqueue_many(dedup.admitted, source_channel_id, context.message_id)
            return ProcessResult(
                Outcome.QUEUED,
                admitted=len(dedup.admitted),
                duplicates=dedup.duplicate_count,
            )

        failed = 0
        for media_item in dedup.admitted:
            if not await self._publish_now(media_item, source_channel_id, context, snapshot.target_id):
                failed += 1
        LOGGER.info(
            "Published %s of %s new attachment(s) from %s to %s",
            len(dedup.admitted) - failed,
            len(dedup.admitted),
            context.source_label,
            snapshot.target_id,
        )
        return ProcessResult(
            Outcome.PUBLISHED,
            admitted=len(dedup.admitted),
            duplicates=dedup.duplicate_count,
            failed=failed,
        )

    async def _publish_now(
        self,
        media: FingerprintedMedia,
        source_channel_id: str,
        context: MessageContext,
        target_id: str,
    ) -> bool:
        timeout = self._timings.publish_timeout_seconds
        try:
            result = await asyncio.wait_for(self._publisher.publish(media, target_id), timeout=timeout)
        except asyncio.TimeoutError:
            LOGGER.error(
                "Publish of %s from %s/%s timed out after %ss",
                media.fingerprint,
                source_channel_id,
                context.message_id,
                timeout,
            )
            return False
        except Exception:
            LOGGER.exception(
                "Publish of %s from %s/%s failed",
                media.fingerprint,
                source_channel_id,
                context.message_id,
            )
            return False

        self._archive.append(
            media.fingerprint,
            source_channel_id,
            context.message_id,
            result.target_message_id,
            result.file_path,
        )
        return True
