from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import random
from typing import Optional

import pytest

from core.admission import build_snapshot
from core.config import QueueTimings
from core.dedup import compute_fingerprint
from core.models import MediaItem, MessageContext, QueueStatus
from core.post_queue import PostQueue
from core.processor import MessageProcessor, Outcome
from fakes import FakeArchive, FakeClock, FakePublisher, FakeQueueStore, make_live_config, make_rule_set


class FakeLoader:
    def __init__(self, *payloads: bytes) -> None:
        self.payloads = payloads
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        return [MediaItem(payload=payload, file_name=f"{i}.jpg", mime_type="image/jpeg") for i, payload in enumerate(self.payloads)]


def _make_context(
    *,
    channel_id: int = -100123,
    username: Optional[str] = "source",
    text: str = "look at this",
    caption: Optional[str] = None,
    message_id: int = 1,
    has_media: bool = True,
) -> MessageContext:
    return MessageContext(
        channel_id=channel_id,
        username=username,
        title="Source",
        message_id=message_id,
        date=datetime(2024, 1, 1, tzinfo=timezone.utc),
        text=text,
        caption=caption,
        has_media=has_media,
    )


def _make_processor(archive=None, publisher=None, timings=None, **config):
    archive = archive or FakeArchive()
    publisher = publisher or FakePublisher()
    store = FakeQueueStore()
    live = make_live_config(**config)
    queue = PostQueue(store, archive, publisher, live, timings=timings, clock=FakeClock(), rng=random.Random(0))
    processor = MessageProcessor(live, archive, publisher, queue, timings=timings)
    return processor, store, archive, publisher, live


def test_non_whitelisted_source_is_ignored_before_download() -> None:
    processor, store, *_ = _make_processor(whitelist=("@source",))
    loader = FakeLoader(b"A")

    result = asyncio.run(processor.handle(_make_context(username="stranger", channel_id=999), loader))

    assert result.outcome == Outcome.NOT_WHITELISTED
    assert loader.calls == 0
    assert store.records == {}


def test_whitelist_accepts_numeric_channel_id() -> None:
    processor, store, *_ = _make_processor(whitelist=("-100777",))

    result = asyncio.run(processor.handle(_make_context(channel_id=-100777, username=None), FakeLoader(b"A")))

    assert result.outcome == Outcome.QUEUED
    assert len(store.records) == 1


def test_whitelist_rejects_bare_channel_id() -> None:
    processor, store, *_ = _make_processor(whitelist=("-100777",))

    result = asyncio.run(processor.handle(_make_context(channel_id=777, username=None), FakeLoader(b"A")))

    assert result.outcome == Outcome.NOT_WHITELISTED
    assert store.records == {}


def test_suppressed_message_is_dropped_before_download() -> None:
    processor, store, *_ = _make_processor(rules=("advert",))
    loader = FakeLoader(b"A")

    result = asyncio.run(processor.handle(_make_context(text="this is an ADVERTisement"), loader))

    assert result.outcome == Outcome.SUPPRESSED
    assert loader.calls == 0
    assert store.records == {}


def test_suppression_checks_caption() -> None:
    processor, *_ = _make_processor(rules=("promo",))

    result = asyncio.run(processor.handle(_make_context(text="", caption="PROMO inside"), FakeLoader(b"A")))

    assert result.outcome == Outcome.SUPPRESSED


def test_message_without_media_is_skipped() -> None:
    processor, *_ = _make_processor()
    loader = FakeLoader(b"A")

    result = asyncio.run(processor.handle(_make_context(has_media=False), loader))

    assert result.outcome == Outcome.NO_MEDIA
    assert loader.calls == 0


def test_duplicates_within_message_are_queued_once() -> None:
    processor, store, *_ = _make_processor()

    result = asyncio.run(processor.handle(_make_context(), FakeLoader(b"A", b"A", b"B")))

    assert result.outcome == Outcome.QUEUED
    assert (result.admitted, result.duplicates) == (2, 1)
    fingerprints = [record.media.fingerprint for record in store.records.values()]
    assert fingerprints == [compute_fingerprint(b"A"), compute_fingerprint(b"B")]
    assert all(record.status == QueueStatus.PENDING for record in store.records.values())
    assert all(record.source_channel_id == "-100123" for record in store.records.values())


def test_archived_media_is_never_requeued() -> None:
    archive = FakeArchive()
    archive.fingerprints.add(compute_fingerprint(b"A"))
    processor, store, *_ = _make_processor(archive=archive)

    result = asyncio.run(processor.handle(_make_context(), FakeLoader(b"A")))

    assert result.outcome == Outcome.DUPLICATE
    assert result.duplicates == 1
    assert store.records == {}


def test_archive_lookup_error_drops_message() -> None:
    class BrokenArchive(FakeArchive):
        def exists(self, fingerprint: str) -> bool:
            raise RuntimeError("disk I/O error")

    processor, store, *_ = _make_processor(archive=BrokenArchive())

    with pytest.raises(RuntimeError):
        asyncio.run(processor.handle(_make_context(), FakeLoader(b"A")))
    assert store.records == {}


def test_queue_disabled_publishes_immediately() -> None:
    processor, store, archive, publisher, _ = _make_processor(enable_queue=False, target_id="@out")

    result = asyncio.run(processor.handle(_make_context(message_id=7), FakeLoader(b"A", b"B")))

    assert result.outcome == Outcome.PUBLISHED
    assert (result.admitted, result.failed) == (2, 0)
    assert store.records == {}
    assert [call[1] for call in publisher.calls] == ["@out", "@out"]
    assert [entry[2] for entry in archive.appended] == [7, 7]

    again = asyncio.run(processor.handle(_make_context(message_id=8), FakeLoader(b"A", b"B")))
    assert again.outcome == Outcome.DUPLICATE


def test_immediate_publish_failure_is_counted_not_archived() -> None:
    processor, _, archive, *_ = _make_processor(
        enable_queue=False,
        publisher=FakePublisher(error=RuntimeError("chat write forbidden")),
    )

    result = asyncio.run(processor.handle(_make_context(), FakeLoader(b"A")))

    assert result.outcome == Outcome.PUBLISHED
    assert result.failed == 1
    assert archive.appended == []


def test_immediate_publish_timeout_is_counted() -> None:
    processor, _, archive, *_ = _make_processor(
        enable_queue=False,
        publisher=FakePublisher(delay=1.0),
        timings=QueueTimings(poll_seconds=1, publish_timeout_seconds=0.01),
    )

    result = asyncio.run(processor.handle(_make_context(), FakeLoader(b"A")))

    assert result.failed == 1
    assert archive.appended == []


def test_reloaded_rules_apply_to_next_message() -> None:
    processor, store, _, _, live = _make_processor(whitelist=("@source",))
    context = _make_context(username="newchan")

    assert asyncio.run(processor.handle(context, FakeLoader(b"A"))).outcome == Outcome.NOT_WHITELISTED

    live.replace(build_snapshot(make_rule_set(whitelist=("@source", "@NewChan"))))

    assert asyncio.run(processor.handle(context, FakeLoader(b"A"))).outcome == Outcome.QUEUED
    assert len(store.records) == 1
