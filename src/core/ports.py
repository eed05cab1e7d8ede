"""Ports (interfaces) used by the core pipeline.

Ports define the minimal contracts for storage and publishing adapters so
that the core can be reused with different backends.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional, Protocol

from core.models import FingerprintedMedia, PublishResult, QueueRecord, RuleSet


class ArchivePort(Protocol):
    """Durable record of published fingerprints."""

    def exists(self, fingerprint: str) -> bool:
        ...

    def append(
        self,
        fingerprint: str,
        source_channel_id: str,
        source_message_id: int,
        target_message_id: Optional[int],
        file_path: Optional[str],
    ) -> bool:
        ...


class QueueStorePort(Protocol):
    """Persistence of scheduled posts."""

    def insert_pending(
        self,
        media: FingerprintedMedia,
        source_channel_id: str,
        source_message_id: int,
        scheduled_at: datetime,
    ) -> int:
        ...

    def next_due(self, now: datetime) -> Optional[QueueRecord]:
        """Oldest due pending record; CorruptRecordError if its payload is unreadable."""
        ...

    def set_status(
        self,
        record_id: int,
        status: str,
        processed_at: Optional[datetime] = None,
        error_message: Optional[str] = None,
        expected_status: Optional[str] = None,
    ) -> bool:
        ...

    def count_by_status(self) -> Dict[str, int]:
        ...

    def latest_pending_scheduled_at(self) -> Optional[datetime]:
        ...


class ConfigStorePort(Protocol):
    """Runtime configuration and the shared reload flag."""

    def current_rule_set(self) -> RuleSet:
        ...

    def needs_reload(self) -> bool:
        ...

    def clear_reload_flag(self) -> None:
        ...


class PublisherPort(Protocol):
    """Publish capability injected into the core."""

    async def publish(self, media: FingerprintedMedia, target_id: str) -> PublishResult:
        ...
