"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any integration-specific types.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple


class QueueStatus:
    """Lifecycle states of a queued post."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    ALL: Tuple[str, ...] = (PENDING, PROCESSING, COMPLETED, FAILED)
    TERMINAL: Tuple[str, ...] = (COMPLETED, FAILED)


@dataclass(frozen=True)
class MediaItem:
    """One downloaded attachment, kept in memory only while it is classified."""

    payload: bytes
    file_name: str
    mime_type: Optional[str] = None

    @property
    def is_image(self) -> bool:
        return bool(self.mime_type) and self.mime_type.startswith("image/")


@dataclass(frozen=True)
class FingerprintedMedia:
    """A media item paired with its content fingerprint."""

    item: MediaItem
    fingerprint: str


@dataclass(frozen=True)
class MessageContext:
    """Minimal message context used by the core processing pipeline."""

    channel_id: int
    username: Optional[str]
    title: str
    message_id: int
    date: datetime
    text: str
    caption: Optional[str]
    has_media: bool

    @property
    def source_label(self) -> str:
        if self.username:
            return f"@{self.username}"
        return str(self.channel_id)


@dataclass(frozen=True)
class QueueRecord:
    """Persisted unit of scheduled work."""

    id: int
    media: FingerprintedMedia
    source_channel_id: str
    source_message_id: int
    status: str
    scheduled_at: datetime
    created_at: datetime
    processed_at: Optional[datetime] = None
    error_message: Optional[str] = None


class CorruptRecordError(ValueError):
    """Raised by a queue store when a record's media payload cannot be decoded."""

    def __init__(self, record_id: int, reason: str) -> None:
        super().__init__(f"queue record #{record_id} has a corrupt media payload: {reason}")
        self.record_id = record_id
        self.reason = reason


@dataclass(frozen=True)
class ArchivedPost:
    """Durable record of a media item that reached the target feed."""

    fingerprint: str
    source_channel_id: str
    source_message_id: int
    target_message_id: Optional[int]
    file_path: Optional[str]
    created_at: datetime


@dataclass(frozen=True)
class PublishResult:
    """Outcome of a successful publish on the target feed."""

    target_message_id: Optional[int]
    file_path: Optional[str] = None


@dataclass(frozen=True)
class FilterRule:
    """Raw suppression rule as stored by the configuration store."""

    pattern: str
    is_regex: bool = False
    enabled: bool = True


@dataclass(frozen=True)
class RuleSet:
    """Full runtime configuration read from the configuration store."""

    whitelist: Tuple[str, ...]
    ad_rules: Tuple[FilterRule, ...]
    min_interval_seconds: int
    max_interval_seconds: int
    target_id: str
    enable_queue: bool = True
