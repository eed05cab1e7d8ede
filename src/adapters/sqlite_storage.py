"""SQLite storage adapter.

Implements the core archive, queue and configuration-store ports using a
single SQLite database. Every public method runs on its own short-lived
connection and its own transaction, so the admin tooling can modify the same
file from another process between two calls.
"""

from __future__ import annotations

import base64
from contextlib import contextmanager
from datetime import datetime, timezone
import json
import logging
import os
import sqlite3
from typing import Dict, Iterable, Iterator, Optional

from core.config import ConfigError
from core.models import (
    ArchivedPost,
    CorruptRecordError,
    FilterRule,
    FingerprintedMedia,
    MediaItem,
    QueueRecord,
    QueueStatus,
    RuleSet,
)

LOGGER = logging.getLogger(__name__)

SCHEMA_VERSION = 1

INTERRUPTED_ERROR = "interrupted"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _to_db(value: datetime) -> str:
    # Fixed-width UTC timestamps compare correctly as plain text in SQL.
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_db(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def encode_media(media: FingerprintedMedia) -> str:
    """Serialize a media payload for the post_queue.media_data column."""

    return json.dumps(
        {
            "fingerprint": media.fingerprint,
            "file_name": media.item.file_name,
            "mime_type": media.item.mime_type,
            "data": base64.b64encode(media.item.payload).decode("ascii"),
        }
    )


def decode_media(raw: str) -> FingerprintedMedia:
    """Inverse of encode_media."""

    data = json.loads(raw)
    item = MediaItem(
        payload=base64.b64decode(data["data"]),
        file_name=data["file_name"],
        mime_type=data.get("mime_type"),
    )
    return FingerprintedMedia(item=item, fingerprint=data["fingerprint"])


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the archive, queue and config ports."""

    def __init__(self, db_path: str, busy_timeout: float = 30.0) -> None:
        self._db_path = db_path
        self._busy_timeout = busy_timeout

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._db_path, timeout=self._busy_timeout)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - config: single-row runtime settings plus the needs_reload flag
        - source_channels: whitelist specifiers (numeric id or username)
        - filter_rules: suppression rules (substring or regex)
        - published_posts: archive of everything that reached the target
        - post_queue: scheduled releases and their lifecycle
        """

        directory = os.path.dirname(os.path.abspath(self._db_path))
        if directory:
            os.makedirs(directory, exist_ok=True)

        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")

        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT NOT NULL
                )
                """
            )
            # config has exactly one row (id = 1). needs_reload is raised by
            # every admin write and cleared by the running watcher.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS config (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    target_channel_id TEXT NOT NULL,
                    enable_queue INTEGER NOT NULL DEFAULT 1,
                    publish_interval_min INTEGER NOT NULL DEFAULT 60,
                    publish_interval_max INTEGER NOT NULL DEFAULT 300,
                    needs_reload INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS source_channels (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    channel_id TEXT NOT NULL UNIQUE,
                    channel_name TEXT,
                    enabled INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS filter_rules (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    pattern TEXT NOT NULL UNIQUE,
                    is_regex INTEGER NOT NULL DEFAULT 0,
                    enabled INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            # fingerprint is UNIQUE: inserting a known fingerprint is a no-op.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS published_posts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    fingerprint TEXT NOT NULL UNIQUE,
                    source_channel_id TEXT NOT NULL,
                    source_message_id INTEGER NOT NULL,
                    target_message_id INTEGER,
                    file_path TEXT,
                    created_at TEXT NOT NULL
                )
                """
            )
            # id is assigned by SQLite and breaks ties between equal
            # scheduled_at values.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS post_queue (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    fingerprint TEXT NOT NULL,
                    media_data TEXT NOT NULL,
                    source_channel_id TEXT NOT NULL,
                    source_message_id INTEGER NOT NULL,
                    status TEXT NOT NULL DEFAULT 'pending',
                    scheduled_at TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    processed_at TEXT,
                    error_message TEXT
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_queue_status_scheduled ON post_queue(status, scheduled_at)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_posts_created_at ON published_posts(created_at)"
            )
            conn.execute(
                "INSERT OR IGNORE INTO schema_version (version, applied_at) VALUES (?, ?)",
                (SCHEMA_VERSION, _to_db(_now())),
            )

    # Archive

    def exists(self, fingerprint: str) -> bool:
        """Check if a fingerprint has already been published."""

        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM published_posts WHERE fingerprint = ? LIMIT 1",
                (fingerprint,),
            ).fetchone()
        return row is not None

    def append(
        self,
        fingerprint: str,
        source_channel_id: str,
        source_message_id: int,
        target_message_id: Optional[int],
        file_path: Optional[str],
    ) -> bool:
        """Record a published item. Returns False if it was already archived."""

        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT OR IGNORE INTO published_posts (
                    fingerprint,
                    source_channel_id,
                    source_message_id,
                    target_message_id,
                    file_path,
                    created_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    fingerprint,
                    str(source_channel_id),
                    source_message_id,
                    target_message_id,
                    file_path,
                    _to_db(_now()),
                ),
            )
            inserted = cur.rowcount == 1
        if not inserted:
            LOGGER.debug("Fingerprint %s already archived", fingerprint)
        return inserted

    def get_archived(self, fingerprint: str) -> Optional[ArchivedPost]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM published_posts WHERE fingerprint = ?",
                (fingerprint,),
            ).fetchone()
        if row is None:
            return None
        return ArchivedPost(
            fingerprint=row["fingerprint"],
            source_channel_id=row["source_channel_id"],
            source_message_id=row["source_message_id"],
            target_message_id=row["target_message_id"],
            file_path=row["file_path"],
            created_at=_from_db(row["created_at"]),
        )

    def archive_stats(self) -> Dict[str, int]:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT
                    COUNT(*) AS total,
                    COUNT(target_message_id) AS published,
                    COUNT(file_path) AS with_files
                FROM published_posts
                """
            ).fetchone()
        return {"total": row["total"], "published": row["published"], "with_files": row["with_files"]}

    # Queue

    def insert_pending(
        self,
        media: FingerprintedMedia,
        source_channel_id: str,
        source_message_id: int,
        scheduled_at: datetime,
    ) -> int:
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO post_queue (
                    fingerprint,
                    media_data,
                    source_channel_id,
                    source_message_id,
                    status,
                    scheduled_at,
                    created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    media.fingerprint,
                    encode_media(media),
                    str(source_channel_id),
                    source_message_id,
                    QueueStatus.PENDING,
                    _to_db(scheduled_at),
                    _to_db(_now()),
                ),
            )
            return int(cur.lastrowid)

    def next_due(self, now: datetime) -> Optional[QueueRecord]:
        """Return the oldest pending record whose release time has come."""

        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT * FROM post_queue
                WHERE status = ? AND scheduled_at <= ?
                ORDER BY scheduled_at ASC, id ASC
                LIMIT 1
                """,
                (QueueStatus.PENDING, _to_db(now)),
            ).fetchone()
        return self._row_to_record(row) if row else None

    def get_queue_record(self, record_id: int) -> Optional[QueueRecord]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM post_queue WHERE id = ?", (record_id,)).fetchone()
        return self._row_to_record(row) if row else None

    def set_status(
        self,
        record_id: int,
        status: str,
        processed_at: Optional[datetime] = None,
        error_message: Optional[str] = None,
        expected_status: Optional[str] = None,
    ) -> bool:
        """Update a record's status. Returns False if no row was changed.

        With ``expected_status`` the update only applies while the record is
        still in that state, which makes the claim of a pending record atomic.
        """

        if status not in QueueStatus.ALL:
            raise ValueError(f"Unknown queue status: {status}")
        query = """
            UPDATE post_queue
            SET status = ?, processed_at = ?, error_message = ?
            WHERE id = ?
        """
        params: list = [
            status,
            _to_db(processed_at) if processed_at else None,
            error_message,
            record_id,
        ]
        if expected_status is not None:
            query += " AND status = ?"
            params.append(expected_status)
        with self._connect() as conn:
            cur = conn.execute(query, params)
            return cur.rowcount == 1

    def count_by_status(self) -> Dict[str, int]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS count FROM post_queue GROUP BY status"
            ).fetchall()
        return {row["status"]: row["count"] for row in rows}

    def latest_pending_scheduled_at(self) -> Optional[datetime]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT MAX(scheduled_at) AS latest FROM post_queue WHERE status = ?",
                (QueueStatus.PENDING,),
            ).fetchone()
        return _from_db(row["latest"]) if row else None

    def fail_interrupted(self) -> int:
        """Mark records left in processing by a previous run as failed."""

        with self._connect() as conn:
            cur = conn.execute(
                """
                UPDATE post_queue
                SET status = ?, processed_at = ?, error_message = ?
                WHERE status = ?
                """,
                (QueueStatus.FAILED, _to_db(_now()), INTERRUPTED_ERROR, QueueStatus.PROCESSING),
            )
            return cur.rowcount

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> QueueRecord:
        try:
            media = decode_media(row["media_data"])
        except (ValueError, KeyError, TypeError) as exc:
            raise CorruptRecordError(row["id"], str(exc) or exc.__class__.__name__) from exc
        return QueueRecord(
            id=row["id"],
            media=media,
            source_channel_id=row["source_channel_id"],
            source_message_id=row["source_message_id"],
            status=row["status"],
            scheduled_at=_from_db(row["scheduled_at"]),
            created_at=_from_db(row["created_at"]),
            processed_at=_from_db(row["processed_at"]),
            error_message=row["error_message"],
        )

    # Runtime configuration

    def has_config(self) -> bool:
        with self._connect() as conn:
            row = conn.execute("SELECT 1 FROM config WHERE id = 1").fetchone()
        return row is not None

    def current_rule_set(self) -> RuleSet:
        """Read config, whitelist and rules as one consistent snapshot."""

        with self._connect() as conn:
            conn.execute("BEGIN")
            config_row = conn.execute("SELECT * FROM config WHERE id = 1").fetchone()
            channel_rows = conn.execute(
                "SELECT channel_id FROM source_channels WHERE enabled = 1 ORDER BY id"
            ).fetchall()
            rule_rows = conn.execute(
                "SELECT pattern, is_regex, enabled FROM filter_rules ORDER BY id"
            ).fetchall()

        if config_row is None:
            raise ConfigError("Runtime configuration is missing; run import-config first")

        return RuleSet(
            whitelist=tuple(row["channel_id"] for row in channel_rows),
            ad_rules=tuple(
                FilterRule(
                    pattern=row["pattern"],
                    is_regex=bool(row["is_regex"]),
                    enabled=bool(row["enabled"]),
                )
                for row in rule_rows
            ),
            min_interval_seconds=int(config_row["publish_interval_min"]),
            max_interval_seconds=int(config_row["publish_interval_max"]),
            target_id=config_row["target_channel_id"],
            enable_queue=bool(config_row["enable_queue"]),
        )

    def needs_reload(self) -> bool:
        with self._connect() as conn:
            row = conn.execute("SELECT needs_reload FROM config WHERE id = 1").fetchone()
        return bool(row["needs_reload"]) if row else False

    def set_needs_reload(self) -> None:
        with self._connect() as conn:
            conn.execute("UPDATE config SET needs_reload = 1 WHERE id = 1")

    def clear_reload_flag(self) -> None:
        with self._connect() as conn:
            conn.execute("UPDATE config SET needs_reload = 0 WHERE id = 1")

    def save_config(
        self,
        target_channel_id: str,
        enable_queue: bool,
        publish_interval_min: int,
        publish_interval_max: int,
    ) -> None:
        """Upsert the runtime settings row and raise the reload flag."""

        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO config (
                    id,
                    target_channel_id,
                    enable_queue,
                    publish_interval_min,
                    publish_interval_max,
                    needs_reload,
                    updated_at
                ) VALUES (1, ?, ?, ?, ?, 1, ?)
                ON CONFLICT(id) DO UPDATE SET
                    target_channel_id = excluded.target_channel_id,
                    enable_queue = excluded.enable_queue,
                    publish_interval_min = excluded.publish_interval_min,
                    publish_interval_max = excluded.publish_interval_max,
                    needs_reload = 1,
                    updated_at = excluded.updated_at
                """,
                (
                    str(target_channel_id),
                    1 if enable_queue else 0,
                    int(publish_interval_min),
                    int(publish_interval_max),
                    _to_db(_now()),
                ),
            )

    def replace_source_channels(self, channels: Iterable[dict]) -> int:
        """Replace the whitelist with ``{channel_id, name?, enabled?}`` entries."""

        now = _to_db(_now())
        rows = []
        for entry in channels:
            channel_id = str(entry.get("channel_id", "")).strip()
            if not channel_id:
                continue
            rows.append((channel_id, entry.get("name"), 1 if entry.get("enabled", True) else 0, now, now))
        with self._connect() as conn:
            conn.execute("DELETE FROM source_channels")
            conn.executemany(
                """
                INSERT OR IGNORE INTO source_channels (channel_id, channel_name, enabled, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                rows,
            )
            conn.execute("UPDATE config SET needs_reload = 1 WHERE id = 1")
        return len(rows)

    def replace_filter_rules(self, rules: Iterable[FilterRule]) -> int:
        now = _to_db(_now())
        rows = [
            (rule.pattern, 1 if rule.is_regex else 0, 1 if rule.enabled else 0, now, now)
            for rule in rules
            if rule.pattern.strip()
        ]
        with self._connect() as conn:
            conn.execute("DELETE FROM filter_rules")
            conn.executemany(
                """
                INSERT OR IGNORE INTO filter_rules (pattern, is_regex, enabled, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                rows,
            )
            conn.execute("UPDATE config SET needs_reload = 1 WHERE id = 1")
        return len(rows)
