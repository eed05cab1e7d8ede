"""Application entry point for the telemirror service."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
from logging.handlers import RotatingFileHandler
from typing import Iterable, List, Optional

from art import tprint
from dotenv import load_dotenv
from telethon import events

import settings
from adapters.sqlite_storage import SQLiteStorage
from adapters.telegram_mapper import build_context, extract_media
from adapters.telegram_publisher import TelegramPublisher
from client import build_client
from core.admission import LiveConfig, build_snapshot
from core.config import ConfigError, PublishWindow, QueueTimings
from core.config_watcher import ConfigReloadWatcher
from core.models import FilterRule, QueueStatus
from core.post_queue import PostQueue
from core.processor import MessageProcessor

NAME = "TELEMIRROR"
FONT = "tarty-1"


def _print_banner() -> None:
    tprint(NAME, FONT, space=1)


class _RedactingFormatter(logging.Formatter):
    def __init__(self, secrets: list[str], fmt: str, datefmt: Optional[str] = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)
        self._secrets = [secret for secret in secrets if secret]

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        for secret in self._secrets:
            message = message.replace(secret, "***")
        return message


def _collect_redaction_values(config: dict) -> list[str]:
    redact_cfg = config.get("redact", {}) if config else {}
    if not redact_cfg.get("enabled", False):
        return []
    values = []
    for name in redact_cfg.get("patterns", []):
        value = os.getenv(name)
        if value:
            values.append(value)
    return sorted(set(values), key=len, reverse=True)


def _configure_logging() -> None:
    config = settings.LOGGING or {}
    if not config.get("enabled", False):
        return

    load_dotenv()
    level_name = str(config.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)

    fmt = "%(asctime)s %(levelname)s %(name)s: %(message)s"
    datefmt = "%Y-%m-%d %H:%M:%S"
    secrets = _collect_redaction_values(config)
    formatter = _RedactingFormatter(secrets, fmt=fmt, datefmt=datefmt)

    handlers: list[logging.Handler] = []

    if config.get("console", True):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    file_cfg = config.get("file", {})
    if file_cfg.get("enabled", False):
        path = file_cfg.get("path", "logs/telemirror.log")
        if not os.path.isabs(path):
            path = os.path.join(settings.PROJECT_ROOT, path)
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        max_bytes = int(file_cfg.get("max_bytes", 5 * 1024 * 1024))
        backup_count = int(file_cfg.get("backup_count", 5))
        file_handler = RotatingFileHandler(
            path,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if not handlers:
        return

    logging.basicConfig(level=level, handlers=handlers)
    # Telethon is chatty at INFO; keep its reconnect noise out of our logs.
    logging.getLogger("telethon").setLevel(max(level, logging.WARNING))


def _parse_filter_rules(raw_rules: Iterable) -> List[FilterRule]:
    """Accept plain strings (substring rules) or {pattern, is_regex, enabled}."""

    rules: List[FilterRule] = []
    for entry in raw_rules:
        if isinstance(entry, str):
            rules.append(FilterRule(pattern=entry))
            continue
        pattern = entry.get("pattern")
        if not pattern:
            continue
        rules.append(
            FilterRule(
                pattern=pattern,
                is_regex=bool(entry.get("is_regex", False)),
                enabled=bool(entry.get("enabled", True)),
            )
        )
    return rules


def _parse_source_channels(raw_channels: Iterable) -> List[dict]:
    return [{"channel_id": entry} if isinstance(entry, (str, int)) else entry for entry in raw_channels]


def _import_seed(storage: SQLiteStorage, seed: dict) -> None:
    """Overwrite the runtime configuration with the config.json seed section."""

    logger = logging.getLogger(__name__)
    # Validate before writing anything, so a bad file never half-applies.
    window = PublishWindow(
        int(seed.get("publish_interval_min", 60)),
        int(seed.get("publish_interval_max", 300)),
    )
    target = str(seed.get("target_channel_id") or "").strip()
    if not target:
        raise ConfigError("seed.target_channel_id is required in config.json")

    storage.save_config(
        target_channel_id=target,
        enable_queue=bool(seed.get("enable_queue", True)),
        publish_interval_min=window.min_seconds,
        publish_interval_max=window.max_seconds,
    )
    sources = storage.replace_source_channels(_parse_source_channels(seed.get("source_channels", [])))
    rules = storage.replace_filter_rules(_parse_filter_rules(seed.get("filter_rules", [])))
    logger.info("Imported configuration: target=%s, sources=%s, filter_rules=%s", target, sources, rules)


def _open_storage() -> SQLiteStorage:
    storage = SQLiteStorage(settings.DB_PATH)
    storage.init_db()
    return storage


async def _serve(
    client,
    processor: MessageProcessor,
    queue: PostQueue,
    watcher: ConfigReloadWatcher,
) -> None:
    logger = logging.getLogger(__name__)

    await client.start()

    # Single handler keeps Telethon integration minimal and defers all filtering
    # to our core processor for consistency and testability.
    @client.on(events.NewMessage(incoming=True))
    async def handler(event) -> None:
        message = event.message
        try:
            context = await build_context(message)
            if context is None:
                return
            await processor.handle(context, lambda: extract_media(message))
        except Exception:
            logger.exception("Error while processing message %s", message.id)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda: asyncio.ensure_future(client.disconnect()))
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows event loops.
            pass

    queue.start()
    watcher.start()
    logger.info("Client connected. Listening for channel posts...")

    try:
        await client.run_until_disconnected()
    finally:
        logger.info("Shutting down")
        watcher.stop()
        queue.stop()
        await queue.drain(settings.SHUTDOWN_GRACE_SECONDS)
        if client.is_connected():
            await client.disconnect()
        logger.info("Shutdown complete")


def _run() -> None:
    _print_banner()
    _configure_logging()
    logger = logging.getLogger(__name__)

    logger.info("Starting telemirror")

    storage = _open_storage()
    if not storage.has_config():
        logger.info("No runtime configuration in the database, importing config.json")
        _import_seed(storage, settings.SEED)

    interrupted = storage.fail_interrupted()
    if interrupted:
        logger.warning("Marked %s interrupted queue record(s) as failed", interrupted)

    # Invalid configuration at startup is fatal; later reloads only log.
    live_config = LiveConfig(build_snapshot(storage.current_rule_set()))
    storage.clear_reload_flag()
    snapshot = live_config.current
    logger.info(
        "Loaded %s sources and %s filter rules; target=%s, queue=%s",
        snapshot.channel_matcher.size,
        snapshot.ad_filter.rule_count,
        snapshot.target_id,
        snapshot.enable_queue,
    )

    client = build_client()
    publisher = TelegramPublisher(
        client,
        media_dir=settings.MEDIA_DIR if settings.MEDIA_STORE_FILES else None,
        root=settings.PROJECT_ROOT,
    )
    timings = QueueTimings(
        poll_seconds=settings.QUEUE_POLL_SECONDS,
        publish_timeout_seconds=settings.PUBLISH_TIMEOUT_SECONDS,
    )
    queue = PostQueue(storage, storage, publisher, live_config, timings=timings)
    processor = MessageProcessor(live_config, storage, publisher, queue, timings=timings)
    watcher = ConfigReloadWatcher(storage, live_config, interval=settings.RELOAD_POLL_SECONDS)

    client.loop.run_until_complete(_serve(client, processor, queue, watcher))


def _import_config() -> None:
    _configure_logging()
    storage = _open_storage()
    _import_seed(storage, settings.SEED)
    print("Configuration imported; a running instance will reload it shortly.")


def _request_reload() -> None:
    storage = _open_storage()
    if not storage.has_config():
        print("No runtime configuration yet. Run `import-config` first.")
        return
    storage.set_needs_reload()
    print("Reload requested.")


def _stats() -> None:
    storage = _open_storage()
    counts = storage.count_by_status()
    print("Queue:")
    for status in QueueStatus.ALL:
        print(f"  {status:<11} {counts.get(status, 0)}")
    archive = storage.archive_stats()
    print("Archive:")
    print(f"  total       {archive['total']}")
    print(f"  published   {archive['published']}")
    print(f"  with files  {archive['with_files']}")


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="telemirror")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("run", help="Start the mirror")
    subparsers.add_parser(
        "import-config",
        help="Copy sources, filter rules and intervals from config.json into the database.",
    )
    subparsers.add_parser("reload", help="Ask a running instance to reload its configuration.")
    subparsers.add_parser("stats", help="Show queue and archive counters.")

    args = parser.parse_args(argv)
    if args.command == "import-config":
        _import_config()
        return
    if args.command == "reload":
        _request_reload()
        return
    if args.command == "stats":
        _stats()
        return
    _run()


if __name__ == "__main__":
    main()
