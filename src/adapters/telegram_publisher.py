"""Telegram publish adapter.

Uploads admitted media to the target channel through the user's Telethon
client and optionally keeps a copy of every published file on disk.
"""

from __future__ import annotations

from datetime import datetime, timezone
import io
import logging
import os
from typing import Optional, Union

from telethon import TelegramClient
from telethon.tl.types import DocumentAttributeFilename

from core.models import FingerprintedMedia, PublishResult
from core.source_keys import is_numeric_id

LOGGER = logging.getLogger(__name__)


class PublishError(RuntimeError):
    """Raised when the target channel did not accept a post."""


def resolve_target(target_id: str) -> Union[int, str]:
    """Telethon wants numeric peers as int and usernames/links as str."""

    target = str(target_id).strip()
    if is_numeric_id(target):
        return int(target)
    return target


def store_media_file(
    media: FingerprintedMedia,
    media_dir: str,
    root: str,
    now: Optional[datetime] = None,
) -> str:
    """Write the payload to ``<media_dir>/YYYY/MM/<fingerprint><ext>``.

    Returns the path relative to ``root`` so the archive stays portable.
    """

    now = now or datetime.now(timezone.utc)
    ext = os.path.splitext(media.item.file_name)[1] or ".jpg"
    directory = os.path.join(media_dir, f"{now.year:04d}", f"{now.month:02d}")
    os.makedirs(directory, exist_ok=True)
    path = os.path.join(directory, f"{media.fingerprint}{ext}")
    with open(path, "wb") as handle:
        handle.write(media.item.payload)
    return os.path.relpath(path, root).replace(os.sep, "/")


class TelegramPublisher:
    """Publisher adapter that posts media to the target channel."""

    def __init__(self, client: TelegramClient, media_dir: Optional[str] = None, root: str = ".") -> None:
        self._client = client
        self._media_dir = media_dir
        self._root = root

    async def publish(self, media: FingerprintedMedia, target_id: str) -> PublishResult:
        """Send one media item and return the id of the new target message."""

        item = media.item
        upload = io.BytesIO(item.payload)
        upload.name = item.file_name
        # Non-image payloads go out as documents so the file name survives.
        force_document = not item.is_image and item.mime_type is not None
        attributes = [DocumentAttributeFilename(file_name=item.file_name)] if force_document else None

        sent = await self._client.send_file(
            resolve_target(target_id),
            file=upload,
            force_document=force_document,
            attributes=attributes,
        )
        target_message_id = getattr(sent, "id", None)
        if target_message_id is None:
            raise PublishError(f"Target {target_id} returned no message for {media.fingerprint}")

        file_path = None
        if self._media_dir:
            try:
                file_path = store_media_file(media, self._media_dir, self._root)
            except OSError:
                LOGGER.exception("Failed to store a copy of %s on disk", media.fingerprint)

        return PublishResult(target_message_id=target_message_id, file_path=file_path)
