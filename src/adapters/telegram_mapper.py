"""Telegram-to-core message mapping adapter.

This keeps Telethon-specific details out of the core pipeline.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from telethon import utils
from telethon.tl.custom import Message
from telethon.tl.types import (
    Channel,
    Document,
    DocumentAttributeFilename,
    MessageMediaDocument,
    MessageMediaPhoto,
)

from core.models import MediaItem, MessageContext

LOGGER = logging.getLogger(__name__)


def _is_image_document(document) -> bool:
    if not isinstance(document, Document):
        return False
    return (document.mime_type or "").startswith("image/")


def _document_file_name(document: Document, fallback: str) -> str:
    for attr in document.attributes or []:
        if isinstance(attr, DocumentAttributeFilename):
            return attr.file_name
    return fallback


def has_supported_media(message: Message) -> bool:
    media = getattr(message, "media", None)
    if isinstance(media, MessageMediaPhoto):
        return media.photo is not None
    if isinstance(media, MessageMediaDocument):
        return _is_image_document(media.document)
    return False


async def build_context(message: Message) -> Optional[MessageContext]:
    """Build a core MessageContext, or None for messages not posted in a channel."""

    chat = await message.get_chat()
    # Broadcast channels and supergroups are both Channel entities.
    if not isinstance(chat, Channel):
        return None

    text = message.message or ""
    has_media = message.media is not None
    username = getattr(chat, "username", None)

    return MessageContext(
        # Marked peer id: -100<channel_id> for channels.
        channel_id=utils.get_peer_id(chat),
        username=username.lower() if isinstance(username, str) and username else None,
        title=getattr(chat, "title", None) or "unknown",
        message_id=message.id,
        date=message.date,
        text=text,
        caption=text if has_media else None,
        has_media=has_supported_media(message),
    )


async def extract_media(message: Message) -> List[MediaItem]:
    """Download the photo or image document attached to a message."""

    media = message.media
    if isinstance(media, MessageMediaPhoto) and media.photo:
        payload = await message.download_media(file=bytes)
        if not payload:
            return []
        return [MediaItem(payload=payload, file_name=f"photo_{message.id}.jpg", mime_type="image/jpeg")]

    if isinstance(media, MessageMediaDocument) and _is_image_document(media.document):
        payload = await message.download_media(file=bytes)
        if not payload:
            return []
        document = media.document
        return [
            MediaItem(
                payload=payload,
                file_name=_document_file_name(document, f"image_{message.id}"),
                mime_type=document.mime_type or None,
            )
        ]

    LOGGER.debug("Message %s carries no supported media", message.id)
    return []
