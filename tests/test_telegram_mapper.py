from __future__ import annotations

import asyncio
from datetime import datetime, timezone

from telethon.tl.types import (
    Channel,
    ChatPhotoEmpty,
    Document,
    DocumentAttributeFilename,
    MessageMediaDocument,
    MessageMediaPhoto,
    PhotoEmpty,
    User,
)

from adapters.telegram_mapper import build_context, extract_media, has_supported_media

DATE = datetime(2024, 1, 1, tzinfo=timezone.utc)


class DummyMessage:
    def __init__(self, *, chat, message_id: int = 10, text: str = "", media=None, payload: bytes = b"data") -> None:
        self.id = message_id
        self.message = text
        self.media = media
        self.date = DATE
        self._chat = chat
        self._payload = payload
        self.downloads = 0

    async def get_chat(self):
        return self._chat

    async def download_media(self, file=None):
        assert file is bytes
        self.downloads += 1
        return self._payload


def _channel(username=None) -> Channel:
    return Channel(id=123, title="Memes", photo=ChatPhotoEmpty(), date=DATE, username=username)


def _document(mime_type: str, attributes=None) -> Document:
    return Document(
        id=1,
        access_hash=2,
        file_reference=b"",
        date=DATE,
        mime_type=mime_type,
        size=4,
        dc_id=2,
        attributes=attributes or [],
    )


def test_non_channel_messages_are_ignored() -> None:
    user = User(id=5)
    message = DummyMessage(chat=user, text="hi")

    assert asyncio.run(build_context(message)) is None


def test_channel_context_uses_lowercase_username_and_caption() -> None:
    message = DummyMessage(
        chat=_channel("MemesDaily"),
        text="Look at this",
        media=MessageMediaPhoto(photo=PhotoEmpty(id=9)),
    )

    context = asyncio.run(build_context(message))

    assert context.channel_id == -100123
    assert context.username == "memesdaily"
    assert context.title == "Memes"
    assert context.text == "Look at this"
    assert context.caption == "Look at this"
    assert context.has_media is True
    assert context.source_label == "@memesdaily"


def test_text_only_post_has_no_caption() -> None:
    context = asyncio.run(build_context(DummyMessage(chat=_channel(), text="news")))

    assert context.username is None
    assert context.caption is None
    assert context.has_media is False
    assert context.source_label == "-100123"


def test_supported_media_detection() -> None:
    chat = _channel()
    assert has_supported_media(DummyMessage(chat=chat, media=MessageMediaPhoto(photo=PhotoEmpty(id=1))))
    assert has_supported_media(DummyMessage(chat=chat, media=MessageMediaDocument(document=_document("image/webp"))))
    assert not has_supported_media(DummyMessage(chat=chat, media=MessageMediaDocument(document=_document("video/mp4"))))
    assert not has_supported_media(DummyMessage(chat=chat))


def test_extract_photo() -> None:
    message = DummyMessage(chat=_channel(), message_id=42, media=MessageMediaPhoto(photo=PhotoEmpty(id=1)), payload=b"jpg")

    items = asyncio.run(extract_media(message))

    assert len(items) == 1
    assert items[0].payload == b"jpg"
    assert items[0].file_name == "photo_42.jpg"
    assert items[0].mime_type == "image/jpeg"


def test_extract_image_document_keeps_file_name() -> None:
    document = _document("image/png", [DocumentAttributeFilename(file_name="cat.png")])
    message = DummyMessage(chat=_channel(), media=MessageMediaDocument(document=document), payload=b"png")

    items = asyncio.run(extract_media(message))

    assert [(item.file_name, item.mime_type) for item in items] == [("cat.png", "image/png")]


def test_extract_skips_unsupported_documents() -> None:
    message = DummyMessage(chat=_channel(), media=MessageMediaDocument(document=_document("video/mp4")))

    assert asyncio.run(extract_media(message)) == []
    assert message.downloads == 0


def test_extract_skips_empty_download() -> None:
    message = DummyMessage(chat=_channel(), media=MessageMediaPhoto(photo=PhotoEmpty(id=1)), payload=b"")

    assert asyncio.run(extract_media(message)) == []
