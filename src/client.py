"""Telethon user client used both to read source channels and to post to the target."""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv
from telethon import TelegramClient

# Reconnect and request retry limits (seconds where applicable).
CONNECTION_RETRIES = 10
REQUEST_RETRIES = 5
RETRY_DELAY = 2
TIMEOUT = 30


def build_client() -> TelegramClient:
    """Build the mirror client from API_ID, API_HASH and SESSION_NAME in the environment.

    One session serves the whole process, so it reconnects on its own and
    retries requests instead of failing a publish on the first network drop.
    """

    load_dotenv()

    api_id = os.getenv("API_ID")
    api_hash = os.getenv("API_HASH")
    session_name = os.getenv("SESSION_NAME", "telemirror")

    # Without credentials Telethon would fall back to an interactive prompt.
    if not api_id or not api_hash:
        raise RuntimeError("Missing API_ID or API_HASH in environment")

    logging.getLogger(__name__).info("Initializing Telegram client")

    return TelegramClient(
        session_name,
        int(api_id),
        api_hash,
        connection_retries=CONNECTION_RETRIES,
        request_retries=REQUEST_RETRIES,
        retry_delay=RETRY_DELAY,
        timeout=TIMEOUT,
        auto_reconnect=True,
    )
