"""Telegram client factory for deliveryscope.

The Telegram account whose chats are verified acts as the external provider.
The client only reads history, so update handling is switched off and the
connection lives for a single verification run.
"""

from __future__ import annotations

import logging
import os
from typing import Optional

from dotenv import load_dotenv
from telethon import TelegramClient

DEFAULT_SESSION_NAME = "deliveryscope"


def build_client(session_name: Optional[str] = None) -> TelegramClient:
    """Create a history-only Telethon client from environment variables.

    API_ID/API_HASH come from the environment (or .env) so credentials stay
    out of config.json. SESSION_NAME picks the local .session file.
    """

    load_dotenv()

    api_id = os.getenv("API_ID")
    api_hash = os.getenv("API_HASH")
    session = session_name or os.getenv("SESSION_NAME", DEFAULT_SESSION_NAME)

    if not api_id or not api_hash:
        raise RuntimeError("Missing API_ID or API_HASH in environment")
    if not api_id.isdigit():
        raise RuntimeError("API_ID must be numeric")

    logging.getLogger(__name__).info("Initializing Telegram client for session %s", session)

    return TelegramClient(session, int(api_id), api_hash, receive_updates=False)
