"""Telegram-to-core message mapping adapter.

This keeps Telethon-specific details out of the core reconciliation engine.
"""

from __future__ import annotations

from telethon.tl.custom import Message

from deliveryscope.core.models import (
    ROLE_ASSISTANT,
    ROLE_USER,
    ExternalMessageRecord,
    ensure_utc,
)


def role_from_message(message: Message) -> str:
    """Outgoing messages were sent by us, so they map to the assistant role."""

    return ROLE_ASSISTANT if getattr(message, "out", False) else ROLE_USER


def build_external_record(message: Message, phone_number: str) -> ExternalMessageRecord:
    """Build a core ExternalMessageRecord from a Telethon Message."""

    # Media captions live in raw_text too; media-only messages map to "".
    text = getattr(message, "raw_text", None) or ""
    return ExternalMessageRecord(
        text=text,
        timestamp=ensure_utc(message.date),
        phone_number=phone_number,
        role=role_from_message(message),
        has_media=getattr(message, "media", None) is not None,
    )
