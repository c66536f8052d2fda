"""Inbound LINE webhook: signature check and per-event normalisation.

Each event in an envelope is parsed and handled on its own; a failure is
logged and the next event is still processed.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
from typing import Any, Iterable, List, Optional

from app.services.notifier import send_notifications
from app.types.line_contract import (
    AudioContent,
    FollowEvent,
    ImageContent,
    LocationContent,
    MessageContent,
    MessageEvent,
    OtherContent,
    OtherEvent,
    StickerContent,
    TextContent,
    UnfollowEvent,
    VideoContent,
    parse_event,
)
import db

_LOGGER = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-line-signature"


def verify_signature(body: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """Check the ``x-line-signature`` header against the raw request body.

    Without a channel secret only presence and base64 shape are enforced.
    """
    if not signature:
        return False
    try:
        decoded = base64.b64decode(signature, validate=True)
    except (binascii.Error, ValueError):
        return False
    if not secret:
        return bool(decoded)
    expected = hmac.new(secret.encode(), body, hashlib.sha256).digest()
    return hmac.compare_digest(expected, decoded)


async def process_envelope(raw_events: Iterable[Any]) -> List[bool]:
    results = []
    for raw in raw_events:
        try:
            event = parse_event(raw)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.error("Skipping malformed event %s: %s", _peek_type(raw), exc)
            results.append(False)
            continue
        results.append(await process_event(event))
    return results


async def process_event(event) -> bool:
    """Apply one event to the store; ``False`` if it failed (already logged)."""
    try:
        if isinstance(event, MessageEvent):
            await _handle_message(event.source.user_id, event.message)
        elif isinstance(event, FollowEvent):
            user_id = event.source.user_id
            _LOGGER.info("User followed: %s", user_id)
            await db.upsert_user(user_id)
            await send_notifications(f"New follower: {user_id}")
        elif isinstance(event, UnfollowEvent):
            user_id = event.source.user_id
            _LOGGER.info("User unfollowed: %s", user_id)
            await send_notifications(f"User unfollowed: {user_id}")
        elif isinstance(event, OtherEvent):
            _LOGGER.debug("Ignoring event type %s", event.type)
        else:
            _LOGGER.warning("Unhandled event object %r", event)
    except Exception:  # noqa: BLE001
        _LOGGER.exception("Failed to process %s event", getattr(event, "type", "?"))
        return False
    return True


async def _handle_message(user_id: str, message: MessageContent) -> None:
    # Messages can arrive without a prior follow event
    await db.upsert_user(user_id)

    if isinstance(message, TextContent):
        _LOGGER.info("Received text message from %s", user_id)
        await db.insert_message(user_id, "text", text=message.text)
        await send_notifications(f"New message from {user_id}: {message.text}")
    elif isinstance(message, (ImageContent, VideoContent, AudioContent)):
        _LOGGER.info("Received %s message from %s", message.type, user_id)
        await db.insert_message(user_id, message.type)
    elif isinstance(message, LocationContent):
        _LOGGER.info("Received location message from %s", user_id)
        await db.insert_message(user_id, "location", data={
            "title": message.title,
            "address": message.address,
            "latitude": message.latitude,
            "longitude": message.longitude,
        })
    elif isinstance(message, StickerContent):
        _LOGGER.info("Received sticker message from %s", user_id)
        await db.insert_message(user_id, "sticker", data={
            "packageId": message.package_id,
            "stickerId": message.sticker_id,
        })
    elif isinstance(message, OtherContent):
        _LOGGER.debug("Ignoring %s message from %s", message.type, user_id)


def _peek_type(raw: Any) -> str:
    if isinstance(raw, dict):
        return str(raw.get("type"))
    return type(raw).__name__
