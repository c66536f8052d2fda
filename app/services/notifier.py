"""Alert fan-out: mirror an internal event to LINE Notify and a Slack webhook.

Channels are opt-in through the settings table. Each configured channel is
attempted independently, and every attempt lands in ``notification_logs``.
Nothing here raises to the caller.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

import httpx

from app.logging_setup import mask_secret
from config import LINE_NOTIFY_TOKEN_KEY, SLACK_WEBHOOK_URL_KEY, settings
import db

_LOGGER = logging.getLogger(__name__)

LINE_NOTIFY = "line_notify"
SLACK = "slack"


async def send_notifications(
    message: str,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> Dict[str, str]:
    """Send ``message`` to every configured channel.

    Returns ``{channel: "success" | "failed"}`` for the channels attempted;
    unconfigured channels are absent.
    """
    outcomes: Dict[str, str] = {}
    async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT, transport=transport) as client:
        for channel, sender in ((LINE_NOTIFY, _send_line_notify), (SLACK, _send_slack)):
            try:
                outcome = await sender(client, message)
            except Exception:  # noqa: BLE001
                _LOGGER.exception("%s notification crashed", channel)
                outcome = "failed"
            if outcome is not None:
                outcomes[channel] = outcome
    return outcomes


async def _send_line_notify(client: httpx.AsyncClient, message: str) -> Optional[str]:
    token = await db.get_setting(LINE_NOTIFY_TOKEN_KEY)
    if not token:
        _LOGGER.debug("LINE Notify token not configured")
        return None

    recipient = mask_secret(token)
    try:
        resp = await client.post(
            settings.LINE_NOTIFY_URL,
            headers={"Authorization": f"Bearer {token}"},
            data={"message": message},
        )
    except httpx.HTTPError as exc:
        return await _record(LINE_NOTIFY, recipient, message, f"LINE Notify request failed: {exc}")

    if resp.is_success:
        return await _record(LINE_NOTIFY, recipient, message, None)
    return await _record(
        LINE_NOTIFY, recipient, message, f"LINE Notify failed with status: {resp.status_code}"
    )


async def _send_slack(client: httpx.AsyncClient, message: str) -> Optional[str]:
    webhook_url = await db.get_setting(SLACK_WEBHOOK_URL_KEY)
    if not webhook_url:
        _LOGGER.debug("Slack webhook URL not configured")
        return None

    try:
        resp = await client.post(webhook_url, json={"text": message})
    except httpx.HTTPError as exc:
        return await _record(SLACK, "webhook", message, f"Slack request failed: {exc}")

    if resp.is_success:
        return await _record(SLACK, "webhook", message, None)
    return await _record(
        SLACK, "webhook", message, f"Slack notification failed with status: {resp.status_code}"
    )


async def _record(channel: str, recipient: str, message: str, error: Optional[str]) -> str:
    status = "failed" if error else "success"
    if error:
        _LOGGER.error("%s: %s", channel, error)
    else:
        _LOGGER.info("%s notification sent to %s", channel, recipient)
    try:
        await db.insert_notification_log(channel, recipient, message, status, error)
    except Exception:  # noqa: BLE001
        _LOGGER.exception("Failed to log %s notification", channel)
    return status
