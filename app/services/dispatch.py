"""Scheduled-message dispatch: one tick of the per-minute message check.

Rows move pending → sent | failed exactly once. A row whose ``schedule_time``
does not parse is skipped with a warning and stays pending. Failed rows are
never re-armed automatically.

A row is claimed for ``SEND_LEASE_SECONDS`` before it is sent, so two
overlapping ticks push it at most once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

import httpx

from app.services.line_client import DeliveryError, LineClient
from app.utils.dates import ensure_aware_utc, parse_iso8601, utcnow
from config import settings
import db

_LOGGER = logging.getLogger(__name__)


@dataclass
class DispatchReport:
    sent: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)
    malformed: List[int] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)  # not pending or held by another tick
    aborted: Optional[str] = None


async def dispatch_scheduled_messages(
    now: Optional[datetime] = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> DispatchReport:
    now = ensure_aware_utc(now) if now else utcnow()
    report = DispatchReport()

    due = []
    for row in await db.list_pending_scheduled_messages():
        try:
            at = parse_iso8601(row.schedule_time)
        except ValueError:
            _LOGGER.warning(
                "Invalid schedule time format for message %s: %r", row.id, row.schedule_time
            )
            report.malformed.append(row.id)
            continue
        if at <= now:
            due.append((at, row))

    if not due:
        return report

    # The store orders by the raw string; offsets can differ, so order by instant.
    due.sort(key=lambda pair: pair[0])

    client = await LineClient.from_store(transport=transport)
    if client is None:
        report.aborted = "LINE channel access token not configured"
        _LOGGER.error("%s; %d due message(s) left pending", report.aborted, len(due))
        return report

    async with client:
        for _, row in due:
            try:
                await _deliver(client, row, now, report)
            except Exception:  # noqa: BLE001
                _LOGGER.exception("Unexpected error dispatching scheduled message %s", row.id)

    _LOGGER.info(
        "Scheduled message tick: %d sent, %d failed, %d malformed, %d skipped",
        len(report.sent), len(report.failed), len(report.malformed), len(report.skipped),
    )
    return report


async def _deliver(client: LineClient, row, now: datetime, report: DispatchReport) -> None:
    # The claim also fails for rows cancelled since the scan.
    lease = timedelta(seconds=settings.SEND_LEASE_SECONDS)
    if not await db.claim_scheduled_message(row.id, now, lease):
        _LOGGER.info("Scheduled message %s is not pending or already being sent, skipping", row.id)
        report.skipped.append(row.id)
        return

    try:
        if row.line_user_id:
            await client.push(row.line_user_id, [row.message_text])
        else:
            await client.broadcast([row.message_text])
    except DeliveryError as exc:
        _LOGGER.error("Failed to send scheduled message %s: %s", row.id, exc)
        if await db.transition_scheduled_message(row.id, "failed", error=str(exc)):
            report.failed.append(row.id)
        else:
            _LOGGER.warning("Scheduled message %s changed state during send", row.id)
        return

    if await db.transition_scheduled_message(row.id, "sent"):
        report.sent.append(row.id)
        _LOGGER.info("Scheduled message %s sent", row.id)
    else:
        _LOGGER.warning("Scheduled message %s changed state during send", row.id)
