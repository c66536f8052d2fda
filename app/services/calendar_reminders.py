"""Calendar reminders: one tick of the five-minute reminder check.

``reminder_sent`` flips after a successful push and never before, so a failed
send is simply picked up again by the next tick while the event is still
inside the window. An event is claimed before its push so overlapping ticks
send it at most once.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

import httpx

from app.services.line_client import DeliveryError, LineClient
from app.utils.dates import ensure_aware_utc, utcnow
from config import settings
import db

_LOGGER = logging.getLogger(__name__)

NO_DETAILS = "No details"


@dataclass
class ReminderReport:
    sent: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)
    held: List[int] = field(default_factory=list)  # claimed by another tick
    skipped: bool = False


def _plural(n: int, unit: str) -> str:
    return f"{n} {unit}" if n == 1 else f"{n} {unit}s"


def time_until_phrase(delta: timedelta) -> str:
    """Coarse wording: whole hours when at least one remains, else minutes."""
    seconds = max(0, int(delta.total_seconds()))
    hours = seconds // 3600
    if hours >= 1:
        return f"in {_plural(hours, 'hour')}"
    return f"in {_plural(seconds // 60, 'minute')}"


def render_reminder(event, now: datetime) -> str:
    when = time_until_phrase(ensure_aware_utc(event.event_time) - ensure_aware_utc(now))
    return (
        "📅 Event reminder\n\n"
        f"\"{event.event_title}\" starts {when}.\n\n"
        f"{event.event_description or NO_DETAILS}"
    )


async def send_calendar_reminders(
    now: Optional[datetime] = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    window: Optional[timedelta] = None,
) -> ReminderReport:
    now = ensure_aware_utc(now) if now else utcnow()
    window = window or timedelta(hours=settings.REMINDER_WINDOW_HOURS)
    report = ReminderReport()

    events = await db.fetch_due_calendar_events(now, window)
    if not events:
        return report

    _LOGGER.info("Found %d calendar events needing reminders", len(events))

    client = await LineClient.from_store(transport=transport)
    if client is None:
        _LOGGER.warning("LINE channel access token not configured, skipping reminders")
        report.skipped = True
        return report

    lease = timedelta(seconds=settings.SEND_LEASE_SECONDS)
    async with client:
        for event in events:
            if not await db.claim_calendar_event(event.id, now, lease):
                _LOGGER.info("Reminder for event %s is already being sent, skipping", event.id)
                report.held.append(event.id)
                continue
            try:
                await client.push(event.line_user_id, [render_reminder(event, now)])
            except DeliveryError as exc:
                _LOGGER.error("Failed to send reminder for event %s: %s", event.id, exc)
                report.failed.append(event.id)
                await db.release_calendar_event(event.id)
                continue

            try:
                flipped = await db.mark_reminder_sent(event.id)
            except Exception:  # noqa: BLE001
                _LOGGER.exception("Reminder for event %s sent but flag not stored", event.id)
                continue
            if flipped:
                report.sent.append(event.id)
                _LOGGER.info(
                    "Sent reminder for event: %s to user %s", event.event_title, event.line_user_id
                )
            else:
                _LOGGER.warning("Reminder flag for event %s was already set", event.id)

    return report
