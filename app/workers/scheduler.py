"""Periodic Celery tasks driving the two dispatch engines.

Beat fires each task on its own crontab (see ``app.celery_app``). A tick
never raises: any error is logged and the next tick runs as usual.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from app.celery_app import celery_app
from app.services.calendar_reminders import send_calendar_reminders
from app.services.dispatch import dispatch_scheduled_messages
import db

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


def run_tick(name: str, engine: Callable[[], Awaitable[T]]) -> T | None:
    """Run one async engine tick to completion inside a fresh event loop.

    The engine's connection pool is bound to that loop, so it is disposed
    before the loop closes.
    """

    async def _tick():
        try:
            return await engine()
        finally:
            await db.dispose_engine()

    try:
        return asyncio.run(_tick())
    except Exception:  # noqa: BLE001
        _LOGGER.exception("%s tick failed", name)
        return None


# ---------------------------------------------------------------------------
# Celery Tasks
# ---------------------------------------------------------------------------

@celery_app.task(name="app.workers.scheduler.check_scheduled_messages", ignore_result=True)
def check_scheduled_messages():  # noqa: D401
    """Send every due scheduled message and flip its status."""
    run_tick("scheduled-messages", dispatch_scheduled_messages)


@celery_app.task(name="app.workers.scheduler.check_calendar_reminders", ignore_result=True)
def check_calendar_reminders():  # noqa: D401
    """Push reminders for calendar events starting within the window."""
    run_tick("calendar-reminders", send_calendar_reminders)
