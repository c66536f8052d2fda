"""Celery application instance shared across the backend.

Run one worker per queue plus a single beat:
    celery -A app.celery_app worker -Q messages -n messages@%h -l info --concurrency=1
    celery -A app.celery_app worker -Q reminders -n reminders@%h -l info --concurrency=1
    celery -A app.celery_app beat -l info
"""

from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging

from app.logging_setup import configure_logging
from config import settings

BROKER_URL = settings.REDIS_URL

celery_app = Celery("line_admin_bridge", broker=BROKER_URL, backend=BROKER_URL)


def cron_schedule(expr: str) -> crontab:
    """Build a crontab from a five-field ``minute hour dom month dow`` string."""
    fields = expr.split()
    if len(fields) != 5:
        raise ValueError(f"expected 5 cron fields, got {expr!r}")
    minute, hour, day_of_month, month_of_year, day_of_week = fields
    return crontab(
        minute=minute,
        hour=hour,
        day_of_month=day_of_month,
        month_of_year=month_of_year,
        day_of_week=day_of_week,
    )


@setup_logging.connect
def _configure_worker_logging(**_kwargs):
    configure_logging()


# Global task settings
celery_app.conf.task_acks_late = True
celery_app.conf.task_reject_on_worker_lost = True
celery_app.conf.worker_prefetch_multiplier = 1
celery_app.conf.timezone = "UTC"

# One queue per periodic check
celery_app.conf.task_routes = {
    "app.workers.scheduler.check_scheduled_messages": {"queue": "messages"},
    "app.workers.scheduler.check_calendar_reminders": {"queue": "reminders"},
}

# Beat schedule: two independent periodic triggers
celery_app.conf.beat_schedule = {
    "dispatch-scheduled-messages": {
        "task": "app.workers.scheduler.check_scheduled_messages",
        "schedule": cron_schedule(settings.MESSAGE_CHECK_CRON),
        "options": {"expires": settings.MESSAGE_CHECK_EXPIRES},
    },
    "check-calendar-reminders": {
        "task": "app.workers.scheduler.check_calendar_reminders",
        "schedule": cron_schedule(settings.REMINDER_CHECK_CRON),
        "options": {"expires": settings.REMINDER_CHECK_EXPIRES},
    },
}

# --- Ensure tasks are registered ---
import app.workers.scheduler  # noqa: E402,F401
