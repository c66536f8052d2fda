import pytest
from celery.schedules import crontab

from app.celery_app import celery_app, cron_schedule
from app.workers import scheduler
from config import settings


def test_two_independent_beat_entries():
    beat = celery_app.conf.beat_schedule
    assert beat["dispatch-scheduled-messages"]["task"] == scheduler.check_scheduled_messages.name
    assert beat["check-calendar-reminders"]["task"] == scheduler.check_calendar_reminders.name
    assert beat["dispatch-scheduled-messages"]["schedule"] == cron_schedule(settings.MESSAGE_CHECK_CRON)
    assert beat["check-calendar-reminders"]["schedule"] == cron_schedule(settings.REMINDER_CHECK_CRON)


def test_cron_schedule_parses_five_fields():
    assert cron_schedule("0 9 * * 1") == crontab(minute="0", hour="9", day_of_week="1")
    with pytest.raises(ValueError):
        cron_schedule("* * *")


def test_failing_tick_is_logged_not_raised(monkeypatch, caplog):
    async def explode():
        raise RuntimeError("store unreachable")

    monkeypatch.setattr(scheduler, "dispatch_scheduled_messages", explode)

    result = scheduler.check_scheduled_messages.apply()

    assert result.successful()
    assert "scheduled-messages tick failed" in caplog.text


def test_ticks_run_their_own_engine(monkeypatch):
    ran = []

    async def fake_messages():
        ran.append("messages")

    async def fake_reminders():
        ran.append("reminders")

    monkeypatch.setattr(scheduler, "dispatch_scheduled_messages", fake_messages)
    monkeypatch.setattr(scheduler, "send_calendar_reminders", fake_reminders)

    scheduler.check_calendar_reminders.apply()
    scheduler.check_scheduled_messages.apply()
    scheduler.check_calendar_reminders.apply()

    assert ran == ["reminders", "messages", "reminders"]


def test_queued_ticks_expire_and_are_fetched_one_at_a_time():
    beat = celery_app.conf.beat_schedule
    assert beat["dispatch-scheduled-messages"]["options"]["expires"] == settings.MESSAGE_CHECK_EXPIRES
    assert beat["check-calendar-reminders"]["options"]["expires"] == settings.REMINDER_CHECK_EXPIRES
    assert celery_app.conf.worker_prefetch_multiplier == 1
