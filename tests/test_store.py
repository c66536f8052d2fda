from datetime import datetime, timedelta, timezone

import pytest

import db


@pytest.mark.asyncio
async def test_upsert_user_is_last_write_wins_on_name(store):
    await db.upsert_user("U1")
    await db.upsert_user("U1", display_name="Alice")
    await db.upsert_user("U1")  # later event without a name keeps the known one
    await db.upsert_user("U1", display_name="Alice B.")

    users = await db.list_users()
    assert len(users) == 1
    assert users[0].display_name == "Alice B."


@pytest.mark.asyncio
async def test_scheduled_status_flip_is_compare_and_set(store):
    mid = await db.insert_scheduled_message("hi", "2025-01-01T00:00:00Z", line_user_id="U1")

    assert await db.transition_scheduled_message(mid, "sent") is True
    assert await db.transition_scheduled_message(mid, "failed", error="late") is False
    assert await db.cancel_scheduled_message(mid) is False

    row = await db.get_scheduled_message(mid)
    assert row.status == "sent"
    assert row.error_message is None


@pytest.mark.asyncio
async def test_unknown_status_and_message_type_are_rejected(store):
    with pytest.raises(ValueError):
        await db.transition_scheduled_message(1, "exploded")
    with pytest.raises(ValueError):
        await db.insert_message("U1", "hologram")


@pytest.mark.asyncio
async def test_reminder_flag_flips_once(store):
    when = datetime.now(timezone.utc) + timedelta(hours=1)
    eid = await db.insert_calendar_event("U1", "Call", when)

    assert await db.mark_reminder_sent(eid) is True
    assert await db.mark_reminder_sent(eid) is False
    assert (await db.get_calendar_event(eid)).reminder_sent is True


@pytest.mark.asyncio
async def test_settings_upsert(store):
    assert await db.get_setting("slack_webhook_url") is None
    await db.set_setting("slack_webhook_url", "https://a", "alerts")
    await db.set_setting("slack_webhook_url", "https://b")

    assert await db.get_setting("slack_webhook_url") == "https://b"
    (row,) = await db.list_settings()
    assert row.description == "alerts"


def test_missing_database_url_raises(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_PUBLIC_URL", raising=False)
    with pytest.raises(RuntimeError, match="DATABASE_URL"):
        db.db._build_url()


def test_postgres_url_gets_async_driver(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "postgres://u:p@host:5432/bridge")
    assert db.db._build_url() == "postgresql+asyncpg://u:p@host:5432/bridge"


@pytest.mark.asyncio
async def test_send_claim_is_exclusive_until_lease_lapses(store):
    now = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
    lease = timedelta(minutes=5)
    mid = await db.insert_scheduled_message("hi", "2025-01-01T00:00:00Z", line_user_id="U1")

    assert await db.claim_scheduled_message(mid, now, lease) is True
    assert await db.claim_scheduled_message(mid, now + timedelta(minutes=1), lease) is False
    # an abandoned hold can be taken over once it lapses
    assert await db.claim_scheduled_message(mid, now + timedelta(minutes=6), lease) is True

    assert await db.cancel_scheduled_message(mid) is True
    assert await db.claim_scheduled_message(mid, now + timedelta(hours=1), lease) is False


@pytest.mark.asyncio
async def test_released_event_can_be_claimed_again(store):
    now = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
    lease = timedelta(minutes=5)
    eid = await db.insert_calendar_event("U1", "Call", now + timedelta(hours=1))

    assert await db.claim_calendar_event(eid, now, lease) is True
    assert await db.claim_calendar_event(eid, now, lease) is False
    await db.release_calendar_event(eid)
    assert await db.claim_calendar_event(eid, now, lease) is True

    assert await db.mark_reminder_sent(eid) is True
    await db.release_calendar_event(eid)
    assert await db.claim_calendar_event(eid, now, lease) is False


@pytest.mark.asyncio
async def test_user_with_messages_is_not_deleted(store):
    await db.upsert_user("U1")
    await db.upsert_user("U2")
    await db.insert_message("U2", "text", text="hello")

    assert await db.delete_user("U1") is True
    assert await db.get_user("U1") is None
    assert await db.delete_user("U2") is False
    assert await db.delete_user("nobody") is False
