import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

import db
from app.services.dispatch import dispatch_scheduled_messages

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def _iso(dt):
    return dt.isoformat()


@pytest.mark.asyncio
async def test_due_message_is_pushed_and_marked_sent(access_token, line_api):
    mid = await db.insert_scheduled_message(
        "hello", _iso(NOW - timedelta(minutes=5)), line_user_id="U1"
    )

    report = await dispatch_scheduled_messages(NOW, transport=line_api.transport)

    assert report.sent == [mid]
    assert len(line_api.calls) == 1
    call = line_api.calls[0]
    assert call["path"] == "/v2/bot/message/push"
    assert call["json"] == {"to": "U1", "messages": [{"type": "text", "text": "hello"}]}
    assert call["auth"] == "Bearer line-token-123"

    row = await db.get_scheduled_message(mid)
    assert row.status == "sent"
    assert row.sent_at is not None
    assert row.error_message is None


@pytest.mark.asyncio
async def test_message_without_target_is_broadcast(access_token, line_api):
    await db.insert_scheduled_message("to everyone", _iso(NOW - timedelta(minutes=1)))

    await dispatch_scheduled_messages(NOW, transport=line_api.transport)

    assert [c["path"] for c in line_api.calls] == ["/v2/bot/message/broadcast"]
    assert line_api.calls[0]["json"] == {"messages": [{"type": "text", "text": "to everyone"}]}


@pytest.mark.asyncio
async def test_due_rows_go_out_in_time_order_across_offsets(access_token, line_api):
    # "20:45+09:00" sorts after "11:50Z" as text but is the earlier instant
    await db.insert_scheduled_message("second", "2025-01-01T11:50:00Z", line_user_id="U1")
    await db.insert_scheduled_message("first", "2025-01-01T20:45:00+09:00", line_user_id="U1")
    await db.insert_scheduled_message("third", "2025-01-01T11:55:00+00:00", line_user_id="U1")

    await dispatch_scheduled_messages(NOW, transport=line_api.transport)

    assert line_api.texts() == ["first", "second", "third"]


@pytest.mark.asyncio
async def test_future_rows_are_left_pending(access_token, line_api):
    mid = await db.insert_scheduled_message(
        "later", _iso(NOW + timedelta(minutes=1)), line_user_id="U1"
    )

    report = await dispatch_scheduled_messages(NOW, transport=line_api.transport)

    assert report.sent == []
    assert line_api.calls == []
    assert (await db.get_scheduled_message(mid)).status == "pending"


@pytest.mark.asyncio
async def test_malformed_schedule_time_stays_pending(access_token, line_api):
    bad = await db.insert_scheduled_message("oops", "next tuesday-ish", line_user_id="U1")
    good = await db.insert_scheduled_message(
        "fine", _iso(NOW - timedelta(minutes=1)), line_user_id="U2"
    )

    report = await dispatch_scheduled_messages(NOW, transport=line_api.transport)

    assert report.malformed == [bad]
    assert report.sent == [good]
    row = await db.get_scheduled_message(bad)
    assert row.status == "pending"
    assert row.sent_at is None
    assert row.error_message is None


@pytest.mark.asyncio
async def test_delivery_failure_is_terminal(access_token, line_api):
    line_api.fail = True
    mid = await db.insert_scheduled_message(
        "hello", _iso(NOW - timedelta(minutes=5)), line_user_id="U1"
    )

    report = await dispatch_scheduled_messages(NOW, transport=line_api.transport)

    assert report.failed == [mid]
    row = await db.get_scheduled_message(mid)
    assert row.status == "failed"
    assert "The request body has 1 error(s)" in row.error_message
    assert row.sent_at is None

    # Not re-armed: the next tick does not touch it even once the API recovers
    line_api.fail = False
    line_api.calls.clear()
    await dispatch_scheduled_messages(NOW + timedelta(minutes=1), transport=line_api.transport)
    assert line_api.calls == []
    assert (await db.get_scheduled_message(mid)).status == "failed"


@pytest.mark.asyncio
async def test_one_failure_does_not_block_later_rows(access_token, line_api, monkeypatch):
    first = await db.insert_scheduled_message("a", "2025-01-01T11:00:00Z", line_user_id="BAD")
    second = await db.insert_scheduled_message("b", "2025-01-01T11:01:00Z", line_user_id="U2")

    handle = line_api._handle

    def flaky(request):
        resp = handle(request)
        if line_api.calls[-1]["json"].get("to") == "BAD":
            return httpx.Response(400, text="invalid user")
        return resp

    monkeypatch.setattr(line_api, "_handle", flaky)

    report = await dispatch_scheduled_messages(NOW, transport=line_api.transport)

    assert report.failed == [first]
    assert report.sent == [second]


@pytest.mark.asyncio
async def test_terminal_rows_are_never_reselected(access_token, line_api):
    past = _iso(NOW - timedelta(hours=1))
    ids = [
        await db.insert_scheduled_message("s", past, line_user_id="U1", status="sent"),
        await db.insert_scheduled_message("f", past, line_user_id="U1", status="failed"),
        await db.insert_scheduled_message("c", past, line_user_id="U1", status="cancelled"),
    ]
    pending = await db.insert_scheduled_message("p", past, line_user_id="U1")

    for tick in range(3):
        await dispatch_scheduled_messages(NOW + timedelta(minutes=tick), transport=line_api.transport)

    assert line_api.texts() == ["p"]
    statuses = [(await db.get_scheduled_message(i)).status for i in ids]
    assert statuses == ["sent", "failed", "cancelled"]
    assert (await db.get_scheduled_message(pending)).status == "sent"


@pytest.mark.asyncio
async def test_missing_token_leaves_rows_pending(store, line_api):
    mid = await db.insert_scheduled_message(
        "hello", _iso(NOW - timedelta(minutes=5)), line_user_id="U1"
    )

    report = await dispatch_scheduled_messages(NOW, transport=line_api.transport)

    assert report.aborted
    assert line_api.calls == []
    assert (await db.get_scheduled_message(mid)).status == "pending"


@pytest.mark.asyncio
async def test_row_cancelled_after_scan_is_not_sent(access_token, line_api, monkeypatch):
    mid = await db.insert_scheduled_message(
        "hello", _iso(NOW - timedelta(minutes=5)), line_user_id="U1"
    )
    snapshot = await db.list_pending_scheduled_messages()
    assert await db.cancel_scheduled_message(mid)

    async def stale_scan():
        return snapshot

    monkeypatch.setattr(db, "list_pending_scheduled_messages", stale_scan)

    report = await dispatch_scheduled_messages(NOW, transport=line_api.transport)

    assert report.skipped == [mid]
    assert line_api.calls == []
    assert (await db.get_scheduled_message(mid)).status == "cancelled"


@pytest.mark.asyncio
async def test_timestamps_without_offset_are_malformed(access_token, line_api):
    naive = await db.insert_scheduled_message("a", "2025-01-01T11:00:00", line_user_id="U1")
    date_only = await db.insert_scheduled_message("b", "2025-01-01", line_user_id="U1")

    report = await dispatch_scheduled_messages(NOW, transport=line_api.transport)

    assert sorted(report.malformed) == sorted([naive, date_only])
    assert line_api.calls == []
    assert (await db.get_scheduled_message(naive)).status == "pending"
    assert (await db.get_scheduled_message(date_only)).status == "pending"


@pytest.mark.asyncio
async def test_overlapping_ticks_push_a_row_once(access_token, line_api):
    mid = await db.insert_scheduled_message(
        "hello", _iso(NOW - timedelta(minutes=5)), line_user_id="U1"
    )

    async def slow(request):
        await asyncio.sleep(0.2)
        return line_api._handle(request)

    transport = httpx.MockTransport(slow)
    first, second = await asyncio.gather(
        dispatch_scheduled_messages(NOW, transport=transport),
        dispatch_scheduled_messages(NOW, transport=transport),
    )

    assert len(line_api.calls) == 1
    assert first.sent + second.sent == [mid]
    assert first.skipped + second.skipped == [mid]
    assert (await db.get_scheduled_message(mid)).status == "sent"
