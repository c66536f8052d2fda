"""Administrative HTTP surface: scheduling, calendar, settings and direct sends."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator

from app.services.line_client import DeliveryError, LineClient
from app.utils.dates import parse_iso8601
from config import settings
import db


async def require_admin(x_admin_token: Optional[str] = Header(default=None)) -> None:
    if settings.ADMIN_API_TOKEN and x_admin_token != settings.ADMIN_API_TOKEN:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid admin token")


router = APIRouter(prefix="/admin", dependencies=[Depends(require_admin)])


# ──────────────────────────────
# Payloads
# ──────────────────────────────


class ScheduledMessageCreate(BaseModel):
    line_user_id: Optional[str] = None  # omitted → broadcast
    message_text: str = Field(min_length=1)
    schedule_time: str
    cron_expression: Optional[str] = None

    @field_validator("schedule_time")
    def _parseable(cls, v):  # noqa: N805
        parse_iso8601(v)
        return v.strip()


class CalendarEventCreate(BaseModel):
    line_user_id: str = Field(min_length=1)
    event_title: str = Field(min_length=1)
    event_description: Optional[str] = None
    event_time: datetime


class SettingUpdate(BaseModel):
    value: str
    description: Optional[str] = None


class PushRequest(BaseModel):
    line_user_id: str = Field(min_length=1)
    message_text: str = Field(min_length=1)


class BroadcastRequest(BaseModel):
    message_text: str = Field(min_length=1)


def _row(obj) -> Dict[str, Any]:
    return {c.key: getattr(obj, c.key) for c in obj.__table__.columns}


# ──────────────────────────────
# Users & inbound messages
# ──────────────────────────────


@router.get("/users")
async def list_users() -> List[Dict[str, Any]]:
    return [_row(u) for u in await db.list_users()]


@router.get("/users/{line_user_id}")
async def get_user(line_user_id: str) -> Dict[str, Any]:
    user = await db.get_user(line_user_id)
    if user is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "User not found")
    return _row(user)


@router.delete("/users/{line_user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(line_user_id: str) -> None:
    if await db.delete_user(line_user_id):
        return None
    if await db.get_user(line_user_id) is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "User not found")
    raise HTTPException(status.HTTP_409_CONFLICT, "User has stored messages")


@router.get("/messages")
async def list_messages(
    limit: int = Query(default=50, ge=1, le=500),
    line_user_id: Optional[str] = None,
) -> List[Dict[str, Any]]:
    return [_row(m) for m in await db.list_messages(limit=limit, line_user_id=line_user_id)]


# ──────────────────────────────
# Scheduled messages
# ──────────────────────────────


@router.post("/scheduled-messages", status_code=status.HTTP_201_CREATED)
async def create_scheduled_message(body: ScheduledMessageCreate) -> Dict[str, Any]:
    mid = await db.insert_scheduled_message(
        body.message_text,
        body.schedule_time,
        line_user_id=body.line_user_id,
        cron_expression=body.cron_expression,
    )
    return {"id": mid, "status": "pending"}


@router.get("/scheduled-messages")
async def list_scheduled_messages(status_: Optional[str] = Query(default=None, alias="status")):
    if status_ and status_ not in db.SCHEDULED_STATUSES:
        raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, f"Unknown status {status_!r}")
    return [_row(m) for m in await db.list_scheduled_messages(status=status_)]


@router.post("/scheduled-messages/{message_id}/cancel")
async def cancel_scheduled_message(message_id: int) -> Dict[str, Any]:
    if await db.cancel_scheduled_message(message_id):
        return {"id": message_id, "status": "cancelled"}
    row = await db.get_scheduled_message(message_id)
    if row is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Scheduled message not found")
    raise HTTPException(
        status.HTTP_409_CONFLICT, f"Scheduled message is already {row.status}"
    )


# ──────────────────────────────
# Calendar
# ──────────────────────────────


@router.post("/calendar-events", status_code=status.HTTP_201_CREATED)
async def create_calendar_event(body: CalendarEventCreate) -> Dict[str, Any]:
    eid = await db.insert_calendar_event(
        body.line_user_id,
        body.event_title,
        body.event_time,
        event_description=body.event_description,
    )
    return {"id": eid}


@router.get("/calendar-events")
async def list_calendar_events(line_user_id: Optional[str] = None):
    return [_row(e) for e in await db.list_calendar_events(line_user_id)]


# ──────────────────────────────
# Settings
# ──────────────────────────────


@router.get("/settings")
async def list_settings():
    return [{"key": s.key, "description": s.description} for s in await db.list_settings()]


@router.get("/settings/{key}")
async def get_setting(key: str) -> Dict[str, Any]:
    value = await db.get_setting(key)
    if value is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Setting not found")
    return {"key": key, "value": value}


@router.put("/settings/{key}")
async def put_setting(key: str, body: SettingUpdate) -> Dict[str, Any]:
    await db.set_setting(key, body.value, body.description)
    return {"key": key}


# ──────────────────────────────
# Direct sends
# ──────────────────────────────


async def _client() -> LineClient:
    client = await LineClient.from_store()
    if client is None:
        raise HTTPException(
            status.HTTP_412_PRECONDITION_FAILED, "LINE access token not configured"
        )
    return client


@router.post("/messages/push")
async def push_message(body: PushRequest) -> Dict[str, str]:
    async with await _client() as client:
        try:
            await client.push(body.line_user_id, [body.message_text])
        except DeliveryError as exc:
            raise HTTPException(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc
    return {"status": "sent"}


@router.post("/messages/broadcast")
async def broadcast_message(body: BroadcastRequest) -> Dict[str, str]:
    async with await _client() as client:
        try:
            await client.broadcast([body.message_text])
        except DeliveryError as exc:
            raise HTTPException(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc
    return {"status": "sent"}


@router.get("/notification-logs")
async def list_notification_logs(limit: int = Query(default=100, ge=1, le=1000)):
    return [_row(n) for n in await db.list_notification_logs(limit)]
