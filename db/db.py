"""
Async DB helpers for the LINE admin bridge.
Uses SQLAlchemy 2.0 + asyncpg driver – no raw SQL strings in app code.

Every helper opens its own short session and issues single-row statements;
status and flag flips are compare-and-set updates so overlapping ticks or an
admin cancel can never flip the same row twice.
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Optional

from sqlalchemy import (
    JSON, Boolean, DateTime, ForeignKey, String, Text, delete, func, or_, select, update
)
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import (
    DeclarativeBase, Mapped, mapped_column
)
from sqlalchemy.ext.asyncio import (
    create_async_engine, async_sessionmaker, AsyncEngine, AsyncSession
)

from app.utils.dates import ensure_aware_utc, utcnow

# ──────────────────────────────────────────────────────────────────────
# 1. Declarative metadata
# ──────────────────────────────────────────────────────────────────────
class Base(DeclarativeBase):
    pass

# ──────────────────────────────────────────────────────────────────────
# 2. Lazy engine / session factory
# ──────────────────────────────────────────────────────────────────────
_engine: AsyncEngine | None = None
_session_maker: async_sessionmaker[AsyncSession] | None = None

def _build_url() -> str:
    url = os.getenv("DATABASE_URL") or os.getenv("DATABASE_PUBLIC_URL")
    if not url:
        raise RuntimeError("DATABASE_URL not set")
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+asyncpg://", 1)
    elif url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url

def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        url = _build_url()
        if url.startswith("sqlite"):
            _engine = create_async_engine(url)
        else:
            _engine = create_async_engine(url, pool_size=5, max_overflow=5)
    return _engine

@asynccontextmanager
async def get_session() -> AsyncIterator[AsyncSession]:
    global _session_maker
    if _session_maker is None:
        _session_maker = async_sessionmaker(get_engine(), expire_on_commit=False)
    async with _session_maker() as session:
        yield session

# ──────────────────────────────────────────────────────────────────────
# 3. ORM models
# ──────────────────────────────────────────────────────────────────────
AwareDateTime = DateTime(timezone=True)


class User(Base):
    __tablename__ = "users"

    id:             Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    line_user_id:   Mapped[str] = mapped_column(String(64), unique=True, index=True)
    display_name:   Mapped[str | None] = mapped_column(String(255))
    picture_url:    Mapped[str | None] = mapped_column(Text)
    status_message: Mapped[str | None] = mapped_column(Text)
    created_at:     Mapped[datetime] = mapped_column(AwareDateTime, default=utcnow)
    updated_at:     Mapped[datetime] = mapped_column(AwareDateTime, default=utcnow, onupdate=utcnow)


class Message(Base):
    __tablename__ = "messages"

    id:           Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    line_user_id: Mapped[str] = mapped_column(ForeignKey("users.line_user_id"), index=True)
    message_type: Mapped[str] = mapped_column(String(16))
    message_text: Mapped[str | None] = mapped_column(Text)
    message_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    timestamp:    Mapped[datetime] = mapped_column(AwareDateTime, default=utcnow)


class ScheduledMessage(Base):
    __tablename__ = "scheduled_messages"

    id:              Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    line_user_id:    Mapped[str | None] = mapped_column(String(64))  # None → broadcast
    message_text:    Mapped[str] = mapped_column(Text)
    schedule_time:   Mapped[str] = mapped_column(String(64), index=True)  # ISO-8601, verbatim
    cron_expression: Mapped[str | None] = mapped_column(String(128))
    status:          Mapped[str] = mapped_column(String(16), default="pending", index=True)
    claimed_until:   Mapped[datetime | None] = mapped_column(AwareDateTime)
    sent_at:         Mapped[datetime | None] = mapped_column(AwareDateTime)
    error_message:   Mapped[str | None] = mapped_column(Text)
    created_at:      Mapped[datetime] = mapped_column(AwareDateTime, default=utcnow)
    updated_at:      Mapped[datetime] = mapped_column(AwareDateTime, default=utcnow, onupdate=utcnow)


class CalendarEvent(Base):
    __tablename__ = "calendar_events"

    id:                Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    line_user_id:      Mapped[str] = mapped_column(String(64), index=True)
    event_title:       Mapped[str] = mapped_column(String(255))
    event_description: Mapped[str | None] = mapped_column(Text)
    event_time:        Mapped[datetime] = mapped_column(AwareDateTime, index=True)
    reminder_sent:     Mapped[bool] = mapped_column(Boolean, default=False)
    claimed_until:     Mapped[datetime | None] = mapped_column(AwareDateTime)
    created_at:        Mapped[datetime] = mapped_column(AwareDateTime, default=utcnow)
    updated_at:        Mapped[datetime] = mapped_column(AwareDateTime, default=utcnow, onupdate=utcnow)


class NotificationLog(Base):
    __tablename__ = "notification_logs"

    id:                Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    notification_type: Mapped[str] = mapped_column(String(32))
    recipient:         Mapped[str] = mapped_column(String(255))
    message:           Mapped[str] = mapped_column(Text)
    status:            Mapped[str] = mapped_column(String(16))
    error_message:     Mapped[str | None] = mapped_column(Text)
    sent_at:           Mapped[datetime] = mapped_column(AwareDateTime, default=utcnow)


class Setting(Base):
    __tablename__ = "settings"

    key:         Mapped[str] = mapped_column(String(128), primary_key=True)
    value:       Mapped[str] = mapped_column(Text)
    description: Mapped[str | None] = mapped_column(Text)
    created_at:  Mapped[datetime] = mapped_column(AwareDateTime, default=utcnow)
    updated_at:  Mapped[datetime] = mapped_column(AwareDateTime, default=utcnow, onupdate=utcnow)


SCHEDULED_STATUSES = ("pending", "sent", "failed", "cancelled")
MESSAGE_TYPES = ("text", "image", "video", "audio", "location", "sticker")

# ──────────────────────────────────────────────────────────────────────
# 4. DDL helper (run once at startup or from Alembic)
# ──────────────────────────────────────────────────────────────────────
async def create_all():
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def _dialect_insert(model):
    """INSERT construct that supports ON CONFLICT for the active backend."""
    if get_engine().dialect.name == "sqlite":
        return sqlite_insert(model)
    return pg_insert(model)

# ──────────────────────────────────────────────────────────────────────
# 5. CRUD helpers
# ──────────────────────────────────────────────────────────────────────

# 5.1 Users ------------------------------------------------------------
async def upsert_user(line_user_id: str, display_name: str | None = None) -> None:
    """Create the user on first contact, refresh it on every later one.

    A supplied display name overwrites the stored one; ``None`` keeps it.
    """
    now = utcnow()
    stmt = _dialect_insert(User).values(
        line_user_id=line_user_id,
        display_name=display_name,
        created_at=now,
        updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[User.line_user_id],
        set_={
            "display_name": func.coalesce(stmt.excluded.display_name, User.display_name),
            "updated_at": now,
        },
    )
    async with get_session() as s:
        await s.execute(stmt)
        await s.commit()


async def get_user(line_user_id: str) -> User | None:
    async with get_session() as s:
        res = await s.execute(select(User).where(User.line_user_id == line_user_id))
        return res.scalar_one_or_none()


async def list_users() -> list[User]:
    async with get_session() as s:
        res = await s.execute(select(User).order_by(User.created_at.desc()))
        return list(res.scalars())


async def delete_user(line_user_id: str) -> bool:
    """Remove a user with no stored messages; ``False`` otherwise.

    Message history is append-only, so a user it references is kept.
    """
    has_messages = select(Message.id).where(Message.line_user_id == line_user_id).exists()
    stmt = (
        delete(User)
        .where(User.line_user_id == line_user_id, ~has_messages)
        .execution_options(synchronize_session=False)
    )
    async with get_session() as s:
        res = await s.execute(stmt)
        await s.commit()
        return res.rowcount == 1


# 5.2 Inbound messages -------------------------------------------------
async def insert_message(
    line_user_id: str,
    message_type: str,
    text: str | None = None,
    data: dict[str, Any] | None = None,
) -> int:
    if message_type not in MESSAGE_TYPES:
        raise ValueError(f"unknown message type {message_type!r}")
    msg = Message(
        line_user_id=line_user_id,
        message_type=message_type,
        message_text=text,
        message_data=data,
    )
    async with get_session() as s:
        s.add(msg)
        await s.commit()
        return msg.id


async def list_messages(limit: int = 50, line_user_id: str | None = None) -> list[Message]:
    async with get_session() as s:
        stmt = select(Message)
        if line_user_id:
            stmt = stmt.where(Message.line_user_id == line_user_id)
        stmt = stmt.order_by(Message.timestamp.desc(), Message.id.desc()).limit(limit)
        res = await s.execute(stmt)
        return list(res.scalars())


# 5.3 Scheduled messages -----------------------------------------------
async def insert_scheduled_message(
    message_text: str,
    schedule_time: str,
    line_user_id: str | None = None,
    cron_expression: str | None = None,
    status: str = "pending",
) -> int:
    row = ScheduledMessage(
        line_user_id=line_user_id,
        message_text=message_text,
        schedule_time=schedule_time,
        cron_expression=cron_expression,
        status=status,
    )
    async with get_session() as s:
        s.add(row)
        await s.commit()
        return row.id


async def get_scheduled_message(mid: int) -> ScheduledMessage | None:
    async with get_session() as s:
        return await s.get(ScheduledMessage, mid)


async def list_scheduled_messages(status: str | None = None) -> list[ScheduledMessage]:
    async with get_session() as s:
        stmt = select(ScheduledMessage)
        if status:
            stmt = stmt.where(ScheduledMessage.status == status)
        stmt = stmt.order_by(ScheduledMessage.schedule_time, ScheduledMessage.id)
        res = await s.execute(stmt)
        return list(res.scalars())


async def list_pending_scheduled_messages() -> list[ScheduledMessage]:
    return await list_scheduled_messages(status="pending")


async def transition_scheduled_message(
    mid: int,
    status: str,
    error: str | None = None,
    expected: str = "pending",
) -> bool:
    """Compare-and-set the status of one row.

    Returns ``True`` only when the row was still in ``expected``.
    """
    if status not in SCHEDULED_STATUSES:
        raise ValueError(f"unknown status {status!r}")
    now = utcnow()
    values: dict[str, Any] = {"status": status, "error_message": error, "updated_at": now}
    if status == "sent":
        values["sent_at"] = now
    stmt = (
        update(ScheduledMessage)
        .where(ScheduledMessage.id == mid, ScheduledMessage.status == expected)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    async with get_session() as s:
        res = await s.execute(stmt)
        await s.commit()
        return res.rowcount == 1


async def cancel_scheduled_message(mid: int) -> bool:
    return await transition_scheduled_message(mid, "cancelled")


async def claim_scheduled_message(mid: int, now: datetime, lease: timedelta) -> bool:
    """Hold a pending row for one sender until ``now + lease``.

    ``False`` when the row is no longer pending or another tick holds it.
    """
    now = ensure_aware_utc(now)
    stmt = (
        update(ScheduledMessage)
        .where(
            ScheduledMessage.id == mid,
            ScheduledMessage.status == "pending",
            or_(ScheduledMessage.claimed_until.is_(None), ScheduledMessage.claimed_until < now),
        )
        .values(claimed_until=now + lease)
        .execution_options(synchronize_session=False)
    )
    async with get_session() as s:
        res = await s.execute(stmt)
        await s.commit()
        return res.rowcount == 1


# 5.4 Calendar events --------------------------------------------------
async def insert_calendar_event(
    line_user_id: str,
    event_title: str,
    event_time: datetime,
    event_description: str | None = None,
) -> int:
    row = CalendarEvent(
        line_user_id=line_user_id,
        event_title=event_title,
        event_description=event_description,
        event_time=ensure_aware_utc(event_time),
        reminder_sent=False,
    )
    async with get_session() as s:
        s.add(row)
        await s.commit()
        return row.id


async def get_calendar_event(eid: int) -> CalendarEvent | None:
    async with get_session() as s:
        return await s.get(CalendarEvent, eid)


async def list_calendar_events(line_user_id: str | None = None) -> list[CalendarEvent]:
    async with get_session() as s:
        stmt = select(CalendarEvent)
        if line_user_id:
            stmt = stmt.where(CalendarEvent.line_user_id == line_user_id)
        res = await s.execute(stmt.order_by(CalendarEvent.event_time))
        return list(res.scalars())


async def fetch_due_calendar_events(now: datetime, window: timedelta) -> list[CalendarEvent]:
    """Events without a reminder whose time falls inside ``[now, now + window]``."""
    start = ensure_aware_utc(now)
    end = start + window
    async with get_session() as s:
        stmt = (
            select(CalendarEvent)
            .where(
                CalendarEvent.reminder_sent.is_(False),
                CalendarEvent.event_time >= start,
                CalendarEvent.event_time <= end,
            )
            .order_by(CalendarEvent.event_time, CalendarEvent.id)
        )
        res = await s.execute(stmt)
        return list(res.scalars())


async def claim_calendar_event(eid: int, now: datetime, lease: timedelta) -> bool:
    """Hold an unreminded event for one sender until ``now + lease``."""
    now = ensure_aware_utc(now)
    stmt = (
        update(CalendarEvent)
        .where(
            CalendarEvent.id == eid,
            CalendarEvent.reminder_sent.is_(False),
            or_(CalendarEvent.claimed_until.is_(None), CalendarEvent.claimed_until < now),
        )
        .values(claimed_until=now + lease)
        .execution_options(synchronize_session=False)
    )
    async with get_session() as s:
        res = await s.execute(stmt)
        await s.commit()
        return res.rowcount == 1


async def release_calendar_event(eid: int) -> None:
    stmt = (
        update(CalendarEvent)
        .where(CalendarEvent.id == eid)
        .values(claimed_until=None)
        .execution_options(synchronize_session=False)
    )
    async with get_session() as s:
        await s.execute(stmt)
        await s.commit()


async def mark_reminder_sent(eid: int) -> bool:
    """Flip ``reminder_sent`` false → true; ``False`` if it was already set."""
    stmt = (
        update(CalendarEvent)
        .where(CalendarEvent.id == eid, CalendarEvent.reminder_sent.is_(False))
        .values(reminder_sent=True, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    async with get_session() as s:
        res = await s.execute(stmt)
        await s.commit()
        return res.rowcount == 1


# 5.5 Notification log -------------------------------------------------
async def insert_notification_log(
    notification_type: str,
    recipient: str,
    message: str,
    status: str,
    error_message: str | None = None,
) -> None:
    async with get_session() as s:
        s.add(NotificationLog(
            notification_type=notification_type,
            recipient=recipient,
            message=message,
            status=status,
            error_message=error_message,
        ))
        await s.commit()


async def list_notification_logs(limit: int = 100) -> list[NotificationLog]:
    async with get_session() as s:
        stmt = select(NotificationLog).order_by(NotificationLog.id.desc()).limit(limit)
        res = await s.execute(stmt)
        return list(res.scalars())


# 5.6 Settings ---------------------------------------------------------
async def get_setting(key: str) -> Optional[str]:
    async with get_session() as s:
        row = await s.get(Setting, key)
        return row.value if row else None


async def set_setting(key: str, value: str, description: str | None = None) -> None:
    now = utcnow()
    stmt = _dialect_insert(Setting).values(
        key=key, value=value, description=description, created_at=now, updated_at=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[Setting.key],
        set_={"value": stmt.excluded.value, "updated_at": now},
    )
    async with get_session() as s:
        await s.execute(stmt)
        await s.commit()


async def list_settings() -> list[Setting]:
    async with get_session() as s:
        res = await s.execute(select(Setting).order_by(Setting.key))
        return list(res.scalars())


async def dispose_engine():
    global _engine, _session_maker
    if _engine is not None:
        await _engine.dispose()
        _engine = None
    _session_maker = None
