"""initial schema: users, messages, scheduled messages, calendar, notification log, settings

Revision ID: 20251018_01
Revises: None
Create Date: 2025-10-18
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20251018_01"
down_revision = None
branch_labels = None
depends_on = None

TS = sa.DateTime(timezone=True)


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("line_user_id", sa.String(length=64), nullable=False),
        sa.Column("display_name", sa.String(length=255), nullable=True),
        sa.Column("picture_url", sa.Text(), nullable=True),
        sa.Column("status_message", sa.Text(), nullable=True),
        sa.Column("created_at", TS, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", TS, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_users_line_user_id", "users", ["line_user_id"], unique=True)

    op.create_table(
        "messages",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "line_user_id", sa.String(length=64),
            sa.ForeignKey("users.line_user_id"), nullable=False,
        ),
        sa.Column("message_type", sa.String(length=16), nullable=False),
        sa.Column("message_text", sa.Text(), nullable=True),
        sa.Column("message_data", sa.JSON(), nullable=True),
        sa.Column("timestamp", TS, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_messages_line_user_id", "messages", ["line_user_id"])

    op.create_table(
        "scheduled_messages",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("line_user_id", sa.String(length=64), nullable=True),
        sa.Column("message_text", sa.Text(), nullable=False),
        sa.Column("schedule_time", sa.String(length=64), nullable=False),
        sa.Column("cron_expression", sa.String(length=128), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("sent_at", TS, nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", TS, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", TS, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_scheduled_messages_status", "scheduled_messages", ["status"])
    op.create_index("ix_scheduled_messages_schedule_time", "scheduled_messages", ["schedule_time"])

    op.create_table(
        "calendar_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("line_user_id", sa.String(length=64), nullable=False),
        sa.Column("event_title", sa.String(length=255), nullable=False),
        sa.Column("event_description", sa.Text(), nullable=True),
        sa.Column("event_time", TS, nullable=False),
        sa.Column("reminder_sent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", TS, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", TS, nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_calendar_events_line_user_id", "calendar_events", ["line_user_id"])
    op.create_index("ix_calendar_events_event_time", "calendar_events", ["event_time"])

    op.create_table(
        "notification_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("notification_type", sa.String(length=32), nullable=False),
        sa.Column("recipient", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("sent_at", TS, nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "settings",
        sa.Column("key", sa.String(length=128), primary_key=True),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_at", TS, nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", TS, nullable=False, server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("settings")
    op.drop_table("notification_logs")
    op.drop_table("calendar_events")
    op.drop_table("scheduled_messages")
    op.drop_index("ix_messages_line_user_id", table_name="messages")
    op.drop_table("messages")
    op.drop_index("ix_users_line_user_id", table_name="users")
    op.drop_table("users")
