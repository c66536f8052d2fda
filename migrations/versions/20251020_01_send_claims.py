"""send claims: claimed_until on scheduled_messages and calendar_events

Revision ID: 20251020_01
Revises: 20251018_01
Create Date: 2025-10-20
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20251020_01"
down_revision = "20251018_01"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column(
        "scheduled_messages",
        sa.Column("claimed_until", sa.DateTime(timezone=True), nullable=True),
    )
    op.add_column(
        "calendar_events",
        sa.Column("claimed_until", sa.DateTime(timezone=True), nullable=True),
    )


def downgrade() -> None:
    op.drop_column("calendar_events", "claimed_until")
    op.drop_column("scheduled_messages", "claimed_until")
