"""create webhook events table

Revision ID: 20261001_create_webhook_events
Revises:
Create Date: 2026-10-01 09:00:00.000000
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20261001_create_webhook_events"
down_revision = None
branch_labels = None
depends_on = None

webhook_event_status = sa.Enum(
    "pending",
    "processing",
    "complete",
    "failed",
    name="webhook_event_status",
)


def upgrade() -> None:
    op.create_table(
        "webhook_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("idempotency_key", sa.String(length=255), nullable=False),
        sa.Column("event_type", sa.String(length=100), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("status", webhook_event_status, nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("idempotency_key", name="uq_webhook_events_idempotency_key"),
    )
    op.create_index("ix_webhook_events_status_created", "webhook_events", ["status", "created_at"])
    op.create_index("ix_webhook_events_status_updated", "webhook_events", ["status", "updated_at"])


def downgrade() -> None:
    op.drop_index("ix_webhook_events_status_updated", table_name="webhook_events")
    op.drop_index("ix_webhook_events_status_created", table_name="webhook_events")
    op.drop_table("webhook_events")
    webhook_event_status.drop(op.get_bind(), checkfirst=True)
