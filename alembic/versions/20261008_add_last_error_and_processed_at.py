"""add last_error and processed_at to webhook events

Revision ID: 20261008_add_last_error_and_processed_at
Revises: 20261001_create_webhook_events
Create Date: 2026-10-08 10:30:00.000000
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "20261008_add_last_error_and_processed_at"
down_revision = "20261001_create_webhook_events"
branch_labels = None
depends_on = None


def upgrade() -> None:
    with op.batch_alter_table("webhook_events") as batch_op:
        batch_op.add_column(sa.Column("last_error", sa.Text(), nullable=True))
        batch_op.add_column(sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True))


def downgrade() -> None:
    with op.batch_alter_table("webhook_events") as batch_op:
        batch_op.drop_column("processed_at")
        batch_op.drop_column("last_error")
