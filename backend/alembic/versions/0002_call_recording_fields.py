"""add recording access fields to calls and agent verification time

Revision ID: 0002
Revises: 0001
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa

revision = "0002"
down_revision = "0001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column("calls", sa.Column("ended_at", sa.DateTime()))
    op.add_column("calls", sa.Column("message_id", sa.String(length=128)))
    op.add_column("calls", sa.Column("location_id", sa.String(length=128)))
    op.add_column(
        "calls",
        sa.Column("is_test_call", sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    op.add_column("agents", sa.Column("last_verified_at", sa.DateTime()))


def downgrade() -> None:
    op.drop_column("agents", "last_verified_at")
    op.drop_column("calls", "is_test_call")
    op.drop_column("calls", "location_id")
    op.drop_column("calls", "message_id")
    op.drop_column("calls", "ended_at")
