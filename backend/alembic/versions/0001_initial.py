"""initial

Revision ID: 0001
Revises: 
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(length=150), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("role", sa.Enum("ADMIN", "CLIENT", name="role"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_accounts_id", "accounts", ["id"])
    op.create_index("ix_accounts_username", "accounts", ["username"], unique=True)

    op.create_table(
        "provider_credentials",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("location_id", sa.String(length=128)),
        sa.Column("access_token", sa.Text(), nullable=False),
        sa.Column("refresh_token", sa.Text()),
        sa.Column("token_expires_at", sa.DateTime(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "account_billing",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("calls_reset_at", sa.DateTime()),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "agents",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("external_agent_id", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=255)),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_agents_id", "agents", ["id"])
    op.create_index("ix_agents_external_agent_id", "agents", ["external_agent_id"], unique=True)

    op.create_table(
        "agent_assignments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("agent_id", sa.Integer(), sa.ForeignKey("agents.id", ondelete="CASCADE"), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("account_id", "agent_id", name="uq_agent_assignment"),
    )
    op.create_index("ix_agent_assignments_account_id", "agent_assignments", ["account_id"])

    op.create_table(
        "calls",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("external_call_id", sa.String(length=128), nullable=False),
        sa.Column("agent_id", sa.Integer(), sa.ForeignKey("agents.id", ondelete="SET NULL")),
        sa.Column("agent_external_id", sa.String(length=128)),
        sa.Column("direction", sa.Enum("INBOUND", "OUTBOUND", name="calldirection"), nullable=False),
        sa.Column("contact_name", sa.String(length=255)),
        sa.Column("from_number", sa.String(length=64)),
        sa.Column("to_number", sa.String(length=64)),
        sa.Column("status", sa.String(length=64)),
        sa.Column("duration_seconds", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("cost", sa.Numeric(12, 4), nullable=False, server_default="0"),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.Column("summary", sa.Text()),
        sa.Column("transcript", sa.Text()),
        sa.Column("recording_reference", sa.String(length=1024)),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("raw_payload", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("account_id", "external_call_id", name="uq_calls_account_external"),
    )
    op.create_index("ix_calls_id", "calls", ["id"])
    op.create_index("ix_calls_account_id", "calls", ["account_id"])
    op.create_index("ix_calls_started_at", "calls", ["started_at"])

    op.create_table(
        "deleted_call_tombstones",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("external_call_id", sa.String(length=128), nullable=False),
        sa.Column("deleted_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("account_id", "external_call_id", name="uq_tombstone_account_external"),
    )
    op.create_index("ix_deleted_call_tombstones_account_id", "deleted_call_tombstones", ["account_id"])

    op.create_table(
        "sync_runs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False),
        sa.Column("kind", sa.Enum("MANUAL", "AUTO", "DIAGNOSTIC", name="synckind"), nullable=False),
        sa.Column(
            "status",
            sa.Enum("IN_PROGRESS", "SUCCESS", "PARTIAL", "FAILED", name="syncstatus"),
            nullable=False,
        ),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime()),
        sa.Column("duration_ms", sa.Integer()),
        sa.Column("request_params", sa.JSON(), nullable=False),
        sa.Column("response_summary", sa.JSON(), nullable=False),
        sa.Column("processing_summary", sa.JSON(), nullable=False),
        sa.Column("sampled_skipped_items", sa.JSON(), nullable=False),
        sa.Column("error_details", sa.JSON()),
    )
    op.create_index("ix_sync_runs_id", "sync_runs", ["id"])
    op.create_index("ix_sync_runs_account_id", "sync_runs", ["account_id"])
    op.create_index("ix_sync_runs_started_at", "sync_runs", ["started_at"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("account_id", sa.Integer()),
        sa.Column("action", sa.String(length=120), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("message", sa.String(length=255)),
        sa.Column("details", sa.JSON()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_index("ix_sync_runs_started_at", table_name="sync_runs")
    op.drop_index("ix_sync_runs_account_id", table_name="sync_runs")
    op.drop_index("ix_sync_runs_id", table_name="sync_runs")
    op.drop_table("sync_runs")
    op.drop_index("ix_deleted_call_tombstones_account_id", table_name="deleted_call_tombstones")
    op.drop_table("deleted_call_tombstones")
    op.drop_index("ix_calls_started_at", table_name="calls")
    op.drop_index("ix_calls_account_id", table_name="calls")
    op.drop_index("ix_calls_id", table_name="calls")
    op.drop_table("calls")
    op.drop_index("ix_agent_assignments_account_id", table_name="agent_assignments")
    op.drop_table("agent_assignments")
    op.drop_index("ix_agents_external_agent_id", table_name="agents")
    op.drop_index("ix_agents_id", table_name="agents")
    op.drop_table("agents")
    op.drop_table("account_billing")
    op.drop_table("provider_credentials")
    op.drop_index("ix_accounts_username", table_name="accounts")
    op.drop_index("ix_accounts_id", table_name="accounts")
    op.drop_table("accounts")
    sa.Enum(name="syncstatus").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="synckind").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="calldirection").drop(op.get_bind(), checkfirst=True)
    sa.Enum(name="role").drop(op.get_bind(), checkfirst=True)
