"""Create accounts, per-account set tables, ledger and audit log

Revision ID: 0a3c5e7d9b21
Revises:
Create Date: 2026-10-17 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0a3c5e7d9b21"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _account_fk() -> sa.Column:
    return sa.Column(
        "account_id",
        sa.Integer(),
        sa.ForeignKey("accounts.id", ondelete="CASCADE"),
        primary_key=True,
    )


def upgrade() -> None:
    """Create the economy schema."""
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("username", sa.String(64), nullable=False, unique=True),
        sa.Column("role", sa.String(10), nullable=False, server_default="user"),
        sa.Column("balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("level", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("achievement_points", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_banned_from_chat", sa.Boolean(), nullable=False,
                  server_default=sa.false()),
        sa.Column("is_banned_from_coins", sa.Boolean(), nullable=False,
                  server_default=sa.false()),
        sa.Column("ban_reason", sa.String(200), nullable=True),
        sa.Column("bans_updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_deleted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.CheckConstraint("balance >= 0", name="ck_accounts_balance_non_negative"),
        sa.CheckConstraint("level >= 1 AND level <= 10", name="ck_accounts_level_range"),
        sa.CheckConstraint("achievement_points >= 0", name="ck_accounts_ap_non_negative"),
    )

    op.create_table(
        "account_achievements",
        _account_fk(),
        sa.Column("code", sa.String(64), primary_key=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("earned_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_table(
        "account_milestones",
        _account_fk(),
        sa.Column("code", sa.String(100), primary_key=True),
        sa.Column("awarded_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_table(
        "account_stats",
        _account_fk(),
        sa.Column("stat_key", sa.String(64), primary_key=True),
        sa.Column("value", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_table(
        "account_unlocks",
        _account_fk(),
        sa.Column("feature_key", sa.String(64), primary_key=True),
        sa.Column("unlocked_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "ledger_entries",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("tx_type", sa.String(30), nullable=False),
        sa.Column("from_account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=True),
        sa.Column("from_username", sa.String(64), nullable=True),
        sa.Column("to_account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=True),
        sa.Column("to_username", sa.String(64), nullable=True),
        sa.Column("amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint("amount >= 0", name="ck_ledger_amount_non_negative"),
    )
    op.create_index(
        "ix_ledger_type_from_time",
        "ledger_entries",
        ["tx_type", "from_account_id", "created_at"],
    )
    op.create_index("ix_ledger_to_time", "ledger_entries", ["to_account_id", "created_at"])
    op.create_index("ix_ledger_created_at", "ledger_entries", ["created_at"])

    op.create_table(
        "audit_log",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("actor_id", sa.Integer(), nullable=False),
        sa.Column("actor_username", sa.String(64), nullable=False),
        sa.Column("actor_role", sa.String(10), nullable=False),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("target_username", sa.String(64), nullable=False, server_default=""),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("ip_address", sa.String(45), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_audit_log_actor_time", "audit_log", ["actor_id", "timestamp"])
    op.create_index("ix_audit_log_action_time", "audit_log", ["action", "timestamp"])


def downgrade() -> None:
    """Drop the economy schema."""
    op.drop_index("ix_audit_log_action_time", table_name="audit_log")
    op.drop_index("ix_audit_log_actor_time", table_name="audit_log")
    op.drop_table("audit_log")

    op.drop_index("ix_ledger_created_at", table_name="ledger_entries")
    op.drop_index("ix_ledger_to_time", table_name="ledger_entries")
    op.drop_index("ix_ledger_type_from_time", table_name="ledger_entries")
    op.drop_table("ledger_entries")

    for table in ("account_unlocks", "account_stats", "account_milestones",
                  "account_achievements"):
        op.drop_table(table)
    op.drop_table("accounts")
