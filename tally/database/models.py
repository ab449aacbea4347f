"""
tally.database.models — SQLAlchemy 2.0 Data Models
===================================================

Tables:
- accounts              — Economic / progression state, one row per user
- account_achievements  — Earned achievement codes (one row per code)
- account_milestones    — Awarded milestone codes (AP idempotence)
- account_stats         — Named per-account stat counters
- account_unlocks       — Purchased feature unlocks
- ledger_entries        — Append-only economic transaction journal
- audit_log             — Append-only admin audit trail (best effort)

Set membership (achievements, milestones, unlocks) is a child row keyed by
``(account_id, code)``; the primary key is what makes every grant at-most-once.
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    """Timezone-aware "now" used for every Python-side timestamp default."""
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all Tally ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class Role(enum.StrEnum):
    USER = "user"
    MOD = "mod"
    ADMIN = "admin"


class TxType(enum.StrEnum):
    """Every kind of economic mutation that produces a ledger entry."""
    TRANSFER = "transfer"
    ACHIEVEMENT_REWARD = "achievement_reward"
    LEVEL_UP = "level_up"
    FEATURE_PURCHASE = "feature_purchase"
    ADMIN_ADJUST = "admin_adjust"
    ADMIN_SET_ROLE = "admin_set_role"
    ADMIN_SET_LEVEL = "admin_set_level"
    ADMIN_SET_BANS = "admin_set_bans"


# ---------------------------------------------------------------------------
# Accounts — one row per registered user
# ---------------------------------------------------------------------------
class Account(Base):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    role: Mapped[str] = mapped_column(String(10), nullable=False, default=Role.USER.value)
    balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    achievement_points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Bans
    is_banned_from_chat: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_banned_from_coins: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    ban_reason: Mapped[str | None] = mapped_column(String(200), default=None)
    bans_updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), default=None
    )

    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    # Relationships
    achievements: Mapped[list[AccountAchievement]] = relationship(
        back_populates="account", cascade="all, delete-orphan", lazy="selectin"
    )
    milestones: Mapped[list[AccountMilestone]] = relationship(
        cascade="all, delete-orphan", lazy="selectin"
    )
    stats: Mapped[list[AccountStat]] = relationship(
        cascade="all, delete-orphan", lazy="selectin"
    )
    unlocks: Mapped[list[AccountUnlock]] = relationship(
        cascade="all, delete-orphan", lazy="selectin"
    )

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_accounts_balance_non_negative"),
        CheckConstraint("level >= 1 AND level <= 10", name="ck_accounts_level_range"),
        CheckConstraint("achievement_points >= 0", name="ck_accounts_ap_non_negative"),
    )

    @property
    def achievement_codes(self) -> set[str]:
        return {a.code for a in self.achievements}

    @property
    def milestone_codes(self) -> set[str]:
        return {m.code for m in self.milestones}

    @property
    def stat_values(self) -> dict[str, int]:
        return {s.stat_key: s.value for s in self.stats}

    @property
    def unlock_flags(self) -> dict[str, bool]:
        return {u.feature_key: True for u in self.unlocks}

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    def __repr__(self) -> str:
        return (
            f"<Account id={self.id} name={self.username!r} "
            f"balance={self.balance} lvl={self.level}>"
        )


# ---------------------------------------------------------------------------
# AccountAchievement — earned achievement codes
# ---------------------------------------------------------------------------
class AccountAchievement(Base):
    __tablename__ = "account_achievements"

    account_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("accounts.id", ondelete="CASCADE"), primary_key=True
    )
    code: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    earned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    account: Mapped[Account] = relationship(back_populates="achievements")

    def __repr__(self) -> str:
        return f"<AccountAchievement account={self.account_id} code={self.code!r}>"


# ---------------------------------------------------------------------------
# AccountMilestone — awarded milestone codes (separate namespace)
# ---------------------------------------------------------------------------
class AccountMilestone(Base):
    __tablename__ = "account_milestones"

    account_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("accounts.id", ondelete="CASCADE"), primary_key=True
    )
    code: Mapped[str] = mapped_column(String(100), primary_key=True)
    awarded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    def __repr__(self) -> str:
        return f"<AccountMilestone account={self.account_id} code={self.code!r}>"


# ---------------------------------------------------------------------------
# AccountStat — named counters (dmMessagesSent, groupsCreated, …)
# ---------------------------------------------------------------------------
class AccountStat(Base):
    __tablename__ = "account_stats"

    account_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("accounts.id", ondelete="CASCADE"), primary_key=True
    )
    stat_key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<AccountStat account={self.account_id} {self.stat_key}={self.value}>"


# ---------------------------------------------------------------------------
# AccountUnlock — purchased feature flags
# ---------------------------------------------------------------------------
class AccountUnlock(Base):
    __tablename__ = "account_unlocks"

    account_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("accounts.id", ondelete="CASCADE"), primary_key=True
    )
    feature_key: Mapped[str] = mapped_column(String(64), primary_key=True)
    unlocked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    def __repr__(self) -> str:
        return f"<AccountUnlock account={self.account_id} feature={self.feature_key!r}>"


# ---------------------------------------------------------------------------
# LedgerEntry — append-only economic journal
# ---------------------------------------------------------------------------
class LedgerEntry(Base):
    __tablename__ = "ledger_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tx_type: Mapped[str] = mapped_column(String(30), nullable=False)
    from_account_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("accounts.id"), nullable=True
    )
    from_username: Mapped[str | None] = mapped_column(String(64), nullable=True)
    to_account_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("accounts.id"), nullable=True
    )
    to_username: Mapped[str | None] = mapped_column(String(64), nullable=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_ledger_amount_non_negative"),
        # Rate-window lookups: (type, author, time range)
        Index("ix_ledger_type_from_time", "tx_type", "from_account_id", "created_at"),
        Index("ix_ledger_to_time", "to_account_id", "created_at"),
        Index("ix_ledger_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry id={self.id} type={self.tx_type} "
            f"from={self.from_account_id} to={self.to_account_id} amount={self.amount}>"
        )


# ---------------------------------------------------------------------------
# AuditLog — admin actions, written best-effort
# ---------------------------------------------------------------------------
class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[int] = mapped_column(Integer, nullable=False)
    actor_username: Mapped[str] = mapped_column(String(64), nullable=False)
    actor_role: Mapped[str] = mapped_column(String(10), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    target_username: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        Index("ix_audit_log_actor_time", "actor_id", "timestamp"),
        Index("ix_audit_log_action_time", "action", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<AuditLog id={self.id} actor={self.actor_id} action={self.action}>"
