"""
tally.services.economy_service — Transfers, Purchases, Level-Ups, Admin
========================================================================

Every balance-changing operation validates its input before touching the
store, reads the account(s) once to produce a clear refusal reason, then
applies the change as a *conditional* update so a stale read can never
push a balance below zero:

    UPDATE accounts SET balance = balance - :amt
     WHERE id = :id AND balance >= :amt AND NOT is_banned_from_coins

Zero matched rows means a concurrent request got there first; the caller
gets the same refusal it would have got from the read.  The ledger entry is
appended in the same transaction, so it exists if and only if the mutation
committed.

Admin mutations additionally report to the audit log after commit
(best-effort, see :mod:`tally.services.audit_service`).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import BigInteger, case, cast, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tally.constants import (
    MAX_AMOUNT,
    MAX_LEVEL,
    MAX_REASON_CHARS,
    MIN_LEVEL,
    as_whole_number,
    level_up_cost,
)
from tally.database.engine import get_session
from tally.database.models import Account, AccountUnlock, Role, TxType, utcnow
from tally.errors import (
    InvalidInputError,
    NotFoundError,
    PolicyDeniedError,
    RateLimitedError,
)
from tally.services import audit_service, ledger_service
from tally.services.account_service import clean_username, get_account
from tally.services.award_service import grant_once

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from tally.config import TallyConfig
    from tally.engine.catalog import RewardCatalog

logger = logging.getLogger(__name__)

COIN_BAN_REASON = "You are banned from using coins"
NOT_ENOUGH_COINS = "Not enough coins"


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class TransferResult:
    from_balance: int
    to_balance: int
    credited: bool
    entry_id: int


@dataclass(frozen=True, slots=True)
class PurchaseResult:
    balance: int
    feature_key: str
    price: int
    unlocks: dict[str, bool] = field(default_factory=dict)


@dataclass
class LevelUpResult:
    account: Account
    old_level: int
    level: int
    cost: int
    achievements_granted: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------
def _require_amount(value: object) -> int:
    amount = as_whole_number(value)
    if amount is None or amount <= 0:
        raise InvalidInputError("Invalid amount")
    return amount


def _load(session: Session, account_id: int, *, for_update: bool = False) -> Account:
    stmt = select(Account).where(Account.id == account_id)
    if for_update:
        stmt = stmt.with_for_update()
    account = session.scalar(stmt)
    if account is None:
        raise NotFoundError("Account not found")
    return account


def _load_by_name(session: Session, username: str, message: str = "User not found") -> Account:
    account = session.scalar(select(Account).where(Account.username == username))
    if account is None:
        raise NotFoundError(message)
    return account


def _require_admin(session: Session, actor_id: int) -> Account:
    actor = _load(session, actor_id)
    if not actor.is_admin:
        raise PolicyDeniedError("Admin only")
    return actor


def _balance_of(session: Session, account_id: int) -> int:
    return session.scalar(select(Account.balance).where(Account.id == account_id))


def _conditional_debit(session: Session, account_id: int, amount: int) -> bool:
    """Debit *amount* iff the balance covers it and the account isn't coin-banned."""
    matched = session.execute(
        update(Account)
        .where(
            Account.id == account_id,
            Account.balance >= amount,
            Account.is_banned_from_coins.is_(False),
        )
        .values(balance=Account.balance - amount)
        .execution_options(synchronize_session=False)
    ).rowcount
    return matched == 1


# ---------------------------------------------------------------------------
# P2P transfer
# ---------------------------------------------------------------------------
def transfer(
    engine: Engine,
    cfg: TallyConfig,
    from_id: int,
    to_username: str,
    amount: object,
    *,
    now: datetime | None = None,
) -> TransferResult:
    """Send *amount* coins from *from_id* to the account named *to_username*.

    Non-admin senders are held to the rolling transfer quota.  If the
    recipient is coin-banned the credit is suppressed, but the ledger still
    records the full amount.  Debit, credit and ledger entry commit together.

    Raises
    ------
    InvalidInputError
        Bad amount, blank recipient, or self-transfer.
    NotFoundError
        Sender or recipient missing.
    RateLimitedError
        Count or sum quota reached in the trailing window.
    PolicyDeniedError
        Sender coin-banned or balance too low.
    """
    amt = _require_amount(amount)
    name = clean_username(to_username)
    if not name:
        raise InvalidInputError("Invalid request")

    with get_session(engine) as session:
        sender = _load(session, from_id, for_update=True)
        if sender.is_banned_from_coins:
            raise PolicyDeniedError(COIN_BAN_REASON)

        target = _load_by_name(session, name, "Target user not found")
        if target.id == sender.id:
            raise InvalidInputError("Cannot send coins to yourself")

        if not sender.is_admin:
            decision = ledger_service.evaluate_window(
                session,
                sender.id,
                TxType.TRANSFER,
                timedelta(hours=cfg.transfer_window_hours),
                cfg.transfer_max_count,
                cfg.transfer_max_sum,
                now=now,
            )
            if not decision.allowed:
                raise RateLimitedError(decision.reason)

        if sender.balance < amt or not _conditional_debit(session, sender.id, amt):
            raise PolicyDeniedError(NOT_ENOUGH_COINS)

        credited = session.execute(
            update(Account)
            .where(Account.id == target.id, Account.is_banned_from_coins.is_(False))
            .values(balance=Account.balance + amt)
            .execution_options(synchronize_session=False)
        ).rowcount == 1

        entry = ledger_service.append_entry(
            session,
            TxType.TRANSFER,
            source=sender,
            destination=target,
            amount=amt,
            description="User transfer",
        )
        result = TransferResult(
            from_balance=_balance_of(session, sender.id),
            to_balance=_balance_of(session, target.id),
            credited=credited,
            entry_id=entry.id,
        )
        sender_name = sender.username

    logger.info(
        "Transfer %s → %s: %d coins%s",
        sender_name, name, amt, "" if credited else " (credit suppressed, recipient banned)",
    )
    return result


# ---------------------------------------------------------------------------
# Feature shop
# ---------------------------------------------------------------------------
def purchase_feature(
    engine: Engine,
    catalog: RewardCatalog,
    account_id: int,
    feature_key: str,
) -> PurchaseResult:
    """Buy the unlock for *feature_key* at its catalog price.

    The debit and the unlock flag land in one transaction, followed by a
    ``feature_purchase`` ledger entry.
    """
    key = str(feature_key or "").strip()
    price = catalog.feature_price(key)
    if price is None:
        raise InvalidInputError("Invalid feature")

    with get_session(engine) as session:
        account = _load(session, account_id)
        if account.is_banned_from_coins:
            raise PolicyDeniedError(COIN_BAN_REASON)
        if account.unlock_flags.get(key):
            raise PolicyDeniedError("Feature already unlocked")
        if account.balance < price or not _conditional_debit(session, account.id, price):
            raise PolicyDeniedError(NOT_ENOUGH_COINS)

        session.add(AccountUnlock(account_id=account.id, feature_key=key))
        try:
            session.flush()
        except IntegrityError:
            session.rollback()
            raise PolicyDeniedError("Feature already unlocked") from None

        ledger_service.append_entry(
            session,
            TxType.FEATURE_PURCHASE,
            source=account,
            amount=price,
            description=f"Feature purchase: {key}",
        )
        balance = _balance_of(session, account.id)
        unlocks = {
            k: True
            for k in session.scalars(
                select(AccountUnlock.feature_key).where(AccountUnlock.account_id == account.id)
            )
        }

    logger.info("Feature %s purchased by account %d for %d coins", key, account_id, price)
    return PurchaseResult(balance=balance, feature_key=key, price=price, unlocks=unlocks)


# ---------------------------------------------------------------------------
# Level-up
# ---------------------------------------------------------------------------
def level_up(
    engine: Engine,
    catalog: RewardCatalog,
    cfg: TallyConfig,
    account_id: int,
    target_level: object,
) -> LevelUpResult:
    """Buy levels up to *target_level* (admins level for free).

    The update is guarded on the level read, so two concurrent level-ups
    can't both charge from the same starting level.  Level achievements are
    granted afterwards through :func:`grant_once`.
    """
    target = as_whole_number(target_level)
    if target is None:
        raise InvalidInputError("Invalid target level")

    with get_session(engine) as session:
        account = _load(session, account_id)
        current = account.level
        if target <= current or target > min(cfg.max_level, MAX_LEVEL):
            raise InvalidInputError("Invalid target level")
        if account.is_banned_from_coins:
            raise PolicyDeniedError(COIN_BAN_REASON)

        charged = 0 if account.is_admin else level_up_cost(current, target, cfg)
        if account.balance < charged:
            raise PolicyDeniedError(NOT_ENOUGH_COINS)

        matched = session.execute(
            update(Account)
            .where(
                Account.id == account.id,
                Account.level == current,
                Account.balance >= charged,
                Account.is_banned_from_coins.is_(False),
            )
            .values(level=target, balance=Account.balance - charged)
            .execution_options(synchronize_session=False)
        ).rowcount
        if matched != 1:
            raise PolicyDeniedError("Account changed during level-up, please retry")

        ledger_service.append_entry(
            session,
            TxType.LEVEL_UP,
            source=account,
            amount=charged,
            description=f"Level up {current} -> {target}",
        )

    logger.info("Account %d levelled %d -> %d for %d coins", account_id, current, target, charged)

    granted = [
        code
        for code in catalog.achievements_for_level(target)
        if grant_once(engine, catalog, account_id, code).granted
    ]
    return LevelUpResult(
        account=get_account(engine, account_id),
        old_level=current,
        level=target,
        cost=charged,
        achievements_granted=granted,
    )


# ---------------------------------------------------------------------------
# Admin mutations
# ---------------------------------------------------------------------------
def _trim_reason(reason: object) -> str:
    return str(reason or "").strip()[:MAX_REASON_CHARS]


def admin_adjust(
    engine: Engine,
    actor_id: int,
    target_username: str,
    delta: object,
    reason: str = "",
    *,
    ip: str | None = None,
) -> Account:
    """Add *delta* (may be negative) to a balance, clamping at zero.

    The clamp happens in SQL so a concurrent debit can't drive the balance
    negative between read and write.  Coin bans don't apply.  Any negative
    delta at or below ``-MAX_AMOUNT`` empties the account; positive deltas
    above ``MAX_AMOUNT`` are rejected.
    """
    d = as_whole_number(delta, limit=None)
    if d is None or d > MAX_AMOUNT:
        raise InvalidInputError("Invalid request")
    # No balance exceeds MAX_AMOUNT, so this bound changes nothing but the
    # size of the bound parameter.
    applied = max(d, -MAX_AMOUNT)
    name = clean_username(target_username)
    if not name:
        raise InvalidInputError("Missing username")
    note = _trim_reason(reason)

    with get_session(engine) as session:
        actor = _require_admin(session, actor_id)
        target = _load_by_name(session, name)
        old_balance = target.balance

        adjusted = cast(Account.balance, BigInteger) + applied
        session.execute(
            update(Account)
            .where(Account.id == target.id)
            .values(balance=case(
                (adjusted < 0, 0),
                (adjusted > MAX_AMOUNT, MAX_AMOUNT),
                else_=adjusted,
            ))
            .execution_options(synchronize_session=False)
        )
        new_balance = _balance_of(session, target.id)

        sign = "+" if d >= 0 else ""
        ledger_service.append_entry(
            session,
            TxType.ADMIN_ADJUST,
            source=actor,
            destination=target,
            amount=abs(applied),
            description=f"Admin adjust ({sign}{d})" + (f" — {note}" if note else ""),
        )
        snapshot = audit_service.ActorSnapshot.of(actor)
        target_id = target.id

    logger.info("Admin %s adjusted %s by %+d (%d -> %d)", snapshot.username, name, d,
                old_balance, new_balance)
    audit_service.audit(
        engine,
        actor=snapshot,
        action="ADMIN_ADJUST_COINS",
        target_username=name,
        details={"delta": d, "reason": note, "old_balance": old_balance,
                 "new_balance": new_balance},
        ip=ip,
    )
    return get_account(engine, target_id)


def admin_set_role(
    engine: Engine,
    actor_id: int,
    target_username: str,
    role: str,
    *,
    ip: str | None = None,
) -> Account:
    """Change a user's role.  Admins can't demote themselves."""
    name = clean_username(target_username)
    new_role = str(role or "").strip()
    if not name:
        raise InvalidInputError("Missing username")
    if new_role not in {r.value for r in Role}:
        raise InvalidInputError("Invalid role")

    with get_session(engine) as session:
        actor = _require_admin(session, actor_id)
        target = _load_by_name(session, name)
        if target.id == actor.id and new_role != Role.ADMIN:
            raise PolicyDeniedError("You cannot remove your own admin role")

        old_role = target.role
        target.role = new_role
        session.flush()
        ledger_service.append_entry(
            session,
            TxType.ADMIN_SET_ROLE,
            source=actor,
            destination=target,
            amount=0,
            description=f"Admin set role {old_role} -> {new_role}",
        )
        snapshot = audit_service.ActorSnapshot.of(actor)
        target_id = target.id

    audit_service.audit(
        engine,
        actor=snapshot,
        action="ADMIN_SET_ROLE",
        target_username=name,
        details={"oldRole": old_role, "newRole": new_role},
        ip=ip,
    )
    return get_account(engine, target_id)


def admin_set_level(
    engine: Engine,
    actor_id: int,
    target_username: str,
    level: object,
    *,
    ip: str | None = None,
) -> Account:
    """Set a level directly (no charge, no level achievements)."""
    name = clean_username(target_username)
    lvl = as_whole_number(level)
    if not name:
        raise InvalidInputError("Missing username")
    if lvl is None or not MIN_LEVEL <= lvl <= MAX_LEVEL:
        raise InvalidInputError("Invalid level")

    with get_session(engine) as session:
        actor = _require_admin(session, actor_id)
        target = _load_by_name(session, name)
        old_level = target.level
        target.level = lvl
        session.flush()
        ledger_service.append_entry(
            session,
            TxType.ADMIN_SET_LEVEL,
            source=actor,
            destination=target,
            amount=0,
            description=f"Admin set level {old_level} -> {lvl}",
        )
        snapshot = audit_service.ActorSnapshot.of(actor)
        target_id = target.id

    audit_service.audit(
        engine,
        actor=snapshot,
        action="ADMIN_SET_LEVEL",
        target_username=name,
        details={"oldLevel": old_level, "newLevel": lvl},
        ip=ip,
    )
    return get_account(engine, target_id)


def admin_set_bans(
    engine: Engine,
    actor_id: int,
    target_username: str,
    *,
    chat_ban: bool | None = None,
    coins_ban: bool | None = None,
    reason: str | None = None,
    ip: str | None = None,
) -> Account:
    """Toggle chat / coin bans.  ``None`` leaves a flag unchanged."""
    name = clean_username(target_username)
    if not name:
        raise InvalidInputError("Missing username")

    with get_session(engine) as session:
        actor = _require_admin(session, actor_id)
        target = _load_by_name(session, name)
        old = {
            "isBannedFromChat": target.is_banned_from_chat,
            "isBannedFromCoins": target.is_banned_from_coins,
        }

        if isinstance(chat_ban, bool):
            target.is_banned_from_chat = chat_ban
        if isinstance(coins_ban, bool):
            target.is_banned_from_coins = coins_ban
        if isinstance(reason, str):
            target.ban_reason = _trim_reason(reason)
        target.bans_updated_at = utcnow()
        session.flush()

        new = {
            "isBannedFromChat": target.is_banned_from_chat,
            "isBannedFromCoins": target.is_banned_from_coins,
        }
        ledger_service.append_entry(
            session,
            TxType.ADMIN_SET_BANS,
            source=actor,
            destination=target,
            amount=0,
            description=(
                f"Admin set bans chat={str(new['isBannedFromChat']).lower()} "
                f"coins={str(new['isBannedFromCoins']).lower()}"
            ),
        )
        snapshot = audit_service.ActorSnapshot.of(actor)
        target_id = target.id
        ban_reason = target.ban_reason or ""

    audit_service.audit(
        engine,
        actor=snapshot,
        action="ADMIN_SET_BANS",
        target_username=name,
        details={"old": old, "new": new, "reason": ban_reason},
        ip=ip,
    )
    return get_account(engine, target_id)
