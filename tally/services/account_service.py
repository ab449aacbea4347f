"""
tally.services.account_service — Account Store Access
======================================================

Registration, lookups and soft deletion.  Lookups return *detached*
:class:`Account` objects with their achievement / milestone / stat / unlock
collections already loaded, so callers can read them after the session is
gone.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from tally.database.engine import get_session
from tally.database.models import Account, AccountUnlock, Role, utcnow
from tally.errors import InvalidInputError, NotFoundError, PolicyDeniedError
from tally.services import audit_service

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


def clean_username(value: object) -> str:
    return str(value or "").strip()


def _detached(session: Session, account: Account | None) -> Account | None:
    if account is not None:
        session.expunge(account)
    return account


def get_account(engine: Engine, account_id: int) -> Account | None:
    """Fetch an account by id (None if absent)."""
    with get_session(engine) as session:
        return _detached(session, session.get(Account, account_id))


def get_account_by_username(engine: Engine, username: str) -> Account | None:
    """Fetch an account by exact (trimmed) username (None if absent)."""
    name = clean_username(username)
    if not name:
        return None
    with get_session(engine) as session:
        account = session.scalar(select(Account).where(Account.username == name))
        return _detached(session, account)


def create_account(engine: Engine, username: str, *, role: str = Role.USER) -> Account:
    """Register a new account: balance 0, level 1, empty sets.

    Raises
    ------
    InvalidInputError
        Blank username, unknown role, or username already taken.
    """
    name = clean_username(username)
    if not name:
        raise InvalidInputError("Missing username")
    if role not in {r.value for r in Role}:
        raise InvalidInputError("Invalid role")

    with get_session(engine) as session:
        account = Account(username=name, role=str(role))
        session.add(account)
        try:
            session.flush()
        except IntegrityError:
            session.rollback()
            raise InvalidInputError("Username already taken") from None
        account_id = account.id

    logger.info("Account created: %s (id=%d)", name, account_id)
    return get_account(engine, account_id)


def soft_delete_account(
    engine: Engine,
    *,
    actor_id: int,
    username: str,
    ip: str | None = None,
) -> Account:
    """Admin-only soft delete: zero coins, ban chat + coins, clear unlocks.

    The row is never removed — ledger history keeps pointing at it.
    """
    name = clean_username(username)
    if not name:
        raise InvalidInputError("Missing username")

    with get_session(engine) as session:
        actor = session.get(Account, actor_id)
        if actor is None:
            raise NotFoundError("Actor not found")
        if not actor.is_admin:
            raise PolicyDeniedError("Admin only")

        target = session.scalar(select(Account).where(Account.username == name))
        if target is None:
            raise NotFoundError()
        if target.id == actor.id:
            raise PolicyDeniedError("You cannot delete your own account")

        old_balance = target.balance
        session.execute(
            update(Account)
            .where(Account.id == target.id)
            .values(
                is_deleted=True,
                balance=0,
                is_banned_from_chat=True,
                is_banned_from_coins=True,
                ban_reason="Account deleted",
                bans_updated_at=utcnow(),
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        session.execute(delete(AccountUnlock).where(AccountUnlock.account_id == target.id))
        actor_snapshot = audit_service.ActorSnapshot.of(actor)
        target_id = target.id

    logger.info("Account soft-deleted: %s by %s", name, actor_snapshot.username)
    audit_service.audit(
        engine,
        actor=actor_snapshot,
        action="ADMIN_DELETE_USER",
        target_username=name,
        details={"old_balance": old_balance},
        ip=ip,
    )
    return get_account(engine, target_id)
