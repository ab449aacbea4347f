"""
tally.services.award_service — Idempotent Achievement Awarder
==============================================================

``grant_once`` adds an achievement code to an account at most once and, in
the same transaction, pays the catalog coin reward unless the account is
coin-banned.

Each attempt is one conditional ``UPDATE accounts … WHERE <precondition>``
followed by the achievement insert.  The attempts run as an explicit
sequence::

    WITH_COINS     id matches, code not held, not coin-banned → +coins, ledger
    WITHOUT_COINS  id matches, code not held                  → no coins
    READ_CURRENT   nothing matched → already held (or a concurrent caller won)

Zero matched rows is not an error, it just advances the sequence.  The
``(account_id, code)`` primary key backs the predicate: if two callers both
get past the UPDATE, the loser's insert violates the key and its whole
transaction (coin credit included) rolls back.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import exists, select, update
from sqlalchemy.exc import IntegrityError

from tally.database.engine import get_session
from tally.database.models import Account, AccountAchievement, TxType, utcnow
from tally.errors import InvalidInputError
from tally.services import ledger_service
from tally.services.account_service import get_account

if TYPE_CHECKING:
    from sqlalchemy import Engine

    from tally.engine.catalog import AchievementDef, RewardCatalog

logger = logging.getLogger(__name__)


class GrantStep(enum.Enum):
    WITH_COINS = "with_coins"
    WITHOUT_COINS = "without_coins"
    READ_CURRENT = "read_current"


GRANT_SEQUENCE: tuple[GrantStep, ...] = (
    GrantStep.WITH_COINS,
    GrantStep.WITHOUT_COINS,
    GrantStep.READ_CURRENT,
)


@dataclass
class GrantResult:
    granted: bool
    account: Account | None = None
    step: GrantStep | None = None
    coins_paid: int = 0


def _attempt_grant(
    engine: Engine, account_id: int, definition: AchievementDef, *, pay: bool
) -> int | None:
    """Run one conditional grant.

    Returns the coins paid (possibly 0) if the achievement was added, or
    None if the precondition matched nothing.
    """
    reward = definition.coin_reward if pay else 0
    conditions = [
        Account.id == account_id,
        ~exists().where(
            AccountAchievement.account_id == Account.id,
            AccountAchievement.code == definition.code,
        ),
    ]
    values: dict = {"updated_at": utcnow()}
    if pay:
        conditions.append(Account.is_banned_from_coins.is_(False))
        if reward > 0:
            values["balance"] = Account.balance + reward

    with get_session(engine) as session:
        matched = session.execute(
            update(Account)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        ).rowcount
        if matched != 1:
            return None

        session.add(AccountAchievement(
            account_id=account_id,
            code=definition.code,
            title=definition.title,
        ))
        try:
            session.flush()
        except IntegrityError:
            # Lost the race: rolls back the coin credit as well.
            session.rollback()
            return None

        if reward > 0:
            account = session.scalar(select(Account).where(Account.id == account_id))
            ledger_service.append_entry(
                session,
                TxType.ACHIEVEMENT_REWARD,
                destination=account,
                amount=reward,
                description=f"Achievement: {definition.title}",
            )
    return reward


def grant_once(
    engine: Engine,
    catalog: RewardCatalog,
    account_id: int,
    code: str,
) -> GrantResult:
    """Grant achievement *code* to *account_id* at most once.

    Returns ``GrantResult(granted=False, account=None)`` if the account
    doesn't exist, and ``granted=False`` with the current account if it
    already held the code.

    Raises
    ------
    InvalidInputError
        If *code* is not in the catalog.
    """
    definition = catalog.achievement(code)
    if definition is None:
        raise InvalidInputError(f"Unknown achievement: {code}")

    for step in GRANT_SEQUENCE:
        if step is GrantStep.READ_CURRENT:
            account = get_account(engine, account_id)
            logger.debug(
                "Achievement %s not granted to %d (%s)",
                code, account_id, "already held" if account else "no such account",
            )
            return GrantResult(granted=False, account=account, step=step)

        paid = _attempt_grant(
            engine, account_id, definition, pay=step is GrantStep.WITH_COINS
        )
        if paid is not None:
            logger.info(
                "Achievement %s granted to account %d (+%d coins)", code, account_id, paid
            )
            return GrantResult(
                granted=True,
                account=get_account(engine, account_id),
                step=step,
                coins_paid=paid,
            )

    raise AssertionError("unreachable: grant sequence ends with READ_CURRENT")


def list_achievements(engine: Engine, account_id: int) -> list[AccountAchievement]:
    """Earned achievements for an account, oldest first."""
    with get_session(engine) as session:
        rows = session.scalars(
            select(AccountAchievement)
            .where(AccountAchievement.account_id == account_id)
            .order_by(AccountAchievement.earned_at, AccountAchievement.code)
        ).all()
        session.expunge_all()
        return list(rows)


def achievement_definitions(catalog: RewardCatalog) -> list[dict[str, object]]:
    """Catalog definitions for "locked / unlocked" listings."""
    return [a.to_dict() for a in catalog.achievements.values()]
