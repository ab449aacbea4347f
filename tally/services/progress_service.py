"""
tally.services.progress_service — Stat Counters & AP Milestones
================================================================

``record_action`` bumps a named stat counter and pays every catalog
milestone whose threshold the new value has reached.  Milestones are
independent: one increment that jumps past two thresholds pays both, and a
counter that oscillates around a threshold pays it once, because
``award_ap_once`` is keyed on the milestone code.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError

from tally.constants import as_whole_number
from tally.database.engine import get_session
from tally.database.models import Account, AccountMilestone, AccountStat
from tally.services.account_service import get_account

if TYPE_CHECKING:
    from sqlalchemy import Engine
    from sqlalchemy.orm import Session

    from tally.engine.catalog import RewardCatalog

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ApAward:
    awarded: bool


# ---------------------------------------------------------------------------
# Achievement points
# ---------------------------------------------------------------------------
def award_ap_once(engine: Engine, account_id: int, code: str, ap: object) -> ApAward:
    """Record milestone *code* and add *ap* achievement points, once.

    Blank codes and non-positive, non-integral or out-of-range
    (``> MAX_AMOUNT``) AP amounts are ignored.
    Replays (same code) never pay twice.
    """
    clean_code = str(code or "").strip()
    points = as_whole_number(ap)
    if not clean_code or points is None or points <= 0:
        return ApAward(awarded=False)

    with get_session(engine) as session:
        session.add(AccountMilestone(account_id=account_id, code=clean_code))
        try:
            session.flush()
        except IntegrityError:
            # Already recorded (or the account doesn't exist).
            session.rollback()
            return ApAward(awarded=False)

        matched = session.execute(
            update(Account)
            .where(Account.id == account_id)
            .values(achievement_points=Account.achievement_points + points)
            .execution_options(synchronize_session=False)
        ).rowcount
        if matched != 1:
            session.rollback()
            return ApAward(awarded=False)

    logger.info("Milestone %s: +%d AP to account %d", clean_code, points, account_id)
    return ApAward(awarded=True)


# ---------------------------------------------------------------------------
# Stat counters
# ---------------------------------------------------------------------------
def _bump_stat(session: Session, account_id: int, stat_key: str, delta: int) -> bool:
    matched = session.execute(
        update(AccountStat)
        .where(AccountStat.account_id == account_id, AccountStat.stat_key == stat_key)
        .values(value=AccountStat.value + delta)
        .execution_options(synchronize_session=False)
    ).rowcount
    return matched == 1


def increment_stat(engine: Engine, account_id: int, stat_key: str, delta: int) -> int:
    """Atomically add *delta* to a counter, creating it on first use.

    Returns the new value.
    """
    with get_session(engine) as session:
        if not _bump_stat(session, account_id, stat_key, delta):
            session.add(AccountStat(account_id=account_id, stat_key=stat_key, value=delta))
            try:
                session.flush()
            except IntegrityError:
                # A concurrent first increment created the row; add to it.
                session.rollback()
                _bump_stat(session, account_id, stat_key, delta)
        return session.scalar(
            select(AccountStat.value).where(
                AccountStat.account_id == account_id,
                AccountStat.stat_key == stat_key,
            )
        )


def record_action(
    engine: Engine,
    catalog: RewardCatalog,
    account_id: int,
    feature_key: str,
    stat_key: str,
    delta: object = 1,
) -> int | None:
    """Increment *stat_key* by *delta* and pay any reached milestones.

    Returns the new counter value, or None for a no-op (zero, non-finite
    or out-of-range delta, blank keys, unknown account).
    """
    step = as_whole_number(delta)
    if not step:
        logger.debug("record_action ignored: delta=%r", delta)
        return None

    f_key = str(feature_key or "").strip()
    s_key = str(stat_key or "").strip()
    if not f_key or not s_key:
        return None

    if get_account(engine, account_id) is None:
        return None

    new_value = increment_stat(engine, account_id, s_key, step)

    for milestone in catalog.milestones_for(f_key, s_key):
        if new_value >= milestone.threshold:
            award_ap_once(engine, account_id, milestone.code, milestone.ap_reward)

    return new_value


def get_stats(engine: Engine, account_id: int) -> dict[str, int]:
    with get_session(engine) as session:
        rows = session.execute(
            select(AccountStat.stat_key, AccountStat.value).where(
                AccountStat.account_id == account_id
            )
        ).all()
        return {row.stat_key: row.value for row in rows}
