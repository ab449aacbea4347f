"""
tally.services.ledger_service — Append-Only Ledger & Rate Windows
==================================================================

``append_entry`` is the only code path that creates :class:`LedgerEntry`
rows, and it only ever runs inside the transaction of a mutation that has
already succeeded.  Nothing in the package updates or deletes ledger rows.

Also home of the database half of the rate-window evaluator and the
history read paths.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from tally.constants import ACCOUNT_HISTORY_LIMIT, ADMIN_HISTORY_LIMIT
from tally.database.engine import get_session
from tally.database.models import Account, LedgerEntry, TxType, utcnow
from tally.engine.limits import QuotaDecision, WindowUsage, check_quota, window_start

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)


def append_entry(
    session: Session,
    tx_type: TxType,
    *,
    source: Account | None = None,
    destination: Account | None = None,
    amount: int = 0,
    description: str = "",
) -> LedgerEntry:
    """Add a ledger row to *session*'s transaction and flush it."""
    entry = LedgerEntry(
        tx_type=tx_type.value,
        from_account_id=source.id if source is not None else None,
        from_username=source.username if source is not None else None,
        to_account_id=destination.id if destination is not None else None,
        to_username=destination.username if destination is not None else None,
        amount=abs(int(amount)),
        description=description,
    )
    session.add(entry)
    session.flush()
    logger.debug("Ledger %s amount=%d: %s", tx_type.value, entry.amount, description)
    return entry


# ---------------------------------------------------------------------------
# Rate window
# ---------------------------------------------------------------------------
def window_usage(
    session: Session,
    account_id: int,
    tx_type: TxType,
    window: timedelta,
    *,
    now: datetime | None = None,
) -> WindowUsage:
    """Count and sum the *tx_type* entries *account_id* authored in the window."""
    since = window_start(now or utcnow(), window)
    row = session.execute(
        select(
            func.count(LedgerEntry.id),
            func.coalesce(func.sum(LedgerEntry.amount), 0),
        ).where(
            LedgerEntry.tx_type == tx_type.value,
            LedgerEntry.from_account_id == account_id,
            LedgerEntry.created_at >= since,
        )
    ).one()
    return WindowUsage(count=int(row[0]), total=int(row[1]))


def evaluate_window(
    session: Session,
    account_id: int,
    tx_type: TxType,
    window: timedelta,
    max_count: int,
    max_sum: int,
    *,
    now: datetime | None = None,
) -> QuotaDecision:
    usage = window_usage(session, account_id, tx_type, window, now=now)
    decision = check_quota(usage, max_count, max_sum)
    if not decision.allowed:
        logger.info(
            "Quota exceeded for account %d (%s): count=%d total=%d",
            account_id, tx_type.value, usage.count, usage.total,
        )
    return decision


def within_limit(
    engine: Engine,
    account_id: int,
    tx_type: TxType,
    window: timedelta,
    max_count: int,
    max_sum: int,
    *,
    now: datetime | None = None,
) -> bool:
    """True if *account_id* may perform one more *tx_type* operation.

    Read-then-decide: nothing is reserved, so two concurrent callers can
    both pass.
    """
    with get_session(engine) as session:
        return evaluate_window(
            session, account_id, tx_type, window, max_count, max_sum, now=now
        ).allowed


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------
def history_for_account(
    engine: Engine, account_id: int, *, limit: int = ACCOUNT_HISTORY_LIMIT
) -> list[LedgerEntry]:
    """Newest-first entries where the account is the source or destination."""
    with get_session(engine) as session:
        rows = session.scalars(
            select(LedgerEntry)
            .where(or_(
                LedgerEntry.from_account_id == account_id,
                LedgerEntry.to_account_id == account_id,
            ))
            .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
            .limit(limit)
        ).all()
        session.expunge_all()
        return list(rows)


def history_all(
    engine: Engine, *, username: str | None = None, limit: int = ADMIN_HISTORY_LIMIT
) -> list[LedgerEntry]:
    """Admin view: newest-first entries, optionally filtered by username."""
    stmt = select(LedgerEntry)
    if username:
        stmt = stmt.where(or_(
            LedgerEntry.from_username == username,
            LedgerEntry.to_username == username,
        ))
    stmt = stmt.order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc()).limit(limit)

    with get_session(engine) as session:
        rows = session.scalars(stmt).all()
        session.expunge_all()
        return list(rows)
