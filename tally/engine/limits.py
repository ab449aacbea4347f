"""
tally.engine.limits — Rolling-Window Quota Decision
====================================================

Pure decision half of the rate-window evaluator.  The database half
(``ledger_service.window_usage``) measures how many ledger entries of a
type an account authored in the trailing window and what they summed to;
this module decides whether one more operation is allowed.

The check is against the state *before* the attempted operation: usage
equal to the limit already blocks.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

COUNT_LIMIT_REASON = "Daily transfer count limit reached"
SUM_LIMIT_REASON = "Daily coin sending limit reached"


@dataclass(frozen=True, slots=True)
class WindowUsage:
    """Count and amount total of in-window ledger entries."""

    count: int = 0
    total: int = 0


@dataclass(frozen=True, slots=True)
class QuotaDecision:
    allowed: bool
    reason: str | None = None


def window_start(now: datetime, window: timedelta) -> datetime:
    """Inclusive lower bound of the trailing window ending at *now*."""
    return now - window


def check_quota(usage: WindowUsage, max_count: int, max_sum: int) -> QuotaDecision:
    """Decide whether another operation fits in the window.

    Count is checked first so the reason names the tighter limit the way
    users hit it most often.
    """
    if usage.count >= max_count:
        return QuotaDecision(False, COUNT_LIMIT_REASON)
    if usage.total >= max_sum:
        return QuotaDecision(False, SUM_LIMIT_REASON)
    return QuotaDecision(True)
