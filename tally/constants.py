"""
tally.constants — Shared Constants & Helpers
=============================================

Single source of truth for the leveling price formula and the input limits
shared by the economy services.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from tally.config import TallyConfig

MIN_LEVEL = 1
MAX_LEVEL = 10
DEFAULT_LEVEL_STEP_COST = 100

# Largest magnitude accepted for any coin amount, delta, AP award or counter
# step; matches the 32-bit INTEGER columns on PostgreSQL.
MAX_AMOUNT = 2**31 - 1

# Free-text limits (ban reasons, admin adjust reasons)
MAX_REASON_CHARS = 200

# Read-path caps for ledger history
ACCOUNT_HISTORY_LIMIT = 50
ADMIN_HISTORY_LIMIT = 200


# ---------------------------------------------------------------------------
# Level pricing
# ---------------------------------------------------------------------------
def level_up_cost(
    current_level: int, target_level: int, cfg: TallyConfig | None = None
) -> int:
    """Coins required to go from *current_level* to *target_level*.

    ``(target - current) * level_step_cost`` — each level costs the same.
    """
    step = cfg.level_step_cost if cfg is not None else DEFAULT_LEVEL_STEP_COST
    return (target_level - current_level) * step


# ---------------------------------------------------------------------------
# Numeric input helpers
# ---------------------------------------------------------------------------
def as_whole_number(value: object, *, limit: int | None = MAX_AMOUNT) -> int | None:
    """Return *value* as an ``int`` if it is a finite whole number, else None.

    ``bool`` is rejected even though it subclasses ``int``.  Values whose
    magnitude exceeds *limit* are rejected too; pass ``limit=None`` to accept
    any size.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        number = value
    elif isinstance(value, float):
        if not math.isfinite(value) or not value.is_integer():
            return None
        number = int(value)
    else:
        return None
    if limit is not None and abs(number) > limit:
        return None
    return number
