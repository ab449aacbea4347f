"""
tally.services.audit_service — Best-Effort Admin Audit Log
===========================================================

Admin mutations are *reported* here after they commit.  The audit write runs
in its own session and never raises: a failed audit is logged and dropped so
it can't block or reverse an economic mutation that already happened.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from sqlalchemy.orm import Session

from tally.database.models import Account, AuditLog

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

MAX_DETAIL_CHARS = 5000


@dataclass(frozen=True, slots=True)
class ActorSnapshot:
    """Who performed an admin action, captured while the session was open."""

    id: int
    username: str
    role: str

    @classmethod
    def of(cls, account: Account) -> ActorSnapshot:
        return cls(id=account.id, username=account.username, role=account.role)


def sanitize_details(details: Any, max_chars: int = MAX_DETAIL_CHARS) -> dict:
    """Return a JSON-safe dict no larger than *max_chars* when serialized.

    Oversized payloads are stored as a trimmed string under ``value``.
    """
    if details is None:
        return {}
    try:
        encoded = json.dumps(details, default=str)
    except (TypeError, ValueError):
        return {"note": "details_unserializable"}

    if len(encoded) > max_chars:
        return {"value": encoded[:max_chars] + "..."}
    if isinstance(details, dict):
        return json.loads(encoded)
    return {"value": json.loads(encoded)}


def audit(
    engine: Engine,
    *,
    actor: ActorSnapshot,
    action: str,
    target_username: str = "",
    details: Any = None,
    ip: str | None = None,
) -> bool:
    """Write one audit row.  Returns False (and logs) instead of raising."""
    if not action:
        return False
    try:
        with Session(engine) as session:
            session.add(AuditLog(
                actor_id=actor.id,
                actor_username=actor.username,
                actor_role=actor.role,
                action=action,
                target_username=target_username or "",
                details=sanitize_details(details),
                ip_address=ip,
            ))
            session.commit()
    except Exception:
        logger.warning(
            "Audit log write failed for %s by %s", action, actor.username, exc_info=True
        )
        return False
    return True
