"""
tally.database.engine — Database Connection & Async Helper
===========================================================

The economy services are plain synchronous SQLAlchemy functions: each one
opens a short :class:`~sqlalchemy.orm.Session`, issues its conditional
updates and commits.  Async request handlers call them through
:func:`run_db`, which ships the call to a worker thread so the event loop
never blocks on the database.

Usage::

    from tally.database.engine import create_db_engine, init_db, run_db

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS …

    # Inside an async handler:
    result = await run_db(grant_once, engine, catalog, account_id, "FIRST_LOGIN")
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from dotenv import load_dotenv
from sqlalchemy import Engine, create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tally.database.models import Base
from tally.errors import StoreFailureError

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def database_url() -> str:
    """Return ``DATABASE_URL`` from the environment (loading ``.env`` first).

    Raises
    ------
    RuntimeError
        If ``DATABASE_URL`` is not set.
    """
    load_dotenv()
    url = os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )
    return url


def create_db_engine(url: str | None = None) -> Engine:
    """Build a SQLAlchemy :class:`Engine` from *url* or ``DATABASE_URL``.

    The connection pool is sized for a single web process:
    * ``pool_size=5`` — five persistent connections.
    * ``max_overflow=10`` — up to 10 extra connections under load.
    * ``pool_timeout=10`` — fail after 10 s if no connection is available.
    * ``pool_recycle=3600`` — recycle connections after 1 hour.

    Raises
    ------
    RuntimeError
        If no URL is given and ``DATABASE_URL`` is not set.
    """
    if url is None:
        url = database_url()

    engine = create_engine(
        url,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,   # Reconnect stale connections automatically
        pool_timeout=10,
        pool_recycle=3600,
    )
    logger.info("Database engine created → %s", engine.url.host)
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all tables defined in :mod:`tally.database.models`.

    Safe to call on every startup.  Production schemas are managed by
    Alembic (``alembic upgrade head``); ``create_all`` covers dev and test.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")


# ---------------------------------------------------------------------------
# Session helper
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine) -> Iterator[Session]:
    """Yield a :class:`Session` that commits on success and rolls back on
    exception.

    Store errors are re-raised as :class:`StoreFailureError` so callers see
    a generic "Server error" and never a driver message.  pysqlite raises a
    bare ``OverflowError`` for integers it can't bind, so that counts as a
    store error too.
    """
    session = Session(engine, expire_on_commit=False)
    try:
        yield session
        session.commit()
    except (SQLAlchemyError, OverflowError) as exc:
        session.rollback()
        logger.exception("Store failure, transaction rolled back")
        raise StoreFailureError() from exc
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Run a **synchronous** service function on a background thread.

    Under the hood this is :func:`asyncio.to_thread`, which schedules *func*
    on the default ``ThreadPoolExecutor``.
    """
    return await asyncio.to_thread(func, *args, **kwargs)
