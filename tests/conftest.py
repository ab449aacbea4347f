"""
tests/conftest.py — Shared Test Fixtures
=========================================
"""

from __future__ import annotations

import pytest
from sqlalchemy import Engine, create_engine, update
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from tally.config import TallyConfig
from tally.database.models import Account, Base
from tally.engine.catalog import RewardCatalog, default_catalog


@pytest.fixture
def db_engine() -> Engine:
    """Create an in-memory SQLite engine with all Tally tables.

    Uses StaticPool so every session (and any worker thread started by
    ``run_db``) shares the same in-memory database.
    """
    engine = create_engine(
        "sqlite://",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture
def file_engine(tmp_path) -> Engine:
    """File-backed SQLite engine for tests that hit the store from several
    threads at once (each thread gets its own connection)."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'tally.db'}",
        echo=False,
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def catalog() -> RewardCatalog:
    return default_catalog()


@pytest.fixture
def cfg() -> TallyConfig:
    return TallyConfig()


def make_account(
    engine: Engine,
    username: str,
    *,
    balance: int = 0,
    level: int = 1,
    role: str = "user",
    coins_banned: bool = False,
) -> int:
    """Insert an account directly and return its id."""
    with Session(engine) as session:
        account = Account(
            username=username,
            balance=balance,
            level=level,
            role=role,
            is_banned_from_coins=coins_banned,
        )
        session.add(account)
        session.commit()
        return account.id


def set_coin_ban(engine: Engine, account_id: int, banned: bool = True) -> None:
    with Session(engine) as session:
        session.execute(
            update(Account).where(Account.id == account_id).values(is_banned_from_coins=banned)
        )
        session.commit()


def balance_of(engine: Engine, account_id: int) -> int:
    with Session(engine) as session:
        return session.get(Account, account_id).balance
