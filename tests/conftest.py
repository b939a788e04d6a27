"""
Shared fixtures: a throwaway SQLite database per test and a ledger wired to it
with a controllable clock.
"""

from collections.abc import Generator
from datetime import date, timedelta

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from labstock.config_schema import LedgerConfig, Settings
from labstock.database import Base, NomenclatureItem
from labstock.database.db_engine import create_database_engine
from labstock.database.db_session import make_session_factory
from labstock.ledger.service import Inventory, build_inventory

TODAY = date(2026, 3, 1)


class FixedClock:
    """Injectable ``today`` that tests can move forward."""

    def __init__(self, today: date = TODAY):
        self.today = today

    def __call__(self) -> date:
        return self.today

    def advance(self, days: int) -> None:
        self.today += timedelta(days=days)


@pytest.fixture
def db_engine(tmp_path) -> Generator[Engine, None, None]:
    engine = create_database_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> sessionmaker[Session]:
    return make_session_factory(db_engine)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        ledger=LedgerConfig(
            lock_timeout_seconds=2.0,
            conflict_retry_attempts=3,
            conflict_retry_wait_min_seconds=0.0,
            conflict_retry_wait_max_seconds=0.01,
        )
    )


@pytest.fixture
def inventory(session_factory, settings, clock) -> Inventory:
    return build_inventory(session_factory, settings, today=clock)


@pytest.fixture
def medium(inventory) -> NomenclatureItem:
    """Volume-granular item measured in ml."""
    return inventory.catalog.register("DMEM high glucose", "medium")


@pytest.fixture
def tips(inventory) -> NomenclatureItem:
    """Unit-granular item counted in pieces."""
    return inventory.catalog.register("Filter tips 200 ul", "consumable")
