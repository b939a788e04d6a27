from collections.abc import Callable
from dataclasses import dataclass
from datetime import date

from sqlalchemy.orm import Session, sessionmaker

from labstock.catalog.service import NomenclatureCatalog
from labstock.config_schema import Settings
from labstock.ledger.allocator import FEFOAllocator
from labstock.ledger.batches import BatchLedger
from labstock.ledger.locks import BatchLockRegistry
from labstock.ledger.movements import MovementLog


@dataclass
class Inventory:
    """The ledger's public components, wired to one session factory and lock registry."""

    catalog: NomenclatureCatalog
    batches: BatchLedger
    allocator: FEFOAllocator
    movements: MovementLog
    settings: Settings


def build_inventory(
    session_factory: sessionmaker[Session],
    settings: Settings | None = None,
    today: Callable[[], date] = date.today,
) -> Inventory:
    settings = settings or Settings()
    locks = BatchLockRegistry(timeout_seconds=settings.ledger.lock_timeout_seconds)
    movements = MovementLog(session_factory, today=today)
    batches = BatchLedger(session_factory, movements, locks=locks, today=today)
    return Inventory(
        catalog=NomenclatureCatalog(session_factory),
        batches=batches,
        allocator=FEFOAllocator(batches),
        movements=movements,
        settings=settings,
    )
