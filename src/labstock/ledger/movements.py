"""
Movement Log.

Append-only record of every stock-affecting event. Appends always go through
the caller's session so that a batch update and its movement commit or roll
back together; there is no update or delete path.
"""

import uuid
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from labstock.common.logging import get_logger
from labstock.database.enums import BatchStatus, MovementType
from labstock.database.inventory import Batch, InventoryMovement
from labstock.ledger.errors import NotFoundError, ValidationError
from labstock.ledger.quantities import ZERO, to_amount
from labstock.ledger.status import derive_status
from labstock.ledger.tracker import StockState

logger = get_logger(__name__)

DEFAULT_CHUNK_SIZE = 500


class MovementHistory:
    """
    Newest-first movements of one batch.

    Each iteration opens its own session and streams a fresh query in chunks,
    so the object can be iterated any number of times and always reflects
    the log as of that iteration.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        batch_id: uuid.UUID,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        self.batch_id = batch_id
        self._session_factory = session_factory
        self._chunk_size = chunk_size

    def __iter__(self) -> Iterator[InventoryMovement]:
        stmt = (
            select(InventoryMovement)
            .where(InventoryMovement.batch_id == self.batch_id)
            .order_by(InventoryMovement.id.desc())
            .execution_options(yield_per=self._chunk_size)
        )
        with self._session_factory() as session:
            yield from session.scalars(stmt)


@dataclass(frozen=True)
class ReplayedState:
    batch_id: uuid.UUID
    quantity: int
    current_unit_volume: Decimal | None
    total_amount: Decimal
    movement_count: int
    # Movements whose recorded *_after snapshot disagrees with the running sum.
    snapshot_breaks: tuple[int, ...] = ()


@dataclass(frozen=True)
class ReconciliationReport:
    batch_id: uuid.UUID
    replayed: ReplayedState
    live_quantity: int
    live_current_unit_volume: Decimal | None
    stored_status: BatchStatus
    derived_status: BatchStatus
    mismatches: list[str] = field(default_factory=list)

    @property
    def is_consistent(self) -> bool:
        return not self.mismatches


_SIGN_RULES: dict[MovementType, Callable[[Decimal], bool]] = {
    MovementType.RECEIVE: lambda amount: amount > ZERO,
    MovementType.CONSUME: lambda amount: amount < ZERO,
    MovementType.ADJUST: lambda amount: amount != ZERO,
}


class MovementLog:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        today: Callable[[], date] = date.today,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        self._session_factory = session_factory
        self._today = today
        self._chunk_size = chunk_size

    def append(
        self,
        session: Session,
        *,
        batch_id: uuid.UUID,
        movement_type: MovementType,
        amount: object,
        quantity_delta: int,
        volume_delta: object | None,
        quantity_after: int,
        volume_after: object | None,
        reason: str,
        operation_ref: str | None = None,
        moved_by: str | None = None,
    ) -> InventoryMovement:
        """
        Adds one movement to ``session``. The caller owns the transaction.

        ``amount`` is the signed change of total batch content: positive for
        RECEIVE, negative for CONSUME, either sign (never zero) for ADJUST.
        """
        signed = to_amount(amount)
        if not _SIGN_RULES[movement_type](signed):
            raise ValidationError(
                f"{movement_type.value} movement cannot carry amount {signed}"
            )
        if not reason or not reason.strip():
            raise ValidationError("movement reason must not be empty")
        if quantity_after < 0:
            raise ValidationError(f"quantity_after must be >= 0, got {quantity_after}")
        volume_after_amount = None if volume_after is None else to_amount(volume_after)
        if volume_after_amount is not None and volume_after_amount < ZERO:
            raise ValidationError(f"volume_after must be >= 0, got {volume_after_amount}")

        movement = InventoryMovement(
            batch_id=batch_id,
            movement_type=movement_type,
            amount=signed,
            quantity_delta=quantity_delta,
            volume_delta=None if volume_delta is None else to_amount(volume_delta),
            quantity_after=quantity_after,
            volume_after=volume_after_amount,
            reason=reason.strip(),
            operation_ref=operation_ref,
            moved_by=moved_by,
        )
        session.add(movement)
        return movement

    def history(self, batch_id: uuid.UUID) -> MovementHistory:
        with self._session_factory() as session:
            if session.get(Batch, batch_id) is None:
                raise NotFoundError("Batch", batch_id)
        return MovementHistory(self._session_factory, batch_id, self._chunk_size)

    def replay(self, batch_id: uuid.UUID) -> ReplayedState:
        """Rebuilds the batch's quantity and open-unit volume from the log alone."""
        with self._session_factory() as session:
            batch = session.get(Batch, batch_id)
            if batch is None:
                raise NotFoundError("Batch", batch_id)
            return self._replay(session, batch)

    def reconcile(self, batch_id: uuid.UUID) -> ReconciliationReport:
        with self._session_factory() as session:
            batch = session.get(Batch, batch_id)
            if batch is None:
                raise NotFoundError("Batch", batch_id)
            replayed = self._replay(session, batch)

        mismatches: list[str] = []
        if replayed.quantity != batch.quantity:
            mismatches.append(
                f"quantity: live {batch.quantity}, replayed {replayed.quantity}"
            )
        if replayed.current_unit_volume != batch.current_unit_volume:
            mismatches.append(
                f"current_unit_volume: live {batch.current_unit_volume}, "
                f"replayed {replayed.current_unit_volume}"
            )
        if replayed.snapshot_breaks:
            mismatches.append(
                "snapshot mismatch in movements "
                + ", ".join(str(m) for m in replayed.snapshot_breaks)
            )

        live = StockState(batch.quantity, batch.volume_per_unit, batch.current_unit_volume)
        derived = derive_status(
            live,
            batch.expiration_date,
            self._today(),
            reserved=batch.status == BatchStatus.RESERVED,
        )
        # A stored AVAILABLE/RESERVED past its date only means the lazy flip is pending.
        pending_expiry = derived == BatchStatus.EXPIRED and batch.status in (
            BatchStatus.AVAILABLE,
            BatchStatus.RESERVED,
        )
        if derived != batch.status and not pending_expiry:
            mismatches.append(f"status: stored {batch.status.value}, derived {derived.value}")

        report = ReconciliationReport(
            batch_id=batch_id,
            replayed=replayed,
            live_quantity=batch.quantity,
            live_current_unit_volume=batch.current_unit_volume,
            stored_status=batch.status,
            derived_status=derived,
            mismatches=mismatches,
        )
        if mismatches:
            logger.warning(
                "reconciliation_mismatch",
                batch_id=str(batch_id),
                mismatches=mismatches,
            )
        return report

    def _replay(self, session: Session, batch: Batch) -> ReplayedState:
        stmt = (
            select(InventoryMovement)
            .where(InventoryMovement.batch_id == batch.id)
            .order_by(InventoryMovement.id)
            .execution_options(yield_per=self._chunk_size)
        )
        quantity = 0
        volume: Decimal | None = ZERO if batch.is_volume_granular else None
        total = ZERO
        count = 0
        breaks: list[int] = []
        for movement in session.scalars(stmt):
            if count == 0 and movement.movement_type != MovementType.RECEIVE:
                raise ValidationError(
                    f"movement log of batch {batch.id} does not start with a receipt"
                )
            count += 1
            quantity += movement.quantity_delta
            total += movement.amount
            if volume is not None:
                volume += movement.volume_delta or ZERO
            if movement.quantity_after != quantity or movement.volume_after != volume:
                breaks.append(movement.id)

        if count == 0:
            raise ValidationError(f"batch {batch.id} has no movements to replay")
        return ReplayedState(
            batch_id=batch.id,
            quantity=quantity,
            current_unit_volume=volume,
            total_amount=total,
            movement_count=count,
            snapshot_breaks=tuple(breaks),
        )
