"""
Batch Ledger.

Owns the physical batches of every nomenclature item: how many units are
left, how much is left in the open unit, when the batch expires and its
running status. Every change of stock goes through this module and is
written together with its movement in one transaction, under the batch's
lock.
"""

import uuid
from collections.abc import Callable, Iterable, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass, fields
from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from labstock.common.logging import get_logger
from labstock.database.catalog import NomenclatureItem
from labstock.database.db_session import session_scope
from labstock.database.enums import BatchStatus, DisposeReason, MovementType
from labstock.database.inventory import Batch
from labstock.ledger.errors import (
    ConcurrencyConflictError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from labstock.ledger.locks import BatchLockRegistry
from labstock.ledger.movements import MovementLog
from labstock.ledger.quantities import ZERO, to_amount, to_units
from labstock.ledger.status import is_expired
from labstock.ledger.tracker import StockDelta, StockState, drain, refill

logger = get_logger(__name__)

# SQLSTATEs for serialization failure, deadlock and lock_not_available.
_LOCK_SQLSTATES = {"40001", "40P01", "55P03"}

STOCK_STATUSES = (BatchStatus.AVAILABLE, BatchStatus.RESERVED)


@dataclass
class BatchMetadata:
    """Descriptive receipt details stored on the batch; no ledger rule reads them."""

    manufacturer: str | None = None
    supplier: str | None = None
    catalog_number: str | None = None
    invoice_number: str | None = None
    invoice_date: date | None = None
    storage_location: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class StockSummary:
    nomenclature_id: uuid.UUID
    total_units: int
    total_volume: Decimal
    batch_count: int


def state_of(batch: Batch) -> StockState:
    return StockState(batch.quantity, batch.volume_per_unit, batch.current_unit_volume)


def fefo_order() -> tuple:
    """Expiration ascending with undated batches last, then receipt order."""
    return (
        Batch.expiration_date.is_(None),
        Batch.expiration_date,
        Batch.created_at,
        Batch.batch_number,
        Batch.id,
    )


def is_lock_contention(exc: OperationalError) -> bool:
    code = getattr(exc.orig, "pgcode", None) or getattr(exc.orig, "sqlstate", None)
    if code in _LOCK_SQLSTATES:
        return True
    return "database is locked" in str(exc.orig).lower()


class BatchLedger:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        movement_log: MovementLog,
        locks: BatchLockRegistry | None = None,
        today: Callable[[], date] = date.today,
    ):
        self.session_factory = session_factory
        self.movement_log = movement_log
        self.locks = locks or BatchLockRegistry()
        self.today = today

    # ----------------- transactions and row access -----------------

    @contextmanager
    def transaction(self, batch_ids: Iterable[uuid.UUID] = ()) -> Iterator[Session]:
        """
        One unit of work. Commits on success and rolls back on any error.
        Lock contention reported by the database becomes ConcurrencyConflictError.
        """
        try:
            with session_scope(self.session_factory) as session:
                yield session
        except OperationalError as exc:
            if is_lock_contention(exc):
                raise ConcurrencyConflictError(batch_ids) from exc
            raise

    def lock_rows(self, session: Session, batch_ids: Sequence[uuid.UUID]) -> list[Batch]:
        """SELECT ... FOR UPDATE on the given batches, in id order."""
        stmt = (
            select(Batch)
            .where(Batch.id.in_(list(batch_ids)))
            .order_by(Batch.id)
            .with_for_update()
        )
        rows = {batch.id: batch for batch in session.scalars(stmt)}
        missing = [batch_id for batch_id in batch_ids if batch_id not in rows]
        if missing:
            raise NotFoundError("Batch", missing[0])
        return [rows[batch_id] for batch_id in batch_ids]

    # ----------------- reads -----------------

    def get(self, batch_id: uuid.UUID) -> Batch:
        with self.session_factory() as session:
            batch = session.get(Batch, batch_id)
            if batch is None:
                raise NotFoundError("Batch", batch_id)
            return batch

    def list_batches(
        self,
        nomenclature_id: uuid.UUID | None = None,
        statuses: Iterable[BatchStatus] | None = None,
    ) -> list[Batch]:
        stmt = select(Batch).order_by(*fefo_order())
        if nomenclature_id is not None:
            stmt = stmt.where(Batch.nomenclature_id == nomenclature_id)
        if statuses is not None:
            stmt = stmt.where(Batch.status.in_(list(statuses)))
        with self.session_factory() as session:
            return list(session.scalars(stmt))

    def available_stock(self, nomenclature_id: uuid.UUID) -> StockSummary:
        """
        Stock on hand: every batch that is neither expired nor depleted.
        RESERVED batches are counted; batches past their date are not, even
        before their status has been flipped.
        """
        today = self.today()
        with self.session_factory() as session:
            if session.get(NomenclatureItem, nomenclature_id) is None:
                raise NotFoundError("Nomenclature", nomenclature_id)
            batches = session.scalars(
                select(Batch).where(
                    Batch.nomenclature_id == nomenclature_id,
                    Batch.status.in_(STOCK_STATUSES),
                )
            ).all()

        total_units = 0
        total_volume = ZERO
        batch_count = 0
        for batch in batches:
            if is_expired(batch.expiration_date, today):
                continue
            state = state_of(batch)
            if state.is_empty:
                continue
            total_units += state.quantity
            total_volume += state.total_content
            batch_count += 1
        return StockSummary(nomenclature_id, total_units, total_volume, batch_count)

    # ----------------- receipt -----------------

    def receive(
        self,
        nomenclature_id: uuid.UUID,
        batch_number: str,
        quantity: object,
        volume_per_unit: object | None = None,
        expiration_date: date | None = None,
        metadata: BatchMetadata | None = None,
        current_unit_volume: object | None = None,
        operation_ref: str | None = None,
        moved_by: str | None = None,
    ) -> Batch:
        """
        Creates an AVAILABLE batch and its RECEIVE movement atomically.

        ``current_unit_volume`` defaults to ``volume_per_unit`` only when it is
        omitted, so a partially used batch can be brought in as it is.
        """
        batch_number = (batch_number or "").strip()
        if not batch_number:
            raise ValidationError("batch_number must not be empty")
        units = to_units(quantity)
        if units <= 0:
            raise ValidationError(f"quantity must be > 0, got {quantity!r}")

        per_unit = None
        open_unit = None
        if volume_per_unit is not None:
            per_unit = to_amount(volume_per_unit, "volume_per_unit")
            if per_unit <= ZERO:
                raise ValidationError(f"volume_per_unit must be > 0, got {volume_per_unit!r}")
            open_unit = per_unit
            if current_unit_volume is not None:
                open_unit = to_amount(current_unit_volume, "current_unit_volume")
                if not ZERO < open_unit <= per_unit:
                    raise ValidationError(
                        f"current_unit_volume must lie in (0, {per_unit}], "
                        f"got {current_unit_volume!r}"
                    )
        elif current_unit_volume is not None:
            raise ValidationError("current_unit_volume requires volume_per_unit")

        received = StockState(units, per_unit, open_unit)
        details = metadata or BatchMetadata()

        try:
            with self.transaction() as session:
                item = session.get(NomenclatureItem, nomenclature_id)
                if item is None or not item.is_active:
                    raise NotFoundError("Nomenclature", nomenclature_id)
                duplicate = session.scalar(
                    select(Batch.id).where(
                        Batch.nomenclature_id == nomenclature_id,
                        Batch.batch_number == batch_number,
                    )
                )
                if duplicate is not None:
                    raise ValidationError(
                        f"batch number {batch_number!r} already exists for "
                        f"nomenclature {nomenclature_id}"
                    )

                batch = Batch(
                    id=uuid.uuid4(),
                    nomenclature_id=nomenclature_id,
                    batch_number=batch_number,
                    quantity=received.quantity,
                    volume_per_unit=received.volume_per_unit,
                    current_unit_volume=received.current_unit_volume,
                    expiration_date=expiration_date,
                    status=BatchStatus.AVAILABLE,
                    **{f.name: getattr(details, f.name) for f in fields(details)},
                )
                session.add(batch)
                session.flush()
                self.movement_log.append(
                    session,
                    batch_id=batch.id,
                    movement_type=MovementType.RECEIVE,
                    amount=received.total_content,
                    quantity_delta=received.quantity,
                    volume_delta=received.current_unit_volume,
                    quantity_after=received.quantity,
                    volume_after=received.current_unit_volume,
                    reason="receipt",
                    operation_ref=operation_ref,
                    moved_by=moved_by,
                )
        except IntegrityError as exc:
            raise ValidationError(
                f"batch number {batch_number!r} already exists for nomenclature {nomenclature_id}"
            ) from exc

        logger.info(
            "batch_received",
            batch_id=str(batch.id),
            nomenclature_id=str(nomenclature_id),
            batch_number=batch_number,
            quantity=received.quantity,
            total_content=str(received.total_content),
        )
        return batch

    # ----------------- stock changes -----------------

    def apply_consumption(
        self,
        batch_id: uuid.UUID,
        amount: object,
        reason: str | None = None,
        operation_ref: str | None = None,
        moved_by: str | None = None,
    ) -> Batch:
        """
        Draws ``amount`` from one batch through the unit-consumption cascade.
        RESERVED batches may be consumed; EXPIRED ones may not.
        """
        value = to_amount(amount)
        if value <= ZERO:
            raise ValidationError(f"consumption amount must be > 0, got {amount!r}")

        with self.locks.hold([batch_id]):
            self._flip_if_expired(batch_id)
            with self.transaction([batch_id]) as session:
                (batch,) = self.lock_rows(session, [batch_id])
                if batch.status == BatchStatus.EXPIRED:
                    raise ValidationError(f"batch {batch_id} is expired and cannot be consumed")
                delta = self.drain_locked(
                    session,
                    batch,
                    value,
                    movement_type=MovementType.CONSUME,
                    reason=reason or "consumption",
                    operation_ref=operation_ref,
                    moved_by=moved_by,
                )

        logger.info(
            "consumption_applied",
            batch_id=str(batch_id),
            amount=str(value),
            quantity_delta=delta.quantity_delta,
            status=batch.status.value,
            operation_ref=operation_ref,
        )
        return batch

    def apply_adjustment(
        self,
        batch_id: uuid.UUID,
        delta: object,
        reason: str,
        operation_ref: str | None = None,
        moved_by: str | None = None,
    ) -> Batch:
        """
        Direct correction of a batch's content. Negative deltas drain through
        the cascade, positive ones lay the new total out again. A refill of a
        DEPLETED batch brings it back as AVAILABLE, or EXPIRED past its date.
        """
        value = to_amount(delta, "delta")
        if value == ZERO:
            raise ValidationError("adjustment delta must not be zero")
        if not reason or not reason.strip():
            raise ValidationError("adjustment reason must not be empty")

        with self.locks.hold([batch_id]):
            with self.transaction([batch_id]) as session:
                (batch,) = self.lock_rows(session, [batch_id])
                if value < ZERO:
                    change = self.drain_locked(
                        session,
                        batch,
                        -value,
                        movement_type=MovementType.ADJUST,
                        reason=reason,
                        operation_ref=operation_ref,
                        moved_by=moved_by,
                    )
                else:
                    before = state_of(batch)
                    change = self._write_state(
                        session,
                        batch,
                        before,
                        refill(before, value),
                        movement_type=MovementType.ADJUST,
                        reason=reason,
                        operation_ref=operation_ref,
                        moved_by=moved_by,
                    )

        logger.info(
            "adjustment_applied",
            batch_id=str(batch_id),
            amount=str(change.amount),
            reason=reason,
            status=batch.status.value,
        )
        return batch

    def dispose(
        self,
        batch_id: uuid.UUID,
        reason_code: DisposeReason | str,
        notes: str | None = None,
        operation_ref: str | None = None,
        moved_by: str | None = None,
    ) -> Batch:
        """Writes off everything left in the batch, leaving it DEPLETED."""
        try:
            code = DisposeReason(reason_code)
        except ValueError as exc:
            allowed = ", ".join(r.value for r in DisposeReason)
            raise ValidationError(
                f"unknown dispose reason {reason_code!r}; expected one of: {allowed}"
            ) from exc

        reason = f"dispose:{code.value}"
        if notes and notes.strip():
            reason = f"{reason}: {notes.strip()}"[:255]

        with self.locks.hold([batch_id]):
            with self.transaction([batch_id]) as session:
                (batch,) = self.lock_rows(session, [batch_id])
                remaining = state_of(batch).total_content
                if remaining == ZERO:
                    raise ValidationError(f"batch {batch_id} is already depleted")
                self.drain_locked(
                    session,
                    batch,
                    remaining,
                    movement_type=MovementType.ADJUST,
                    reason=reason,
                    operation_ref=operation_ref,
                    moved_by=moved_by,
                )

        logger.info(
            "batch_disposed",
            batch_id=str(batch_id),
            reason_code=code.value,
            amount=str(remaining),
        )
        return batch

    def drain_locked(
        self,
        session: Session,
        batch: Batch,
        amount: Decimal,
        *,
        movement_type: MovementType,
        reason: str,
        operation_ref: str | None = None,
        moved_by: str | None = None,
    ) -> StockDelta:
        """
        Drains a batch already locked in ``session`` and appends the movement.
        The caller holds the batch lock and owns the transaction.
        """
        before = state_of(batch)
        try:
            after = drain(before, amount)
        except InsufficientStockError as exc:
            raise InsufficientStockError(
                batch.nomenclature_id, exc.requested, exc.available, batch_id=batch.id
            ) from None
        return self._write_state(
            session,
            batch,
            before,
            after,
            movement_type=movement_type,
            reason=reason,
            operation_ref=operation_ref,
            moved_by=moved_by,
        )

    def _write_state(
        self,
        session: Session,
        batch: Batch,
        before: StockState,
        after: StockState,
        *,
        movement_type: MovementType,
        reason: str,
        operation_ref: str | None,
        moved_by: str | None,
    ) -> StockDelta:
        change = StockDelta.between(before, after)
        batch.quantity = after.quantity
        batch.current_unit_volume = after.current_unit_volume
        if after.is_empty:
            batch.status = BatchStatus.DEPLETED
        elif batch.status == BatchStatus.DEPLETED:
            expired = is_expired(batch.expiration_date, self.today())
            batch.status = BatchStatus.EXPIRED if expired else BatchStatus.AVAILABLE

        self.movement_log.append(
            session,
            batch_id=batch.id,
            movement_type=movement_type,
            amount=change.amount,
            quantity_delta=change.quantity_delta,
            volume_delta=change.volume_delta,
            quantity_after=after.quantity,
            volume_after=after.current_unit_volume,
            reason=reason,
            operation_ref=operation_ref,
            moved_by=moved_by,
        )
        return change

    # ----------------- status -----------------

    def mark_expired_if_due(self, batch_id: uuid.UUID) -> Batch:
        """Flips an AVAILABLE or RESERVED batch past its date to EXPIRED."""
        with self.locks.hold([batch_id]):
            return self._flip_if_expired(batch_id)

    def expire_due(self, nomenclature_id: uuid.UUID | None = None) -> list[uuid.UUID]:
        """Lazy expiry pass over many batches; returns the ids that were flipped."""
        stmt = select(Batch.id).where(
            Batch.status.in_(STOCK_STATUSES),
            Batch.expiration_date < self.today(),
        )
        if nomenclature_id is not None:
            stmt = stmt.where(Batch.nomenclature_id == nomenclature_id)
        with self.session_factory() as session:
            due = list(session.scalars(stmt))

        flipped = []
        for batch_id in due:
            with self.locks.hold([batch_id]):
                batch = self._flip_if_expired(batch_id)
            if batch.status == BatchStatus.EXPIRED:
                flipped.append(batch_id)
        return flipped

    def _flip_if_expired(self, batch_id: uuid.UUID) -> Batch:
        # Caller holds the batch lock. Committed on its own so a later
        # rejection does not undo the flip.
        with self.transaction([batch_id]) as session:
            (batch,) = self.lock_rows(session, [batch_id])
            due = batch.status in STOCK_STATUSES and is_expired(batch.expiration_date, self.today())
            if due:
                batch.status = BatchStatus.EXPIRED
        if due:
            logger.info(
                "batch_expired",
                batch_id=str(batch_id),
                expiration_date=batch.expiration_date.isoformat(),
            )
        return batch

    def reserve(self, batch_id: uuid.UUID) -> Batch:
        """Holds an AVAILABLE batch back from allocation. Not a stock movement."""
        return self._set_hold(batch_id, BatchStatus.AVAILABLE, BatchStatus.RESERVED, "batch_reserved")

    def release(self, batch_id: uuid.UUID) -> Batch:
        return self._set_hold(batch_id, BatchStatus.RESERVED, BatchStatus.AVAILABLE, "batch_released")

    def _set_hold(
        self,
        batch_id: uuid.UUID,
        expected: BatchStatus,
        target: BatchStatus,
        event: str,
    ) -> Batch:
        with self.locks.hold([batch_id]):
            self._flip_if_expired(batch_id)
            with self.transaction([batch_id]) as session:
                (batch,) = self.lock_rows(session, [batch_id])
                if batch.status != expected:
                    raise ValidationError(
                        f"batch {batch_id} is {batch.status.value}, expected {expected.value}"
                    )
                batch.status = target
        logger.info(event, batch_id=str(batch_id))
        return batch
