"""
FEFO Allocator.

Turns a demand for a nomenclature item into an explicit plan of
(batch, amount) legs, first-expired-first-out, and applies the plan as one
all-or-nothing transaction.

Ordering: expiration date ascending, batches without a date last, ties in
receipt order. Inside each batch the unit-consumption cascade already drains
the open unit before any sealed one, so open units need no separate
preference across batches.
"""

import uuid
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from labstock.catalog.units import convert, is_countable
from labstock.common.logging import get_logger
from labstock.database.catalog import NomenclatureItem
from labstock.database.enums import BatchStatus, MovementType
from labstock.database.inventory import Batch
from labstock.ledger.batches import BatchLedger, fefo_order, state_of
from labstock.ledger.errors import InsufficientStockError, NotFoundError, ValidationError
from labstock.ledger.quantities import QUANTUM, ZERO, is_whole, to_amount
from labstock.ledger.status import is_expired
from labstock.ledger.tracker import StockState

logger = get_logger(__name__)


@dataclass(frozen=True)
class AllocationLeg:
    batch_id: uuid.UUID
    amount: Decimal


@dataclass(frozen=True)
class Candidate:
    batch_id: uuid.UUID
    state: StockState


@dataclass(frozen=True)
class AllocationPlan:
    nomenclature_id: uuid.UUID
    requested: Decimal
    unit: str
    legs: tuple[AllocationLeg, ...]
    available: Decimal

    @property
    def allocated(self) -> Decimal:
        return sum((leg.amount for leg in self.legs), ZERO)

    @property
    def shortfall(self) -> Decimal:
        return max(ZERO, self.requested - self.allocated)

    @property
    def is_satisfiable(self) -> bool:
        return self.shortfall == ZERO

    @property
    def short_on_whole_units(self) -> bool:
        """Enough stock overall, but unit-granular batches cannot supply the fraction."""
        return not self.is_satisfiable and self.available >= self.requested


def plan_fefo(
    nomenclature_id: uuid.UUID,
    requested: Decimal,
    unit: str,
    candidates: Sequence[Candidate],
) -> AllocationPlan:
    """
    Greedy fill over ``candidates``, which must already be in FEFO order.
    Unit-granular batches contribute whole units only.
    """
    remaining = requested
    legs: list[AllocationLeg] = []
    available = ZERO
    for candidate in candidates:
        content = candidate.state.total_content
        available += content
        if remaining <= ZERO:
            continue
        take = min(content, remaining)
        if not candidate.state.is_volume_granular:
            take = take.to_integral_value(rounding=ROUND_FLOOR)
        if take > ZERO:
            legs.append(AllocationLeg(candidate.batch_id, take))
            remaining -= take
    return AllocationPlan(
        nomenclature_id=nomenclature_id,
        requested=requested,
        unit=unit,
        legs=tuple(legs),
        available=available,
    )


class FEFOAllocator:
    def __init__(self, ledger: BatchLedger):
        self.ledger = ledger

    def resolve_request(
        self,
        nomenclature_id: uuid.UUID,
        requested_amount: object,
        unit: str | None = None,
    ) -> Decimal:
        """The demand expressed in the item's own unit."""
        with self.ledger.session_factory() as session:
            item = self._item(session, nomenclature_id)
            return self._requested(item, requested_amount, unit)

    def plan(
        self,
        nomenclature_id: uuid.UUID,
        requested_amount: object,
        unit: str | None = None,
    ) -> AllocationPlan:
        """Dry run: what ``allocate`` would draw right now. Nothing is changed."""
        with self.ledger.session_factory() as session:
            item = self._item(session, nomenclature_id)
            requested = self._requested(item, requested_amount, unit)
            candidates = self._candidates(session, nomenclature_id)
        return plan_fefo(nomenclature_id, requested, item.unit, candidates)

    def allocate(
        self,
        nomenclature_id: uuid.UUID,
        requested_amount: object,
        unit: str | None = None,
        reason: str | None = None,
        operation_ref: str | None = None,
        moved_by: str | None = None,
    ) -> list[AllocationLeg]:
        """
        Draws ``requested_amount`` across batches in FEFO order.

        Every candidate batch stays locked from planning until commit. Raises
        InsufficientStockError, with nothing applied, when the candidates
        cannot cover the whole demand, and ValidationError when they could
        only by splitting a unit-granular batch.
        """
        with self.ledger.session_factory() as session:
            item = self._item(session, nomenclature_id)
            requested = self._requested(item, requested_amount, unit)

        # Lazy expiry is committed first and survives a rejected allocation.
        self.ledger.expire_due(nomenclature_id)

        with self.ledger.session_factory() as session:
            candidate_ids = [c.batch_id for c in self._candidates(session, nomenclature_id)]

        with self.ledger.locks.hold(candidate_ids):
            with self.ledger.transaction(candidate_ids) as session:
                rows = self.ledger.lock_rows(session, candidate_ids) if candidate_ids else []
                by_id = {batch.id: batch for batch in rows}
                # Re-read under lock: another mutation may have drained or reserved a batch.
                candidates = self._candidates(session, nomenclature_id, restrict_to=by_id)
                plan = plan_fefo(nomenclature_id, requested, item.unit, candidates)
                if plan.short_on_whole_units:
                    raise ValidationError(
                        f"{requested} {item.unit} cannot be drawn: the batches that could "
                        f"cover it only supply whole units"
                    )
                if not plan.is_satisfiable:
                    logger.info(
                        "allocation_rejected",
                        nomenclature_id=str(nomenclature_id),
                        requested=str(requested),
                        available=str(plan.available),
                    )
                    raise InsufficientStockError(nomenclature_id, requested, plan.available)

                for leg in plan.legs:
                    self.ledger.drain_locked(
                        session,
                        by_id[leg.batch_id],
                        leg.amount,
                        movement_type=MovementType.CONSUME,
                        reason=reason or "allocation",
                        operation_ref=operation_ref,
                        moved_by=moved_by,
                    )

        logger.info(
            "allocation_committed",
            nomenclature_id=str(nomenclature_id),
            requested=str(requested),
            unit=item.unit,
            legs=[{"batch_id": str(leg.batch_id), "amount": str(leg.amount)} for leg in plan.legs],
            operation_ref=operation_ref,
        )
        return list(plan.legs)

    # ----------------- internal helpers -----------------

    def _item(self, session: Session, nomenclature_id: uuid.UUID) -> NomenclatureItem:
        item = session.get(NomenclatureItem, nomenclature_id)
        if item is None or not item.is_active:
            raise NotFoundError("Nomenclature", nomenclature_id)
        return item

    def _requested(self, item: NomenclatureItem, amount: object, unit: str | None) -> Decimal:
        value = to_amount(amount, "requested_amount")
        if value <= ZERO:
            raise ValidationError(f"requested_amount must be > 0, got {amount!r}")
        if unit is not None:
            converted = convert(value, unit, item.unit)
            if converted != converted.quantize(QUANTUM):
                raise ValidationError(
                    f"{amount} {unit} is finer than the resolution of {item.unit}"
                )
            value = to_amount(converted, "requested_amount")
        if is_countable(item.unit) and not is_whole(value):
            raise ValidationError(f"{item.unit} are allocated in whole units, got {value}")
        return value

    def _candidates(
        self,
        session: Session,
        nomenclature_id: uuid.UUID,
        restrict_to: dict[uuid.UUID, Batch] | None = None,
    ) -> list[Candidate]:
        today = self.ledger.today()
        stmt = (
            select(Batch)
            .where(
                Batch.nomenclature_id == nomenclature_id,
                Batch.status == BatchStatus.AVAILABLE,
            )
            .order_by(*fefo_order())
        )
        if restrict_to is not None:
            if not restrict_to:
                return []
            stmt = stmt.where(Batch.id.in_(list(restrict_to)))
        candidates = []
        for batch in session.scalars(stmt):
            if is_expired(batch.expiration_date, today):
                continue
            state = state_of(batch)
            if state.is_empty:
                continue
            candidates.append(Candidate(batch.id, state))
        return candidates
