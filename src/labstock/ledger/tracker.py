"""
Unit Consumption Tracker.

Pure arithmetic over the stock held by one batch. A volume-granular batch
holds ``quantity`` physical units, exactly one of which is *open*: its
remaining content is ``current_unit_volume`` and the other
``quantity - 1`` units are sealed and full. The open unit is counted in
``quantity``; quantity 3 means "the open bottle plus two sealed ones".

Consumption drains the open unit first. When a draw is larger than what the
open unit holds, the open unit is emptied and discarded, the next sealed
unit is opened at ``volume_per_unit`` and the remainder is drawn from it,
repeating until the draw is satisfied. A draw that empties the open unit
exactly leaves the empty unit open (quantity unchanged) unless it was the
last unit, in which case the batch ends at (0, 0).

Unit-granular batches (no ``volume_per_unit``) are counted in whole units
only.

Nothing here touches the database; the batch ledger maps rows to
``StockState`` and back.
"""

from dataclasses import dataclass
from decimal import Decimal

from labstock.ledger.errors import InsufficientStockError, ValidationError
from labstock.ledger.quantities import ZERO, is_whole, to_amount


@dataclass(frozen=True)
class StockState:
    quantity: int
    volume_per_unit: Decimal | None = None
    current_unit_volume: Decimal | None = None

    def __post_init__(self) -> None:
        if self.quantity < 0:
            raise ValidationError(f"quantity must be >= 0, got {self.quantity}")
        if self.volume_per_unit is None:
            if self.current_unit_volume is not None:
                raise ValidationError("current_unit_volume requires volume_per_unit")
            return
        if self.volume_per_unit <= ZERO:
            raise ValidationError(f"volume_per_unit must be > 0, got {self.volume_per_unit}")
        if self.current_unit_volume is None:
            raise ValidationError("volume-granular stock needs current_unit_volume")
        if not ZERO <= self.current_unit_volume <= self.volume_per_unit:
            raise ValidationError(
                f"current_unit_volume must lie in [0, {self.volume_per_unit}], "
                f"got {self.current_unit_volume}"
            )
        if self.quantity == 0 and self.current_unit_volume != ZERO:
            raise ValidationError("a batch without units cannot hold an open unit")

    @property
    def is_volume_granular(self) -> bool:
        return self.volume_per_unit is not None

    @property
    def total_content(self) -> Decimal:
        return total_content(self)

    @property
    def is_empty(self) -> bool:
        return self.total_content == ZERO


@dataclass(frozen=True)
class StockDelta:
    """Difference between two states of the same batch, as logged in a movement."""

    amount: Decimal
    quantity_delta: int
    volume_delta: Decimal | None

    @classmethod
    def between(cls, before: StockState, after: StockState) -> "StockDelta":
        volume_delta = None
        if before.is_volume_granular:
            volume_delta = after.current_unit_volume - before.current_unit_volume
        return cls(
            amount=after.total_content - before.total_content,
            quantity_delta=after.quantity - before.quantity,
            volume_delta=volume_delta,
        )


def total_content(state: StockState) -> Decimal:
    """One partially used unit plus ``quantity - 1`` full ones, in the unit of measure."""
    if state.volume_per_unit is None:
        return Decimal(state.quantity)
    if state.quantity == 0:
        return ZERO
    return state.current_unit_volume + (state.quantity - 1) * state.volume_per_unit


def _positive(amount: object) -> Decimal:
    value = to_amount(amount)
    if value <= ZERO:
        raise ValidationError(f"amount must be > 0, got {amount!r}")
    return value


def drain(state: StockState, amount: object) -> StockState:
    """
    Removes ``amount`` from the batch, open unit first.

    Raises InsufficientStockError, leaving ``state`` untouched, when the
    batch holds less than ``amount`` in total.
    """
    value = _positive(amount)
    available = state.total_content
    if value > available:
        raise InsufficientStockError(None, value, available)

    if not state.is_volume_granular:
        if not is_whole(value):
            raise ValidationError(f"unit-granular stock is drawn in whole units, got {value}")
        return StockState(quantity=state.quantity - int(value))

    volume_per_unit = state.volume_per_unit
    current = state.current_unit_volume
    quantity = state.quantity

    if value <= current:
        current -= value
    else:
        # Closed form of the drain-and-open cascade: every unit opened past the
        # current one is drained in full except the last.
        rest = value - current
        full, partial = divmod(rest, volume_per_unit)
        opened = int(full) + (1 if partial else 0)
        quantity -= opened
        current = volume_per_unit * opened - rest

    if quantity == 1 and current == ZERO:
        quantity = 0
    return StockState(quantity, volume_per_unit, current)


def refill(state: StockState, amount: object) -> StockState:
    """
    Adds ``amount`` back to the batch (positive corrections, recounts).

    Volume-granular stock is laid out again so that the open unit holds the
    remainder and every other unit is full.
    """
    value = _positive(amount)

    if not state.is_volume_granular:
        if not is_whole(value):
            raise ValidationError(f"unit-granular stock is adjusted in whole units, got {value}")
        return StockState(quantity=state.quantity + int(value))

    volume_per_unit = state.volume_per_unit
    total = state.total_content + value
    full, partial = divmod(total, volume_per_unit)
    if partial:
        return StockState(int(full) + 1, volume_per_unit, partial)
    return StockState(int(full), volume_per_unit, volume_per_unit)
