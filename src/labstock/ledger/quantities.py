"""Decimal helpers shared by the ledger: every amount lives at the column scale."""

from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation

from labstock.database.inventory import AMOUNT_SCALE
from labstock.ledger.errors import ValidationError

ZERO = Decimal("0")
QUANTUM = Decimal(1).scaleb(-AMOUNT_SCALE)


def to_amount(value: object, field: str = "amount") -> Decimal:
    """
    Converts ints, floats, strings and Decimals to a scale-3 Decimal.

    Only floats are rounded, to strip binary noise such as 0.1 + 0.2. Any
    other input finer than the scale is rejected rather than altered.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number, got {value!r}")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
        if not amount.is_finite():
            raise ValidationError(f"{field} must be finite, got {value!r}")
        scaled = amount.quantize(QUANTUM, rounding=ROUND_HALF_EVEN)
    except InvalidOperation as exc:
        raise ValidationError(f"{field} must be a number, got {value!r}") from exc
    if scaled != amount and not isinstance(value, float):
        raise ValidationError(
            f"{field} allows at most {AMOUNT_SCALE} decimal places, got {value!r}"
        )
    return scaled


def is_whole(amount: Decimal) -> bool:
    return amount == amount.to_integral_value()


def to_units(value: object, field: str = "quantity") -> int:
    """Whole-unit counts: accepts 3, 3.0, "3", Decimal("3.000"); rejects fractions."""
    amount = to_amount(value, field)
    if not is_whole(amount):
        raise ValidationError(f"{field} must be a whole number of units, got {value!r}")
    return int(amount)
