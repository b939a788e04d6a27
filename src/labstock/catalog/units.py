"""
Units of measure and conversion between units of the same dimension.

Factors are relative to the base unit of each dimension (g, ml, pcs, U,
mol). Packs are not expanded into pieces and IU are treated as U.
"""

import enum
from decimal import Decimal

from labstock.database.enums import NomenclatureCategory
from labstock.ledger.errors import ValidationError


class UnitDimension(enum.StrEnum):
    MASS = "mass"
    VOLUME = "volume"
    COUNT = "count"
    ACTIVITY = "activity"
    MOLAR = "molar"


_FACTORS: dict[UnitDimension, dict[str, Decimal]] = {
    UnitDimension.MASS: {
        "ug": Decimal("0.000001"),
        "mg": Decimal("0.001"),
        "g": Decimal("1"),
        "kg": Decimal("1000"),
    },
    UnitDimension.VOLUME: {
        "ul": Decimal("0.001"),
        "ml": Decimal("1"),
        "l": Decimal("1000"),
    },
    UnitDimension.COUNT: {
        "pcs": Decimal("1"),
        "pack": Decimal("1"),
    },
    UnitDimension.ACTIVITY: {
        "U": Decimal("1"),
        "IU": Decimal("1"),
    },
    UnitDimension.MOLAR: {
        "umol": Decimal("0.000001"),
        "mmol": Decimal("0.001"),
        "mol": Decimal("1"),
    },
}

_UNIT_DIMENSION: dict[str, UnitDimension] = {
    unit: dimension for dimension, factors in _FACTORS.items() for unit in factors
}

CATEGORY_DEFAULT_UNITS: dict[NomenclatureCategory, str] = {
    NomenclatureCategory.MEDIUM: "ml",
    NomenclatureCategory.SERUM: "ml",
    NomenclatureCategory.BUFFER: "ml",
    NomenclatureCategory.SUPPLEMENT: "ml",
    NomenclatureCategory.ENZYME: "U",
    NomenclatureCategory.REAGENT: "mg",
    NomenclatureCategory.CONSUMABLE: "pcs",
    NomenclatureCategory.EQUIPMENT: "pcs",
}

KNOWN_UNITS = tuple(_UNIT_DIMENSION)


def unit_dimension(unit: str) -> UnitDimension:
    try:
        return _UNIT_DIMENSION[unit]
    except KeyError:
        raise ValidationError(
            f"unknown unit {unit!r}; expected one of: {', '.join(KNOWN_UNITS)}"
        ) from None


def units_for(dimension: UnitDimension) -> list[str]:
    return list(_FACTORS[dimension])


def default_unit(category: NomenclatureCategory) -> str:
    return CATEGORY_DEFAULT_UNITS.get(category, "pcs")


def is_countable(unit: str) -> bool:
    return unit_dimension(unit) == UnitDimension.COUNT


def convert(value: Decimal, from_unit: str, to_unit: str) -> Decimal:
    """Converts ``value`` between two units of the same dimension."""
    if from_unit == to_unit:
        return value
    source = unit_dimension(from_unit)
    target = unit_dimension(to_unit)
    if source != target:
        raise ValidationError(
            f"cannot convert {from_unit} ({source.value}) to {to_unit} ({target.value})"
        )
    factors = _FACTORS[source]
    return value * factors[from_unit] / factors[to_unit]
