from labstock.database.base import Base
from labstock.database.catalog import ContainerType, NomenclatureItem
from labstock.database.enums import BatchStatus, DisposeReason, MovementType, NomenclatureCategory
from labstock.database.inventory import Batch, InventoryMovement

__all__ = [
    "Base",
    "Batch",
    "BatchStatus",
    "ContainerType",
    "DisposeReason",
    "InventoryMovement",
    "MovementType",
    "NomenclatureCategory",
    "NomenclatureItem",
]
