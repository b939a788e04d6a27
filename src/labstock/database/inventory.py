import uuid
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import (
    BigInteger,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.schema import CheckConstraint

from labstock.database.base import Base
from labstock.database.constraints import check_non_negative, check_nullable_positive
from labstock.database.enums import BatchStatus, MovementType

if TYPE_CHECKING:
    from labstock.database.catalog import NomenclatureItem

# Three fractional digits: microlitre resolution on ml-denominated media.
AMOUNT_PRECISION = 14
AMOUNT_SCALE = 3


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _amount() -> Numeric:
    return Numeric(AMOUNT_PRECISION, AMOUNT_SCALE, asdecimal=True)


class Batch(Base):
    __tablename__ = "batches"
    __table_args__ = (
        check_non_negative("quantity", name="check_batch_quantity_non_negative"),
        check_nullable_positive("volume_per_unit", name="check_volume_per_unit_positive"),
        CheckConstraint(
            "current_unit_volume IS NULL OR current_unit_volume >= 0",
            name="check_current_unit_volume_non_negative",
        ),
        CheckConstraint(
            "current_unit_volume IS NULL OR current_unit_volume <= volume_per_unit",
            name="check_current_unit_volume_bounded",
        ),
        CheckConstraint(
            "(volume_per_unit IS NULL) = (current_unit_volume IS NULL)",
            name="check_unit_volume_pairing",
        ),
        UniqueConstraint("nomenclature_id", "batch_number", name="uq_batches_nomenclature_number"),
        Index("ix_batches_fefo", "nomenclature_id", "status", "expiration_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    nomenclature_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("nomenclatures.id"), nullable=False
    )
    batch_number: Mapped[str] = mapped_column(String(64), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    volume_per_unit: Mapped[Decimal | None] = mapped_column(_amount())
    current_unit_volume: Mapped[Decimal | None] = mapped_column(_amount())
    expiration_date: Mapped[date | None] = mapped_column(Date)
    status: Mapped[BatchStatus] = mapped_column(
        SAEnum(
            BatchStatus,
            name="batch_status",
            native_enum=False,
            length=16,
            values_callable=lambda e: [m.value for m in e],
        ),
        default=BatchStatus.AVAILABLE,
        nullable=False,
    )

    # Descriptive receipt metadata, not used by any ledger rule.
    manufacturer: Mapped[str | None] = mapped_column(String(255))
    supplier: Mapped[str | None] = mapped_column(String(255))
    catalog_number: Mapped[str | None] = mapped_column(String(128))
    invoice_number: Mapped[str | None] = mapped_column(String(128))
    invoice_date: Mapped[date | None] = mapped_column(Date)
    storage_location: Mapped[str | None] = mapped_column(String(255))
    notes: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False
    )

    # Relationships
    nomenclature: Mapped["NomenclatureItem"] = relationship(back_populates="batches")
    movements: Mapped[list["InventoryMovement"]] = relationship(
        back_populates="batch",
        order_by="InventoryMovement.id",
    )

    @property
    def is_volume_granular(self) -> bool:
        return self.volume_per_unit is not None


class InventoryMovement(Base):
    __tablename__ = "inventory_movements"
    __table_args__ = (
        check_non_negative("quantity_after", name="check_quantity_after_non_negative"),
        CheckConstraint(
            "volume_after IS NULL OR volume_after >= 0",
            name="check_volume_after_non_negative",
        ),
        Index("ix_inventory_movements_batch", "batch_id", "id"),
    )

    # Integer key gives a total append order for newest-first history.
    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    batch_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("batches.id"), nullable=False)
    movement_type: Mapped[MovementType] = mapped_column(
        SAEnum(
            MovementType,
            name="movement_type",
            native_enum=False,
            length=16,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(_amount(), nullable=False)
    quantity_delta: Mapped[int] = mapped_column(Integer, nullable=False)
    volume_delta: Mapped[Decimal | None] = mapped_column(_amount())
    quantity_after: Mapped[int] = mapped_column(Integer, nullable=False)
    volume_after: Mapped[Decimal | None] = mapped_column(_amount())
    reason: Mapped[str] = mapped_column(String(255), nullable=False)
    operation_ref: Mapped[str | None] = mapped_column(String(128), index=True)
    moved_by: Mapped[str | None] = mapped_column(String(128))
    moved_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )

    # Relationships
    batch: Mapped["Batch"] = relationship(back_populates="movements")
