import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, String, Uuid
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from labstock.database.base import Base
from labstock.database.constraints import check_nullable_positive
from labstock.database.enums import NomenclatureCategory

if TYPE_CHECKING:
    from labstock.database.inventory import Batch


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ContainerType(Base):
    __tablename__ = "container_types"
    __table_args__ = (
        check_nullable_positive("surface_area_cm2", name="check_surface_area_positive"),
        check_nullable_positive("volume_ml", name="check_container_volume_positive"),
        check_nullable_positive("optimal_confluency", name="check_confluency_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    code: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    surface_area_cm2: Mapped[float | None] = mapped_column(Float)
    volume_ml: Mapped[float | None] = mapped_column(Float)
    optimal_confluency: Mapped[float | None] = mapped_column(Float)
    is_cryo: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )

    # Relationships
    nomenclatures: Mapped[list["NomenclatureItem"]] = relationship(back_populates="container_type")


class NomenclatureItem(Base):
    __tablename__ = "nomenclatures"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    category: Mapped[NomenclatureCategory] = mapped_column(
        SAEnum(
            NomenclatureCategory,
            name="nomenclature_category",
            native_enum=False,
            length=32,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
    )
    unit: Mapped[str] = mapped_column(String(16), nullable=False)
    container_type_id: Mapped[uuid.UUID | None] = mapped_column(ForeignKey("container_types.id"))
    storage_temp: Mapped[float | None] = mapped_column(Float)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )

    # Relationships
    container_type: Mapped["ContainerType | None"] = relationship(back_populates="nomenclatures")
    batches: Mapped[list["Batch"]] = relationship(back_populates="nomenclature")
