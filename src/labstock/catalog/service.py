"""
Nomenclature Catalog.

Reference data for everything the ledger stocks. Items can be corrected at
any time, but their category and unit of measure are frozen once a batch
refers to them: every recorded amount is denominated in that unit.
"""

import uuid
from typing import Any

from sqlalchemy import exists, select
from sqlalchemy.orm import Session, sessionmaker

from labstock.catalog.units import default_unit, unit_dimension
from labstock.common.logging import get_logger
from labstock.database.catalog import ContainerType, NomenclatureItem
from labstock.database.db_session import session_scope
from labstock.database.enums import NomenclatureCategory
from labstock.database.inventory import Batch
from labstock.ledger.errors import NotFoundError, ValidationError

logger = get_logger(__name__)

EDITABLE_FIELDS = {"name", "storage_temp", "container_type_id", "is_active"}
FROZEN_ONCE_STOCKED = {"category", "unit"}


def _category(value: NomenclatureCategory | str) -> NomenclatureCategory:
    try:
        return NomenclatureCategory(value)
    except ValueError:
        allowed = ", ".join(c.value for c in NomenclatureCategory)
        raise ValidationError(f"unknown category {value!r}; expected one of: {allowed}") from None


class NomenclatureCatalog:
    def __init__(self, session_factory: sessionmaker[Session]):
        self.session_factory = session_factory

    # ----------------- container types -----------------

    def add_container_type(
        self,
        code: str,
        name: str,
        surface_area_cm2: float | None = None,
        volume_ml: float | None = None,
        optimal_confluency: float | None = None,
        is_cryo: bool = False,
    ) -> ContainerType:
        code = (code or "").strip()
        if not code or not (name or "").strip():
            raise ValidationError("container type code and name must not be empty")
        for field, value in (
            ("surface_area_cm2", surface_area_cm2),
            ("volume_ml", volume_ml),
            ("optimal_confluency", optimal_confluency),
        ):
            if value is not None and value <= 0:
                raise ValidationError(f"{field} must be > 0, got {value}")

        with session_scope(self.session_factory) as session:
            if session.scalar(select(ContainerType.id).where(ContainerType.code == code)):
                raise ValidationError(f"container type {code!r} already exists")
            container = ContainerType(
                id=uuid.uuid4(),
                code=code,
                name=name.strip(),
                surface_area_cm2=surface_area_cm2,
                volume_ml=volume_ml,
                optimal_confluency=optimal_confluency,
                is_cryo=is_cryo,
                is_active=True,
            )
            session.add(container)

        logger.info("container_type_added", container_type_id=str(container.id), code=code)
        return container

    def get_container_type(self, container_type_id: uuid.UUID) -> ContainerType:
        with self.session_factory() as session:
            container = session.get(ContainerType, container_type_id)
            if container is None:
                raise NotFoundError("ContainerType", container_type_id)
            return container

    def list_container_types(self, active_only: bool = True) -> list[ContainerType]:
        stmt = select(ContainerType).order_by(ContainerType.code)
        if active_only:
            stmt = stmt.where(ContainerType.is_active.is_(True))
        with self.session_factory() as session:
            return list(session.scalars(stmt))

    # ----------------- nomenclature -----------------

    def register(
        self,
        name: str,
        category: NomenclatureCategory | str,
        unit: str | None = None,
        container_type_id: uuid.UUID | None = None,
        storage_temp: float | None = None,
    ) -> NomenclatureItem:
        """Adds an item. Without ``unit`` the category's default unit is used."""
        if not (name or "").strip():
            raise ValidationError("nomenclature name must not be empty")
        category = _category(category)
        unit = unit or default_unit(category)
        unit_dimension(unit)

        with session_scope(self.session_factory) as session:
            if container_type_id is not None:
                self._active_container(session, container_type_id)
            item = NomenclatureItem(
                id=uuid.uuid4(),
                name=name.strip(),
                category=category,
                unit=unit,
                container_type_id=container_type_id,
                storage_temp=storage_temp,
                is_active=True,
            )
            session.add(item)

        logger.info(
            "nomenclature_registered",
            nomenclature_id=str(item.id),
            category=category.value,
            unit=unit,
        )
        return item

    def get(self, item_id: uuid.UUID) -> NomenclatureItem:
        with self.session_factory() as session:
            item = session.get(NomenclatureItem, item_id)
            if item is None:
                raise NotFoundError("Nomenclature", item_id)
            return item

    def list_items(
        self,
        category: NomenclatureCategory | str | None = None,
        active_only: bool = True,
    ) -> list[NomenclatureItem]:
        stmt = select(NomenclatureItem).order_by(NomenclatureItem.name)
        if category is not None:
            stmt = stmt.where(NomenclatureItem.category == _category(category))
        if active_only:
            stmt = stmt.where(NomenclatureItem.is_active.is_(True))
        with self.session_factory() as session:
            return list(session.scalars(stmt))

    def update(self, item_id: uuid.UUID, **changes: Any) -> NomenclatureItem:
        """
        Corrective edit. ``name``, ``storage_temp``, ``container_type_id`` and
        ``is_active`` may always change; ``category`` and ``unit`` only while
        no batch refers to the item.
        """
        unknown = set(changes) - EDITABLE_FIELDS - FROZEN_ONCE_STOCKED
        if unknown:
            raise ValidationError(f"cannot update fields: {', '.join(sorted(unknown))}")

        with session_scope(self.session_factory) as session:
            item = session.get(NomenclatureItem, item_id)
            if item is None:
                raise NotFoundError("Nomenclature", item_id)

            frozen = FROZEN_ONCE_STOCKED & set(changes)
            if frozen and session.scalar(select(exists().where(Batch.nomenclature_id == item_id))):
                raise ValidationError(
                    f"{', '.join(sorted(frozen))} of nomenclature {item_id} "
                    "cannot change once batches exist"
                )

            if "name" in changes:
                if not (changes["name"] or "").strip():
                    raise ValidationError("nomenclature name must not be empty")
                item.name = changes["name"].strip()
            if "category" in changes:
                item.category = _category(changes["category"])
            if "unit" in changes:
                unit_dimension(changes["unit"])
                item.unit = changes["unit"]
            if changes.get("container_type_id") is not None:
                self._active_container(session, changes["container_type_id"])
            if "container_type_id" in changes:
                item.container_type_id = changes["container_type_id"]
            if "storage_temp" in changes:
                item.storage_temp = changes["storage_temp"]
            if "is_active" in changes:
                item.is_active = bool(changes["is_active"])

        logger.info("nomenclature_updated", nomenclature_id=str(item_id), fields=sorted(changes))
        return item

    def deactivate(self, item_id: uuid.UUID) -> NomenclatureItem:
        return self.update(item_id, is_active=False)

    def _active_container(self, session: Session, container_type_id: uuid.UUID) -> ContainerType:
        container = session.get(ContainerType, container_type_id)
        if container is None or not container.is_active:
            raise NotFoundError("ContainerType", container_type_id)
        return container
