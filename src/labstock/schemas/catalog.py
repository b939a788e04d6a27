import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from labstock.database.enums import NomenclatureCategory


class ContainerTypeCreate(BaseModel):
    """Request model for a new container type"""

    code: str = Field(..., min_length=1, max_length=64, description="Short unique code, e.g. T75")
    name: str = Field(..., min_length=1, max_length=255)
    surface_area_cm2: float | None = Field(default=None, gt=0)
    volume_ml: float | None = Field(default=None, gt=0)
    optimal_confluency: float | None = Field(default=None, gt=0)
    is_cryo: bool = False


class ContainerTypeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    code: str
    name: str
    surface_area_cm2: float | None
    volume_ml: float | None
    optimal_confluency: float | None
    is_cryo: bool
    is_active: bool


class NomenclatureCreate(BaseModel):
    """Request model for a new nomenclature item"""

    name: str = Field(..., min_length=1, max_length=255)
    category: NomenclatureCategory
    unit: str | None = Field(
        default=None, description="Unit of measure; the category default when omitted"
    )
    container_type_id: uuid.UUID | None = None
    storage_temp: float | None = Field(default=None, description="Storage temperature, °C")


class NomenclatureUpdate(BaseModel):
    """Corrective edit; category and unit are rejected once batches exist"""

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1, max_length=255)
    category: NomenclatureCategory | None = None
    unit: str | None = None
    container_type_id: uuid.UUID | None = None
    storage_temp: float | None = None
    is_active: bool | None = None


class NomenclatureResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    category: NomenclatureCategory
    unit: str
    container_type_id: uuid.UUID | None
    storage_temp: float | None
    is_active: bool
    created_at: datetime
