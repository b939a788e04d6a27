import uuid
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from labstock.database.enums import BatchStatus, DisposeReason, MovementType
from labstock.reporting.expiry import ExpirationWarningLevel


class OperationContext(BaseModel):
    """Who and what a stock change belongs to; stored on the movement"""

    operation_ref: str | None = Field(
        default=None, max_length=128, description="Workflow operation this change belongs to"
    )
    moved_by: str | None = Field(default=None, max_length=128)


class BatchReceiveRequest(OperationContext):
    nomenclature_id: uuid.UUID
    batch_number: str = Field(..., min_length=1, max_length=64)
    quantity: int = Field(..., gt=0, description="Whole units received")
    volume_per_unit: Decimal | None = Field(
        default=None, gt=0, description="Content of one unit; omit for items counted in units"
    )
    current_unit_volume: Decimal | None = Field(
        default=None, gt=0, description="Remainder of the open unit; defaults to volume_per_unit"
    )
    expiration_date: date | None = None
    manufacturer: str | None = Field(default=None, max_length=255)
    supplier: str | None = Field(default=None, max_length=255)
    catalog_number: str | None = Field(default=None, max_length=128)
    invoice_number: str | None = Field(default=None, max_length=128)
    invoice_date: date | None = None
    storage_location: str | None = Field(default=None, max_length=255)
    notes: str | None = None


class ConsumeRequest(OperationContext):
    amount: Decimal = Field(..., gt=0)
    reason: str | None = Field(default=None, max_length=255)


class AdjustRequest(OperationContext):
    delta: Decimal = Field(..., description="Signed correction of the batch's content")
    reason: str = Field(..., min_length=1, max_length=255)


class DisposeRequest(OperationContext):
    reason_code: DisposeReason
    notes: str | None = Field(default=None, max_length=200)


class AllocationRequest(OperationContext):
    amount: Decimal = Field(..., gt=0)
    unit: str | None = Field(
        default=None, description="Unit of the amount; the nomenclature's unit when omitted"
    )
    reason: str | None = Field(default=None, max_length=255)
    dry_run: bool = Field(default=False, description="Plan only, change nothing")


class BatchResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    nomenclature_id: uuid.UUID
    batch_number: str
    quantity: int
    volume_per_unit: Decimal | None
    current_unit_volume: Decimal | None
    total_content: Decimal
    expiration_date: date | None
    status: BatchStatus
    days_until_expiration: int | None
    expiration_warning_level: ExpirationWarningLevel | None
    manufacturer: str | None
    supplier: str | None
    catalog_number: str | None
    invoice_number: str | None
    invoice_date: date | None
    storage_location: str | None
    notes: str | None
    created_at: datetime
    updated_at: datetime


class StockResponse(BaseModel):
    nomenclature_id: uuid.UUID
    unit: str
    total_units: int
    total_volume: Decimal
    batch_count: int


class AllocationLegResponse(BaseModel):
    batch_id: uuid.UUID
    amount: Decimal


class AllocationResponse(BaseModel):
    nomenclature_id: uuid.UUID
    unit: str
    requested: Decimal
    dry_run: bool
    legs: list[AllocationLegResponse]
    available: Decimal | None = Field(
        default=None, description="Stock the plan could draw from (dry runs only)"
    )
    shortfall: Decimal


class MovementResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    batch_id: uuid.UUID
    movement_type: MovementType
    amount: Decimal
    quantity_delta: int
    volume_delta: Decimal | None
    quantity_after: int
    volume_after: Decimal | None
    reason: str
    operation_ref: str | None
    moved_by: str | None
    moved_at: datetime


class ReconciliationResponse(BaseModel):
    batch_id: uuid.UUID
    consistent: bool
    live_quantity: int
    live_current_unit_volume: Decimal | None
    replayed_quantity: int
    replayed_current_unit_volume: Decimal | None
    movement_count: int
    stored_status: BatchStatus
    derived_status: BatchStatus
    mismatches: list[str]
