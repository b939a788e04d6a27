import uuid
from itertools import islice

from fastapi import APIRouter, Depends, Query, status

from labstock.api.deps import get_inventory
from labstock.database.inventory import Batch
from labstock.ledger.batches import BatchMetadata, state_of
from labstock.ledger.retry import run_with_conflict_retry
from labstock.ledger.service import Inventory
from labstock.reporting.expiry import days_until_expiration, expiration_warning_level
from labstock.schemas.inventory import (
    AdjustRequest,
    BatchReceiveRequest,
    BatchResponse,
    ConsumeRequest,
    DisposeRequest,
    MovementResponse,
    ReconciliationResponse,
)

router = APIRouter(prefix="/batches", tags=["batches"])

_METADATA_FIELDS = (
    "manufacturer",
    "supplier",
    "catalog_number",
    "invoice_number",
    "invoice_date",
    "storage_location",
    "notes",
)


def batch_response(batch: Batch, inventory: Inventory) -> BatchResponse:
    days = days_until_expiration(batch.expiration_date, inventory.batches.today())
    return BatchResponse(
        id=batch.id,
        nomenclature_id=batch.nomenclature_id,
        batch_number=batch.batch_number,
        quantity=batch.quantity,
        volume_per_unit=batch.volume_per_unit,
        current_unit_volume=batch.current_unit_volume,
        total_content=state_of(batch).total_content,
        expiration_date=batch.expiration_date,
        status=batch.status,
        days_until_expiration=days,
        expiration_warning_level=expiration_warning_level(days, inventory.settings.expiry),
        created_at=batch.created_at,
        updated_at=batch.updated_at,
        **{field: getattr(batch, field) for field in _METADATA_FIELDS},
    )


@router.post("", response_model=BatchResponse, status_code=status.HTTP_201_CREATED)
def receive_batch(
    body: BatchReceiveRequest,
    inventory: Inventory = Depends(get_inventory),
) -> BatchResponse:
    batch = inventory.batches.receive(
        body.nomenclature_id,
        body.batch_number,
        body.quantity,
        volume_per_unit=body.volume_per_unit,
        expiration_date=body.expiration_date,
        metadata=BatchMetadata(**body.model_dump(include=set(_METADATA_FIELDS))),
        current_unit_volume=body.current_unit_volume,
        operation_ref=body.operation_ref,
        moved_by=body.moved_by,
    )
    return batch_response(batch, inventory)


@router.get("/{batch_id}", response_model=BatchResponse)
def get_batch(
    batch_id: uuid.UUID,
    inventory: Inventory = Depends(get_inventory),
) -> BatchResponse:
    return batch_response(inventory.batches.get(batch_id), inventory)


@router.post("/{batch_id}/consume", response_model=BatchResponse)
def consume(
    batch_id: uuid.UUID,
    body: ConsumeRequest,
    inventory: Inventory = Depends(get_inventory),
) -> BatchResponse:
    batch = run_with_conflict_retry(
        lambda: inventory.batches.apply_consumption(
            batch_id,
            body.amount,
            reason=body.reason,
            operation_ref=body.operation_ref,
            moved_by=body.moved_by,
        ),
        inventory.settings.ledger,
    )
    return batch_response(batch, inventory)


@router.post("/{batch_id}/adjust", response_model=BatchResponse)
def adjust(
    batch_id: uuid.UUID,
    body: AdjustRequest,
    inventory: Inventory = Depends(get_inventory),
) -> BatchResponse:
    batch = run_with_conflict_retry(
        lambda: inventory.batches.apply_adjustment(
            batch_id,
            body.delta,
            body.reason,
            operation_ref=body.operation_ref,
            moved_by=body.moved_by,
        ),
        inventory.settings.ledger,
    )
    return batch_response(batch, inventory)


@router.post("/{batch_id}/dispose", response_model=BatchResponse)
def dispose(
    batch_id: uuid.UUID,
    body: DisposeRequest,
    inventory: Inventory = Depends(get_inventory),
) -> BatchResponse:
    batch = run_with_conflict_retry(
        lambda: inventory.batches.dispose(
            batch_id,
            body.reason_code,
            notes=body.notes,
            operation_ref=body.operation_ref,
            moved_by=body.moved_by,
        ),
        inventory.settings.ledger,
    )
    return batch_response(batch, inventory)


@router.post("/{batch_id}/reserve", response_model=BatchResponse)
def reserve(
    batch_id: uuid.UUID,
    inventory: Inventory = Depends(get_inventory),
) -> BatchResponse:
    batch = run_with_conflict_retry(
        lambda: inventory.batches.reserve(batch_id), inventory.settings.ledger
    )
    return batch_response(batch, inventory)


@router.post("/{batch_id}/release", response_model=BatchResponse)
def release(
    batch_id: uuid.UUID,
    inventory: Inventory = Depends(get_inventory),
) -> BatchResponse:
    batch = run_with_conflict_retry(
        lambda: inventory.batches.release(batch_id), inventory.settings.ledger
    )
    return batch_response(batch, inventory)


@router.post("/{batch_id}/expire", response_model=BatchResponse)
def expire_if_due(
    batch_id: uuid.UUID,
    inventory: Inventory = Depends(get_inventory),
) -> BatchResponse:
    batch = run_with_conflict_retry(
        lambda: inventory.batches.mark_expired_if_due(batch_id), inventory.settings.ledger
    )
    return batch_response(batch, inventory)


@router.get("/{batch_id}/movements", response_model=list[MovementResponse])
def movements(
    batch_id: uuid.UUID,
    limit: int = Query(default=100, ge=1, le=1000),
    inventory: Inventory = Depends(get_inventory),
) -> list[MovementResponse]:
    history = inventory.movements.history(batch_id)
    return [MovementResponse.model_validate(m) for m in islice(history, limit)]


@router.get("/{batch_id}/reconciliation", response_model=ReconciliationResponse)
def reconciliation(
    batch_id: uuid.UUID,
    inventory: Inventory = Depends(get_inventory),
) -> ReconciliationResponse:
    report = inventory.movements.reconcile(batch_id)
    return ReconciliationResponse(
        batch_id=report.batch_id,
        consistent=report.is_consistent,
        live_quantity=report.live_quantity,
        live_current_unit_volume=report.live_current_unit_volume,
        replayed_quantity=report.replayed.quantity,
        replayed_current_unit_volume=report.replayed.current_unit_volume,
        movement_count=report.replayed.movement_count,
        stored_status=report.stored_status,
        derived_status=report.derived_status,
        mismatches=report.mismatches,
    )
