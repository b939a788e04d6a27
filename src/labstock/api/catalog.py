import uuid

from fastapi import APIRouter, Depends, Query, status

from labstock.api.batches import batch_response
from labstock.api.deps import get_inventory
from labstock.database.enums import BatchStatus, NomenclatureCategory
from labstock.ledger.quantities import ZERO
from labstock.ledger.retry import run_with_conflict_retry
from labstock.ledger.service import Inventory
from labstock.schemas.catalog import (
    ContainerTypeCreate,
    ContainerTypeResponse,
    NomenclatureCreate,
    NomenclatureResponse,
    NomenclatureUpdate,
)
from labstock.schemas.inventory import (
    AllocationLegResponse,
    AllocationRequest,
    AllocationResponse,
    BatchResponse,
    StockResponse,
)

router = APIRouter(tags=["catalog"])


@router.post(
    "/container-types",
    response_model=ContainerTypeResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_container_type(
    body: ContainerTypeCreate,
    inventory: Inventory = Depends(get_inventory),
) -> ContainerTypeResponse:
    container = inventory.catalog.add_container_type(**body.model_dump())
    return ContainerTypeResponse.model_validate(container)


@router.get("/container-types", response_model=list[ContainerTypeResponse])
def list_container_types(
    active_only: bool = True,
    inventory: Inventory = Depends(get_inventory),
) -> list[ContainerTypeResponse]:
    return [
        ContainerTypeResponse.model_validate(c)
        for c in inventory.catalog.list_container_types(active_only=active_only)
    ]


@router.post(
    "/nomenclature",
    response_model=NomenclatureResponse,
    status_code=status.HTTP_201_CREATED,
)
def register_nomenclature(
    body: NomenclatureCreate,
    inventory: Inventory = Depends(get_inventory),
) -> NomenclatureResponse:
    item = inventory.catalog.register(**body.model_dump())
    return NomenclatureResponse.model_validate(item)


@router.get("/nomenclature", response_model=list[NomenclatureResponse])
def list_nomenclature(
    category: NomenclatureCategory | None = None,
    active_only: bool = True,
    inventory: Inventory = Depends(get_inventory),
) -> list[NomenclatureResponse]:
    items = inventory.catalog.list_items(category=category, active_only=active_only)
    return [NomenclatureResponse.model_validate(item) for item in items]


@router.get("/nomenclature/{item_id}", response_model=NomenclatureResponse)
def get_nomenclature(
    item_id: uuid.UUID,
    inventory: Inventory = Depends(get_inventory),
) -> NomenclatureResponse:
    return NomenclatureResponse.model_validate(inventory.catalog.get(item_id))


@router.patch("/nomenclature/{item_id}", response_model=NomenclatureResponse)
def update_nomenclature(
    item_id: uuid.UUID,
    body: NomenclatureUpdate,
    inventory: Inventory = Depends(get_inventory),
) -> NomenclatureResponse:
    item = inventory.catalog.update(item_id, **body.model_dump(exclude_unset=True))
    return NomenclatureResponse.model_validate(item)


@router.get("/nomenclature/{item_id}/stock", response_model=StockResponse)
def nomenclature_stock(
    item_id: uuid.UUID,
    inventory: Inventory = Depends(get_inventory),
) -> StockResponse:
    item = inventory.catalog.get(item_id)
    summary = inventory.batches.available_stock(item_id)
    return StockResponse(
        nomenclature_id=item_id,
        unit=item.unit,
        total_units=summary.total_units,
        total_volume=summary.total_volume,
        batch_count=summary.batch_count,
    )


@router.get("/nomenclature/{item_id}/batches", response_model=list[BatchResponse])
def nomenclature_batches(
    item_id: uuid.UUID,
    status_filter: list[BatchStatus] | None = Query(default=None, alias="status"),
    inventory: Inventory = Depends(get_inventory),
) -> list[BatchResponse]:
    inventory.catalog.get(item_id)
    batches = inventory.batches.list_batches(item_id, statuses=status_filter)
    return [batch_response(batch, inventory) for batch in batches]


@router.post("/nomenclature/{item_id}/allocate", response_model=AllocationResponse)
def allocate(
    item_id: uuid.UUID,
    body: AllocationRequest,
    inventory: Inventory = Depends(get_inventory),
) -> AllocationResponse:
    if body.dry_run:
        plan = inventory.allocator.plan(item_id, body.amount, unit=body.unit)
        return AllocationResponse(
            nomenclature_id=item_id,
            unit=plan.unit,
            requested=plan.requested,
            dry_run=True,
            legs=[
                AllocationLegResponse(batch_id=leg.batch_id, amount=leg.amount)
                for leg in plan.legs
            ],
            available=plan.available,
            shortfall=plan.shortfall,
        )

    requested = inventory.allocator.resolve_request(item_id, body.amount, unit=body.unit)
    legs = run_with_conflict_retry(
        lambda: inventory.allocator.allocate(
            item_id,
            body.amount,
            unit=body.unit,
            reason=body.reason,
            operation_ref=body.operation_ref,
            moved_by=body.moved_by,
        ),
        inventory.settings.ledger,
    )
    item = inventory.catalog.get(item_id)
    return AllocationResponse(
        nomenclature_id=item_id,
        unit=item.unit,
        requested=requested,
        dry_run=False,
        legs=[AllocationLegResponse(batch_id=leg.batch_id, amount=leg.amount) for leg in legs],
        shortfall=ZERO,
    )
