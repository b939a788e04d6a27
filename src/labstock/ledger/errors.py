import uuid
from collections.abc import Iterable
from decimal import Decimal


class LedgerError(Exception):
    """Base exception for the inventory ledger"""

    def __init__(self, message: str, status_code: int = 500, error_code: str = "LEDGER_ERROR"):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        super().__init__(message)


class ValidationError(LedgerError):
    """Raised when receipt, consumption or adjustment input is malformed"""

    def __init__(self, message: str):
        super().__init__(message, status_code=422, error_code="VALIDATION_ERROR")


class NotFoundError(LedgerError):
    """Raised when a batch, nomenclature or container type id is unknown"""

    def __init__(self, entity: str, entity_id: object):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found", status_code=404, error_code="NOT_FOUND")


class InsufficientStockError(LedgerError):
    """Raised when a demand exceeds the stock that may be drawn; nothing is applied"""

    def __init__(
        self,
        nomenclature_id: uuid.UUID | None,
        requested: Decimal,
        available: Decimal,
        batch_id: uuid.UUID | None = None,
    ):
        self.nomenclature_id = nomenclature_id
        self.requested = requested
        self.available = available
        self.batch_id = batch_id
        self.shortfall = requested - available
        scope = f"batch {batch_id}" if batch_id else f"nomenclature {nomenclature_id}"
        super().__init__(
            f"Insufficient stock for {scope}: requested {requested}, "
            f"available {available}, short by {self.shortfall}",
            status_code=409,
            error_code="INSUFFICIENT_STOCK",
        )


class ConcurrencyConflictError(LedgerError):
    """Raised when another in-flight mutation holds one of the batches; safe to retry"""

    def __init__(self, batch_ids: Iterable[uuid.UUID], message: str | None = None):
        self.batch_ids = tuple(batch_ids)
        super().__init__(
            message or f"Batches busy with another mutation: {', '.join(map(str, self.batch_ids))}",
            status_code=409,
            error_code="CONCURRENCY_CONFLICT",
        )
