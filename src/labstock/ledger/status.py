from datetime import date

from labstock.database.enums import BatchStatus
from labstock.ledger.tracker import StockState


def is_expired(expiration_date: date | None, today: date) -> bool:
    """A batch is usable through its expiration date and expired from the day after."""
    return expiration_date is not None and expiration_date < today


def derive_status(
    state: StockState,
    expiration_date: date | None,
    today: date,
    reserved: bool = False,
) -> BatchStatus:
    """
    Status implied by stock and dates alone. Depletion outranks expiry, expiry
    outranks a reservation.
    """
    if state.is_empty:
        return BatchStatus.DEPLETED
    if is_expired(expiration_date, today):
        return BatchStatus.EXPIRED
    if reserved:
        return BatchStatus.RESERVED
    return BatchStatus.AVAILABLE
