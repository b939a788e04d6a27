from fastapi import Request
from fastapi.responses import JSONResponse

from labstock.common.logging import get_logger
from labstock.ledger.errors import LedgerError

logger = get_logger(__name__)


async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    """Maps ledger errors to {"code", "detail"} payloads with the error's status."""
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "ledger_error",
        error_type=type(exc).__name__,
        error_code=exc.error_code,
        error_message=exc.message,
        status_code=exc.status_code,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"code": exc.error_code, "detail": exc.message},
    )
