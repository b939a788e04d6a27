"""Retry of ledger mutations that lost a race for a batch."""

from collections.abc import Callable
from typing import TypeVar

from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from labstock.common.logging import get_logger
from labstock.config_schema import LedgerConfig
from labstock.ledger.errors import ConcurrencyConflictError

logger = get_logger(__name__)

T = TypeVar("T")


def run_with_conflict_retry(operation: Callable[[], T], config: LedgerConfig | None = None) -> T:
    """
    Runs ``operation`` again from the top while it fails with
    ConcurrencyConflictError, with exponential back-off. The last conflict is
    re-raised once the configured attempts are used up. Every other error
    propagates immediately.
    """
    config = config or LedgerConfig()
    attempt_number = 0

    for attempt in Retrying(
        stop=stop_after_attempt(config.conflict_retry_attempts),
        wait=wait_exponential(
            multiplier=config.conflict_retry_wait_min_seconds,
            min=config.conflict_retry_wait_min_seconds,
            max=config.conflict_retry_wait_max_seconds,
        ),
        retry=retry_if_exception_type(ConcurrencyConflictError),
        reraise=True,
    ):
        with attempt:
            attempt_number += 1
            try:
                return operation()
            except ConcurrencyConflictError as exc:
                logger.warning(
                    "ledger_conflict_retry",
                    attempt=attempt_number,
                    batch_ids=[str(b) for b in exc.batch_ids],
                )
                raise

    # Unreachable with reraise=True
    raise ConcurrencyConflictError((), "ledger operation failed after retries")
