"""
In-process per-batch mutual exclusion.

Every mutation of a batch runs while holding that batch's lock. Locks for
several batches are always taken in sorted id order, so two allocations over
overlapping candidate sets cannot deadlock. Row locks
(``SELECT ... FOR UPDATE``) cover deployments with more than one process.
"""

import threading
import time
import uuid
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from labstock.common.logging import get_logger
from labstock.ledger.errors import ConcurrencyConflictError

logger = get_logger(__name__)


class _BatchLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class BatchLockRegistry:
    """
    Locks are created on first use and dropped once no thread holds or waits
    for them, so the registry only tracks batches that are in flight.
    """

    def __init__(self, timeout_seconds: float = 5.0):
        self.timeout_seconds = timeout_seconds
        self._guard = threading.Lock()
        self._locks: dict[uuid.UUID, _BatchLock] = {}

    def _checkout(self, batch_id: uuid.UUID) -> _BatchLock:
        with self._guard:
            entry = self._locks.get(batch_id)
            if entry is None:
                entry = self._locks[batch_id] = _BatchLock()
            entry.users += 1
            return entry

    def _checkin(self, batch_id: uuid.UUID, entry: _BatchLock) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[batch_id]

    def in_flight(self) -> int:
        """Batches currently held or waited on."""
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, batch_ids: Iterable[uuid.UUID], timeout: float | None = None) -> Iterator[None]:
        """
        Holds the locks of ``batch_ids`` for the duration of the block.

        Raises ConcurrencyConflictError if they cannot all be taken within
        ``timeout`` seconds; locks already taken are released first.
        """
        ordered = sorted(set(batch_ids), key=lambda b: b.bytes)
        budget = self.timeout_seconds if timeout is None else timeout
        deadline = time.monotonic() + budget
        acquired: list[tuple[uuid.UUID, _BatchLock]] = []
        try:
            for batch_id in ordered:
                entry = self._checkout(batch_id)
                remaining = max(0.0, deadline - time.monotonic())
                if not entry.lock.acquire(timeout=remaining):
                    self._checkin(batch_id, entry)
                    logger.warning(
                        "batch_lock_timeout",
                        batch_id=str(batch_id),
                        timeout_seconds=budget,
                    )
                    raise ConcurrencyConflictError(
                        [batch_id],
                        f"Timed out after {budget}s waiting for batch {batch_id}",
                    )
                acquired.append((batch_id, entry))
            yield
        finally:
            for batch_id, entry in reversed(acquired):
                entry.lock.release()
                self._checkin(batch_id, entry)
