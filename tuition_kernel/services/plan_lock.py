"""
PlanLockRegistry -- per-plan mutual exclusion.

Responsibility:
    Serializes settlement, refund and deletion for the same payment plan
    inside one process.  Combined with the plan row lock taken by
    LedgerStore.load_plan(lock=True), two operations on one plan can never
    interleave their read-modify-write steps.

Architecture position:
    Kernel > Services -- concurrency infrastructure used by the billing
    facade only.

Failure modes:
    - PlanLockTimeoutError if the lock is not acquired within the timeout.
"""

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from uuid import UUID

from tuition_kernel.exceptions import PlanLockTimeoutError
from tuition_kernel.logging_config import get_logger

logger = get_logger("services.plan_lock")


class _PlanLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.users = 0


class PlanLockRegistry:
    """
    One lock per plan id, created on first use.

    Guarantees:
        - ``hold(plan_id)`` is exclusive per plan and independent across plans.
        - Locks are not re-entrant: a facade call never nests another
          mutating call on the same plan.
        - A plan's entry lives only while some caller holds or waits for
          it, so the registry does not grow with the number of plans seen.
    """

    def __init__(self, timeout_seconds: float = 10.0):
        self.timeout_seconds = timeout_seconds
        self._locks: dict[UUID, _PlanLock] = {}
        self._guard = threading.Lock()

    def _checkout(self, plan_id: UUID) -> _PlanLock:
        with self._guard:
            entry = self._locks.get(plan_id)
            if entry is None:
                entry = _PlanLock()
                self._locks[plan_id] = entry
            entry.users += 1
            return entry

    def _checkin(self, plan_id: UUID, entry: _PlanLock) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0 and self._locks.get(plan_id) is entry:
                del self._locks[plan_id]

    @contextmanager
    def hold(self, plan_id: UUID) -> Iterator[None]:
        entry = self._checkout(plan_id)
        try:
            if not entry.lock.acquire(timeout=self.timeout_seconds):
                logger.warning(
                    "plan_lock_timeout",
                    extra={"plan_id": str(plan_id), "timeout_seconds": self.timeout_seconds},
                )
                raise PlanLockTimeoutError(str(plan_id), self.timeout_seconds)
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            self._checkin(plan_id, entry)
