"""
InstallmentSyncService -- self-healing pass over installment state.

Responsibility:
    Force-pays installments whose paid amount matches their contracted
    amount within the rounding epsilon but which are not flagged paid,
    rounds every installment amount to cents, and recomputes plan
    aggregates (paid_amount, remaining_amount, is_completed).

Architecture position:
    Kernel > Services -- imperative shell.  Flush-only; the billing facade
    commits one plan at a time.

Invariants enforced:
    - After repair: paid_amount == sum of paid installments' paid_amount
      and remaining_amount == discounted_amount - paid_amount.

Non-goals:
    - Does not create, refund or delete payments.  Divergence between the
      Payment log and the schedule that is not a rounding artefact is left
      for DiscrepancySelector to report.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from tuition_kernel.domain.clock import Clock, SystemClock
from tuition_kernel.domain.dtos import RepairedInstallment
from tuition_kernel.domain.money import ROUNDING_EPSILON, round_money, within_tolerance
from tuition_kernel.logging_config import get_logger
from tuition_kernel.models.payment_plan import PaymentPlan
from tuition_kernel.services.base import BaseService
from tuition_kernel.services.ledger_store import LedgerStore

logger = get_logger("services.installment_sync")


@dataclass
class PlanRepair:
    plan_id: UUID
    force_paid: list[RepairedInstallment] = field(default_factory=list)
    amounts_rounded: int = 0
    aggregates_changed: bool = False

    @property
    def changed(self) -> bool:
        return bool(self.force_paid) or self.amounts_rounded > 0 or self.aggregates_changed


class InstallmentSyncService(BaseService[PaymentPlan]):
    def __init__(
        self,
        session: Session,
        epsilon: Decimal = ROUNDING_EPSILON,
        clock: Clock | None = None,
        store: LedgerStore | None = None,
    ):
        super().__init__(session)
        self._epsilon = epsilon
        self._clock = clock or SystemClock()
        self._store = store or LedgerStore(session)

    def repair_plan(self, plan_id: UUID) -> PlanRepair:
        plan = self._store.load_plan(plan_id, lock=True)
        repair = PlanRepair(plan_id=plan.id)
        now = self._clock.now()

        for inst in plan.installments:
            for attr in ("amount", "paid_amount"):
                value = getattr(inst, attr)
                rounded = round_money(value)
                if rounded != value:
                    setattr(inst, attr, rounded)
                    repair.amounts_rounded += 1

            if not inst.is_paid and within_tolerance(inst.paid_amount, inst.amount, self._epsilon):
                inst.is_paid = True
                if inst.paid_date is None:
                    inst.paid_date = now
                repair.force_paid.append(
                    RepairedInstallment(
                        plan_id=plan.id,
                        number=inst.number,
                        amount=inst.amount,
                        paid_amount=inst.paid_amount,
                    )
                )

        before = (plan.paid_amount, plan.remaining_amount, plan.is_completed)
        plan.recompute_totals()
        plan.is_completed = bool(plan.installments) and all(i.is_paid for i in plan.installments)
        repair.aggregates_changed = before != (plan.paid_amount, plan.remaining_amount, plan.is_completed)
        self.session.flush()

        if repair.changed:
            logger.info(
                "plan_repaired",
                extra={
                    "plan_id": str(plan.id),
                    "force_paid": [r.number for r in repair.force_paid],
                    "amounts_rounded": repair.amounts_rounded,
                    "paid_amount": str(plan.paid_amount),
                    "remaining_amount": str(plan.remaining_amount),
                    "is_completed": plan.is_completed,
                },
            )
        return repair

    def plan_ids(self) -> list[UUID]:
        return self._store.plan_ids()

