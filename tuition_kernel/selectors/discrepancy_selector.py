"""
Module: tuition_kernel.selectors.discrepancy_selector
Responsibility: Read-only consistency audit comparing each plan's Payment log
    with its installment schedule.
Architecture position: Kernel > Selectors.  May import from models/, domain
    DTOs and selectors/base.py.

Invariants checked:
    sum(non-refunded Payment.amount for plan) == sum(paid_amount of paid
    installments).  Plans where the two differ are reported with both
    breakdowns, largest absolute difference first.

Audit relevance:
    This is the diagnostic run before and after RepairInstallmentSync, and
    by the ``ledger_audit analyze`` command.
"""

from collections import defaultdict
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from tuition_kernel.domain.dtos import (
    DiscrepancyReport,
    InstallmentBreakdown,
    PaymentBreakdown,
    PlanDiscrepancy,
)
from tuition_kernel.domain.money import ZERO
from tuition_kernel.domain.values import PaymentStatus
from tuition_kernel.models.payment import Payment
from tuition_kernel.models.payment_plan import PaymentPlan
from tuition_kernel.selectors.base import BaseSelector


class DiscrepancySelector(BaseSelector[PaymentPlan]):
    """Payment-versus-installment totals per plan."""

    def analyze(self, plan_ids: list[UUID] | None = None) -> DiscrepancyReport:
        stmt = select(PaymentPlan).options(selectinload(PaymentPlan.installments))
        if plan_ids is not None:
            stmt = stmt.where(PaymentPlan.id.in_(plan_ids))
        plans = list(self.session.execute(stmt).scalars().all())

        payments_by_plan = self._payments_by_plan(plan_ids)

        discrepancies = []
        for plan in plans:
            payments = payments_by_plan.get(plan.id, [])
            payments_total = sum(
                (p.amount for p in payments if p.status != PaymentStatus.REFUNDED), ZERO
            )
            installments_total = sum(
                (i.paid_amount for i in plan.installments if i.is_paid), ZERO
            )
            difference = payments_total - installments_total
            if difference == ZERO:
                continue

            discrepancies.append(
                PlanDiscrepancy(
                    plan_id=plan.id,
                    student_id=plan.student_id,
                    payments_total=payments_total,
                    installments_total=installments_total,
                    difference=difference,
                    installments=tuple(
                        InstallmentBreakdown(
                            number=i.number,
                            amount=i.amount,
                            paid_amount=i.paid_amount,
                            is_paid=i.is_paid,
                        )
                        for i in plan.installments
                    ),
                    payments=tuple(
                        PaymentBreakdown(
                            payment_id=p.id,
                            installment_number=p.installment_number,
                            amount=p.amount,
                            is_refunded=p.status == PaymentStatus.REFUNDED,
                            paid_at=p.paid_at,
                        )
                        for p in payments
                    ),
                )
            )

        discrepancies.sort(key=lambda d: abs(d.difference), reverse=True)
        return DiscrepancyReport(plans_checked=len(plans), discrepancies=tuple(discrepancies))

    def _payments_by_plan(self, plan_ids: list[UUID] | None) -> dict[UUID, list[Payment]]:
        grouped: dict[UUID, list[Payment]] = defaultdict(list)
        stmt = select(Payment).where(Payment.plan_id.is_not(None)).order_by(Payment.paid_at)
        if plan_ids is not None:
            stmt = stmt.where(Payment.plan_id.in_(plan_ids))
        rows = self.session.execute(stmt).scalars()
        for payment in rows:
            grouped[payment.plan_id].append(payment)
        return grouped
