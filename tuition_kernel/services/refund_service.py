"""
RefundService -- reverses a settled installment.

Responsibility:
    Undoes every balance effect of the payments that settled one
    installment: the register gives the money back, auto-generated
    commission/VAT expenses are reversed and deleted, the student's debt
    returns, and the installment goes back to unpaid.  A refund audit
    expense is written for reporting.

Architecture position:
    Kernel > Services -- imperative shell.  Consumes LedgerStore.
    Flush-only; the billing facade owns the transaction.

Invariants enforced:
    - Round trip: settle then refund returns student balance, register
      balance and plan.paid_amount to their pre-settlement values.
    - A paid installment must be backed by at least one non-refunded
      Payment.  If none exists the ledger is already inconsistent and the
      refund is refused without any mutation.
    - Schedule amendments made by overpayment redistribution are NOT
      undone; the installment keeps its current contracted amount.
    - Refund audit expenses carry no balance effect.

Failure modes (all raised before any mutation):
    - PlanNotFoundError, InstallmentNotFoundError.
    - InstallmentNotPaidError.
    - PaymentRecordMissingError.
    - CashRegisterNotFoundError for an unknown refund register.

Audit relevance:
    Emits ``refund_completed``.  Refunded payments keep their row with
    status=refunded and the refund date, reason and register.
"""

from uuid import UUID

from sqlalchemy.orm import Session

from tuition_kernel.domain.clock import Clock, SystemClock
from tuition_kernel.domain.dtos import RefundResult
from tuition_kernel.domain.money import ZERO, floor_at_zero
from tuition_kernel.domain.values import ExpenseCategory
from tuition_kernel.exceptions import (
    InstallmentNotFoundError,
    InstallmentNotPaidError,
    PaymentRecordMissingError,
)
from tuition_kernel.logging_config import get_logger
from tuition_kernel.models.auxiliary_expense import AuxiliaryExpense
from tuition_kernel.models.payment_plan import PaymentPlan
from tuition_kernel.services.base import BaseService
from tuition_kernel.services.ledger_store import LedgerStore

logger = get_logger("services.refund")


class RefundService(BaseService[PaymentPlan]):
    """
    Installment refunds.

    Contract:
        ``refund_installment`` refunds all live payments of the installment
        (one for ordinary plans, two for a mixed plan settled by card and
        cash), most recent first.

    Non-goals:
        - Partial refunds.
        - Restoring amounts reduced by overpayment redistribution.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        store: LedgerStore | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._store = store or LedgerStore(session)

    def refund_installment(
        self,
        plan_id: UUID,
        installment_number: int,
        reason: str | None = None,
        refund_cash_register_id: UUID | None = None,
        actor_id: UUID | None = None,
    ) -> RefundResult:
        plan = self._store.load_plan(plan_id, lock=True)
        installment = plan.installment(installment_number)
        if installment is None:
            raise InstallmentNotFoundError(str(plan.id), installment_number)
        if not installment.is_paid:
            raise InstallmentNotPaidError(str(plan.id), installment_number)

        payments = self._store.live_payments_for_installment(plan.id, installment_number)
        if not payments:
            logger.error(
                "refund_payment_missing",
                extra={"plan_id": str(plan.id), "installment_number": installment_number},
            )
            raise PaymentRecordMissingError(str(plan.id), installment_number)
        if refund_cash_register_id is not None:
            self._store.load_register(refund_cash_register_id)

        now = self._clock.now()
        refunded = ZERO
        restored = ZERO
        audit_expense_ids: list[UUID] = []

        for payment in payments:
            register_id = refund_cash_register_id or payment.cash_register_id
            payment.mark_refunded(now, reason, register_id)
            self._store.adjust_register_balance(register_id, -payment.amount)

            for expense in self._store.expenses_for_payments([payment.id], auto_generated_only=True):
                if expense.category == ExpenseCategory.REFUND:
                    continue
                restored += self._store.reverse_expense(expense)

            audit = self._store.book_expense(
                AuxiliaryExpense(
                    category=ExpenseCategory.REFUND,
                    amount=payment.amount,
                    cash_register_id=register_id,
                    related_payment_id=payment.id,
                    plan_id=plan.id,
                    student_id=plan.student_id,
                    description=reason or f"Refund of installment {installment_number}",
                    is_auto_generated=True,
                    expense_date=now,
                    created_by_id=actor_id,
                )
            )
            audit_expense_ids.append(audit.id)

            self._store.adjust_student_balance(plan.student_id, payment.amount)
            refunded += payment.amount

        installment.reset()
        plan.paid_amount = floor_at_zero(plan.paid_amount - refunded)
        plan.remaining_amount = plan.discounted_amount - plan.paid_amount
        plan.is_completed = False
        self.session.flush()

        logger.info(
            "refund_completed",
            extra={
                "plan_id": str(plan.id),
                "installment_number": installment_number,
                "refunded_amount": str(refunded),
                "payment_count": len(payments),
                "restored_expense_total": str(restored),
                "reason": reason,
            },
        )

        return RefundResult(
            plan=plan.to_dto(),
            installment_number=installment_number,
            refunded_amount=refunded,
            refunded_payment_ids=tuple(p.id for p in payments),
            restored_expense_total=restored,
            refund_expense_ids=tuple(audit_expense_ids),
        )
