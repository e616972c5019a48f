"""
DeletionService -- removes a payment plan and unwinds its ledger effects.

Responsibility:
    Reverses every live payment of the plan (register and student), reverses
    and deletes their commission/VAT expenses, deletes every expense and
    payment tied to the plan, takes the plan's debt back off the student,
    and deletes the plan with its installments and amendments.

Architecture position:
    Kernel > Services -- imperative shell.  Consumes LedgerStore.
    Flush-only; the billing facade owns the transaction.

Invariants enforced:
    - After deletion the student's balance and every touched register are
      back at their pre-plan values (barring balance changes made by
      other plans).
    - Refunded payments are skipped during reversal; their refund already
      undid them.

Failure modes:
    - PlanNotFoundError.
"""

from uuid import UUID

from tuition_kernel.domain.dtos import DeletionResult
from tuition_kernel.domain.money import ZERO
from tuition_kernel.domain.values import ExpenseCategory, PaymentStatus
from tuition_kernel.logging_config import get_logger
from tuition_kernel.models.payment_plan import PaymentPlan
from tuition_kernel.services.base import BaseService
from tuition_kernel.services.ledger_store import LedgerStore

logger = get_logger("services.deletion")


class DeletionService(BaseService[PaymentPlan]):
    """Cascading plan deletion."""

    def __init__(self, session, store: LedgerStore | None = None):
        super().__init__(session)
        self._store = store or LedgerStore(session)

    def delete_plan(self, plan_id: UUID) -> DeletionResult:
        plan = self._store.load_plan(plan_id, lock=True)
        student_id = plan.student_id
        payments = self._store.payments_for_plan(plan.id)

        reversed_payments = 0
        reversed_payment_total = ZERO
        reversed_expense_total = ZERO

        # 1. Reverse live payments and their register-affecting expenses
        for payment in payments:
            if payment.status == PaymentStatus.REFUNDED:
                continue
            self._store.adjust_register_balance(payment.cash_register_id, -payment.amount)
            self._store.adjust_student_balance(student_id, payment.amount)
            reversed_payments += 1
            reversed_payment_total += payment.amount

            for expense in self._store.expenses_for_payments([payment.id]):
                if expense.category == ExpenseCategory.REFUND:
                    continue
                reversed_expense_total += self._store.reverse_expense(expense)
        self.session.flush()

        # 2. Remaining expenses (refund audit entries) carry no balance effect
        deleted_expenses = self._store.delete_expenses(
            self._store.expenses_for_payments(p.id for p in payments)
        )

        # 3. Payments
        deleted_payments = self._store.delete_payments(payments)

        # 4. Debt booked at creation
        self._store.adjust_student_balance(student_id, -plan.discounted_amount)

        # 5. Plan (installments and amendments cascade)
        self.session.delete(plan)
        self.session.flush()

        logger.info(
            "plan_deleted",
            extra={
                "plan_id": str(plan_id),
                "student_id": str(student_id),
                "reversed_payment_count": reversed_payments,
                "reversed_payment_total": str(reversed_payment_total),
                "reversed_expense_total": str(reversed_expense_total),
                "deleted_payment_count": deleted_payments,
            },
        )

        return DeletionResult(
            plan_id=plan_id,
            student_id=student_id,
            reversed_payment_count=reversed_payments,
            reversed_payment_total=reversed_payment_total,
            reversed_expense_total=reversed_expense_total,
            deleted_expense_count=deleted_expenses,
            deleted_payment_count=deleted_payments,
        )
