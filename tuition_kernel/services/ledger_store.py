"""
LedgerStore -- persistence operations shared by every billing service.

Responsibility:
    Loads ledger entities (raising typed NotFound errors), applies atomic
    balance increments to students and cash registers, and adds, queries
    and deletes payments and auxiliary expenses.

Architecture position:
    Kernel > Services -- imperative shell.  Used by the plan builder,
    settlement, refund, deletion and repair services.  Flush-only.

Invariants enforced:
    - Balances move by increments only: ``adjust_*_balance`` issues
      ``UPDATE ... SET balance = balance + :delta`` so concurrent writers
      to the same student or register never lose an update.
    - ``load_plan(lock=True)`` takes a row lock on the plan
      (SELECT ... FOR UPDATE) on databases that support it.

Failure modes:
    - StudentNotFoundError, CashRegisterNotFoundError, PlanNotFoundError.
    - CashRegisterInactiveError when posting to a deactivated register.
"""

from collections.abc import Iterable
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, update

from tuition_kernel.domain.values import PaymentStatus
from tuition_kernel.exceptions import (
    CashRegisterInactiveError,
    CashRegisterNotFoundError,
    PlanNotFoundError,
    StudentNotFoundError,
)
from tuition_kernel.logging_config import get_logger
from tuition_kernel.models.auxiliary_expense import AuxiliaryExpense
from tuition_kernel.models.cash_register import CashRegister
from tuition_kernel.models.payment import Payment
from tuition_kernel.models.payment_plan import PaymentPlan
from tuition_kernel.models.student import Student
from tuition_kernel.services.base import BaseService

logger = get_logger("services.ledger_store")


class LedgerStore(BaseService[PaymentPlan]):
    """
    Data access for the four interdependent ledger collections.

    Guarantees:
        - Every ``load_*`` either returns the entity or raises NotFound.
        - Balance increments are applied in SQL and the in-session copy
          is refreshed, so callers always read the post-increment value.
    """

    # -- Loads ---------------------------------------------------------------

    def load_plan(self, plan_id: UUID, lock: bool = False) -> PaymentPlan:
        stmt = select(PaymentPlan).where(PaymentPlan.id == plan_id)
        if lock:
            stmt = stmt.with_for_update()
        plan = self.session.execute(stmt).scalar_one_or_none()
        if plan is None:
            raise PlanNotFoundError(str(plan_id))
        return plan

    def load_student(self, student_id: UUID, lock: bool = False) -> Student:
        student = self.session.get(Student, student_id, with_for_update=lock or None)
        if student is None:
            raise StudentNotFoundError(str(student_id))
        return student

    def load_register(self, cash_register_id: UUID, require_active: bool = False) -> CashRegister:
        register = self.session.get(CashRegister, cash_register_id)
        if register is None:
            raise CashRegisterNotFoundError(str(cash_register_id))
        if require_active and not register.is_active:
            raise CashRegisterInactiveError(str(cash_register_id))
        return register

    def plan_ids(self) -> list[UUID]:
        return list(
            self.session.execute(select(PaymentPlan.id).order_by(PaymentPlan.created_at))
            .scalars()
            .all()
        )

    def plans_for_student(self, student_id: UUID) -> list[PaymentPlan]:
        return list(
            self.session.execute(
                select(PaymentPlan)
                .where(PaymentPlan.student_id == student_id)
                .order_by(PaymentPlan.created_at)
            )
            .scalars()
            .all()
        )

    # -- Atomic increments ---------------------------------------------------

    def adjust_student_balance(self, student_id: UUID, delta: Decimal) -> None:
        if not delta:
            return
        self.session.execute(
            update(Student)
            .where(Student.id == student_id)
            .values(balance=Student.balance + delta)
            .execution_options(synchronize_session="fetch")
        )
        logger.debug(
            "student_balance_adjusted",
            extra={"student_id": str(student_id), "delta": str(delta)},
        )

    def adjust_register_balance(self, cash_register_id: UUID, delta: Decimal) -> None:
        if not delta:
            return
        self.session.execute(
            update(CashRegister)
            .where(CashRegister.id == cash_register_id)
            .values(balance=CashRegister.balance + delta)
            .execution_options(synchronize_session="fetch")
        )
        logger.debug(
            "register_balance_adjusted",
            extra={"cash_register_id": str(cash_register_id), "delta": str(delta)},
        )

    # -- Payments ------------------------------------------------------------

    def add_payment(self, payment: Payment) -> Payment:
        self.session.add(payment)
        self.session.flush()
        return payment

    def payments_for_plan(self, plan_id: UUID) -> list[Payment]:
        return list(
            self.session.execute(
                select(Payment)
                .where(Payment.plan_id == plan_id)
                .order_by(Payment.paid_at, Payment.created_at)
            )
            .scalars()
            .all()
        )

    def live_payments_for_installment(self, plan_id: UUID, installment_number: int) -> list[Payment]:
        """Non-refunded payments for one installment, most recent first."""
        return list(
            self.session.execute(
                select(Payment)
                .where(
                    Payment.plan_id == plan_id,
                    Payment.installment_number == installment_number,
                    Payment.status != PaymentStatus.REFUNDED,
                )
                .order_by(Payment.paid_at.desc(), Payment.created_at.desc())
            )
            .scalars()
            .all()
        )

    def delete_payments(self, payments: Iterable[Payment]) -> int:
        count = 0
        for payment in payments:
            self.session.delete(payment)
            count += 1
        self.session.flush()
        return count

    # -- Expenses ------------------------------------------------------------

    def book_expense(self, expense: AuxiliaryExpense) -> AuxiliaryExpense:
        """
        Add an auxiliary expense.

        Commission and VAT expenses are deducted from their register;
        refund audit entries are recorded without a balance effect.
        """
        self.session.add(expense)
        if expense.affects_register:
            self.adjust_register_balance(expense.cash_register_id, -expense.amount)
        self.session.flush()
        return expense

    def expenses_for_payments(
        self,
        payment_ids: Iterable[UUID],
        auto_generated_only: bool = False,
    ) -> list[AuxiliaryExpense]:
        ids = list(payment_ids)
        if not ids:
            return []
        stmt = select(AuxiliaryExpense).where(AuxiliaryExpense.related_payment_id.in_(ids))
        if auto_generated_only:
            stmt = stmt.where(AuxiliaryExpense.is_auto_generated.is_(True))
        return list(self.session.execute(stmt).scalars().all())

    def reverse_expense(self, expense: AuxiliaryExpense) -> Decimal:
        """
        Undo an expense's register deduction and delete it.

        Returns the amount given back to the register (zero for refund
        audit entries).
        """
        restored = Decimal("0.00")
        if expense.affects_register:
            self.adjust_register_balance(expense.cash_register_id, expense.amount)
            restored = expense.amount
        self.session.delete(expense)
        return restored

    def delete_expenses(self, expenses: Iterable[AuxiliaryExpense]) -> int:
        count = 0
        for expense in expenses:
            self.session.delete(expense)
            count += 1
        self.session.flush()
        return count
