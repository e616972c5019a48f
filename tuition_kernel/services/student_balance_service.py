"""
StudentBalanceService -- rebuilds a student's balance from their plans.

Responsibility:
    Recomputes Student.balance as the sum of outstanding debt over the
    student's payment plans (discounted_amount - paid_amount per plan),
    correcting drift left by manual ledger edits outside the kernel.

Architecture position:
    Kernel > Services -- imperative shell.  Flush-only; the billing facade
    commits.

Invariants enforced:
    - The correction is applied as one increment (new - old) through
      LedgerStore.adjust_student_balance, so balance still moves by
      increments only.
    - The student row is locked while the plans are summed.

Failure modes:
    - StudentNotFoundError for an unknown student.
"""

from uuid import UUID

from sqlalchemy.orm import Session

from tuition_kernel.domain.dtos import StudentBalanceReport, StudentPlanBalance
from tuition_kernel.domain.money import ZERO
from tuition_kernel.logging_config import get_logger
from tuition_kernel.models.student import Student
from tuition_kernel.services.base import BaseService
from tuition_kernel.services.ledger_store import LedgerStore

logger = get_logger("services.student_balance")


class StudentBalanceService(BaseService[Student]):
    def __init__(self, session: Session, store: LedgerStore | None = None):
        super().__init__(session)
        self._store = store or LedgerStore(session)

    def recalculate(self, student_id: UUID) -> StudentBalanceReport:
        student = self._store.load_student(student_id, lock=True)
        old_balance = student.balance

        lines = tuple(
            StudentPlanBalance(
                plan_id=plan.id,
                course_ref=plan.course_ref,
                discounted_amount=plan.discounted_amount,
                paid_amount=plan.paid_amount,
                outstanding=plan.discounted_amount - plan.paid_amount,
            )
            for plan in self._store.plans_for_student(student.id)
        )
        new_balance = sum((line.outstanding for line in lines), ZERO)

        self._store.adjust_student_balance(student.id, new_balance - old_balance)
        self.session.flush()

        report = StudentBalanceReport(
            student_id=student.id,
            old_balance=old_balance,
            new_balance=new_balance,
            plans=lines,
        )
        logger.info(
            "student_balance_recalculated",
            extra={
                "student_id": str(student.id),
                "old_balance": str(old_balance),
                "new_balance": str(new_balance),
                "difference": str(report.difference),
                "plans_scanned": len(lines),
            },
        )
        return report
