"""
Module: tuition_kernel.models.student
Responsibility: ORM persistence for students as debtors.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - balance is signed: positive means the student owes money, negative
      means the institution holds a credit for the student.
    - balance only moves through LedgerStore.adjust_student_balance
      (atomic increments); no service writes an absolute value.

Audit relevance:
    balance is the running total of every plan booked, payment settled,
    refund issued and plan deleted for this student.
"""

from decimal import Decimal

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from tuition_kernel.db.base import TrackedBase
from tuition_kernel.domain.money import ZERO


class Student(TrackedBase):
    """
    A student as seen by billing.

    Non-goals:
        Contact details, enrollment history and attendance live outside
        the billing kernel.  Students are never deleted here.
    """

    __tablename__ = "students"

    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    balance: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)

    def __repr__(self) -> str:
        return f"<Student(id={self.id!r}, balance={self.balance})>"
