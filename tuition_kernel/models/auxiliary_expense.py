"""
Module: tuition_kernel.models.auxiliary_expense
Responsibility: ORM persistence for expenses the kernel books on its own:
    card commission, VAT, and refund audit entries.
Architecture position: Kernel > Models.  May import from db/ and domain/
    value types only.

Invariants enforced:
    - Commission and VAT expenses were deducted from their cash register
      when booked; removing one must add its amount back first.
    - Refund audit expenses are informational.  The refund itself already
      moved the register, so they carry no balance effect of their own.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column

from tuition_kernel.db.base import TrackedBase
from tuition_kernel.db.types import enum_type, text_type
from tuition_kernel.domain.values import ExpenseCategory


class AuxiliaryExpense(TrackedBase):
    """
    A system-generated expense linked to a payment.

    Table: ``auxiliary_expenses``
    """

    __tablename__ = "auxiliary_expenses"

    category: Mapped[ExpenseCategory] = mapped_column(
        enum_type(ExpenseCategory),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    cash_register_id: Mapped[UUID] = mapped_column(
        ForeignKey("cash_registers.id"),
        nullable=False,
    )
    related_payment_id: Mapped[UUID | None] = mapped_column(ForeignKey("payments.id"))
    plan_id: Mapped[UUID | None]
    student_id: Mapped[UUID | None]
    description: Mapped[str | None] = mapped_column(text_type())
    is_auto_generated: Mapped[bool] = mapped_column(default=True, nullable=False)
    expense_date: Mapped[datetime] = mapped_column(nullable=False)

    __table_args__ = (
        Index("idx_auxiliary_expenses_related_payment_id", "related_payment_id"),
    )

    @property
    def affects_register(self) -> bool:
        """Whether booking this expense deducted its amount from the register."""
        return self.category != ExpenseCategory.REFUND

    def __repr__(self) -> str:
        return (
            f"<AuxiliaryExpense(id={self.id!r}, category={self.category.value}, "
            f"amount={self.amount})>"
        )
