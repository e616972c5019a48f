"""
Module: tuition_kernel.models.payment
Responsibility: ORM persistence for payments -- the append-only movement log.
Architecture position: Kernel > Models.  May import from db/ and domain/
    value types only.

Invariants enforced:
    - A payment is immutable once created, except for the refund fields
      (status, is_refunded, refund_*), which mark_refunded sets exactly once.
    - The resolved charge terms (commission/VAT rate and amount) are frozen
      on the payment at settlement time and never re-derived.
    - Sum of non-refunded payment amounts for a plan == plan.paid_amount.

Audit relevance:
    Payments are the source of truth the consistency auditor checks
    installment paid amounts against.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column

from tuition_kernel.db.base import TrackedBase
from tuition_kernel.db.types import enum_type, rate_type, text_type
from tuition_kernel.domain.money import ZERO
from tuition_kernel.domain.terms import ResolvedChargeTerms
from tuition_kernel.domain.values import PaymentMethod, PaymentStatus


class Payment(TrackedBase):
    """
    Money received from a student into a cash register.

    Table: ``payments``
    """

    __tablename__ = "payments"

    plan_id: Mapped[UUID | None] = mapped_column(ForeignKey("payment_plans.id"))
    student_id: Mapped[UUID] = mapped_column(ForeignKey("students.id"), nullable=False)
    cash_register_id: Mapped[UUID] = mapped_column(
        ForeignKey("cash_registers.id"),
        nullable=False,
    )
    installment_number: Mapped[int | None]

    payment_type: Mapped[PaymentMethod] = mapped_column(
        enum_type(PaymentMethod),
        default=PaymentMethod.CASH,
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(
        enum_type(PaymentStatus),
        default=PaymentStatus.COMPLETED,
        nullable=False,
    )
    paid_at: Mapped[datetime] = mapped_column(nullable=False)

    # Resolved charge terms
    commission_rate: Mapped[Decimal] = mapped_column(rate_type(), default=ZERO, nullable=False)
    commission_amount: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)
    vat_rate: Mapped[Decimal] = mapped_column(rate_type(), default=ZERO, nullable=False)
    vat_amount: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)
    is_invoiced: Mapped[bool] = mapped_column(default=False, nullable=False)

    # Refund
    is_refunded: Mapped[bool] = mapped_column(default=False, nullable=False)
    refund_amount: Mapped[Decimal | None]
    refund_date: Mapped[datetime | None]
    refund_reason: Mapped[str | None] = mapped_column(text_type())
    refund_cash_register_id: Mapped[UUID | None] = mapped_column(ForeignKey("cash_registers.id"))

    __table_args__ = (
        Index("idx_payments_plan_installment", "plan_id", "installment_number"),
        Index("idx_payments_student_id", "student_id"),
        Index("idx_payments_cash_register_id", "cash_register_id"),
    )

    @property
    def charge_terms(self) -> ResolvedChargeTerms:
        return ResolvedChargeTerms(
            commission_rate=self.commission_rate,
            commission_amount=self.commission_amount,
            vat_rate=self.vat_rate,
            vat_amount=self.vat_amount,
        )

    def mark_refunded(
        self,
        when: datetime,
        reason: str | None,
        cash_register_id: UUID,
    ) -> None:
        self.is_refunded = True
        self.status = PaymentStatus.REFUNDED
        self.refund_amount = self.amount
        self.refund_date = when
        self.refund_reason = reason
        self.refund_cash_register_id = cash_register_id

    def __repr__(self) -> str:
        return (
            f"<Payment(id={self.id!r}, plan_id={self.plan_id!r}, "
            f"installment={self.installment_number}, amount={self.amount}, "
            f"status={self.status.value})>"
        )
