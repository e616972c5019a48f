"""
Module: tuition_kernel.models.payment_plan
Responsibility: ORM persistence for payment plans, their installment
    schedule, and the amendments overpayment redistribution makes to it.
Architecture position: Kernel > Models.  May import from db/ and domain/
    value types only.

Invariants enforced:
    - remaining_amount == discounted_amount - paid_amount (recompute_totals).
    - paid_amount == sum of paid_amount over paid installments.
    - (plan_id, number) is unique per installment.
    - Installment.base_amount is the originally contracted amount and is
      never rewritten; Installment.amount is the current contracted amount.
    - Every reduction of Installment.amount has a ScheduleAmendment row, so
      the original schedule can always be reconstructed.

Failure modes:
    - IntegrityError on a duplicate installment number.

Audit relevance:
    The plan aggregates are what the consistency auditor compares against
    the Payment log.  Amendments make overpayment redistribution visible
    after the fact.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from tuition_kernel.db.base import Base, TrackedBase
from tuition_kernel.db.types import enum_type, rate_type, ref_type, text_type
from tuition_kernel.domain.dtos import AmendmentView, InstallmentView, PlanView
from tuition_kernel.domain.money import ZERO, percent_of
from tuition_kernel.domain.values import (
    DiscountKind,
    OverpaymentHandling,
    PaymentMethod,
    PaymentType,
)


# ---------------------------------------------------------------------------
# PaymentPlan
# ---------------------------------------------------------------------------


class PaymentPlan(TrackedBase):
    """
    A billing schedule for one enrollment.

    Contract:
        Created once per enrollment by the plan builder, mutated by
        settlement and refund, removed by the deletion cascade.

    Guarantees:
        - installments are ordered by number.
        - Deleting a plan deletes its installments and amendments.
    """

    __tablename__ = "payment_plans"

    student_id: Mapped[UUID] = mapped_column(ForeignKey("students.id"), nullable=False)

    enrollment_ref: Mapped[str | None] = mapped_column(ref_type())
    course_ref: Mapped[str | None] = mapped_column(ref_type())
    season_ref: Mapped[str | None] = mapped_column(ref_type())
    institution_ref: Mapped[str | None] = mapped_column(ref_type())

    payment_type: Mapped[PaymentType] = mapped_column(
        enum_type(PaymentType),
        default=PaymentType.CASH_FULL,
        nullable=False,
    )

    total_amount: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)
    discount_kind: Mapped[DiscountKind] = mapped_column(
        enum_type(DiscountKind),
        default=DiscountKind.NONE,
        nullable=False,
    )
    discount_value: Mapped[Decimal] = mapped_column(rate_type(), default=ZERO, nullable=False)

    discounted_amount: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)
    remaining_amount: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)
    is_completed: Mapped[bool] = mapped_column(default=False, nullable=False)
    is_invoiced: Mapped[bool] = mapped_column(default=False, nullable=False)

    commission_rate: Mapped[Decimal] = mapped_column(rate_type(), default=ZERO, nullable=False)
    commission_amount: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)
    vat_rate: Mapped[Decimal] = mapped_column(rate_type(), default=ZERO, nullable=False)
    vat_amount: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)

    # Credit card
    credit_card_installments: Mapped[int | None]
    card_portion: Mapped[Decimal | None]
    charge_date: Mapped[date | None]
    cash_register_id: Mapped[UUID | None] = mapped_column(ForeignKey("cash_registers.id"))

    notes: Mapped[str | None] = mapped_column(text_type())

    installments: Mapped[list["Installment"]] = relationship(
        back_populates="plan",
        cascade="all, delete-orphan",
        order_by="Installment.number",
    )
    amendments: Mapped[list["ScheduleAmendment"]] = relationship(
        back_populates="plan",
        cascade="all, delete-orphan",
        order_by="ScheduleAmendment.created_at",
    )

    __table_args__ = (
        Index("idx_payment_plans_student_id", "student_id"),
        Index("idx_payment_plans_charge_date", "charge_date"),
    )

    def installment(self, number: int) -> "Installment | None":
        for inst in self.installments:
            if inst.number == number:
                return inst
        return None

    @property
    def card_charge(self) -> Decimal:
        """Part of the charge collected by card (commission included)."""
        if self.payment_type == PaymentType.CREDIT_CARD:
            return self.discounted_amount
        if self.payment_type == PaymentType.MIXED:
            return (self.card_portion or ZERO) + self.commission_amount
        return ZERO

    def unpaid_installments(self, exclude: int | None = None) -> list["Installment"]:
        """Unpaid installments in number order, optionally skipping one."""
        return [
            inst
            for inst in sorted(self.installments, key=lambda i: i.number)
            if not inst.is_paid and inst.number != exclude
        ]

    def recompute_totals(self) -> None:
        """Derive paid and remaining amounts from the installments."""
        self.paid_amount = sum(
            (inst.paid_amount for inst in self.installments if inst.is_paid), ZERO
        )
        self.remaining_amount = self.discounted_amount - self.paid_amount

    def to_dto(self) -> PlanView:
        return PlanView(
            id=self.id,
            student_id=self.student_id,
            payment_type=self.payment_type,
            total_amount=self.total_amount,
            discounted_amount=self.discounted_amount,
            paid_amount=self.paid_amount,
            remaining_amount=self.remaining_amount,
            is_completed=self.is_completed,
            is_invoiced=self.is_invoiced,
            commission_rate=self.commission_rate,
            commission_amount=self.commission_amount,
            vat_rate=self.vat_rate,
            vat_amount=self.vat_amount,
            charge_date=self.charge_date,
            installments=tuple(inst.to_dto() for inst in self.installments),
            amendments=tuple(a.to_dto() for a in self.amendments),
        )

    def __repr__(self) -> str:
        return (
            f"<PaymentPlan(id={self.id!r}, student_id={self.student_id!r}, "
            f"paid={self.paid_amount}/{self.discounted_amount})>"
        )


# ---------------------------------------------------------------------------
# Installment
# ---------------------------------------------------------------------------


class Installment(Base):
    """
    One scheduled charge within a plan.

    Table: ``installments``
    """

    __tablename__ = "installments"

    plan_id: Mapped[UUID] = mapped_column(
        ForeignKey("payment_plans.id", ondelete="CASCADE"),
        nullable=False,
    )
    number: Mapped[int] = mapped_column(nullable=False)

    amount: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)
    base_amount: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)
    is_paid: Mapped[bool] = mapped_column(default=False, nullable=False)
    paid_date: Mapped[datetime | None]
    due_date: Mapped[date | None]
    payment_method: Mapped[PaymentMethod | None] = mapped_column(enum_type(PaymentMethod))

    commission: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)
    commission_rate: Mapped[Decimal] = mapped_column(rate_type(), default=ZERO, nullable=False)
    vat: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)
    vat_rate: Mapped[Decimal] = mapped_column(rate_type(), default=ZERO, nullable=False)
    is_invoiced: Mapped[bool] = mapped_column(default=False, nullable=False)

    plan: Mapped["PaymentPlan"] = relationship(back_populates="installments")

    __table_args__ = (
        UniqueConstraint("plan_id", "number", name="uq_installment_plan_number"),
    )

    def mark_paid(self, amount: Decimal, when: datetime) -> None:
        self.is_paid = True
        self.paid_amount = amount
        self.paid_date = when

    def reset(self) -> None:
        """
        Return to unpaid.  The contracted amount is left as it is; the
        commission, VAT and method presets go back to their creation values
        so the next settlement resolves its terms afresh.
        """
        self.is_paid = False
        self.paid_amount = ZERO
        self.paid_date = None
        self.is_invoiced = False
        self.restore_presets()

    def restore_presets(self) -> None:
        """Commission and VAT presets as plan creation sets them."""
        plan = self.plan
        card_plan = plan.payment_type in (PaymentType.CREDIT_CARD, PaymentType.MIXED)
        self.commission = plan.commission_amount if card_plan else ZERO
        self.commission_rate = plan.commission_rate if card_plan else ZERO
        self.vat_rate = plan.vat_rate if plan.is_invoiced else ZERO
        self.vat = percent_of(self.base_amount, plan.vat_rate) if plan.is_invoiced else ZERO
        self.payment_method = (
            PaymentMethod.CREDIT_CARD if plan.payment_type == PaymentType.CREDIT_CARD else None
        )

    def to_dto(self) -> InstallmentView:
        return InstallmentView(
            number=self.number,
            amount=self.amount,
            base_amount=self.base_amount,
            paid_amount=self.paid_amount,
            is_paid=self.is_paid,
            paid_date=self.paid_date,
            due_date=self.due_date,
            payment_method=self.payment_method,
            commission=self.commission,
            commission_rate=self.commission_rate,
            vat=self.vat,
            vat_rate=self.vat_rate,
            is_invoiced=self.is_invoiced,
        )

    def __repr__(self) -> str:
        return (
            f"<Installment(plan_id={self.plan_id!r}, number={self.number}, "
            f"amount={self.amount}, is_paid={self.is_paid})>"
        )


# ---------------------------------------------------------------------------
# ScheduleAmendment
# ---------------------------------------------------------------------------


class ScheduleAmendment(Base):
    """
    Record of one installment's contracted amount being reduced by excess
    paid on another installment.

    Table: ``schedule_amendments``
    """

    __tablename__ = "schedule_amendments"

    plan_id: Mapped[UUID] = mapped_column(
        ForeignKey("payment_plans.id", ondelete="CASCADE"),
        nullable=False,
    )
    installment_number: Mapped[int] = mapped_column(nullable=False)
    source_installment_number: Mapped[int] = mapped_column(nullable=False)
    source_payment_id: Mapped[UUID | None]
    mode: Mapped[OverpaymentHandling] = mapped_column(
        enum_type(OverpaymentHandling),
        nullable=False,
    )
    previous_amount: Mapped[Decimal] = mapped_column(nullable=False)
    new_amount: Mapped[Decimal] = mapped_column(nullable=False)
    reduction: Mapped[Decimal] = mapped_column(nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    plan: Mapped["PaymentPlan"] = relationship(back_populates="amendments")

    __table_args__ = (
        Index("idx_schedule_amendments_plan_id", "plan_id"),
    )

    def to_dto(self) -> AmendmentView:
        return AmendmentView(
            installment_number=self.installment_number,
            source_installment_number=self.source_installment_number,
            source_payment_id=self.source_payment_id,
            mode=self.mode,
            previous_amount=self.previous_amount,
            new_amount=self.new_amount,
            reduction=self.reduction,
        )

    def __repr__(self) -> str:
        return (
            f"<ScheduleAmendment(plan_id={self.plan_id!r}, "
            f"installment={self.installment_number}, reduction={self.reduction})>"
        )
