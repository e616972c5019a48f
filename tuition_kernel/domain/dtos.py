"""
Data Transfer Objects for the billing kernel.

Responsibility:
    Frozen request and result objects that cross the facade boundary.
    Callers never receive live ORM rows: every operation returns these
    snapshots, taken after the transaction commits.

Architecture position:
    Kernel > Domain -- pure data, zero I/O.

Invariants enforced:
    - All monetary fields use ``Decimal`` -- never ``float``.
    - All DTOs are frozen (immutable after construction).
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from tuition_kernel.domain.pricing import Discount
from tuition_kernel.domain.values import (
    DueDateFrequency,
    OverpaymentHandling,
    PaymentMethod,
    PaymentType,
)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CreatePlanRequest:
    """
    Everything needed to open a payment plan for one enrollment.

    ``total_amount`` may be omitted, in which case the price comes from the
    enrollment directory.  ``installment_amounts`` overrides the even split
    for cash installment plans and must add up to the charge.
    """

    student_id: UUID
    enrollment_ref: str | None = None
    course_ref: str | None = None
    season_ref: str | None = None
    institution_ref: str | None = None
    total_amount: Decimal | None = None
    discount: Discount = field(default_factory=Discount)
    payment_type: PaymentType = PaymentType.CASH_FULL
    installment_count: int = 1
    installment_amounts: tuple[Decimal, ...] | None = None
    first_due_date: date | None = None
    frequency: DueDateFrequency = DueDateFrequency.MONTHLY
    custom_days: int | None = None
    is_invoiced: bool = False
    credit_card_installments: int | None = None
    card_portion: Decimal | None = None
    charge_date: date | None = None
    settle_today: bool = False
    cash_register_id: UUID | None = None
    commission_rate: Decimal | None = None
    vat_rate: Decimal | None = None
    notes: str | None = None
    actor_id: UUID | None = None


@dataclass(frozen=True)
class PayInstallmentRequest:
    plan_id: UUID
    installment_number: int
    amount: Decimal
    cash_register_id: UUID
    is_invoiced: bool = False
    overpayment_handling: OverpaymentHandling | None = None
    payment_method: PaymentMethod | None = None
    actor_id: UUID | None = None


# ---------------------------------------------------------------------------
# Collaborator values
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EnrollmentTerms:
    """Price and references for an enrollment, supplied by the enrollment directory."""

    price: Decimal
    course_ref: str | None = None
    season_ref: str | None = None
    institution_ref: str | None = None


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InstallmentView:
    number: int
    amount: Decimal
    base_amount: Decimal
    paid_amount: Decimal
    is_paid: bool
    paid_date: datetime | None
    due_date: date | None
    payment_method: PaymentMethod | None
    commission: Decimal
    commission_rate: Decimal
    vat: Decimal
    vat_rate: Decimal
    is_invoiced: bool


@dataclass(frozen=True)
class AmendmentView:
    installment_number: int
    source_installment_number: int
    source_payment_id: UUID | None
    mode: OverpaymentHandling
    previous_amount: Decimal
    new_amount: Decimal
    reduction: Decimal


@dataclass(frozen=True)
class PlanView:
    """Snapshot of a payment plan with its installments and amendments."""

    id: UUID
    student_id: UUID
    payment_type: PaymentType
    total_amount: Decimal
    discounted_amount: Decimal
    paid_amount: Decimal
    remaining_amount: Decimal
    is_completed: bool
    is_invoiced: bool
    commission_rate: Decimal
    commission_amount: Decimal
    vat_rate: Decimal
    vat_amount: Decimal
    charge_date: date | None
    installments: tuple[InstallmentView, ...] = ()
    amendments: tuple[AmendmentView, ...] = ()

    def installment(self, number: int) -> InstallmentView:
        for inst in self.installments:
            if inst.number == number:
                return inst
        raise KeyError(number)


# ---------------------------------------------------------------------------
# Operation results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RefundResult:
    plan: PlanView
    installment_number: int
    refunded_amount: Decimal
    refunded_payment_ids: tuple[UUID, ...]
    restored_expense_total: Decimal
    refund_expense_ids: tuple[UUID, ...]


@dataclass(frozen=True)
class DeletionResult:
    plan_id: UUID
    student_id: UUID
    reversed_payment_count: int
    reversed_payment_total: Decimal
    reversed_expense_total: Decimal
    deleted_expense_count: int
    deleted_payment_count: int


@dataclass(frozen=True)
class InstallmentBreakdown:
    number: int
    amount: Decimal
    paid_amount: Decimal
    is_paid: bool


@dataclass(frozen=True)
class PaymentBreakdown:
    payment_id: UUID
    installment_number: int | None
    amount: Decimal
    is_refunded: bool
    paid_at: datetime | None


@dataclass(frozen=True)
class PlanDiscrepancy:
    """A plan whose live payment total disagrees with its paid installments."""

    plan_id: UUID
    student_id: UUID
    payments_total: Decimal
    installments_total: Decimal
    difference: Decimal
    installments: tuple[InstallmentBreakdown, ...]
    payments: tuple[PaymentBreakdown, ...]


@dataclass(frozen=True)
class DiscrepancyReport:
    plans_checked: int
    discrepancies: tuple[PlanDiscrepancy, ...]

    @property
    def is_clean(self) -> bool:
        return not self.discrepancies


@dataclass(frozen=True)
class RepairedInstallment:
    plan_id: UUID
    number: int
    amount: Decimal
    paid_amount: Decimal


@dataclass(frozen=True)
class RepairReport:
    plans_checked: int
    plans_updated: int
    installments_force_paid: tuple[RepairedInstallment, ...]
    amounts_rounded: int


@dataclass(frozen=True)
class StudentPlanBalance:
    plan_id: UUID
    course_ref: str | None
    discounted_amount: Decimal
    paid_amount: Decimal
    outstanding: Decimal


@dataclass(frozen=True)
class StudentBalanceReport:
    """Student balance before and after rebuilding it from the plans."""

    student_id: UUID
    old_balance: Decimal
    new_balance: Decimal
    plans: tuple[StudentPlanBalance, ...]

    @property
    def difference(self) -> Decimal:
        return self.new_balance - self.old_balance

    @property
    def changed(self) -> bool:
        return self.difference != 0
