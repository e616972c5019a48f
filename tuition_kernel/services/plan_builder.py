"""
PlanBuilder -- creates payment plans.

Responsibility:
    Prices an enrollment (discount, card commission, VAT), builds its
    installment schedule, books the debt on the student, and optionally
    settles the plan on the spot (same-day card or mixed payment).

Architecture position:
    Kernel > Services -- imperative shell.  Consumes LedgerStore,
    SettlementService and the pure pricing/schedule helpers.  Flush-only.

Invariants enforced:
    - Free plans (zero charge or full scholarship) get one paid zero-amount
      installment, are completed immediately, and touch no balance.
    - Otherwise student.balance += discounted_amount at creation, and
      remaining_amount == discounted_amount - paid_amount on return.
    - Student and cash register existence, pricing and schedule are all
      validated before the first write.

Failure modes (all raised before any mutation):
    - StudentNotFoundError, CashRegisterNotFoundError,
      CashRegisterInactiveError.
    - InvalidDiscountError, InvalidPaymentSplitError, InvalidScheduleError,
      NonPositiveAmountError, PriceUnavailableError.
    - MissingCashRegisterError when same-day settlement has no register.
"""

from decimal import Decimal

from sqlalchemy.orm import Session

from tuition_kernel.domain.clock import Clock, SystemClock
from tuition_kernel.domain.dtos import CreatePlanRequest, EnrollmentTerms
from tuition_kernel.domain.money import ZERO, to_money
from tuition_kernel.domain.policy import BillingPolicy
from tuition_kernel.domain.pricing import Discount, PlanPricing, price_plan
from tuition_kernel.domain.schedule import build_schedule
from tuition_kernel.domain.values import PaymentType
from tuition_kernel.exceptions import MissingCashRegisterError, PriceUnavailableError
from tuition_kernel.logging_config import get_logger
from tuition_kernel.models.payment_plan import Installment, PaymentPlan
from tuition_kernel.services.activity import EnrollmentDirectory
from tuition_kernel.services.base import BaseService
from tuition_kernel.services.ledger_store import LedgerStore
from tuition_kernel.services.settlement_service import SettlementService

logger = get_logger("services.plan_builder")

_CARD_TYPES = (PaymentType.CREDIT_CARD, PaymentType.MIXED)


class PlanBuilder(BaseService[PaymentPlan]):
    """
    Payment plan creation.

    Contract:
        ``create_plan`` returns a flushed plan whose installments, debt
        booking and (when requested) same-day settlement are all part of
        the caller's transaction.
    """

    def __init__(
        self,
        session: Session,
        policy: BillingPolicy | None = None,
        clock: Clock | None = None,
        store: LedgerStore | None = None,
        settlement: SettlementService | None = None,
        enrollments: EnrollmentDirectory | None = None,
    ):
        super().__init__(session)
        self._policy = policy or BillingPolicy()
        self._clock = clock or SystemClock()
        self._store = store or LedgerStore(session)
        self._settlement = settlement or SettlementService(
            session, policy=self._policy, clock=self._clock, store=self._store
        )
        self._enrollments = enrollments

    def create_plan(self, request: CreatePlanRequest) -> PaymentPlan:
        # -- Validate everything before the first write --------------------
        student = self._store.load_student(request.student_id)
        register = None
        if request.cash_register_id is not None:
            register = self._store.load_register(request.cash_register_id, require_active=True)

        total, terms = self._resolve_price(request)
        pricing = self._price(request, total)
        schedule = build_schedule(
            pricing.charge,
            request.payment_type,
            installment_count=request.installment_count,
            custom_amounts=list(request.installment_amounts) if request.installment_amounts else None,
            first_due_date=request.first_due_date,
            frequency=request.frequency,
            custom_days=request.custom_days,
        )

        is_free = pricing.charge == ZERO or request.discount.is_full_scholarship
        settle_now = not is_free and self._settles_today(request)
        if settle_now and register is None:
            raise MissingCashRegisterError("create_plan with same-day settlement")

        now = self._clock.now()
        plan = PaymentPlan(
            student_id=student.id,
            enrollment_ref=request.enrollment_ref,
            course_ref=terms.course_ref if terms else request.course_ref,
            season_ref=terms.season_ref if terms else request.season_ref,
            institution_ref=terms.institution_ref if terms else request.institution_ref,
            payment_type=request.payment_type,
            total_amount=pricing.total_amount,
            discount_kind=request.discount.kind,
            discount_value=request.discount.value,
            discounted_amount=pricing.charge,
            paid_amount=ZERO,
            remaining_amount=pricing.charge,
            is_completed=False,
            is_invoiced=request.is_invoiced,
            commission_rate=pricing.commission_rate,
            commission_amount=pricing.commission_amount,
            vat_rate=pricing.vat_rate,
            vat_amount=pricing.vat_amount,
            credit_card_installments=request.credit_card_installments,
            card_portion=request.card_portion,
            charge_date=request.charge_date,
            cash_register_id=request.cash_register_id,
            notes=request.notes,
            created_by_id=request.actor_id,
        )

        # -- Free plan -------------------------------------------------------
        if is_free:
            plan.discounted_amount = ZERO
            plan.remaining_amount = ZERO
            plan.is_completed = True
            plan.installments = [
                Installment(
                    number=1,
                    amount=ZERO,
                    base_amount=ZERO,
                    paid_amount=ZERO,
                    is_paid=True,
                    paid_date=now,
                    due_date=request.first_due_date,
                )
            ]
            self.session.add(plan)
            self.session.flush()
            logger.info(
                "plan_created",
                extra={
                    "plan_id": str(plan.id),
                    "student_id": str(student.id),
                    "payment_type": plan.payment_type.value,
                    "discounted_amount": "0.00",
                    "is_free": True,
                },
            )
            return plan

        # -- Regular plan ----------------------------------------------------
        plan.installments = [
            Installment(
                number=scheduled.number,
                amount=scheduled.amount,
                base_amount=scheduled.amount,
                paid_amount=ZERO,
                is_paid=False,
                due_date=scheduled.due_date,
                is_invoiced=request.is_invoiced,
            )
            for scheduled in schedule
        ]
        for installment in plan.installments:
            installment.restore_presets()
        self.session.add(plan)
        self.session.flush()

        self._store.adjust_student_balance(student.id, pricing.charge)

        if settle_now:
            self._settlement.settle_in_full(plan, register.id, actor_id=request.actor_id)

        logger.info(
            "plan_created",
            extra={
                "plan_id": str(plan.id),
                "student_id": str(student.id),
                "payment_type": plan.payment_type.value,
                "total_amount": str(pricing.total_amount),
                "discount_amount": str(pricing.discount_amount),
                "discounted_amount": str(pricing.charge),
                "commission_amount": str(pricing.commission_amount),
                "vat_amount": str(pricing.vat_amount),
                "installment_count": len(plan.installments),
                "settled_today": settle_now,
            },
        )
        return plan

    # =========================================================================
    # Internal Implementation
    # =========================================================================

    def _resolve_price(self, request: CreatePlanRequest) -> tuple[Decimal, EnrollmentTerms | None]:
        if request.total_amount is not None:
            return to_money(request.total_amount), None
        if self._enrollments is None or request.enrollment_ref is None:
            raise PriceUnavailableError(str(request.student_id), request.enrollment_ref)
        terms = self._enrollments.get_enrollment(request.student_id, request.enrollment_ref)
        return to_money(terms.price), terms

    def _price(self, request: CreatePlanRequest, total: Decimal) -> PlanPricing:
        commission_rate = ZERO
        if request.payment_type in _CARD_TYPES:
            commission_rate = (
                request.commission_rate
                if request.commission_rate is not None
                else self._policy.commission_rate_for(request.credit_card_installments)
            )
        vat_rate = request.vat_rate if request.vat_rate is not None else self._policy.vat_rate
        discount = Discount(request.discount.kind, to_money(request.discount.value))
        return price_plan(
            total,
            discount,
            request.payment_type,
            commission_rate=commission_rate,
            card_portion=to_money(request.card_portion) if request.card_portion is not None else None,
            is_invoiced=request.is_invoiced,
            vat_rate=vat_rate,
        )

    def _settles_today(self, request: CreatePlanRequest) -> bool:
        if request.payment_type not in _CARD_TYPES:
            return False
        if request.settle_today:
            return True
        return (
            request.payment_type == PaymentType.CREDIT_CARD
            and request.charge_date is not None
            and request.charge_date == self._clock.today()
        )

