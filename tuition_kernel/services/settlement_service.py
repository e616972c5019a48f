"""
SettlementService -- records payments against installments.

Responsibility:
    Settles one installment (PayInstallment), settles a whole card or
    mixed plan in one go (used at plan creation and when a pending card
    charge comes due), books the commission and VAT expenses those
    payments carry, and rewrites the schedule when an installment is
    overpaid.

Architecture position:
    Kernel > Services -- imperative shell.  Consumes LedgerStore and the
    pure domain helpers (terms, money).  Flush-only; the billing facade
    owns the transaction.

Invariants enforced:
    - Student and register move by exactly the payment amount:
      register += amount, student -= amount.
    - Commission and VAT are resolved once into ResolvedChargeTerms, stored
      on the Payment and copied to the installment.  A mixed-plan payment
      is split into a card payment carrying the commission and a cash
      payment for the rest.
    - Overpayment "next" reduces the lowest-numbered unpaid installment
      other than the one being paid; "distribute" splits the excess to the
      cent across all of them.  Reductions are floored at zero and each
      one is recorded as a ScheduleAmendment.
    - paid_amount += amount; remaining_amount = discounted - paid.
    - Completion sweep: once every installment is paid or has a zero
      amount, the plan is completed and zero-amount installments are
      marked paid.

Failure modes (all raised before any mutation):
    - NonPositiveAmountError, InvalidOverpaymentHandlingError.
    - PlanNotFoundError, InstallmentNotFoundError, CashRegisterNotFoundError.
    - PlanAlreadyCompletedError, InstallmentAlreadyPaidError,
      CashRegisterInactiveError.
    - PlanNotPendingError, ChargeDateNotReachedError,
      MissingCashRegisterError (pending card processing).

Audit relevance:
    Emits ``installment_settled``, ``overpayment_redistributed`` and
    ``plan_settled_in_full`` log records.  Every payment, expense and
    amendment row written here is part of the permanent ledger.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from tuition_kernel.domain.clock import Clock, SystemClock
from tuition_kernel.domain.dtos import PayInstallmentRequest
from tuition_kernel.domain.money import ZERO, floor_at_zero, percent_of, split_evenly, to_money
from tuition_kernel.domain.policy import BillingPolicy
from tuition_kernel.domain.terms import ChargeTermSources, ResolvedChargeTerms, resolve_charge_terms
from tuition_kernel.domain.values import (
    ExpenseCategory,
    OverpaymentHandling,
    PaymentMethod,
    PaymentType,
)
from tuition_kernel.exceptions import (
    ChargeDateNotReachedError,
    InstallmentAlreadyPaidError,
    InstallmentNotFoundError,
    InvalidOverpaymentHandlingError,
    MissingCashRegisterError,
    NonPositiveAmountError,
    PlanAlreadyCompletedError,
    PlanNotPendingError,
)
from tuition_kernel.logging_config import get_logger
from tuition_kernel.models.auxiliary_expense import AuxiliaryExpense
from tuition_kernel.models.payment import Payment
from tuition_kernel.models.payment_plan import Installment, PaymentPlan, ScheduleAmendment
from tuition_kernel.services.base import BaseService
from tuition_kernel.services.ledger_store import LedgerStore

logger = get_logger("services.settlement")


def parse_overpayment_handling(
    value: OverpaymentHandling | str | None,
) -> OverpaymentHandling | None:
    """Accept the enum, its string value, or None."""
    if value is None or isinstance(value, OverpaymentHandling):
        return value
    try:
        return OverpaymentHandling(value)
    except ValueError:
        raise InvalidOverpaymentHandlingError(str(value)) from None


class SettlementService(BaseService[PaymentPlan]):
    """
    Installment and full-plan settlement.

    Contract:
        Every public method either completes all of its writes (flushed,
        not committed) or raises before touching any balance.

    Non-goals:
        - Does NOT commit; the billing facade does.
        - Does NOT take the per-plan process lock; the facade does.
    """

    def __init__(
        self,
        session: Session,
        policy: BillingPolicy | None = None,
        clock: Clock | None = None,
        store: LedgerStore | None = None,
    ):
        super().__init__(session)
        self._policy = policy or BillingPolicy()
        self._clock = clock or SystemClock()
        self._store = store or LedgerStore(session)

    # =========================================================================
    # PayInstallment
    # =========================================================================

    def pay_installment(self, request: PayInstallmentRequest) -> PaymentPlan:
        """
        Record a payment against one installment.

        Preconditions:
            - ``request.amount`` > 0.
            - The plan is not completed and the installment is not paid.

        Postconditions:
            - A Payment exists for the amount; register and student moved.
            - Commission/VAT expenses booked when the terms carry them.
            - The installment is paid; plan aggregates updated.

        Raises:
            See module docstring.
        """
        amount = to_money(request.amount)
        if amount <= ZERO:
            raise NonPositiveAmountError("amount", str(amount))
        handling = parse_overpayment_handling(request.overpayment_handling)

        plan = self._store.load_plan(request.plan_id, lock=True)
        installment = plan.installment(request.installment_number)
        if installment is None:
            raise InstallmentNotFoundError(str(plan.id), request.installment_number)
        register = self._store.load_register(request.cash_register_id, require_active=True)

        if plan.is_completed:
            raise PlanAlreadyCompletedError(str(plan.id))
        if installment.is_paid:
            raise InstallmentAlreadyPaidError(str(plan.id), installment.number)

        method = self._classify_method(plan, installment, request.payment_method)
        portions = self._portions(plan, amount, method, request.payment_method)
        terms = resolve_charge_terms(
            amount,
            self._term_sources(plan, installment),
            self._policy,
            is_credit_card=method == PaymentMethod.CREDIT_CARD,
            is_invoiced=request.is_invoiced,
        )
        now = self._clock.now()

        payments = [
            self._record_payment(
                plan,
                installment_number=installment.number,
                amount=portion,
                method=portion_method,
                cash_register_id=register.id,
                terms=portion_terms,
                is_invoiced=request.is_invoiced,
                when=now,
                actor_id=request.actor_id,
            )
            for portion_method, portion, portion_terms in self._allocate_terms(portions, terms)
        ]

        excess = amount - installment.amount
        if excess > ZERO and handling is not None:
            self._redistribute(plan, installment, excess, handling, payments[0].id, now)

        installment.mark_paid(amount, now)
        installment.payment_method = method
        installment.is_invoiced = request.is_invoiced
        self._copy_terms(installment, terms)

        plan.paid_amount = plan.paid_amount + amount
        plan.remaining_amount = plan.discounted_amount - plan.paid_amount
        self._sweep_completion(plan, now)
        self.session.flush()

        logger.info(
            "installment_settled",
            extra={
                "plan_id": str(plan.id),
                "installment_number": installment.number,
                "payment_ids": [str(p.id) for p in payments],
                "amount": str(amount),
                "payment_method": method.value,
                "excess": str(excess) if excess > ZERO else "0",
                "commission_amount": str(terms.commission_amount),
                "vat_amount": str(terms.vat_amount),
                "is_completed": plan.is_completed,
            },
        )
        return plan

    # =========================================================================
    # Full settlement (card / mixed)
    # =========================================================================

    def settle_in_full(
        self,
        plan: PaymentPlan,
        cash_register_id: UUID,
        actor_id: UUID | None = None,
    ) -> list[Payment]:
        """
        Collect the whole charge of a card or mixed plan now.

        Card plans get one card payment; mixed plans get a card payment for
        the card charge and a cash payment for the rest.  Commission is
        booked on the card payment, VAT on each payment when invoiced.

        Postconditions:
            - Every installment is paid, paid_amount == discounted_amount,
              remaining_amount == 0, is_completed.
        """
        register = self._store.load_register(cash_register_id, require_active=True)
        now = self._clock.now()

        card_charge = plan.card_charge
        portions: list[tuple[PaymentMethod, Decimal]] = [(PaymentMethod.CREDIT_CARD, card_charge)]
        if plan.payment_type == PaymentType.MIXED:
            portions.append((PaymentMethod.CASH, plan.discounted_amount - card_charge))

        payments = []
        total_commission = ZERO
        total_vat = ZERO
        for method, portion in portions:
            if portion <= ZERO:
                continue
            is_card = method == PaymentMethod.CREDIT_CARD
            terms = ResolvedChargeTerms(
                commission_rate=plan.commission_rate if is_card else ZERO,
                commission_amount=plan.commission_amount if is_card else ZERO,
                vat_rate=plan.vat_rate if plan.is_invoiced else ZERO,
                vat_amount=percent_of(portion, plan.vat_rate) if plan.is_invoiced else ZERO,
            )
            payments.append(
                self._record_payment(
                    plan,
                    installment_number=1,
                    amount=portion,
                    method=method,
                    cash_register_id=register.id,
                    terms=terms,
                    is_invoiced=plan.is_invoiced,
                    when=now,
                    actor_id=actor_id,
                )
            )
            total_commission += terms.commission_amount
            total_vat += terms.vat_amount

        for installment in plan.installments:
            installment.mark_paid(installment.amount, now)
            installment.payment_method = PaymentMethod.CREDIT_CARD
            installment.is_invoiced = plan.is_invoiced
        first = plan.installment(1)
        if first is not None:
            first.commission = total_commission
            first.vat = total_vat

        plan.paid_amount = plan.discounted_amount
        plan.remaining_amount = ZERO
        plan.is_completed = True
        self.session.flush()

        logger.info(
            "plan_settled_in_full",
            extra={
                "plan_id": str(plan.id),
                "payment_type": plan.payment_type.value,
                "payment_count": len(payments),
                "amount": str(plan.discounted_amount),
                "commission_amount": str(total_commission),
                "vat_amount": str(total_vat),
            },
        )
        return payments

    # =========================================================================
    # ProcessPendingCreditCardPayment
    # =========================================================================

    def process_pending_credit_card(
        self,
        plan_id: UUID,
        as_of: date | None = None,
        cash_register_id: UUID | None = None,
        actor_id: UUID | None = None,
    ) -> PaymentPlan:
        """
        Settle a card plan whose charge date has arrived.

        Raises:
            PlanNotPendingError: not a card plan, already completed, or
                already has payments.
            ChargeDateNotReachedError: charge_date is after ``as_of``.
            MissingCashRegisterError: neither the call nor the plan names
                a register.
        """
        plan = self._store.load_plan(plan_id, lock=True)
        if plan.payment_type != PaymentType.CREDIT_CARD:
            raise PlanNotPendingError(str(plan.id), "not a credit card plan")
        if plan.is_completed:
            raise PlanNotPendingError(str(plan.id), "already completed")
        if self._store.payments_for_plan(plan.id):
            raise PlanNotPendingError(str(plan.id), "already has payments")

        as_of = as_of or self._clock.today()
        if plan.charge_date is not None and plan.charge_date > as_of:
            raise ChargeDateNotReachedError(str(plan.id), plan.charge_date.isoformat(), as_of.isoformat())

        register_id = cash_register_id or plan.cash_register_id
        if register_id is None:
            raise MissingCashRegisterError("process_pending_credit_card")

        self.settle_in_full(plan, register_id, actor_id=actor_id)
        return plan

    # =========================================================================
    # Internal Implementation
    # =========================================================================

    @staticmethod
    def _classify_method(
        plan: PaymentPlan,
        installment: Installment,
        override: PaymentMethod | None,
    ) -> PaymentMethod:
        if (
            plan.payment_type == PaymentType.CREDIT_CARD
            or installment.payment_method == PaymentMethod.CREDIT_CARD
            or override == PaymentMethod.CREDIT_CARD
            or (plan.payment_type == PaymentType.MIXED and override is None and plan.card_charge > ZERO)
        ):
            return PaymentMethod.CREDIT_CARD
        return PaymentMethod.CASH

    @staticmethod
    def _portions(
        plan: PaymentPlan,
        amount: Decimal,
        method: PaymentMethod,
        override: PaymentMethod | None,
    ) -> list[tuple[PaymentMethod, Decimal]]:
        """
        Split a mixed-plan payment into its card and cash parts.

        Without a method override, a mixed plan's card charge (card portion
        plus commission) is collected by card first and the rest in cash.
        Every other payment is a single portion.
        """
        if (
            plan.payment_type != PaymentType.MIXED
            or override is not None
            or method != PaymentMethod.CREDIT_CARD
        ):
            return [(method, amount)]
        card = min(amount, plan.card_charge)
        portions = [(PaymentMethod.CREDIT_CARD, card)]
        if amount > card:
            portions.append((PaymentMethod.CASH, amount - card))
        return portions

    @staticmethod
    def _allocate_terms(
        portions: list[tuple[PaymentMethod, Decimal]],
        terms: ResolvedChargeTerms,
    ) -> list[tuple[PaymentMethod, Decimal, ResolvedChargeTerms]]:
        """Commission rides on the card portion; VAT is split by portion."""
        if len(portions) == 1:
            method, amount = portions[0]
            return [(method, amount, terms)]

        (card_method, card), (cash_method, cash) = portions
        card_vat = min(percent_of(card, terms.vat_rate), terms.vat_amount)
        return [
            (
                card_method,
                card,
                ResolvedChargeTerms(
                    commission_rate=terms.commission_rate,
                    commission_amount=terms.commission_amount,
                    vat_rate=terms.vat_rate,
                    vat_amount=card_vat,
                ),
            ),
            (
                cash_method,
                cash,
                ResolvedChargeTerms(vat_rate=terms.vat_rate, vat_amount=terms.vat_amount - card_vat),
            ),
        ]

    @staticmethod
    def _term_sources(plan: PaymentPlan, installment: Installment) -> ChargeTermSources:
        return ChargeTermSources(
            installment_commission=installment.commission,
            installment_commission_rate=installment.commission_rate,
            plan_commission_rate=plan.commission_rate,
            installment_vat=installment.vat,
            installment_vat_rate=installment.vat_rate,
            plan_vat_rate=plan.vat_rate,
            credit_card_installments=plan.credit_card_installments,
        )

    @staticmethod
    def _copy_terms(installment: Installment, terms: ResolvedChargeTerms) -> None:
        installment.commission = terms.commission_amount
        installment.commission_rate = terms.commission_rate
        installment.vat = terms.vat_amount
        installment.vat_rate = terms.vat_rate

    def _record_payment(
        self,
        plan: PaymentPlan,
        *,
        installment_number: int,
        amount: Decimal,
        method: PaymentMethod,
        cash_register_id: UUID,
        terms: ResolvedChargeTerms,
        is_invoiced: bool,
        when: datetime,
        actor_id: UUID | None,
    ) -> Payment:
        """Write the payment, move both balances, book its expenses."""
        payment = self._store.add_payment(
            Payment(
                plan_id=plan.id,
                student_id=plan.student_id,
                cash_register_id=cash_register_id,
                installment_number=installment_number,
                payment_type=method,
                amount=amount,
                paid_at=when,
                commission_rate=terms.commission_rate,
                commission_amount=terms.commission_amount,
                vat_rate=terms.vat_rate,
                vat_amount=terms.vat_amount,
                is_invoiced=is_invoiced,
                created_by_id=actor_id,
            )
        )
        self._store.adjust_register_balance(cash_register_id, amount)
        self._store.adjust_student_balance(plan.student_id, -amount)

        if terms.commission_amount > ZERO:
            self._book(ExpenseCategory.COMMISSION, terms.commission_amount, payment, when,
                       f"Card commission for installment {installment_number}")
        if terms.vat_amount > ZERO:
            self._book(ExpenseCategory.VAT, terms.vat_amount, payment, when,
                       f"VAT for installment {installment_number}")
        return payment

    def _book(
        self,
        category: ExpenseCategory,
        amount: Decimal,
        payment: Payment,
        when: datetime,
        description: str,
    ) -> AuxiliaryExpense:
        return self._store.book_expense(
            AuxiliaryExpense(
                category=category,
                amount=amount,
                cash_register_id=payment.cash_register_id,
                related_payment_id=payment.id,
                plan_id=payment.plan_id,
                student_id=payment.student_id,
                description=description,
                is_auto_generated=True,
                expense_date=when,
                created_by_id=payment.created_by_id,
            )
        )

    def _redistribute(
        self,
        plan: PaymentPlan,
        paying: Installment,
        excess: Decimal,
        handling: OverpaymentHandling,
        payment_id: UUID,
        when: datetime,
    ) -> None:
        """Shrink later installments by the excess paid on ``paying``."""
        targets = plan.unpaid_installments(exclude=paying.number)
        if not targets:
            logger.info(
                "overpayment_not_redistributed",
                extra={"plan_id": str(plan.id), "excess": str(excess)},
            )
            return

        if handling == OverpaymentHandling.NEXT:
            reductions = [(targets[0], excess)]
        else:
            reductions = list(zip(targets, split_evenly(excess, len(targets))))

        for target, share in reductions:
            previous = target.amount
            target.amount = floor_at_zero(previous - share)
            applied = previous - target.amount
            if applied <= ZERO:
                continue
            plan.amendments.append(
                ScheduleAmendment(
                    installment_number=target.number,
                    source_installment_number=paying.number,
                    source_payment_id=payment_id,
                    mode=handling,
                    previous_amount=previous,
                    new_amount=target.amount,
                    reduction=applied,
                    created_at=when,
                )
            )

        logger.info(
            "overpayment_redistributed",
            extra={
                "plan_id": str(plan.id),
                "source_installment": paying.number,
                "mode": handling.value,
                "excess": str(excess),
                "targets": [t.number for t, _ in reductions],
            },
        )

    @staticmethod
    def _sweep_completion(plan: PaymentPlan, when: datetime) -> None:
        if not all(i.is_paid or i.amount <= ZERO for i in plan.installments):
            return
        for installment in plan.installments:
            if not installment.is_paid:
                installment.mark_paid(ZERO, when)
        plan.is_completed = True
