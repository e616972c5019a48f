"""
Tests for PlanBuilder -- CreatePlan.

Covers:
- cash plans: even split, custom split, discounts, student debt booked
- credit card and mixed plans: commission, same-day settlement, pending charge
- invoiced plans: per-installment VAT
- full scholarship / zero charge plans
- enrollment-directory pricing
- validation before the first write
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from tuition_kernel.domain.dtos import EnrollmentTerms
from tuition_kernel.domain.money import ZERO
from tuition_kernel.domain.pricing import Discount
from tuition_kernel.domain.values import DiscountKind, ExpenseCategory, PaymentMethod, PaymentType
from tuition_kernel.domain.dtos import CreatePlanRequest
from tuition_kernel.exceptions import (
    CashRegisterInactiveError,
    InvalidScheduleError,
    MissingCashRegisterError,
    PriceUnavailableError,
    StudentNotFoundError,
)
from tuition_kernel.models.auxiliary_expense import AuxiliaryExpense
from tuition_kernel.models.payment import Payment
from tuition_kernel.models.payment_plan import PaymentPlan
from tuition_kernel.services.plan_builder import PlanBuilder


class StaticEnrollments:
    def __init__(self, terms):
        self.terms = terms
        self.calls = []

    def get_enrollment(self, student_id, enrollment_ref):
        self.calls.append((student_id, enrollment_ref))
        return self.terms


class TestCashPlans:
    def test_installment_plan_splits_evenly_and_books_debt(
        self, build_plan, session_balances, student_id, register_id
    ):
        plan = build_plan(
            student_id=student_id,
            total_amount=Decimal("1000"),
            payment_type=PaymentType.CASH_INSTALLMENT,
            installment_count=3,
            first_due_date=date(2024, 2, 1),
        )

        assert [i.amount for i in plan.installments] == [
            Decimal("333.34"), Decimal("333.33"), Decimal("333.33"),
        ]
        assert [i.base_amount for i in plan.installments] == [i.amount for i in plan.installments]
        assert [i.due_date for i in plan.installments] == [
            date(2024, 2, 1), date(2024, 3, 1), date(2024, 4, 1),
        ]
        assert plan.discounted_amount == Decimal("1000.00")
        assert plan.remaining_amount == Decimal("1000.00")
        assert plan.paid_amount == ZERO
        assert not plan.is_completed

        student_balance, register_balance = session_balances(student_id, register_id)
        assert student_balance == Decimal("1000.00")
        assert register_balance == ZERO

    def test_custom_amounts(self, build_plan, student_id):
        plan = build_plan(
            student_id=student_id,
            total_amount=Decimal("1000"),
            payment_type=PaymentType.CASH_INSTALLMENT,
            installment_amounts=(Decimal("600"), Decimal("400")),
        )
        assert [i.amount for i in plan.installments] == [Decimal("600.00"), Decimal("400.00")]

    def test_custom_amounts_must_add_up(self, build_plan, session, student_id):
        with pytest.raises(InvalidScheduleError):
            build_plan(
                student_id=student_id,
                total_amount=Decimal("1000"),
                payment_type=PaymentType.CASH_INSTALLMENT,
                installment_amounts=(Decimal("600"), Decimal("300")),
            )
        assert session.scalar(select(func.count()).select_from(PaymentPlan)) == 0

    def test_percentage_discount(self, build_plan, student_id):
        plan = build_plan(
            student_id=student_id,
            total_amount=Decimal("1200"),
            discount=Discount(DiscountKind.PERCENTAGE, Decimal("25")),
        )
        assert plan.total_amount == Decimal("1200.00")
        assert plan.discounted_amount == Decimal("900.00")
        assert plan.discount_kind == DiscountKind.PERCENTAGE
        assert len(plan.installments) == 1

    def test_invoiced_plan_presets_vat_per_installment(self, build_plan, student_id):
        plan = build_plan(
            student_id=student_id,
            total_amount=Decimal("1000"),
            payment_type=PaymentType.CASH_INSTALLMENT,
            installment_count=2,
            is_invoiced=True,
        )
        assert plan.vat_rate == Decimal("10")
        assert plan.vat_amount == Decimal("100.00")
        for inst in plan.installments:
            assert inst.vat == Decimal("50.00")
            assert inst.vat_rate == Decimal("10")
            assert inst.is_invoiced


class TestCardPlans:
    def test_credit_card_settled_today(
        self, build_plan, session, session_balances, student_id, register_id
    ):
        plan = build_plan(
            student_id=student_id,
            total_amount=Decimal("1000"),
            payment_type=PaymentType.CREDIT_CARD,
            credit_card_installments=3,
            settle_today=True,
            cash_register_id=register_id,
        )

        assert plan.commission_rate == Decimal("9")
        assert plan.commission_amount == Decimal("90.00")
        assert plan.discounted_amount == Decimal("1090.00")
        assert plan.is_completed
        assert plan.paid_amount == Decimal("1090.00")
        assert plan.remaining_amount == ZERO
        assert plan.installments[0].payment_method == PaymentMethod.CREDIT_CARD

        payments = session.scalars(select(Payment)).all()
        assert [(p.payment_type, p.amount) for p in payments] == [
            (PaymentMethod.CREDIT_CARD, Decimal("1090.00"))
        ]
        expenses = session.scalars(select(AuxiliaryExpense)).all()
        assert [(e.category, e.amount) for e in expenses] == [
            (ExpenseCategory.COMMISSION, Decimal("90.00"))
        ]

        student_balance, register_balance = session_balances(student_id, register_id)
        assert student_balance == ZERO
        assert register_balance == Decimal("1000.00")

    def test_credit_card_with_future_charge_date_stays_pending(
        self, build_plan, session, session_balances, student_id, register_id
    ):
        plan = build_plan(
            student_id=student_id,
            total_amount=Decimal("1000"),
            payment_type=PaymentType.CREDIT_CARD,
            charge_date=date(2024, 2, 1),
            cash_register_id=register_id,
        )
        assert not plan.is_completed
        assert plan.discounted_amount == Decimal("1040.00")
        assert plan.installments[0].commission == Decimal("40.00")
        assert session.scalar(select(func.count()).select_from(Payment)) == 0

        student_balance, register_balance = session_balances(student_id, register_id)
        assert student_balance == Decimal("1040.00")
        assert register_balance == ZERO

    def test_credit_card_charge_date_today_settles(self, build_plan, student_id, register_id, clock):
        plan = build_plan(
            student_id=student_id,
            total_amount=Decimal("500"),
            payment_type=PaymentType.CREDIT_CARD,
            charge_date=clock.today(),
            cash_register_id=register_id,
        )
        assert plan.is_completed

    def test_mixed_plan_settled_today(
        self, build_plan, session, session_balances, student_id, register_id
    ):
        plan = build_plan(
            student_id=student_id,
            total_amount=Decimal("1000"),
            payment_type=PaymentType.MIXED,
            card_portion=Decimal("400"),
            settle_today=True,
            cash_register_id=register_id,
        )
        assert plan.commission_amount == Decimal("16.00")
        assert plan.discounted_amount == Decimal("1016.00")
        assert plan.is_completed

        payments = session.scalars(select(Payment).order_by(Payment.payment_type)).all()
        by_method = {p.payment_type: p.amount for p in payments}
        assert by_method == {
            PaymentMethod.CREDIT_CARD: Decimal("416.00"),
            PaymentMethod.CASH: Decimal("600.00"),
        }

        student_balance, register_balance = session_balances(student_id, register_id)
        assert student_balance == ZERO
        assert register_balance == Decimal("1000.00")

    def test_commission_rate_override(self, build_plan, student_id):
        plan = build_plan(
            student_id=student_id,
            total_amount=Decimal("1000"),
            payment_type=PaymentType.CREDIT_CARD,
            commission_rate=Decimal("2.5"),
        )
        assert plan.commission_amount == Decimal("25.00")

    def test_same_day_settlement_needs_register(self, build_plan, student_id):
        with pytest.raises(MissingCashRegisterError):
            build_plan(
                student_id=student_id,
                total_amount=Decimal("1000"),
                payment_type=PaymentType.CREDIT_CARD,
                settle_today=True,
            )


class TestFreePlans:
    def test_full_scholarship(self, build_plan, session_balances, student_id, register_id):
        plan = build_plan(
            student_id=student_id,
            total_amount=Decimal("1000"),
            payment_type=PaymentType.CASH_INSTALLMENT,
            installment_count=4,
            discount=Discount(DiscountKind.FULL_SCHOLARSHIP),
        )
        assert plan.is_completed
        assert plan.discounted_amount == ZERO
        assert plan.remaining_amount == ZERO
        assert len(plan.installments) == 1
        assert plan.installments[0].is_paid
        assert plan.installments[0].amount == ZERO

        student_balance, _ = session_balances(student_id, register_id)
        assert student_balance == ZERO

    def test_zero_price_card_plan_is_not_settled(self, build_plan, session, student_id):
        plan = build_plan(
            student_id=student_id,
            total_amount=Decimal("0"),
            payment_type=PaymentType.CREDIT_CARD,
            settle_today=True,
        )
        assert plan.is_completed
        assert session.scalar(select(func.count()).select_from(Payment)) == 0


class TestEnrollmentPricing:
    def test_price_from_directory(self, session, policy, clock, student_id):
        enrollments = StaticEnrollments(
            EnrollmentTerms(
                price=Decimal("750"),
                course_ref="piano-101",
                season_ref="2024-spring",
                institution_ref="north",
            )
        )
        builder = PlanBuilder(session, policy=policy, clock=clock, enrollments=enrollments)
        plan = builder.create_plan(CreatePlanRequest(student_id=student_id, enrollment_ref="enr-1"))

        assert enrollments.calls == [(student_id, "enr-1")]
        assert plan.total_amount == Decimal("750.00")
        assert plan.course_ref == "piano-101"
        assert plan.institution_ref == "north"

    def test_no_total_and_no_directory(self, build_plan, student_id):
        with pytest.raises(PriceUnavailableError) as exc_info:
            build_plan(student_id=student_id, enrollment_ref="enr-1")
        assert exc_info.value.code == "PRICE_UNAVAILABLE"


class TestValidation:
    def test_unknown_student(self, build_plan):
        with pytest.raises(StudentNotFoundError):
            build_plan(student_id=uuid4(), total_amount=Decimal("100"))

    def test_inactive_register(self, build_plan, student_id, create_register):
        closed = create_register(name="Closed till", is_active=False)
        with pytest.raises(CashRegisterInactiveError):
            build_plan(
                student_id=student_id,
                total_amount=Decimal("100"),
                payment_type=PaymentType.CREDIT_CARD,
                settle_today=True,
                cash_register_id=closed,
            )
