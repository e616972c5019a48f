"""
Tests for DeletionService -- DeletePlan.

Covers:
- reversal of live payments from the register and the student
- reversal of commission / VAT expenses
- refunded payments are not reversed twice
- removal of the debt booked at creation
- cascade of installments and amendments
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from tuition_kernel.domain.dtos import PayInstallmentRequest
from tuition_kernel.domain.money import ZERO
from tuition_kernel.domain.values import PaymentType
from tuition_kernel.exceptions import PlanNotFoundError
from tuition_kernel.models.auxiliary_expense import AuxiliaryExpense
from tuition_kernel.models.payment import Payment
from tuition_kernel.models.payment_plan import Installment, PaymentPlan, ScheduleAmendment
from tuition_kernel.services.deletion_service import DeletionService
from tuition_kernel.services.refund_service import RefundService
from tuition_kernel.services.settlement_service import SettlementService


@pytest.fixture
def settlement(session, policy, clock):
    return SettlementService(session, policy=policy, clock=clock)


@pytest.fixture
def deletion(session):
    return DeletionService(session)


def pay(settlement, plan_id, number, amount, register_id, **kwargs):
    return settlement.pay_installment(
        PayInstallmentRequest(
            plan_id=plan_id,
            installment_number=number,
            amount=Decimal(amount),
            cash_register_id=register_id,
            **kwargs,
        )
    )


def count(session, model) -> int:
    return session.scalar(select(func.count()).select_from(model))


class TestDeletePlan:
    def test_reverses_partial_payments(
        self, build_plan, settlement, deletion, session, session_balances, student_id, register_id
    ):
        plan = build_plan(
            student_id=student_id,
            total_amount=Decimal("300"),
            payment_type=PaymentType.CASH_INSTALLMENT,
            installment_count=3,
        )
        pay(settlement, plan.id, 1, "100", register_id)
        pay(settlement, plan.id, 2, "50", register_id)
        assert session_balances(student_id, register_id) == (Decimal("150.00"), Decimal("150.00"))

        result = deletion.delete_plan(plan.id)

        assert result.reversed_payment_count == 2
        assert result.reversed_payment_total == Decimal("150.00")
        assert result.deleted_payment_count == 2
        assert session_balances(student_id, register_id) == (ZERO, ZERO)
        assert count(session, PaymentPlan) == 0
        assert count(session, Installment) == 0
        assert count(session, Payment) == 0

    def test_unpaid_plan_removes_debt(self, build_plan, deletion, session_balances, student_id, register_id):
        plan = build_plan(student_id=student_id, total_amount=Decimal("800"))
        result = deletion.delete_plan(plan.id)

        assert result.reversed_payment_count == 0
        assert session_balances(student_id, register_id) == (ZERO, ZERO)

    def test_card_plan_expenses_reversed(
        self, build_plan, deletion, session, session_balances, student_id, register_id
    ):
        plan = build_plan(
            student_id=student_id,
            total_amount=Decimal("1000"),
            payment_type=PaymentType.CREDIT_CARD,
            credit_card_installments=3,
            is_invoiced=True,
            settle_today=True,
            cash_register_id=register_id,
        )
        # 1090 charged, 90 commission and 109 VAT paid out
        assert session_balances(student_id, register_id) == (ZERO, Decimal("891.00"))

        result = deletion.delete_plan(plan.id)

        assert result.reversed_expense_total == Decimal("199.00")
        assert session_balances(student_id, register_id) == (ZERO, ZERO)
        assert count(session, AuxiliaryExpense) == 0

    def test_refunded_payment_not_reversed_twice(
        self, build_plan, settlement, deletion, session, session_balances, student_id, register_id, clock
    ):
        plan = build_plan(
            student_id=student_id,
            total_amount=Decimal("400"),
            payment_type=PaymentType.CASH_INSTALLMENT,
            installment_count=2,
        )
        pay(settlement, plan.id, 1, "200", register_id)
        pay(settlement, plan.id, 2, "200", register_id)
        RefundService(session, clock=clock).refund_installment(plan.id, 2)
        assert session_balances(student_id, register_id) == (Decimal("200.00"), Decimal("200.00"))

        result = deletion.delete_plan(plan.id)

        assert result.reversed_payment_count == 1
        assert result.deleted_payment_count == 2
        assert result.deleted_expense_count == 1
        assert session_balances(student_id, register_id) == (ZERO, ZERO)
        assert count(session, AuxiliaryExpense) == 0

    def test_amendments_cascade(self, build_plan, settlement, deletion, session, student_id, register_id):
        plan = build_plan(
            student_id=student_id,
            total_amount=Decimal("1000"),
            payment_type=PaymentType.CASH_INSTALLMENT,
            installment_count=2,
        )
        pay(settlement, plan.id, 1, "700", register_id, overpayment_handling="next")
        assert count(session, ScheduleAmendment) == 1

        deletion.delete_plan(plan.id)
        assert count(session, ScheduleAmendment) == 0

    def test_unknown_plan(self, deletion):
        with pytest.raises(PlanNotFoundError):
            deletion.delete_plan(uuid4())
