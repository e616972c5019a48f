"""Tests for DiscrepancySelector -- AnalyzeDiscrepancies."""

from decimal import Decimal

import pytest

from tuition_kernel.domain.dtos import PayInstallmentRequest
from tuition_kernel.domain.money import ZERO
from tuition_kernel.domain.values import PaymentType
from tuition_kernel.selectors.discrepancy_selector import DiscrepancySelector
from tuition_kernel.services.refund_service import RefundService
from tuition_kernel.services.settlement_service import SettlementService


@pytest.fixture
def settlement(session, policy, clock):
    return SettlementService(session, policy=policy, clock=clock)


@pytest.fixture
def selector(session):
    return DiscrepancySelector(session)


def pay(settlement, plan_id, number, amount, register_id):
    return settlement.pay_installment(
        PayInstallmentRequest(
            plan_id=plan_id,
            installment_number=number,
            amount=Decimal(amount),
            cash_register_id=register_id,
        )
    )


def cash_plan(build_plan, student_id, total="1000", count=2):
    return build_plan(
        student_id=student_id,
        total_amount=Decimal(total),
        payment_type=PaymentType.CASH_INSTALLMENT,
        installment_count=count,
    )


class TestAnalyze:
    def test_consistent_ledger_is_clean(
        self, build_plan, settlement, selector, session, clock, student_id, register_id
    ):
        plan = cash_plan(build_plan, student_id)
        pay(settlement, plan.id, 1, "500", register_id)
        pay(settlement, plan.id, 2, "500", register_id)
        RefundService(session, clock=clock).refund_installment(plan.id, 2)
        cash_plan(build_plan, student_id, total="300", count=1)

        report = selector.analyze()

        assert report.plans_checked == 2
        assert report.is_clean

    def test_card_and_mixed_settlements_are_consistent(self, build_plan, selector, student_id, register_id):
        build_plan(
            student_id=student_id,
            total_amount=Decimal("1000"),
            payment_type=PaymentType.MIXED,
            card_portion=Decimal("250"),
            settle_today=True,
            cash_register_id=register_id,
        )
        assert selector.analyze().is_clean

    def test_reports_and_orders_by_size(
        self, build_plan, settlement, selector, session, student_id, register_id
    ):
        small = cash_plan(build_plan, student_id)
        large = cash_plan(build_plan, student_id)
        pay(settlement, small.id, 1, "500", register_id)
        pay(settlement, large.id, 1, "500", register_id)

        small.installment(1).paid_amount = Decimal("490.00")
        large.installment(1).is_paid = False
        session.flush()

        report = selector.analyze()

        assert not report.is_clean
        assert [d.plan_id for d in report.discrepancies] == [large.id, small.id]

        worst = report.discrepancies[0]
        assert worst.payments_total == Decimal("500.00")
        assert worst.installments_total == ZERO
        assert worst.difference == Decimal("500.00")
        assert [p.amount for p in worst.payments] == [Decimal("500.00")]
        assert [i.number for i in worst.installments] == [1, 2]

        assert report.discrepancies[1].difference == Decimal("10.00")

    def test_restrict_to_plan_ids(self, build_plan, settlement, selector, session, student_id, register_id):
        broken = cash_plan(build_plan, student_id)
        other = cash_plan(build_plan, student_id)
        pay(settlement, broken.id, 1, "500", register_id)
        broken.installment(1).paid_amount = Decimal("1.00")
        session.flush()

        assert selector.analyze([other.id]).is_clean
        assert selector.analyze([other.id]).plans_checked == 1
        assert len(selector.analyze([broken.id]).discrepancies) == 1
