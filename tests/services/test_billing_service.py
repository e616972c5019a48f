"""
Tests for TuitionBillingService -- the transactional facade.

Covers:
- each operation commits and returns detached snapshots
- all-or-nothing: a failure after the first balance move rolls everything back
- storage failures surface as LedgerStorageError
- activity sink called after commit; sink failures never fail the operation
- LogContext binding of operation and plan
- analyze / repair over committed data
- student balance recalculated from committed plans
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.exc import OperationalError

from tuition_kernel.domain.dtos import CreatePlanRequest, DeletionResult, PlanView, RefundResult
from tuition_kernel.domain.money import ZERO
from tuition_kernel.domain.values import PaymentType
from tuition_kernel.exceptions import (
    InstallmentAlreadyPaidError,
    LedgerStorageError,
    PlanNotFoundError,
    StudentNotFoundError,
)
from tuition_kernel.models.payment import Payment
from tuition_kernel.models.payment_plan import Installment
from tuition_kernel.models.student import Student
from tuition_kernel.services.billing_service import TuitionBillingService
from tuition_kernel.services.ledger_store import LedgerStore


def cash_request(student_id, total="1000", count=2, **kwargs):
    return CreatePlanRequest(
        student_id=student_id,
        total_amount=Decimal(total),
        payment_type=PaymentType.CASH_INSTALLMENT,
        installment_count=count,
        institution_ref="north",
        season_ref="2024-spring",
        **kwargs,
    )


def count_rows(session_factory, model) -> int:
    with session_factory() as sess:
        return sess.scalar(select(func.count()).select_from(model))


class TestOperations:
    def test_create_and_pay(self, billing, balances, student_id, register_id, actor_id, activity_sink):
        plan = billing.create_plan(cash_request(student_id, actor_id=actor_id))
        assert isinstance(plan, PlanView)
        assert plan.remaining_amount == Decimal("1000.00")

        plan = billing.pay_installment(plan.id, 1, Decimal("500"), register_id, actor_id=actor_id)

        assert plan.installment(1).is_paid
        assert plan.paid_amount == Decimal("500.00")
        assert balances(student_id, register_id) == (Decimal("500.00"), Decimal("500.00"))
        assert billing.get_plan(plan.id) == plan

        assert [r["action"] for r in activity_sink.records] == ["create", "payment"]
        payment = activity_sink.records[1]
        assert payment["user"] == str(actor_id)
        assert payment["entity"] == "payment_plan"
        assert payment["entity_id"] == str(plan.id)
        assert payment["institution"] == "north"
        assert payment["season"] == "2024-spring"

    def test_overpayment_next(self, billing, student_id, register_id):
        plan = billing.create_plan(cash_request(student_id))
        plan = billing.pay_installment(plan.id, 1, Decimal("600"), register_id, overpayment_handling="next")

        assert plan.installment(2).amount == Decimal("400.00")
        assert plan.paid_amount == Decimal("600.00")
        assert plan.remaining_amount == Decimal("400.00")
        assert len(plan.amendments) == 1

    def test_refund(self, billing, balances, student_id, register_id):
        plan = billing.create_plan(cash_request(student_id))
        billing.pay_installment(plan.id, 1, Decimal("500"), register_id)

        result = billing.refund_installment(plan.id, 1, reason="Withdrawn")

        assert isinstance(result, RefundResult)
        assert result.refunded_amount == Decimal("500.00")
        assert balances(student_id, register_id) == (Decimal("1000.00"), ZERO)

    def test_delete(self, billing, balances, session_factory, student_id, register_id, activity_sink):
        plan = billing.create_plan(cash_request(student_id, total="300", count=3))
        billing.pay_installment(plan.id, 1, Decimal("100"), register_id)
        billing.pay_installment(plan.id, 2, Decimal("50"), register_id)

        result = billing.delete_plan(plan.id)

        assert isinstance(result, DeletionResult)
        assert result.reversed_payment_total == Decimal("150.00")
        assert balances(student_id, register_id) == (ZERO, ZERO)
        assert count_rows(session_factory, Installment) == 0
        assert activity_sink.records[-1]["action"] == "delete"
        with pytest.raises(PlanNotFoundError):
            billing.get_plan(plan.id)

    def test_process_pending_credit_card(self, billing, balances, clock, student_id, register_id):
        plan = billing.create_plan(
            CreatePlanRequest(
                student_id=student_id,
                total_amount=Decimal("1000"),
                payment_type=PaymentType.CREDIT_CARD,
                charge_date=date(2024, 1, 10),
                cash_register_id=register_id,
            )
        )
        assert not plan.is_completed

        clock.advance_days(9)
        plan = billing.process_pending_credit_card(plan.id)

        assert plan.is_completed
        assert balances(student_id, register_id) == (ZERO, Decimal("1000.00"))


class TestAtomicity:
    def test_failure_after_balance_moves_rolls_back(
        self, billing, balances, session_factory, monkeypatch, student_id, register_id
    ):
        plan = billing.create_plan(cash_request(student_id, is_invoiced=True))

        def explode(self, expense):
            raise RuntimeError("expense ledger unavailable")

        monkeypatch.setattr(LedgerStore, "book_expense", explode)

        with pytest.raises(RuntimeError):
            billing.pay_installment(plan.id, 1, Decimal("500"), register_id, is_invoiced=True)

        assert balances(student_id, register_id) == (Decimal("1000.00"), ZERO)
        assert count_rows(session_factory, Payment) == 0
        assert not billing.get_plan(plan.id).installment(1).is_paid

    def test_storage_error_wrapped(
        self, billing, balances, monkeypatch, student_id, register_id, captured_logs
    ):
        plan = billing.create_plan(cash_request(student_id, is_invoiced=True))

        def disk_full(self, expense):
            raise OperationalError("INSERT INTO auxiliary_expenses", {}, Exception("disk full"))

        monkeypatch.setattr(LedgerStore, "book_expense", disk_full)

        with pytest.raises(LedgerStorageError) as exc_info:
            billing.pay_installment(plan.id, 1, Decimal("500"), register_id, is_invoiced=True)

        assert exc_info.value.operation == "pay_installment"
        assert balances(student_id, register_id) == (Decimal("1000.00"), ZERO)
        assert any(r["message"] == "operation_rolled_back" for r in captured_logs())

    def test_rejection_leaves_ledger_unchanged(
        self, billing, balances, session_factory, student_id, register_id, captured_logs
    ):
        plan = billing.create_plan(cash_request(student_id))
        billing.pay_installment(plan.id, 1, Decimal("500"), register_id)

        with pytest.raises(InstallmentAlreadyPaidError):
            billing.pay_installment(plan.id, 1, Decimal("500"), register_id)

        assert balances(student_id, register_id) == (Decimal("500.00"), Decimal("500.00"))
        assert count_rows(session_factory, Payment) == 1
        rejected = [r for r in captured_logs() if r["message"] == "operation_rejected"]
        assert rejected[0]["error_code"] == "INSTALLMENT_ALREADY_PAID"


class TestActivityAndLogging:
    def test_sink_failure_does_not_fail_operation(
        self, session_factory, policy, clock, balances, student_id, register_id, captured_logs
    ):
        class BrokenSink:
            def record(self, **fields):
                raise ConnectionError("activity service down")

        billing = TuitionBillingService(session_factory, policy=policy, clock=clock, activity_sink=BrokenSink())
        plan = billing.create_plan(cash_request(student_id))
        billing.pay_installment(plan.id, 1, Decimal("500"), register_id)

        assert balances(student_id, register_id) == (Decimal("500.00"), Decimal("500.00"))
        failures = [r for r in captured_logs() if r["message"] == "activity_sink_failed"]
        assert [f["activity_action"] for f in failures] == ["create", "payment"]

    def test_default_sink_logs_activity(self, session_factory, student_id, captured_logs):
        TuitionBillingService(session_factory).create_plan(cash_request(student_id))
        assert any(r["message"] == "activity_recorded" for r in captured_logs())

    def test_log_records_carry_operation_and_plan(self, billing, student_id, register_id, captured_logs):
        plan = billing.create_plan(cash_request(student_id))
        billing.pay_installment(plan.id, 1, Decimal("500"), register_id)

        settled = [r for r in captured_logs() if r["message"] == "installment_settled"]
        assert settled[0]["operation"] == "pay_installment"
        assert settled[0]["plan_id"] == str(plan.id)
        assert settled[0]["amount"] == "500.00"


class TestAudit:
    def test_analyze_and_repair(self, billing, session_factory, student_id, register_id):
        healthy = billing.create_plan(cash_request(student_id))
        drifted = billing.create_plan(cash_request(student_id))
        billing.pay_installment(drifted.id, 1, Decimal("500"), register_id)

        with session_factory() as sess:
            inst = sess.scalars(
                select(Installment).where(Installment.plan_id == drifted.id, Installment.number == 2)
            ).one()
            inst.paid_amount = Decimal("499.99")
            sess.commit()

        report = billing.repair_installment_sync()

        assert report.plans_checked == 2
        assert report.plans_updated == 1
        assert [(r.plan_id, r.number) for r in report.installments_force_paid] == [(drifted.id, 2)]
        repaired = billing.get_plan(drifted.id)
        assert repaired.is_completed
        assert repaired.paid_amount == Decimal("999.99")
        assert not billing.get_plan(healthy.id).is_completed

        # Force-paid installments are not backed by a payment
        analysis = billing.analyze_discrepancies()
        assert analysis.plans_checked == 2
        (discrepancy,) = analysis.discrepancies
        assert discrepancy.plan_id == drifted.id
        assert discrepancy.difference == Decimal("-499.99")

    def test_repair_with_no_plans(self, billing):
        report = billing.repair_installment_sync()
        assert report.plans_checked == 0
        assert report.installments_force_paid == ()

    def test_recalculate_student_balance(
        self, billing, balances, session_factory, student_id, register_id, actor_id, activity_sink
    ):
        plan = billing.create_plan(cash_request(student_id))
        billing.pay_installment(plan.id, 1, Decimal("500"), register_id)
        with session_factory() as sess:
            sess.execute(update(Student).where(Student.id == student_id).values(balance=ZERO))
            sess.commit()

        report = billing.recalculate_student_balance(student_id, actor_id=actor_id)

        assert (report.old_balance, report.new_balance) == (ZERO, Decimal("500.00"))
        assert report.difference == Decimal("500.00")
        assert [line.plan_id for line in report.plans] == [plan.id]
        assert balances(student_id, register_id) == (Decimal("500.00"), Decimal("500.00"))
        record = activity_sink.records[-1]
        assert (record["action"], record["entity"], record["entity_id"]) == (
            "recalculate", "student", str(student_id),
        )
        assert record["user"] == str(actor_id)

    def test_recalculate_unknown_student(self, billing):
        with pytest.raises(StudentNotFoundError):
            billing.recalculate_student_balance(uuid4())

    def test_unknown_plan(self, billing, register_id):
        with pytest.raises(PlanNotFoundError):
            billing.pay_installment(uuid4(), 1, Decimal("1"), register_id)
