"""Tests for installment schedule construction (tuition_kernel/domain/schedule.py)."""

from datetime import date
from decimal import Decimal

import pytest

from tuition_kernel.domain.money import ZERO
from tuition_kernel.domain.schedule import add_months, build_schedule, due_date_for
from tuition_kernel.domain.values import DueDateFrequency, PaymentType
from tuition_kernel.exceptions import InvalidScheduleError


class TestDueDates:
    def test_add_months_clamps_to_month_end(self):
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
        assert add_months(date(2023, 1, 31), 1) == date(2023, 2, 28)
        assert add_months(date(2024, 11, 15), 3) == date(2025, 2, 15)

    def test_weekly(self):
        assert due_date_for(date(2024, 1, 1), 2, DueDateFrequency.WEEKLY) == date(2024, 1, 15)

    def test_custom_days(self):
        assert due_date_for(date(2024, 1, 1), 3, DueDateFrequency.CUSTOM, custom_days=10) == date(2024, 1, 31)

    def test_custom_without_days_rejected(self):
        with pytest.raises(InvalidScheduleError):
            due_date_for(date(2024, 1, 1), 1, DueDateFrequency.CUSTOM)

    def test_no_first_due_date(self):
        assert due_date_for(None, 4, DueDateFrequency.MONTHLY) is None


class TestBuildSchedule:
    def test_even_split_with_monthly_due_dates(self):
        schedule = build_schedule(
            Decimal("1000.00"),
            PaymentType.CASH_INSTALLMENT,
            installment_count=3,
            first_due_date=date(2024, 1, 31),
        )
        assert [s.number for s in schedule] == [1, 2, 3]
        assert [s.amount for s in schedule] == [Decimal("333.34"), Decimal("333.33"), Decimal("333.33")]
        assert [s.due_date for s in schedule] == [date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31)]

    def test_custom_amounts_must_sum_to_charge(self):
        schedule = build_schedule(
            Decimal("1000.00"),
            PaymentType.CASH_INSTALLMENT,
            custom_amounts=[Decimal("700"), Decimal("300")],
        )
        assert [s.amount for s in schedule] == [Decimal("700.00"), Decimal("300.00")]

        with pytest.raises(InvalidScheduleError):
            build_schedule(
                Decimal("1000.00"),
                PaymentType.CASH_INSTALLMENT,
                custom_amounts=[Decimal("700"), Decimal("299.99")],
            )

    def test_negative_custom_amount_rejected(self):
        with pytest.raises(InvalidScheduleError):
            build_schedule(
                Decimal("100.00"),
                PaymentType.CASH_INSTALLMENT,
                custom_amounts=[Decimal("150"), Decimal("-50")],
            )

    def test_non_positive_count_rejected(self):
        with pytest.raises(InvalidScheduleError):
            build_schedule(Decimal("100.00"), PaymentType.CASH_INSTALLMENT, installment_count=0)

    @pytest.mark.parametrize(
        "payment_type", [PaymentType.CASH_FULL, PaymentType.CREDIT_CARD, PaymentType.MIXED]
    )
    def test_single_installment_for_other_types(self, payment_type):
        schedule = build_schedule(Decimal("1090.00"), payment_type, installment_count=6)
        assert len(schedule) == 1
        assert schedule[0].amount == Decimal("1090.00")

    def test_zero_charge_installments(self):
        schedule = build_schedule(ZERO, PaymentType.CASH_INSTALLMENT, installment_count=2)
        assert [s.amount for s in schedule] == [ZERO, ZERO]
