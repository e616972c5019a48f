"""
Installment schedule construction.

Single-installment plans (card, mixed, cash in full) carry the whole charge
in installment 1.  Cash installment plans are split evenly to the cent, or
take caller-supplied amounts that must add up to the charge exactly.
"""

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal

from tuition_kernel.domain.money import ZERO, round_money, split_evenly
from tuition_kernel.domain.values import DueDateFrequency, PaymentType
from tuition_kernel.exceptions import InvalidScheduleError


@dataclass(frozen=True)
class ScheduledInstallment:
    number: int
    amount: Decimal
    due_date: date | None


def add_months(start: date, months: int) -> date:
    """Same day ``months`` later, clamped to the end of shorter months."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def due_date_for(
    first_due_date: date | None,
    index: int,
    frequency: DueDateFrequency,
    custom_days: int | None = None,
) -> date | None:
    """Due date of the installment at zero-based ``index``."""
    if first_due_date is None:
        return None
    if frequency == DueDateFrequency.WEEKLY:
        return first_due_date + timedelta(weeks=index)
    if frequency == DueDateFrequency.CUSTOM:
        if not custom_days or custom_days <= 0:
            raise InvalidScheduleError("custom frequency requires a positive custom_days")
        return first_due_date + timedelta(days=custom_days * index)
    return add_months(first_due_date, index)


def build_schedule(
    charge: Decimal,
    payment_type: PaymentType,
    *,
    installment_count: int = 1,
    custom_amounts: list[Decimal] | None = None,
    first_due_date: date | None = None,
    frequency: DueDateFrequency = DueDateFrequency.MONTHLY,
    custom_days: int | None = None,
) -> list[ScheduledInstallment]:
    """
    Build the installment list for a plan.

    Raises:
        InvalidScheduleError: non-positive count, custom amounts that don't
            sum to ``charge``, or a negative custom amount.
    """
    if payment_type != PaymentType.CASH_INSTALLMENT:
        return [ScheduledInstallment(1, charge, first_due_date)]

    if custom_amounts:
        amounts = [round_money(a) for a in custom_amounts]
        if any(a < ZERO for a in amounts):
            raise InvalidScheduleError("installment amounts must not be negative")
        if sum(amounts, ZERO) != charge:
            raise InvalidScheduleError(
                f"installments sum to {sum(amounts, ZERO)}, expected {charge}"
            )
    else:
        if installment_count <= 0:
            raise InvalidScheduleError(
                f"installment_count must be positive, got {installment_count}"
            )
        amounts = split_evenly(charge, installment_count)

    return [
        ScheduledInstallment(
            number=index + 1,
            amount=amount,
            due_date=due_date_for(first_due_date, index, frequency, custom_days),
        )
        for index, amount in enumerate(amounts)
    ]
