"""ORM models for the tuition kernel."""

from tuition_kernel.models.auxiliary_expense import AuxiliaryExpense
from tuition_kernel.models.cash_register import CashRegister
from tuition_kernel.models.payment import Payment
from tuition_kernel.models.payment_plan import Installment, PaymentPlan, ScheduleAmendment
from tuition_kernel.models.student import Student

__all__ = [
    "AuxiliaryExpense",
    "CashRegister",
    "Installment",
    "Payment",
    "PaymentPlan",
    "ScheduleAmendment",
    "Student",
]
