"""
Pure domain layer.

Money arithmetic, pricing, schedules, charge-term resolution and the
frozen DTOs that cross the facade boundary.  No dependencies on:
- ORM (SQLAlchemy sessions)
- Database
- Wall-clock time (the Clock is injected)
"""

from tuition_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from tuition_kernel.domain.dtos import (
    AmendmentView,
    CreatePlanRequest,
    DeletionResult,
    DiscrepancyReport,
    EnrollmentTerms,
    InstallmentBreakdown,
    InstallmentView,
    PayInstallmentRequest,
    PaymentBreakdown,
    PlanDiscrepancy,
    PlanView,
    RefundResult,
    RepairedInstallment,
    RepairReport,
)
from tuition_kernel.domain.money import (
    ROUNDING_EPSILON,
    ZERO,
    floor_at_zero,
    percent_of,
    round_money,
    split_evenly,
    to_money,
    within_tolerance,
)
from tuition_kernel.domain.policy import BillingPolicy
from tuition_kernel.domain.pricing import Discount, PlanPricing, price_plan
from tuition_kernel.domain.schedule import ScheduledInstallment, build_schedule
from tuition_kernel.domain.terms import ChargeTermSources, ResolvedChargeTerms, resolve_charge_terms
from tuition_kernel.domain.values import (
    DiscountKind,
    DueDateFrequency,
    ExpenseCategory,
    OverpaymentHandling,
    PaymentMethod,
    PaymentStatus,
    PaymentType,
)

__all__ = [
    "AmendmentView",
    "BillingPolicy",
    "ChargeTermSources",
    "Clock",
    "CreatePlanRequest",
    "DeletionResult",
    "DeterministicClock",
    "DiscrepancyReport",
    "Discount",
    "DiscountKind",
    "DueDateFrequency",
    "EnrollmentTerms",
    "ExpenseCategory",
    "InstallmentBreakdown",
    "InstallmentView",
    "OverpaymentHandling",
    "PayInstallmentRequest",
    "PaymentBreakdown",
    "PaymentMethod",
    "PaymentStatus",
    "PaymentType",
    "PlanDiscrepancy",
    "PlanPricing",
    "PlanView",
    "ROUNDING_EPSILON",
    "RefundResult",
    "RepairReport",
    "RepairedInstallment",
    "ResolvedChargeTerms",
    "ScheduledInstallment",
    "SystemClock",
    "ZERO",
    "build_schedule",
    "floor_at_zero",
    "percent_of",
    "price_plan",
    "resolve_charge_terms",
    "round_money",
    "split_evenly",
    "to_money",
    "within_tolerance",
]
