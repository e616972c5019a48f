"""
Value vocabulary shared by models, domain helpers and services.

String-valued enums so the stored column value is the enum value itself.
"""

from enum import Enum


class PaymentType(str, Enum):
    """How a payment plan is paid."""

    CASH_FULL = "cash_full"
    CASH_INSTALLMENT = "cash_installment"
    CREDIT_CARD = "credit_card"
    MIXED = "mixed"


class PaymentMethod(str, Enum):
    """How a single payment was made."""

    CASH = "cash"
    CREDIT_CARD = "credit_card"


class PaymentStatus(str, Enum):
    COMPLETED = "completed"
    REFUNDED = "refunded"


class DiscountKind(str, Enum):
    NONE = "none"
    PERCENTAGE = "percentage"
    FIXED = "fixed"
    FULL_SCHOLARSHIP = "full_scholarship"


class ExpenseCategory(str, Enum):
    """Auxiliary expenses the kernel books on its own."""

    COMMISSION = "commission"
    VAT = "vat"
    REFUND = "refund"


class OverpaymentHandling(str, Enum):
    """What happens to the excess when an installment is overpaid."""

    NEXT = "next"
    DISTRIBUTE = "distribute"


class DueDateFrequency(str, Enum):
    MONTHLY = "monthly"
    WEEKLY = "weekly"
    CUSTOM = "custom"
