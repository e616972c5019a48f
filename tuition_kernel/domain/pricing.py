"""
Plan pricing -- discount, card commission, and VAT arithmetic.

Responsibility:
    Turns a list price, a discount and a payment selection into the amount
    the student owes.  Pure functions; the plan builder persists the result.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - ``subtotal = total - discount`` and is never negative.
    - Card commission is passed on to the student:
      ``charge = subtotal + commission``.
    - For mixed plans the commission applies to the card portion only, and
      ``card_charge + cash_charge == charge``.
    - VAT is computed on the charge, but only for invoiced plans.

Failure modes:
    - InvalidDiscountError for a negative value, a percentage above 100 or
      a fixed discount larger than the total.
    - InvalidPaymentSplitError when a mixed card portion is not strictly
      between 0 and the subtotal.
"""

from dataclasses import dataclass
from decimal import Decimal

from tuition_kernel.domain.money import HUNDRED, ZERO, percent_of, round_money
from tuition_kernel.domain.values import DiscountKind, PaymentType
from tuition_kernel.exceptions import (
    InvalidDiscountError,
    InvalidPaymentSplitError,
    NonPositiveAmountError,
)


@dataclass(frozen=True)
class Discount:
    """A discount descriptor: kind plus value (percent or absolute amount)."""

    kind: DiscountKind = DiscountKind.NONE
    value: Decimal = ZERO

    @property
    def is_full_scholarship(self) -> bool:
        return self.kind == DiscountKind.FULL_SCHOLARSHIP


@dataclass(frozen=True)
class PlanPricing:
    """
    Result of pricing a plan.

    Guarantees:
        - ``charge == subtotal + commission_amount``
        - ``card_charge + cash_charge == charge``
    """

    total_amount: Decimal
    discount_amount: Decimal
    subtotal: Decimal
    commission_rate: Decimal
    commission_amount: Decimal
    charge: Decimal
    card_charge: Decimal
    cash_charge: Decimal
    vat_rate: Decimal
    vat_amount: Decimal


def compute_discount(total: Decimal, discount: Discount) -> Decimal:
    """Absolute discount amount for ``total``."""
    if discount.kind == DiscountKind.NONE:
        return ZERO
    if discount.kind == DiscountKind.FULL_SCHOLARSHIP:
        return total

    if discount.value < ZERO:
        raise InvalidDiscountError(discount.kind.value, str(discount.value), "must not be negative")

    if discount.kind == DiscountKind.PERCENTAGE:
        if discount.value > HUNDRED:
            raise InvalidDiscountError(
                discount.kind.value, str(discount.value), "percentage above 100"
            )
        return percent_of(total, discount.value)

    amount = round_money(discount.value)
    if amount > total:
        raise InvalidDiscountError(
            discount.kind.value, str(discount.value), f"exceeds total {total}"
        )
    return amount


def price_plan(
    total: Decimal,
    discount: Discount,
    payment_type: PaymentType,
    *,
    commission_rate: Decimal = ZERO,
    card_portion: Decimal | None = None,
    is_invoiced: bool = False,
    vat_rate: Decimal = ZERO,
) -> PlanPricing:
    """
    Price a plan.

    ``commission_rate`` must already be resolved (explicit override or the
    settings table); it is ignored for cash plans.
    """
    if total < ZERO:
        raise NonPositiveAmountError("total_amount", str(total))

    discount_amount = compute_discount(total, discount)
    subtotal = round_money(total - discount_amount)

    rate = ZERO
    commission = ZERO
    card_charge = ZERO
    cash_charge = subtotal

    if payment_type == PaymentType.CREDIT_CARD and subtotal > ZERO:
        rate = commission_rate
        commission = percent_of(subtotal, rate)
        card_charge = subtotal + commission
        cash_charge = ZERO
    elif payment_type == PaymentType.MIXED and subtotal > ZERO:
        if card_portion is None or not (ZERO < card_portion < subtotal):
            raise InvalidPaymentSplitError(str(card_portion), str(subtotal))
        rate = commission_rate
        commission = percent_of(card_portion, rate)
        card_charge = card_portion + commission
        cash_charge = subtotal - card_portion

    charge = subtotal + commission
    applied_vat_rate = vat_rate if is_invoiced else ZERO

    return PlanPricing(
        total_amount=total,
        discount_amount=discount_amount,
        subtotal=subtotal,
        commission_rate=rate,
        commission_amount=commission,
        charge=charge,
        card_charge=card_charge,
        cash_charge=cash_charge,
        vat_rate=applied_vat_rate,
        vat_amount=percent_of(charge, applied_vat_rate),
    )
