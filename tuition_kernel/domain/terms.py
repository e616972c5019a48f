"""
Charge-term resolution.

Responsibility:
    Decides, once per payment, which commission and VAT apply, and freezes
    the answer into ``ResolvedChargeTerms``.  The terms are stored on the
    Payment and copied to the installment; nothing downstream re-derives
    them.

Architecture position:
    Kernel > Domain -- pure functions, zero I/O.

Resolution order (first non-empty wins):
    commission: installment amount -> installment rate -> plan rate
                -> policy table keyed by credit_card_installments
    vat:        installment amount -> installment rate -> plan rate
                -> policy default rate

Invariants enforced:
    - Commission is zero unless the payment is a card payment.
    - VAT is zero unless the payment is invoiced.
"""

from dataclasses import dataclass
from decimal import Decimal

from tuition_kernel.domain.money import ZERO, percent_of
from tuition_kernel.domain.policy import BillingPolicy


@dataclass(frozen=True)
class ResolvedChargeTerms:
    commission_rate: Decimal = ZERO
    commission_amount: Decimal = ZERO
    vat_rate: Decimal = ZERO
    vat_amount: Decimal = ZERO

    @property
    def deductions(self) -> Decimal:
        """Total the register pays out for this payment."""
        return self.commission_amount + self.vat_amount


@dataclass(frozen=True)
class ChargeTermSources:
    """The stored values resolution may draw from; ``None`` or zero means unset."""

    installment_commission: Decimal | None = None
    installment_commission_rate: Decimal | None = None
    plan_commission_rate: Decimal | None = None
    installment_vat: Decimal | None = None
    installment_vat_rate: Decimal | None = None
    plan_vat_rate: Decimal | None = None
    credit_card_installments: int | None = None


def _first_set(*values: Decimal | None) -> Decimal | None:
    for value in values:
        if value is not None and value > ZERO:
            return value
    return None


def resolve_charge_terms(
    amount: Decimal,
    sources: ChargeTermSources,
    policy: BillingPolicy,
    *,
    is_credit_card: bool,
    is_invoiced: bool,
) -> ResolvedChargeTerms:
    commission_rate = ZERO
    commission_amount = ZERO
    if is_credit_card:
        commission_rate = _first_set(
            sources.installment_commission_rate,
            sources.plan_commission_rate,
        ) or policy.commission_rate_for(sources.credit_card_installments)
        preset = _first_set(sources.installment_commission)
        commission_amount = preset if preset is not None else percent_of(amount, commission_rate)

    vat_rate = ZERO
    vat_amount = ZERO
    if is_invoiced:
        vat_rate = _first_set(
            sources.installment_vat_rate,
            sources.plan_vat_rate,
        ) or policy.vat_rate
        preset = _first_set(sources.installment_vat)
        vat_amount = preset if preset is not None else percent_of(amount, vat_rate)

    return ResolvedChargeTerms(
        commission_rate=commission_rate,
        commission_amount=commission_amount,
        vat_rate=vat_rate,
        vat_amount=vat_amount,
    )
