"""
BillingPolicy -- kernel-side view of institution billing settings.

The kernel never reads configuration files.  ``tuition_config`` loads the
YAML settings and bridges them into this frozen value, which services
receive through their constructors.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import Mapping

from tuition_kernel.domain.money import ROUNDING_EPSILON

DEFAULT_VAT_RATE = Decimal("10")

DEFAULT_CREDIT_CARD_RATES: Mapping[int, Decimal] = MappingProxyType(
    {
        1: Decimal("4"),
        2: Decimal("6.5"),
        3: Decimal("9"),
        4: Decimal("11.5"),
        5: Decimal("14"),
        6: Decimal("16.5"),
        7: Decimal("19"),
        8: Decimal("24.51"),
        9: Decimal("21.5"),
        10: Decimal("24"),
        11: Decimal("26.5"),
        12: Decimal("29"),
    }
)


@dataclass(frozen=True)
class BillingPolicy:
    """
    Rates and tolerances consulted when a payment carries no resolved terms.

    Guarantees:
        - ``commission_rate_for`` never raises: an unknown installment count
          falls back to the single-installment rate, then to zero.
    """

    vat_rate: Decimal = DEFAULT_VAT_RATE
    credit_card_rates: Mapping[int, Decimal] = field(
        default_factory=lambda: DEFAULT_CREDIT_CARD_RATES
    )
    rounding_epsilon: Decimal = ROUNDING_EPSILON
    lock_timeout_seconds: float = 10.0

    def commission_rate_for(self, credit_card_installments: int | None) -> Decimal:
        count = credit_card_installments or 1
        rate = self.credit_card_rates.get(count)
        if rate is None:
            rate = self.credit_card_rates.get(1, Decimal("0"))
        return rate
