"""
Billing settings schema (``tuition_config.settings``).

Responsibility
--------------
Typed, frozen representation of one institution's billing settings: the
VAT rate applied to invoiced charges, the credit-card commission table
keyed by installment count, the rounding tolerance used by the repair
pass, and the per-plan lock timeout.

Invariants enforced
-------------------
* Rates are ``Decimal`` percentages in [0, 100].
* The commission table has an entry for a single installment, which is
  the fallback for counts missing from the table.
* ``rounding_epsilon`` and ``lock_timeout_seconds`` are positive.

Failure modes
-------------
* Any violated invariant raises ``ValueError`` from ``__post_init__``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from types import MappingProxyType
from typing import Any, Mapping

_DEFAULT_RATES: dict[int, str] = {
    1: "4",
    2: "6.5",
    3: "9",
    4: "11.5",
    5: "14",
    6: "16.5",
    7: "19",
    8: "24.51",
    9: "21.5",
    10: "24",
    11: "26.5",
    12: "29",
}


def _decimal(name: str, value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValueError(f"{name} must be a number, got {value!r}")
    try:
        # str() first so YAML floats like 24.51 keep their written digits
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{name} must be a number, got {value!r}") from None


def _rate_table(raw: Mapping[Any, Any]) -> Mapping[int, Decimal]:
    table: dict[int, Decimal] = {}
    for key, value in raw.items():
        try:
            count = int(key)
        except (TypeError, ValueError):
            raise ValueError(f"credit_card_rates key must be an installment count, got {key!r}") from None
        table[count] = _decimal(f"credit_card_rates[{count}]", value)
    return MappingProxyType(dict(sorted(table.items())))


@dataclass(frozen=True)
class BillingSettings:
    """Billing settings for one institution."""

    vat_rate: Decimal = Decimal("10")
    credit_card_rates: Mapping[int, Decimal] = field(
        default_factory=lambda: _rate_table(_DEFAULT_RATES)
    )
    rounding_epsilon: Decimal = Decimal("0.01")
    lock_timeout_seconds: float = 10.0
    institution: str = "default"

    def __post_init__(self) -> None:
        if not Decimal("0") <= self.vat_rate <= Decimal("100"):
            raise ValueError(f"vat_rate must be between 0 and 100, got {self.vat_rate}")
        if 1 not in self.credit_card_rates:
            raise ValueError("credit_card_rates must define a rate for 1 installment")
        for count, rate in self.credit_card_rates.items():
            if count < 1:
                raise ValueError(f"credit_card_rates key must be >= 1, got {count}")
            if not Decimal("0") <= rate <= Decimal("100"):
                raise ValueError(
                    f"credit_card_rates[{count}] must be between 0 and 100, got {rate}"
                )
        if self.rounding_epsilon <= 0:
            raise ValueError(f"rounding_epsilon must be positive, got {self.rounding_epsilon}")
        if self.lock_timeout_seconds <= 0:
            raise ValueError(
                f"lock_timeout_seconds must be positive, got {self.lock_timeout_seconds}"
            )

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], institution: str = "default") -> BillingSettings:
        """
        Build settings from a parsed YAML document.

        Keys absent from ``data`` keep their defaults.  Unknown keys are
        rejected so that a typo never silently falls back to a default.
        """
        known = {"vat_rate", "credit_card_rates", "rounding_epsilon", "lock_timeout_seconds"}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown billing settings: {', '.join(unknown)}")

        kwargs: dict[str, Any] = {"institution": institution}
        if "vat_rate" in data:
            kwargs["vat_rate"] = _decimal("vat_rate", data["vat_rate"])
        if "credit_card_rates" in data:
            rates = data["credit_card_rates"]
            if not isinstance(rates, Mapping):
                raise ValueError("credit_card_rates must be a mapping")
            kwargs["credit_card_rates"] = _rate_table(rates)
        if "rounding_epsilon" in data:
            kwargs["rounding_epsilon"] = _decimal("rounding_epsilon", data["rounding_epsilon"])
        if "lock_timeout_seconds" in data:
            kwargs["lock_timeout_seconds"] = float(
                _decimal("lock_timeout_seconds", data["lock_timeout_seconds"])
            )
        return cls(**kwargs)
