"""
Config -> Kernel bridges.

Converts BillingSettings into the kernel's BillingPolicy.  Lives in
tuition_config because the kernel must never import tuition_config.

Usage:
    from tuition_config import get_active_settings
    from tuition_config.bridges import policy_from_settings

    policy = policy_from_settings(get_active_settings("north-campus"))
"""

from __future__ import annotations

from types import MappingProxyType

from tuition_config.settings import BillingSettings
from tuition_kernel.domain.policy import BillingPolicy


def policy_from_settings(settings: BillingSettings) -> BillingPolicy:
    return BillingPolicy(
        vat_rate=settings.vat_rate,
        credit_card_rates=MappingProxyType(dict(settings.credit_card_rates)),
        rounding_epsilon=settings.rounding_epsilon,
        lock_timeout_seconds=settings.lock_timeout_seconds,
    )
