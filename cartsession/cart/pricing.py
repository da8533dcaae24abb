from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Mapping

from cartsession.cart.errors import UnknownTierError
from cartsession.cart.models import BillingPeriod, PlanIntent, Pricing, Tier
from cartsession.config import PricingConfig, get_pricing_config


def round2(value: float) -> float:
    # Round half up to cents, matching the server-side reconciliation rule.
    return math.floor(value * 100 + 0.5) / 100


def compute_pricing(
    unit_price: float,
    intent: PlanIntent,
    annual_discount_rate: float,
    currency: str = "USD",
) -> Pricing:
    subtotal = unit_price * intent.seat_count
    discount = subtotal * annual_discount_rate if intent.billing_period == BillingPeriod.ANNUAL else 0
    return Pricing(
        subtotal=subtotal,
        discount=discount,
        total=round2(subtotal - discount),
        currency=currency,
    )


@dataclass(frozen=True)
class PricingTable:
    unit_prices: Mapping[str, float] = field(default_factory=dict)
    annual_discount_rate: float = 0.16
    currency: str = "USD"

    @classmethod
    def from_config(cls, config: PricingConfig | None = None) -> "PricingTable":
        config = config or get_pricing_config()
        return cls(
            unit_prices=dict(config.unit_prices),
            annual_discount_rate=config.annual_discount_rate,
            currency=config.currency,
        )

    def unit_price(self, tier: Tier | str) -> float:
        key = tier.value if isinstance(tier, Tier) else str(tier)
        if key not in self.unit_prices:
            raise UnknownTierError(key)
        return self.unit_prices[key]

    def price(self, intent: PlanIntent) -> Pricing:
        return compute_pricing(
            self.unit_price(intent.tier),
            intent,
            self.annual_discount_rate,
            self.currency,
        )
