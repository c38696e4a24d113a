"""
Pricing service for marketplace leads.

Two prices exist for every lead:

- Listed price, fixed at capture time from lead quality, urgency and app
  engagement. Capped at PRICE_CAP; the cap is a ceiling only.
- Charged price, computed at purchase time by applying the buyer's
  subscription discount to the listed price. This is what the payment gateway
  charges and what the Purchase records; the listed price is never changed.

All money is Decimal, rounded half-up to whole dollars.
"""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal

from domain.lead import BASE_PRICE, PRICE_CAP, Lead, LeadPricing
from domain.provider import SubscriptionTier
from domain.usage_signal import UsageSignal

_WHOLE_DOLLARS = Decimal("1")


def round_price(amount: Decimal) -> Decimal:
    """Round half-up to whole dollars."""

    return amount.quantize(_WHOLE_DOLLARS, rounding=ROUND_HALF_UP)


def quality_multiplier(lead_score: int) -> Decimal:
    """1 + lead_score/100, in [1, 2]."""

    if not 0 <= lead_score <= 100:
        raise ValueError(f"lead_score must be within [0, 100], got {lead_score}")
    return 1 + Decimal(lead_score) / 100


def urgency_multiplier(usage_duration_days: float) -> Decimal:
    """Newer app users are priced as more urgent: <3 days 1.8, <7 days 1.5, else 1.2."""

    if not math.isfinite(usage_duration_days):
        raise ValueError(f"usage_duration_days must be finite, got {usage_duration_days!r}")
    if usage_duration_days < 3:
        return Decimal("1.8")
    if usage_duration_days < 7:
        return Decimal("1.5")
    return Decimal("1.2")


def engagement_multiplier(app_engagement: float) -> Decimal:
    """1 + app_engagement/200, in [1, 1.5]."""

    if not math.isfinite(app_engagement):
        raise ValueError(f"app_engagement must be finite, got {app_engagement!r}")
    return 1 + Decimal(str(app_engagement)) / 200


def calculate_lead_pricing(lead_score: int, signal: UsageSignal) -> LeadPricing:
    """
    Listed price for a freshly scored lead.

    final_price = min(PRICE_CAP, round(BASE_PRICE * quality * urgency * engagement))

    Example:
        score 100, 35 days of usage, engagement 85:
        35 * 2 * 1.2 * 1.425 = 119.7 -> 120 -> capped to 75
    """

    quality = quality_multiplier(lead_score)
    urgency = urgency_multiplier(signal.usage_duration_days)
    engagement = engagement_multiplier(signal.app_engagement)

    raw_price = round_price(BASE_PRICE * quality * urgency * engagement)

    return LeadPricing(
        base_price=BASE_PRICE,
        quality_multiplier=quality,
        urgency_multiplier=urgency,
        engagement_multiplier=engagement,
        final_price=min(PRICE_CAP, raw_price),
    )


def calculate_purchase_price(lead: Lead, tier: SubscriptionTier) -> Decimal:
    """
    Price charged to a provider of `tier` for `lead`.

    enterprise x0.7, practice_plus x0.8, pro x0.9, anything else x1.0.
    """

    return round_price(lead.final_price * tier.lead_discount_factor)


__all__ = [
    "round_price",
    "quality_multiplier",
    "urgency_multiplier",
    "engagement_multiplier",
    "calculate_lead_pricing",
    "calculate_purchase_price",
]
