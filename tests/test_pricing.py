"""
Tests for `services/pricing_service.py`.

Covers contract rules:
- final_price = min(75, round(35 * quality * urgency * engagement)), half-up to whole dollars.
- base_price <= final_price <= 75 for every valid capture.
- Purchase price applies the subscription tier discount, then rounds.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from conftest import make_event, make_lead
from domain.provider import SubscriptionTier
from domain.usage_signal import UsageSignal
from services.pricing_service import (
    calculate_lead_pricing,
    calculate_purchase_price,
    engagement_multiplier,
    quality_multiplier,
    round_price,
    urgency_multiplier,
)
from services.scoring_service import calculate_lead_score


def _price(**overrides) -> Decimal:
    signal = UsageSignal.from_event(make_event(**overrides))
    return calculate_lead_pricing(calculate_lead_score(signal), signal).final_price


def test_top_lead_is_capped_at_75() -> None:
    """Score 100, 35 days, engagement 85: 35*2*1.2*1.425 = 119.7, capped to 75."""

    signal = UsageSignal.from_event(make_event())
    pricing = calculate_lead_pricing(100, signal)

    assert pricing.base_price == Decimal("35")
    assert pricing.quality_multiplier == Decimal("2")
    assert pricing.urgency_multiplier == Decimal("1.2")
    assert pricing.engagement_multiplier == Decimal("1.425")
    assert pricing.final_price == Decimal("75")


def test_uncapped_price_is_rounded() -> None:
    """Score 60 (7 days), engagement 0: 35*1.6*1.2*1.0 = 67.2 -> 67."""

    assert _price(usageDuration=7, appEngagement=0, childAge=10, diagnosisFromUsage="stuttering") == Decimal("67")


def test_uncapped_price_with_engagement() -> None:
    """Score 65 (8 days), engagement 10: 35*1.65*1.2*1.05 = 72.765 -> 73."""

    assert _price(usageDuration=8, appEngagement=10, childAge=10, diagnosisFromUsage="stuttering") == Decimal("73")


def test_multipliers() -> None:
    assert quality_multiplier(0) == Decimal("1")
    assert quality_multiplier(50) == Decimal("1.5")
    assert urgency_multiplier(2) == Decimal("1.8")
    assert urgency_multiplier(3) == Decimal("1.5")
    assert urgency_multiplier(7) == Decimal("1.2")
    assert engagement_multiplier(0) == Decimal("1")
    assert engagement_multiplier(100) == Decimal("1.5")


def test_round_price_is_half_up() -> None:
    assert round_price(Decimal("52.5")) == Decimal("53")
    assert round_price(Decimal("67.49")) == Decimal("67")


@pytest.mark.parametrize("days", [0, 2, 5, 7, 8, 15, 40])
@pytest.mark.parametrize("engagement", [0, 45, 100])
@pytest.mark.parametrize("age", [2, 6, 12])
def test_capture_price_is_within_bounds(days: int, engagement: int, age: int) -> None:
    price = _price(usageDuration=days, appEngagement=engagement, childAge=age, diagnosisFromUsage="delayed_speech")
    assert Decimal("35") <= price <= Decimal("75")


@pytest.mark.parametrize(
    "tier,expected",
    [
        (SubscriptionTier.ENTERPRISE, Decimal("53")),
        (SubscriptionTier.PRACTICE_PLUS, Decimal("60")),
        (SubscriptionTier.PRO, Decimal("68")),
        (SubscriptionTier.FREE, Decimal("75")),
    ],
)
def test_purchase_price_by_tier(tier: SubscriptionTier, expected: Decimal) -> None:
    assert calculate_purchase_price(make_lead(price=Decimal("75")), tier) == expected


def test_unknown_tier_pays_full_price() -> None:
    assert SubscriptionTier.parse("platinum") == SubscriptionTier.FREE
    assert calculate_purchase_price(make_lead(price=Decimal("40")), SubscriptionTier.parse(None)) == Decimal("40")
