"""
Domain: Provider (buyer) profiles.

Providers are clinicians listed in the external therapist directory. The
marketplace only reads them: profile lookup for pricing and match scoring, and
candidate search for matching new leads.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Tuple

from .geo import Coordinates, haversine_miles


class SubscriptionTier(str, Enum):
    FREE = "free"
    PRO = "pro"
    PRACTICE_PLUS = "practice_plus"
    ENTERPRISE = "enterprise"

    @staticmethod
    def parse(value: str | None) -> "SubscriptionTier":
        """Resolve a directory tier string; unknown or missing tiers get no discount."""

        try:
            return SubscriptionTier((value or "").strip().lower())
        except ValueError:
            return SubscriptionTier.FREE

    @property
    def lead_discount_factor(self) -> Decimal:
        """Multiplier applied to a lead's listed price at purchase time."""

        return _TIER_FACTORS[self]


_TIER_FACTORS = {
    SubscriptionTier.ENTERPRISE: Decimal("0.7"),
    SubscriptionTier.PRACTICE_PLUS: Decimal("0.8"),
    SubscriptionTier.PRO: Decimal("0.9"),
    SubscriptionTier.FREE: Decimal("1.0"),
}


@dataclass(frozen=True, slots=True)
class ProviderProfile:
    """
    Directory profile of a provider.

    specialties hold directory specialty names
    (e.g. "Augmentative and Alternative Communication").
    """

    provider_id: str
    subscription_tier: SubscriptionTier
    specialties: Tuple[str, ...]
    location: Coordinates
    experience_years: float
    rating: float = 0.0
    service_radius_miles: float = 25.0
    accepts_leads: bool = True

    def distance_to(self, point: Coordinates) -> float:
        return haversine_miles(self.location, point)

    def serves(self, point: Coordinates) -> bool:
        """True if `point` falls inside this provider's service area."""

        return self.distance_to(point) <= self.service_radius_miles


__all__ = ["SubscriptionTier", "ProviderProfile"]
