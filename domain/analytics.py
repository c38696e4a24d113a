"""
Domain: marketplace analytics.

Two kinds of figures live here:

- MarketplaceCounters: streaming totals updated in the same critical section
  as the capture or purchase that drives them.
- Rollups (trends, demographics, provider leaderboard): recomputed in batch
  from the full lead and purchase sets.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Mapping, Optional, Tuple

from .time import require_utc_timestamp

_CENTS = Decimal("0.01")


@dataclass(frozen=True, slots=True)
class MarketplaceCounters:
    """
    listed_value_total is the exact sum of listed prices; avg_lead_price is
    derived from it and rounded only when read.
    """

    total_leads: int = 0
    active_leads: int = 0
    sold_leads: int = 0
    total_revenue: Decimal = Decimal("0.00")
    listed_value_total: Decimal = Decimal("0")
    conversion_rate: float = 0.0

    @property
    def avg_lead_price(self) -> Decimal:
        if not self.total_leads:
            return Decimal("0.00")
        mean = self.listed_value_total / self.total_leads
        return mean.quantize(_CENTS, rounding=ROUND_HALF_UP)

    def lead_captured(self, final_price: Decimal) -> "MarketplaceCounters":
        return replace(
            self,
            total_leads=self.total_leads + 1,
            active_leads=self.active_leads + 1,
            listed_value_total=self.listed_value_total + final_price,
        )

    def lead_sold(self, price: Decimal, *, sold_out: bool) -> "MarketplaceCounters":
        return replace(
            self,
            sold_leads=self.sold_leads + 1,
            total_revenue=self.total_revenue + price,
            active_leads=self.active_leads - 1 if sold_out else self.active_leads,
        )

    def leads_closed(self, count: int) -> "MarketplaceCounters":
        """Remove `count` leads from the active total (expiry sweep)."""

        return replace(self, active_leads=max(0, self.active_leads - count))

    def with_conversion_rate(self, rate: float) -> "MarketplaceCounters":
        return replace(self, conversion_rate=rate)


@dataclass(frozen=True, slots=True)
class TrendSeries:
    """Weekly series, oldest week first."""

    week_starts: Tuple[datetime, ...] = ()
    leads_per_week: Tuple[int, ...] = ()
    sales_per_week: Tuple[int, ...] = ()
    revenue_per_week: Tuple[Decimal, ...] = ()
    conversion_trend: Tuple[float, ...] = ()


@dataclass(frozen=True, slots=True)
class ZipCodeStats:
    zip_code: str
    leads: int
    avg_price: Decimal


@dataclass(frozen=True, slots=True)
class Demographics:
    age_distribution: Mapping[str, int] = field(default_factory=dict)
    diagnosis_breakdown: Mapping[str, int] = field(default_factory=dict)
    location_heatmap: Tuple[ZipCodeStats, ...] = ()
    urgency_distribution: Mapping[str, int] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ProviderMetrics:
    provider_id: str
    leads_purchased: int
    leads_per_month: int
    conversion_rate: float
    avg_roi: float
    avg_feedback: Optional[float] = None
    milestones: Mapping[str, int] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class MarketplaceRollups:
    computed_at: datetime
    trends: TrendSeries
    demographics: Demographics
    top_purchasers: Tuple[ProviderMetrics, ...]
    satisfaction_scores: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        require_utc_timestamp("computed_at", self.computed_at)


@dataclass(frozen=True, slots=True)
class MarketplaceAnalytics:
    """Snapshot returned to callers: live counters plus the last batch rollups."""

    overview: MarketplaceCounters
    rollups: Optional[MarketplaceRollups] = None


__all__ = [
    "MarketplaceCounters",
    "TrendSeries",
    "ZipCodeStats",
    "Demographics",
    "ProviderMetrics",
    "MarketplaceRollups",
    "MarketplaceAnalytics",
]
