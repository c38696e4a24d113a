"""
Marketplace analytics aggregator.

Streaming counters (totals, revenue, running mean price, conversion rate) are
updated synchronously by capture, purchase, conversion and expiry. Each update
is one read-modify-write under the aggregator's lock, taken while the caller
still holds its own lead lock.

Rollups (weekly trends, demographics, provider leaderboard) are batch figures:
they are recomputed from the full lead and purchase sets by refresh_rollups()
and cached until the next refresh.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter, defaultdict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence

from domain.analytics import (
    Demographics,
    MarketplaceAnalytics,
    MarketplaceCounters,
    MarketplaceRollups,
    ProviderMetrics,
    TrendSeries,
    ZipCodeStats,
)
from domain.lead import Lead, Urgency
from domain.purchase import Milestone, Purchase
from domain.time import require_utc_timestamp
from repositories.analytics_repository import AnalyticsRepository
from repositories.lead_repository import LeadRepository
from repositories.purchase_repository import PurchaseRepository
from services.matching_service import AVG_SESSION_VALUE, EXPECTED_SESSIONS
from services.pricing_service import round_price

logger = logging.getLogger(__name__)

DEFAULT_TREND_WEEKS = 7
TOP_PURCHASERS = 10
_WEEK = timedelta(days=7)
_MONTH = timedelta(days=30)


def conversion_rate(purchases: Sequence[Purchase]) -> float:
    """Converted purchases as a percentage of all purchases (0 when there are none)."""

    if not purchases:
        return 0.0
    converted = sum(1 for p in purchases if p.tracking.converted)
    return converted / len(purchases) * 100


def age_bucket(age: float) -> str:
    if age < 5:
        return "0-4"
    if age < 8:
        return "5-7"
    if age < 13:
        return "8-12"
    return "13+"


def compute_trends(
    leads: Iterable[Lead],
    purchases: Iterable[Purchase],
    as_of: datetime,
    weeks: int = DEFAULT_TREND_WEEKS,
) -> TrendSeries:
    """
    Weekly series ending at `as_of`, oldest week first.

    Week i covers [as_of - (weeks - i) * 7d, as_of - (weeks - i - 1) * 7d).
    conversion_trend is the conversion rate of purchases made in that week.
    """

    if weeks < 1:
        raise ValueError("weeks must be >= 1")

    starts = [as_of - _WEEK * (weeks - i) for i in range(weeks)]

    def week_index(moment: datetime) -> Optional[int]:
        if moment >= as_of or moment < starts[0]:
            return None
        return int((moment - starts[0]) // _WEEK)

    lead_counts = [0] * weeks
    for lead in leads:
        index = week_index(lead.created_at)
        if index is not None:
            lead_counts[index] += 1

    weekly_purchases: List[List[Purchase]] = [[] for _ in range(weeks)]
    for purchase in purchases:
        index = week_index(purchase.purchased_at)
        if index is not None:
            weekly_purchases[index].append(purchase)

    return TrendSeries(
        week_starts=tuple(starts),
        leads_per_week=tuple(lead_counts),
        sales_per_week=tuple(len(bucket) for bucket in weekly_purchases),
        revenue_per_week=tuple(sum((p.price for p in bucket), Decimal("0")) for bucket in weekly_purchases),
        conversion_trend=tuple(round(conversion_rate(bucket), 1) for bucket in weekly_purchases),
    )


def compute_demographics(leads: Iterable[Lead]) -> Demographics:
    ages: Counter = Counter({bucket: 0 for bucket in ("0-4", "5-7", "8-12", "13+")})
    diagnoses: Counter = Counter()
    urgencies: Counter = Counter({u.value: 0 for u in Urgency})
    zip_prices: Dict[str, List[Decimal]] = defaultdict(list)

    for lead in leads:
        ages[age_bucket(lead.child.age)] += 1
        diagnoses[lead.child.diagnosis] += 1
        urgencies[lead.requirements.urgency.value] += 1
        zip_prices[lead.requirements.location.zip_code].append(lead.final_price)

    heatmap = [
        ZipCodeStats(
            zip_code=zip_code,
            leads=len(prices),
            avg_price=round_price(sum(prices, Decimal("0")) / len(prices)),
        )
        for zip_code, prices in zip_prices.items()
    ]
    heatmap.sort(key=lambda z: (-z.leads, z.zip_code))

    return Demographics(
        age_distribution=dict(ages),
        diagnosis_breakdown=dict(diagnoses.most_common()),
        location_heatmap=tuple(heatmap),
        urgency_distribution=dict(urgencies),
    )


def compute_provider_metrics(purchases: Iterable[Purchase], as_of: datetime) -> List[ProviderMetrics]:
    """
    Per-provider funnel figures.

    avg_roi is realized ROI: every converted purchase is credited with
    AVG_SESSION_VALUE * EXPECTED_SESSIONS of revenue against the total spent.
    """

    by_provider: Dict[str, List[Purchase]] = defaultdict(list)
    for purchase in purchases:
        by_provider[purchase.provider_id].append(purchase)

    metrics: List[ProviderMetrics] = []
    for provider_id, bought in by_provider.items():
        converted = sum(1 for p in bought if p.tracking.converted)
        spend = sum((p.price for p in bought), Decimal("0"))
        revenue = Decimal(AVG_SESSION_VALUE * EXPECTED_SESSIONS * converted)
        roi = float((revenue - spend) / spend * 100) if spend > 0 else 0.0
        feedback = [p.tracking.feedback_score for p in bought if p.tracking.feedback_score is not None]

        metrics.append(ProviderMetrics(
            provider_id=provider_id,
            leads_purchased=len(bought),
            leads_per_month=sum(1 for p in bought if as_of - _MONTH <= p.purchased_at <= as_of),
            conversion_rate=round(conversion_rate(bought), 1),
            avg_roi=round(roi, 1),
            avg_feedback=round(sum(feedback) / len(feedback), 2) if feedback else None,
            milestones={m.value: sum(1 for p in bought if p.tracking.is_reached(m)) for m in Milestone},
        ))

    metrics.sort(key=lambda m: (-m.leads_per_month, -m.conversion_rate, m.provider_id))
    return metrics


def compute_satisfaction_scores(purchases: Iterable[Purchase]) -> Dict[str, float]:
    scores = [p.tracking.feedback_score for p in purchases if p.tracking.feedback_score is not None]
    if not scores:
        return {}
    return {"lead_quality": round(sum(scores) / len(scores), 2)}


class AnalyticsService:
    def __init__(
        self,
        repository: AnalyticsRepository,
        leads: LeadRepository,
        purchases: PurchaseRepository,
    ) -> None:
        self._repository = repository
        self._leads = leads
        self._purchases = purchases
        self._lock = threading.Lock()
        self._rollups: Optional[MarketplaceRollups] = None

    # Streaming counters

    def record_capture(self, final_price: Decimal) -> MarketplaceCounters:
        with self._lock:
            counters = self._repository.load_counters().lead_captured(final_price)
            self._repository.save_counters(counters)
            return counters

    def record_sale(self, price: Decimal, *, sold_out: bool) -> MarketplaceCounters:
        with self._lock:
            counters = self._repository.load_counters().lead_sold(price, sold_out=sold_out)
            self._repository.save_counters(counters)
            return counters

    def record_closed(self, count: int) -> MarketplaceCounters:
        with self._lock:
            counters = self._repository.load_counters().leads_closed(count)
            self._repository.save_counters(counters)
            return counters

    def refresh_conversion_rate(self) -> float:
        """Recompute the global conversion rate over the full purchase set."""

        with self._lock:
            rate = conversion_rate(self._purchases.list_purchases())
            counters = self._repository.load_counters().with_conversion_rate(rate)
            self._repository.save_counters(counters)
            return rate

    def counters(self) -> MarketplaceCounters:
        with self._lock:
            return self._repository.load_counters()

    # Batch rollups

    def refresh_rollups(self, as_of: datetime, weeks: int = DEFAULT_TREND_WEEKS) -> MarketplaceRollups:
        require_utc_timestamp("as_of", as_of)

        leads = self._leads.list_leads()
        purchases = self._purchases.list_purchases()

        rollups = MarketplaceRollups(
            computed_at=as_of,
            trends=compute_trends(leads, purchases, as_of, weeks),
            demographics=compute_demographics(leads),
            top_purchasers=tuple(compute_provider_metrics(purchases, as_of)[:TOP_PURCHASERS]),
            satisfaction_scores=compute_satisfaction_scores(purchases),
        )

        with self._lock:
            self._rollups = rollups

        logger.info(
            "Marketplace rollups refreshed",
            extra={"leads": len(leads), "purchases": len(purchases), "weeks": weeks},
        )
        return rollups

    def snapshot(self) -> MarketplaceAnalytics:
        with self._lock:
            return MarketplaceAnalytics(overview=self._repository.load_counters(), rollups=self._rollups)


__all__ = [
    "conversion_rate",
    "age_bucket",
    "compute_trends",
    "compute_demographics",
    "compute_provider_metrics",
    "compute_satisfaction_scores",
    "AnalyticsService",
]
