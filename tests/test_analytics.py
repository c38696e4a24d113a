"""
Tests for analytics (`domain/analytics.py`, `services/analytics_service.py`).

Covers contract rules:
- Capture updates totals; the mean price is derived from an exact total.
- Sales add revenue; a sell-out removes the lead from the active count.
- Rollups: weekly trends, age buckets, zip heatmap, provider leaderboard, satisfaction.
"""

from __future__ import annotations

from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from uuid import uuid4

import pytest

from conftest import NOW, make_event, make_lead
from domain.analytics import MarketplaceCounters
from domain.lead import Urgency
from domain.purchase import Milestone, Purchase
from services.analytics_service import (
    age_bucket,
    compute_demographics,
    compute_provider_metrics,
    compute_satisfaction_scores,
    compute_trends,
    conversion_rate,
)


def _purchase(provider_id: str, *, at=NOW, price="50", converted=False, feedback=None) -> Purchase:
    purchase = Purchase.snapshot(
        purchase_id=uuid4(),
        provider_id=provider_id,
        lead=make_lead(),
        purchased_at=at,
        price=Decimal(price),
        payment_method="card",
    )
    if converted:
        purchase = purchase.with_milestone(Milestone.CONVERTED, at)
    if feedback is not None:
        purchase = purchase.with_feedback(feedback)
    return purchase


class TestCounters:
    def test_incremental_mean(self) -> None:
        counters = MarketplaceCounters().lead_captured(Decimal("75")).lead_captured(Decimal("60"))

        assert counters.total_leads == 2
        assert counters.active_leads == 2
        assert counters.avg_lead_price == Decimal("67.50")

    def test_mean_is_derived_from_exact_total(self) -> None:
        counters = MarketplaceCounters()
        for price in ("35.01", "35.00", "35.00"):
            counters = counters.lead_captured(Decimal(price))

        assert counters.listed_value_total == Decimal("105.01")
        assert counters.avg_lead_price == Decimal("35.00")

    def test_mean_stays_exact_over_many_captures(self) -> None:
        prices = [Decimal("35") + Decimal(i % 41) / 3 for i in range(500)]
        prices = [p.quantize(Decimal("0.01")) for p in prices]
        counters = MarketplaceCounters()
        for price in prices:
            counters = counters.lead_captured(price)

        expected = (sum(prices) / len(prices)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        assert counters.avg_lead_price == expected
        assert counters.total_leads == 500

    def test_sale_and_sell_out(self) -> None:
        counters = MarketplaceCounters().lead_captured(Decimal("75"))
        counters = counters.lead_sold(Decimal("53"), sold_out=False).lead_sold(Decimal("60"), sold_out=True)

        assert counters.sold_leads == 2
        assert counters.total_revenue == Decimal("113")
        assert counters.active_leads == 0

    def test_marketplace_capture_updates_counters(self, marketplace) -> None:
        marketplace.capture_lead_from_aac(make_event())
        marketplace.capture_lead_from_aac(make_event(usageDuration=7, appEngagement=0, childAge=10, diagnosisFromUsage="stuttering"))

        overview = marketplace.get_marketplace_analytics().overview
        assert overview.total_leads == 2
        assert overview.active_leads == 2
        assert overview.avg_lead_price == Decimal("71.00")  # (75 + 67) / 2

    def test_rollups_absent_until_refreshed(self, marketplace) -> None:
        assert marketplace.get_marketplace_analytics().rollups is None
        marketplace.refresh_rollups()
        assert marketplace.get_marketplace_analytics().rollups is not None


class TestRollups:
    def test_conversion_rate(self) -> None:
        assert conversion_rate([]) == 0.0
        assert conversion_rate([_purchase("a", converted=True), _purchase("a")]) == pytest.approx(50.0)

    @pytest.mark.parametrize("age,bucket", [(0, "0-4"), (4.9, "0-4"), (5, "5-7"), (8, "8-12"), (12.5, "8-12"), (13, "13+")])
    def test_age_buckets(self, age: float, bucket: str) -> None:
        assert age_bucket(age) == bucket

    def test_weekly_trends(self) -> None:
        leads = [
            make_lead(created_at=NOW - timedelta(days=1)),
            make_lead(created_at=NOW - timedelta(days=2)),
            make_lead(created_at=NOW - timedelta(days=10)),
            make_lead(created_at=NOW - timedelta(days=60)),  # outside the window
        ]
        purchases = [
            _purchase("a", at=NOW - timedelta(days=1), price="53", converted=True),
            _purchase("b", at=NOW - timedelta(days=3), price="60"),
        ]

        trends = compute_trends(leads, purchases, NOW, weeks=7)

        assert len(trends.week_starts) == 7
        assert trends.week_starts[0] == NOW - timedelta(weeks=7)
        assert trends.leads_per_week[-1] == 2
        assert trends.leads_per_week[-2] == 1
        assert sum(trends.leads_per_week) == 3
        assert trends.sales_per_week[-1] == 2
        assert trends.revenue_per_week[-1] == Decimal("113")
        assert trends.conversion_trend[-1] == pytest.approx(50.0)
        assert trends.conversion_trend[0] == 0.0

    def test_demographics(self) -> None:
        leads = [
            make_lead(age=3, zip_code="78701", price=Decimal("70")),
            make_lead(age=3, zip_code="78701", price=Decimal("75"), urgency=Urgency.EXPLORING),
            make_lead(age=9, zip_code="78664", diagnosis="apraxia", price=Decimal("60")),
        ]

        demographics = compute_demographics(leads)

        assert demographics.age_distribution == {"0-4": 2, "5-7": 0, "8-12": 1, "13+": 0}
        assert demographics.diagnosis_breakdown == {"autism": 2, "apraxia": 1}
        assert demographics.urgency_distribution["immediate"] == 2
        assert demographics.urgency_distribution["exploring"] == 1
        top = demographics.location_heatmap[0]
        assert (top.zip_code, top.leads, top.avg_price) == ("78701", 2, Decimal("73"))

    def test_provider_leaderboard(self) -> None:
        purchases = [
            _purchase("a", price="50", converted=True, feedback=5),
            _purchase("a", price="50", feedback=3),
            _purchase("b", price="75"),
            _purchase("b", price="75", at=NOW - timedelta(days=45)),
        ]

        metrics = {m.provider_id: m for m in compute_provider_metrics(purchases, NOW)}

        assert metrics["a"].leads_purchased == 2
        assert metrics["a"].leads_per_month == 2
        assert metrics["a"].conversion_rate == pytest.approx(50.0)
        # one conversion worth 150 * 20 = 3000 against 100 spent
        assert metrics["a"].avg_roi == pytest.approx(2900.0)
        assert metrics["a"].avg_feedback == pytest.approx(4.0)
        assert metrics["a"].milestones["converted"] == 1
        assert metrics["b"].leads_per_month == 1
        assert metrics["b"].avg_roi == pytest.approx(-100.0)
        assert metrics["b"].avg_feedback is None

    def test_satisfaction(self) -> None:
        assert compute_satisfaction_scores([_purchase("a")]) == {}
        assert compute_satisfaction_scores([_purchase("a", feedback=5), _purchase("b", feedback=4)]) == {
            "lead_quality": 4.5
        }

    def test_refresh_through_marketplace(self, marketplace, clock) -> None:
        lead_id = marketplace.capture_lead_from_aac(make_event()).lead_id
        result = marketplace.purchase_lead("slp-austin", lead_id, "card")
        marketplace.track_conversion(result.purchase_id, "converted")
        marketplace.record_feedback(result.purchase_id, 5)
        clock.advance(timedelta(hours=1))

        rollups = marketplace.refresh_rollups()

        assert rollups.computed_at == NOW + timedelta(hours=1)
        assert rollups.trends.leads_per_week[-1] == 1
        assert rollups.demographics.age_distribution["0-4"] == 1
        assert [m.provider_id for m in rollups.top_purchasers] == ["slp-austin"]
        assert rollups.satisfaction_scores == {"lead_quality": 5.0}
