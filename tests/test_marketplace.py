"""
Tests for the marketplace facade (`services/marketplace_service.py`).

Covers contract rules:
- Capture validates the whole event before any side effect.
- A captured lead is ACTIVE, scored, priced and matched.
- Browsing requires a known provider; previews count views.
- A capture whose matching step fails stores nothing.
- The expiry sweep closes stale leads; only ACTIVE ones leave the active counter.
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from conftest import NOW, make_event, make_lead, sample_providers
from domain.errors import NotFoundError, ValidationError
from domain.lead import LEAD_TTL, LeadStatus
from repositories.provider_directory import InMemoryProviderDirectory
from services.config import MarketplaceConfig
from services.marketplace_service import LeadMarketplace
from services.matching_service import LeadFilters


class FlakyDirectory(InMemoryProviderDirectory):
    """Directory whose candidate search fails while `down` is set."""

    def __init__(self) -> None:
        super().__init__(sample_providers())
        self.down = False

    def find_candidates(self, specialties, location):
        if self.down:
            raise RuntimeError("Failed to query providers: connection reset")
        return super().find_candidates(specialties, location)


@pytest.fixture
def flaky_directory() -> FlakyDirectory:
    return FlakyDirectory()


@pytest.fixture
def flaky_marketplace(lead_repository, purchase_repository, analytics_repository, flaky_directory, gateway, notifier, clock):
    market = LeadMarketplace(
        leads=lead_repository,
        purchases=purchase_repository,
        analytics_repository=analytics_repository,
        directory=flaky_directory,
        gateway=gateway,
        notifier=notifier,
        clock=clock,
        payment_timeout=2.0,
    )
    yield market
    market.close()


class TestCapture:
    def test_capture_result(self, marketplace) -> None:
        result = marketplace.capture_lead_from_aac(make_event())

        assert result.lead_score == 100
        assert result.recommended_price == Decimal("75")
        assert result.matched_providers == 2
        assert result.estimated_value == Decimal("150")

        lead = marketplace.get_lead(result.lead_id)
        assert lead.status == LeadStatus.ACTIVE
        assert set(lead.matched_providers) == {"slp-austin", "slp-north"}
        assert lead.created_at == NOW
        assert lead.expires_at == NOW + LEAD_TTL

    def test_invalid_event_has_no_side_effects(self, marketplace, lead_repository) -> None:
        event = make_event(parentEmail="not-an-email", appEngagement=140)
        del event["userId"]

        with pytest.raises(ValidationError) as excinfo:
            marketplace.capture_lead_from_aac(event)

        assert len(excinfo.value.problems) == 3
        assert lead_repository.list_leads() == []
        assert marketplace.get_marketplace_analytics().overview.total_leads == 0

    def test_non_finite_numbers_rejected(self, marketplace) -> None:
        with pytest.raises(ValidationError):
            marketplace.capture_lead_from_aac(make_event(usageDuration=float("nan")))

    def test_matching_failure_stores_nothing(self, flaky_marketplace, flaky_directory, lead_repository) -> None:
        flaky_directory.down = True

        with pytest.raises(RuntimeError, match="Failed to query providers"):
            flaky_marketplace.capture_lead_from_aac(make_event())

        assert lead_repository.list_leads() == []
        overview = flaky_marketplace.get_marketplace_analytics().overview
        assert (overview.total_leads, overview.active_leads) == (0, 0)

    def test_unmatched_lead_is_still_listed(self, marketplace) -> None:
        far_away = {"lat": 47.6062, "lng": -122.3321, "zipCode": "98101"}
        result = marketplace.capture_lead_from_aac(make_event(location=far_away))

        assert result.matched_providers == 0
        assert result.estimated_value == Decimal("0")
        assert marketplace.get_lead(result.lead_id).status == LeadStatus.ACTIVE


class TestBrowsing:
    def test_unknown_provider(self, marketplace) -> None:
        with pytest.raises(NotFoundError):
            marketplace.get_available_leads("nobody")

    def test_lists_open_leads(self, marketplace) -> None:
        first = marketplace.capture_lead_from_aac(make_event()).lead_id
        second = marketplace.capture_lead_from_aac(make_event(userId="aac-user-2")).lead_id

        available = marketplace.get_available_leads("slp-austin")

        assert available.total_available == 2
        assert {r.lead_id for r in available.leads} == {first, second}
        assert available.avg_price == Decimal("75")

    def test_bought_leads_drop_out_for_the_buyer(self, marketplace) -> None:
        lead_id = marketplace.capture_lead_from_aac(make_event()).lead_id
        assert marketplace.purchase_lead("slp-austin", lead_id, "card").success

        assert marketplace.get_available_leads("slp-austin").total_available == 0
        assert marketplace.get_available_leads("slp-north").total_available == 1

    def test_filters_apply(self, marketplace) -> None:
        marketplace.capture_lead_from_aac(make_event())

        cheap = marketplace.get_available_leads("slp-austin", LeadFilters(max_price=Decimal("40")))

        assert cheap.total_available == 0
        assert cheap.avg_price == Decimal("0")

    def test_preview_counts_views(self, marketplace) -> None:
        lead_id = marketplace.capture_lead_from_aac(make_event()).lead_id

        preview = marketplace.get_lead_preview("slp-north", lead_id)
        marketplace.get_lead_preview("slp-austin", lead_id)

        assert preview.price == Decimal("75")
        assert preview.diagnosis == "autism"
        assert marketplace.get_lead(lead_id).views == 2

    def test_preview_unknown_provider_is_not_a_view(self, marketplace) -> None:
        lead_id = marketplace.capture_lead_from_aac(make_event()).lead_id

        with pytest.raises(NotFoundError):
            marketplace.get_lead_preview("nobody", lead_id)

        assert marketplace.get_lead(lead_id).views == 0

    def test_preview_unknown_lead(self, marketplace) -> None:
        with pytest.raises(NotFoundError):
            marketplace.get_lead_preview("slp-north", uuid4())

    def test_express_interest_once(self, marketplace) -> None:
        lead_id = marketplace.capture_lead_from_aac(make_event()).lead_id

        marketplace.express_interest("slp-north", lead_id)
        lead = marketplace.express_interest("slp-north", lead_id)

        assert lead.interested_providers == ("slp-north",)
        with pytest.raises(NotFoundError):
            marketplace.express_interest("nobody", lead_id)


class TestExpiry:
    def test_sweep_expires_stale_leads(self, marketplace, clock) -> None:
        lead_id = marketplace.capture_lead_from_aac(make_event()).lead_id
        assert marketplace.expire_stale_leads() == 0

        clock.advance(LEAD_TTL + timedelta(minutes=1))
        fresh_id = marketplace.capture_lead_from_aac(make_event(userId="aac-user-2")).lead_id

        assert marketplace.expire_stale_leads() == 1
        assert marketplace.get_lead(lead_id).status == LeadStatus.EXPIRED
        assert marketplace.get_lead(fresh_id).status == LeadStatus.ACTIVE
        assert marketplace.get_marketplace_analytics().overview.active_leads == 1

        # Already expired leads are not counted twice
        assert marketplace.expire_stale_leads() == 0

    def test_failed_capture_does_not_skew_active_count(self, flaky_marketplace, flaky_directory, clock) -> None:
        flaky_directory.down = True
        with pytest.raises(RuntimeError):
            flaky_marketplace.capture_lead_from_aac(make_event())

        flaky_directory.down = False
        clock.advance(timedelta(days=1))
        flaky_marketplace.capture_lead_from_aac(make_event(userId="aac-user-2"))

        # a week and an hour after the failed capture
        clock.advance(LEAD_TTL + timedelta(hours=1) - timedelta(days=1))
        assert flaky_marketplace.expire_stale_leads() == 0
        assert flaky_marketplace.get_marketplace_analytics().overview.active_leads == 1

    def test_sweeping_a_new_lead_leaves_active_count(self, marketplace, lead_repository) -> None:
        stale = make_lead(status=LeadStatus.NEW, created_at=NOW - LEAD_TTL - timedelta(hours=1))
        lead_repository.insert(stale)
        marketplace.capture_lead_from_aac(make_event())

        assert marketplace.expire_stale_leads() == 1
        assert marketplace.get_lead(stale.lead_id).status == LeadStatus.EXPIRED
        assert marketplace.get_marketplace_analytics().overview.active_leads == 1

    def test_expired_lead_is_not_browsable_before_sweep(self, marketplace, clock) -> None:
        marketplace.capture_lead_from_aac(make_event())
        clock.advance(LEAD_TTL)

        assert marketplace.get_available_leads("slp-austin").total_available == 0


def test_from_config_memory_storage() -> None:
    market = LeadMarketplace.from_config(MarketplaceConfig(storage="memory", matched_providers_limit=1))
    try:
        result = market.capture_lead_from_aac(make_event())
        assert result.matched_providers == 1
        assert market.get_available_leads("demo-slp-austin").total_available == 1
    finally:
        market.close()
