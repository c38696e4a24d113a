"""
Tests for the purchase transaction (`services/purchase_service.py`).

Covers contract rules:
- Preconditions in order: lead exists, lead open for sale, provider has not bought it.
- Purchase-time price is the listed price discounted by subscription tier.
- Failed or timed-out payment leaves no trace (no purchaser, no purchase, no revenue).
- At most 3 purchasers per lead under concurrency; the third flips status to purchased.
- Business failures come back as results, never as exceptions.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import AUSTIN, RecordingNotifier, ScriptedPaymentGateway, make_event
from domain.errors import LeadUnavailableError
from domain.lead import LeadStatus
from domain.provider import ProviderProfile, SubscriptionTier
from repositories.analytics_repository import InMemoryAnalyticsRepository
from repositories.lead_repository import InMemoryLeadRepository
from repositories.purchase_repository import InMemoryPurchaseRepository
from services.marketplace_service import LeadMarketplace


def _build(directory, clock, **overrides) -> LeadMarketplace:
    options = dict(
        leads=InMemoryLeadRepository(),
        purchases=InMemoryPurchaseRepository(),
        analytics_repository=InMemoryAnalyticsRepository(),
        directory=directory,
        gateway=ScriptedPaymentGateway(),
        notifier=RecordingNotifier(),
        clock=clock,
        payment_timeout=2.0,
    )
    options.update(overrides)
    return LeadMarketplace(**options)


def _add_providers(directory, count: int) -> list:
    ids = []
    for i in range(count):
        provider_id = f"bulk-{i}"
        directory.add(ProviderProfile(provider_id, SubscriptionTier.FREE, ("Fluency Disorders",), AUSTIN, 2))
        ids.append(provider_id)
    return ids


class TestSuccessfulPurchase:
    def test_purchase_returns_contact_details_and_tier_price(self, marketplace, gateway, notifier) -> None:
        lead_id = marketplace.capture_lead_from_aac(make_event()).lead_id

        result = marketplace.purchase_lead("slp-austin", lead_id, "card")

        assert result.success
        assert result.price == Decimal("53")  # enterprise: 75 * 0.7 = 52.5 -> 53
        assert result.error is None
        assert result.contact_info.email == "parent@example.com"
        assert result.contact_info.parent_name == "AAC App Parent"
        assert result.lead_details.diagnosis == "autism"
        assert gateway.charges == [("slp-austin", Decimal("53"), "card")]

        lead = marketplace.get_lead(lead_id)
        assert lead.purchased_by == ("slp-austin",)
        assert lead.status == LeadStatus.ACTIVE

        overview = marketplace.get_marketplace_analytics().overview
        assert overview.sold_leads == 1
        assert overview.total_revenue == Decimal("53")

        assert notifier.called.wait(timeout=2)
        assert notifier.notified == [(lead_id, "slp-austin")]

    def test_purchase_record_is_stored(self, marketplace) -> None:
        lead_id = marketplace.capture_lead_from_aac(make_event()).lead_id
        result = marketplace.purchase_lead("slp-north", lead_id, "card")

        stored = marketplace.get_purchase(result.purchase_id)
        assert stored.provider_id == "slp-north"
        assert stored.lead_id == lead_id
        assert stored.price == Decimal("68")  # pro: 75 * 0.9 = 67.5 -> 68
        assert marketplace.list_provider_purchases("slp-north") == [stored]

    def test_third_purchase_sells_out_the_lead(self, marketplace) -> None:
        lead_id = marketplace.capture_lead_from_aac(make_event()).lead_id
        for provider_id in ("slp-austin", "slp-north", "slp-apraxia"):
            assert marketplace.purchase_lead(provider_id, lead_id, "card").success

        lead = marketplace.get_lead(lead_id)
        assert lead.status == LeadStatus.PURCHASED
        assert len(lead.purchased_by) == 3
        assert marketplace.get_marketplace_analytics().overview.active_leads == 0

    def test_notifier_failure_does_not_fail_purchase(self, directory, clock) -> None:
        notifier = RecordingNotifier(fail=True)
        market = _build(directory, clock, notifier=notifier)
        try:
            lead_id = market.capture_lead_from_aac(make_event()).lead_id
            result = market.purchase_lead("slp-austin", lead_id, "card")

            assert result.success
            assert notifier.called.wait(timeout=2)
            assert market.get_lead(lead_id).purchased_by == ("slp-austin",)
        finally:
            market.close()


class TestRejectedPurchase:
    def test_duplicate_purchase_is_rejected_without_side_effects(self, marketplace, gateway) -> None:
        lead_id = marketplace.capture_lead_from_aac(make_event()).lead_id
        assert marketplace.purchase_lead("slp-austin", lead_id, "card").success

        result = marketplace.purchase_lead("slp-austin", lead_id, "card")

        assert not result.success
        assert result.error == "Already purchased this lead"
        assert result.error_kind == "already_purchased"
        assert result.price == Decimal("0")
        assert len(marketplace.list_provider_purchases("slp-austin")) == 1
        assert marketplace.get_marketplace_analytics().overview.total_revenue == Decimal("53")
        assert len(gateway.charges) == 1

    def test_purchase_on_sold_out_lead(self, marketplace) -> None:
        """A purchased lead answers {success: false, price: 0, error: 'Lead no longer available'}."""

        lead_id = marketplace.capture_lead_from_aac(make_event()).lead_id
        for provider_id in ("slp-austin", "slp-north", "slp-apraxia"):
            marketplace.purchase_lead(provider_id, lead_id, "card")

        result = marketplace.purchase_lead("slp-dallas", lead_id, "card")

        assert not result.success
        assert result.price == Decimal("0")
        assert result.error == "Lead no longer available"
        assert result.error_kind == "lead_unavailable"

    def test_unknown_lead(self, marketplace) -> None:
        from uuid import uuid4

        result = marketplace.purchase_lead("slp-austin", uuid4(), "card")

        assert not result.success
        assert result.error == "Lead not found"
        assert result.error_kind == "not_found"

    def test_unknown_provider(self, marketplace, gateway) -> None:
        lead_id = marketplace.capture_lead_from_aac(make_event()).lead_id

        result = marketplace.purchase_lead("nobody", lead_id, "card")

        assert result.error_kind == "not_found"
        assert result.error == "Provider not found"
        assert gateway.charges == []

    def test_expired_lead_is_unavailable(self, marketplace, clock) -> None:
        lead_id = marketplace.capture_lead_from_aac(make_event()).lead_id
        clock.advance(timedelta(days=7))

        result = marketplace.purchase_lead("slp-austin", lead_id, "card")

        assert result.error_kind == "lead_unavailable"
        assert marketplace.get_lead(lead_id).purchased_by == ()


class TestPaymentFailure:
    def _assert_untouched(self, market: LeadMarketplace, lead_id) -> None:
        lead = market.get_lead(lead_id)
        assert lead.purchased_by == ()
        assert lead.status == LeadStatus.ACTIVE
        assert market.list_provider_purchases("slp-austin") == []
        overview = market.get_marketplace_analytics().overview
        assert overview.sold_leads == 0
        assert overview.total_revenue == Decimal("0")

    def test_declined_payment_has_no_side_effects(self, marketplace, gateway, notifier) -> None:
        gateway.approve = False
        lead_id = marketplace.capture_lead_from_aac(make_event()).lead_id

        result = marketplace.purchase_lead("slp-austin", lead_id, "card")

        assert not result.success
        assert result.price == Decimal("53")
        assert result.error == "Payment failed"
        assert result.error_kind == "payment_error"
        self._assert_untouched(marketplace, lead_id)
        assert notifier.notified == []

    def test_gateway_exception_is_a_failed_payment(self, marketplace, gateway) -> None:
        gateway.error = ConnectionError("gateway unreachable")
        lead_id = marketplace.capture_lead_from_aac(make_event()).lead_id

        result = marketplace.purchase_lead("slp-austin", lead_id, "card")

        assert result.error == "Payment failed"
        self._assert_untouched(marketplace, lead_id)

    def test_timed_out_payment_is_rolled_back_and_refunded(self, directory, clock) -> None:
        gateway = ScriptedPaymentGateway(delay=0.5)
        market = _build(directory, clock, gateway=gateway, payment_timeout=0.05)
        try:
            lead_id = market.capture_lead_from_aac(make_event()).lead_id

            result = market.purchase_lead("slp-austin", lead_id, "card")

            assert not result.success
            assert result.error == "Payment timed out"
            assert result.error_kind == "payment_error"
            self._assert_untouched(market, lead_id)

            deadline = time.monotonic() + 3
            while not gateway.refunds and time.monotonic() < deadline:
                time.sleep(0.05)
            assert gateway.refunds == [("slp-austin", Decimal("53"), "card")]
        finally:
            market.close()

    def test_lost_append_race_refunds_charge(self, directory, clock) -> None:
        class RacingLeadRepository(InMemoryLeadRepository):
            def append_purchaser(self, lead_id, provider_id):
                raise LeadUnavailableError("Lead no longer available")

        gateway = ScriptedPaymentGateway()
        market = _build(directory, clock, leads=RacingLeadRepository(), gateway=gateway)
        try:
            lead_id = market.capture_lead_from_aac(make_event()).lead_id

            result = market.purchase_lead("slp-austin", lead_id, "card")

            assert result.error_kind == "lead_unavailable"
            assert result.price == Decimal("53")
            assert gateway.refunds == [("slp-austin", Decimal("53"), "card")]
        finally:
            market.close()

    def test_failed_purchase_insert_restores_lead(self, directory, clock) -> None:
        class BrokenPurchaseRepository(InMemoryPurchaseRepository):
            def insert(self, purchase):
                raise RuntimeError("Failed to record purchase: connection reset")

        gateway = ScriptedPaymentGateway()
        market = _build(directory, clock, purchases=BrokenPurchaseRepository(), gateway=gateway)
        try:
            lead_id = market.capture_lead_from_aac(make_event()).lead_id

            with pytest.raises(RuntimeError):
                market.purchase_lead("slp-austin", lead_id, "card")

            assert market.get_lead(lead_id).purchased_by == ()
            assert gateway.refunds == [("slp-austin", Decimal("53"), "card")]
            assert market.get_marketplace_analytics().overview.sold_leads == 0
        finally:
            market.close()


class TestConcurrency:
    def test_exactly_three_of_many_concurrent_buyers_succeed(self, marketplace, directory) -> None:
        provider_ids = _add_providers(directory, 12)
        lead_id = marketplace.capture_lead_from_aac(make_event()).lead_id
        barrier = threading.Barrier(len(provider_ids))

        def buy(provider_id):
            barrier.wait()
            return marketplace.purchase_lead(provider_id, lead_id, "card")

        with ThreadPoolExecutor(max_workers=len(provider_ids)) as pool:
            results = list(pool.map(buy, provider_ids))

        winners = [r for r in results if r.success]
        losers = [r for r in results if not r.success]
        assert len(winners) == 3
        assert {r.error_kind for r in losers} == {"lead_unavailable"}
        assert all(r.price == Decimal("0") for r in losers)

        lead = marketplace.get_lead(lead_id)
        assert lead.status == LeadStatus.PURCHASED
        assert len(set(lead.purchased_by)) == 3

        overview = marketplace.get_marketplace_analytics().overview
        assert overview.sold_leads == 3
        assert overview.total_revenue == Decimal("225")

    def test_same_provider_racing_itself_buys_once(self, marketplace, gateway) -> None:
        lead_id = marketplace.capture_lead_from_aac(make_event()).lead_id
        attempts = 8
        barrier = threading.Barrier(attempts)

        def buy(_):
            barrier.wait()
            return marketplace.purchase_lead("slp-austin", lead_id, "card")

        with ThreadPoolExecutor(max_workers=attempts) as pool:
            results = list(pool.map(buy, range(attempts)))

        assert sum(r.success for r in results) == 1
        assert {r.error_kind for r in results if not r.success} == {"already_purchased"}
        assert len(gateway.charges) == 1
        assert marketplace.get_lead(lead_id).purchased_by == ("slp-austin",)

    def test_browsing_during_purchases_sees_consistent_snapshots(self, marketplace, directory) -> None:
        provider_ids = _add_providers(directory, 6)
        lead_ids = [marketplace.capture_lead_from_aac(make_event(userId=f"u{i}")).lead_id for i in range(4)]
        stop = threading.Event()
        problems = []

        def browse():
            while not stop.is_set():
                for ranked in marketplace.get_available_leads("slp-austin").leads:
                    lead = marketplace.get_lead(ranked.lead_id)
                    if len(lead.purchased_by) > 3:
                        problems.append(lead.lead_id)

        browser = threading.Thread(target=browse)
        browser.start()
        try:
            with ThreadPoolExecutor(max_workers=6) as pool:
                list(pool.map(
                    lambda pair: marketplace.purchase_lead(pair[0], pair[1], "card"),
                    [(p, lid) for p in provider_ids for lid in lead_ids],
                ))
        finally:
            stop.set()
            browser.join(timeout=5)

        assert problems == []
        assert all(marketplace.get_lead(lid).status == LeadStatus.PURCHASED for lid in lead_ids)
