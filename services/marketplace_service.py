"""
LeadMarketplace: the marketplace service instance.

One explicitly constructed object owns the repositories, the collaborators
(provider directory, payment gateway, parent notifier) and the per-lead locks.
Callers get it by dependency injection (api/dependencies.py, scripts, tests);
there is no module-level instance.

Operations:
- capture_lead_from_aac: usage signal -> scored, priced, matched ACTIVE lead
- get_available_leads: ranked browse for one provider (lock-free snapshot scan)
- get_lead_preview / express_interest: provider engagement with a lead
- purchase_lead: see services/purchase_service.py
- track_conversion / record_feedback: see services/conversion_service.py
- get_marketplace_analytics / refresh_rollups: counters and batch rollups
- expire_stale_leads: optional sweep; expiry is otherwise applied lazily
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, List, Mapping, Optional, Union
from uuid import UUID, uuid4

from domain.analytics import MarketplaceAnalytics, MarketplaceRollups
from domain.errors import NotFoundError
from domain.geo import Coordinates
from domain.lead import Lead, LeadStatus
from domain.provider import ProviderProfile, SubscriptionTier
from domain.purchase import Milestone, Purchase
from domain.time import utc_now
from domain.usage_signal import UsageSignal
from repositories.analytics_repository import AnalyticsRepository, InMemoryAnalyticsRepository
from repositories.lead_repository import InMemoryLeadRepository, LeadRepository
from repositories.provider_directory import InMemoryProviderDirectory, ProviderDirectory
from repositories.purchase_repository import InMemoryPurchaseRepository, PurchaseRepository
from services.analytics_service import DEFAULT_TREND_WEEKS, AnalyticsService
from services.capture_service import CaptureResult, build_lead_from_signal
from services.config import MarketplaceConfig
from services.conversion_service import ConversionService
from services.locks import KeyedLocks
from services.matching_service import (
    DEFAULT_MATCH_LIMIT,
    AvailableLeads,
    LeadFilters,
    LeadPreview,
    match_providers_for_lead,
    rank_leads_for_provider,
)
from services.notification_service import LoggingParentNotifier, NotificationDispatcher, ParentNotifier
from services.payment_gateway import PaymentGateway, SimulatedPaymentGateway
from services.purchase_service import DEFAULT_PAYMENT_TIMEOUT_SECONDS, PurchaseResult, PurchaseService

logger = logging.getLogger(__name__)

_OPEN_STATUSES = (LeadStatus.NEW, LeadStatus.ACTIVE)


def demo_provider_directory() -> InMemoryProviderDirectory:
    """A handful of Austin-area providers for the in-memory backend."""

    austin = Coordinates(lat=30.2672, lng=-97.7431)
    round_rock = Coordinates(lat=30.5083, lng=-97.6789)
    san_marcos = Coordinates(lat=29.8833, lng=-97.9414)

    return InMemoryProviderDirectory([
        ProviderProfile(
            provider_id="demo-slp-austin",
            subscription_tier=SubscriptionTier.PRACTICE_PLUS,
            specialties=("Autism Spectrum Disorders", "Augmentative and Alternative Communication"),
            location=austin,
            experience_years=12,
            rating=4.9,
        ),
        ProviderProfile(
            provider_id="demo-slp-round-rock",
            subscription_tier=SubscriptionTier.PRO,
            specialties=("Childhood Apraxia of Speech", "Motor Speech Disorders", "Language Disorders"),
            location=round_rock,
            experience_years=6,
            rating=4.6,
        ),
        ProviderProfile(
            provider_id="demo-slp-san-marcos",
            subscription_tier=SubscriptionTier.FREE,
            specialties=("Speech-Language Pathology", "Fluency Disorders", "Dysarthria"),
            location=san_marcos,
            experience_years=3,
            rating=4.2,
            service_radius_miles=40,
        ),
        ProviderProfile(
            provider_id="demo-practice-enterprise",
            subscription_tier=SubscriptionTier.ENTERPRISE,
            specialties=(
                "Augmentative and Alternative Communication",
                "Intellectual Disabilities",
                "Social Communication",
                "Voice Disorders",
            ),
            location=austin,
            experience_years=20,
            rating=4.7,
            service_radius_miles=50,
        ),
    ])


class LeadMarketplace:
    def __init__(
        self,
        *,
        leads: LeadRepository,
        purchases: PurchaseRepository,
        analytics_repository: AnalyticsRepository,
        directory: ProviderDirectory,
        gateway: PaymentGateway,
        notifier: ParentNotifier,
        clock: Callable[[], datetime] = utc_now,
        match_limit: int = DEFAULT_MATCH_LIMIT,
        payment_timeout: float = DEFAULT_PAYMENT_TIMEOUT_SECONDS,
        notification_workers: int = 2,
    ) -> None:
        if match_limit < 1:
            raise ValueError("match_limit must be >= 1")

        self._leads = leads
        self._purchases = purchases
        self._directory = directory
        self._clock = clock
        self._match_limit = match_limit
        self._lead_locks = KeyedLocks()

        self._analytics = AnalyticsService(analytics_repository, leads, purchases)
        self._dispatcher = NotificationDispatcher(notifier, max_workers=notification_workers)
        self._purchasing = PurchaseService(
            leads=leads,
            purchases=purchases,
            directory=directory,
            gateway=gateway,
            analytics=self._analytics,
            dispatcher=self._dispatcher,
            lead_locks=self._lead_locks,
            clock=clock,
            payment_timeout=payment_timeout,
        )
        self._conversions = ConversionService(
            leads=leads,
            purchases=purchases,
            analytics=self._analytics,
            lead_locks=self._lead_locks,
            clock=clock,
        )

    @staticmethod
    def from_config(
        config: Optional[MarketplaceConfig] = None,
        *,
        directory: Optional[ProviderDirectory] = None,
        gateway: Optional[PaymentGateway] = None,
        notifier: Optional[ParentNotifier] = None,
    ) -> "LeadMarketplace":
        """
        Build a marketplace for the configured storage backend.

        memory: in-process repositories and the demo provider directory.
        supabase: Supabase tables (requires SUPABASE_URL / SUPABASE_KEY).
        """

        config = config or MarketplaceConfig.from_env()

        if config.storage == "supabase":
            from repositories.analytics_repository import SupabaseAnalyticsRepository
            from repositories.client import get_supabase
            from repositories.lead_repository import SupabaseLeadRepository
            from repositories.provider_directory import SupabaseProviderDirectory
            from repositories.purchase_repository import SupabasePurchaseRepository

            client = get_supabase()
            leads: LeadRepository = SupabaseLeadRepository(client)
            purchases: PurchaseRepository = SupabasePurchaseRepository(client)
            analytics_repository: AnalyticsRepository = SupabaseAnalyticsRepository(client)
            directory = directory or SupabaseProviderDirectory(client)
        else:
            leads = InMemoryLeadRepository()
            purchases = InMemoryPurchaseRepository()
            analytics_repository = InMemoryAnalyticsRepository()
            directory = directory or demo_provider_directory()

        logger.info(
            "Lead marketplace configured",
            extra={"storage": config.storage, "match_limit": config.matched_providers_limit},
        )

        return LeadMarketplace(
            leads=leads,
            purchases=purchases,
            analytics_repository=analytics_repository,
            directory=directory,
            gateway=gateway or SimulatedPaymentGateway(),
            notifier=notifier or LoggingParentNotifier(),
            match_limit=config.matched_providers_limit,
            payment_timeout=config.payment_timeout_seconds,
            notification_workers=config.notification_workers,
        )

    # Capture

    def capture_lead_from_aac(self, data: Union[UsageSignal, Mapping[str, Any]]) -> CaptureResult:
        """
        Turn one AAC usage event into an ACTIVE, matched lead.

        Raises ValidationError (before any scoring) when the event is malformed.
        """

        signal = data if isinstance(data, UsageSignal) else UsageSignal.from_event(data)
        lead = build_lead_from_signal(signal, lead_id=uuid4(), captured_at=self._clock())

        # Nothing is stored until matching succeeds.
        matches = match_providers_for_lead(lead, self._directory, self._match_limit)
        lead = lead.activated(tuple(m.provider_id for m in matches))

        with self._lead_locks.for_key(lead.lead_id):
            self._leads.insert(lead)
            self._analytics.record_capture(lead.final_price)

        logger.info(
            "Lead captured",
            extra={
                "lead_id": str(lead.lead_id),
                "source_user_id": lead.source_user_id,
                "lead_score": lead.scoring.lead_score,
                "price": str(lead.final_price),
                "matched_providers": len(matches),
            },
        )

        return CaptureResult(
            lead_id=lead.lead_id,
            estimated_value=lead.final_price * len(matches),
            recommended_price=lead.final_price,
            lead_score=lead.scoring.lead_score,
            matched_providers=len(matches),
        )

    # Browsing

    def get_available_leads(self, provider_id: str, filters: Optional[LeadFilters] = None) -> AvailableLeads:
        provider = self._require_provider(provider_id)
        leads = self._leads.list_leads(statuses=[LeadStatus.ACTIVE])
        return rank_leads_for_provider(provider, leads, filters, self._clock())

    def get_lead_preview(self, provider_id: str, lead_id: UUID) -> LeadPreview:
        """Preview of one lead (no contact details); counts as a view."""

        self._require_provider(provider_id)

        with self._lead_locks.for_key(lead_id):
            lead = self._require_lead(lead_id).viewed()
            self._leads.save_views(lead)

        logger.debug("Lead viewed", extra={"lead_id": str(lead_id), "provider_id": provider_id})
        return LeadPreview.of(lead)

    def express_interest(self, provider_id: str, lead_id: UUID) -> Lead:
        self._require_provider(provider_id)

        with self._lead_locks.for_key(lead_id):
            lead = self._require_lead(lead_id)
            updated = lead.with_interest(provider_id)
            if updated is not lead:
                self._leads.save_interest(updated)

        logger.info("Provider interested in lead", extra={"lead_id": str(lead_id), "provider_id": provider_id})
        return updated

    def get_lead(self, lead_id: UUID) -> Lead:
        return self._require_lead(lead_id)

    # Purchasing and conversion

    def purchase_lead(self, provider_id: str, lead_id: UUID, payment_method: str) -> PurchaseResult:
        return self._purchasing.purchase_lead(provider_id, lead_id, payment_method)

    def track_conversion(self, purchase_id: UUID, milestone: Union[str, Milestone]) -> Purchase:
        return self._conversions.track_conversion(purchase_id, milestone)

    def record_feedback(self, purchase_id: UUID, score: int) -> Purchase:
        return self._conversions.record_feedback(purchase_id, score)

    def get_purchase(self, purchase_id: UUID) -> Purchase:
        purchase = self._purchases.get(purchase_id)
        if purchase is None:
            raise NotFoundError("Purchase not found")
        return purchase

    def list_provider_purchases(self, provider_id: str) -> List[Purchase]:
        return self._purchases.list_purchases(provider_id=provider_id)

    # Analytics

    def get_marketplace_analytics(self) -> MarketplaceAnalytics:
        return self._analytics.snapshot()

    def refresh_rollups(self, as_of: Optional[datetime] = None, weeks: int = DEFAULT_TREND_WEEKS) -> MarketplaceRollups:
        return self._analytics.refresh_rollups(as_of or self._clock(), weeks)

    # Expiry

    def expire_stale_leads(self, as_of: Optional[datetime] = None) -> int:
        """
        Mark open leads past expires_at as EXPIRED. Returns how many changed.

        Browsing and purchasing already ignore expired leads; this only makes
        the stored status and the active counter catch up.
        """

        as_of = as_of or self._clock()
        expired = 0

        for candidate in self._leads.list_leads(statuses=_OPEN_STATUSES):
            if not candidate.is_expired(as_of):
                continue
            with self._lead_locks.for_key(candidate.lead_id):
                lead = self._leads.get(candidate.lead_id)
                if lead is None or lead.status not in _OPEN_STATUSES or not lead.is_expired(as_of):
                    continue
                if not self._leads.set_status(lead.lead_id, lead.expired().status, expected=lead.status):
                    continue
                # NEW leads were never added to the active counter.
                if lead.status == LeadStatus.ACTIVE:
                    self._analytics.record_closed(1)
                expired += 1

        if expired:
            logger.info("Expired stale leads", extra={"count": expired, "as_of": as_of.isoformat()})
        return expired

    def now(self) -> datetime:
        return self._clock()

    def close(self) -> None:
        self._purchasing.close()
        self._dispatcher.shutdown(wait=True)

    def _require_lead(self, lead_id: UUID) -> Lead:
        lead = self._leads.get(lead_id)
        if lead is None:
            raise NotFoundError("Lead not found")
        return lead

    def _require_provider(self, provider_id: str) -> ProviderProfile:
        provider = self._directory.get_provider(provider_id)
        if provider is None:
            raise NotFoundError("Provider not found")
        return provider


__all__ = ["demo_provider_directory", "LeadMarketplace"]
