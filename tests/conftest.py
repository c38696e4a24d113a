"""
Pytest configuration and shared fixtures.

Adds the project root to the Python path so tests can import domain,
repositories, services and api, and provides an in-memory marketplace wired to
test doubles (fixed clock, scripted payment gateway, recording notifier).
"""

import sys
import threading
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID, uuid4

import pytest

# Add the project root to the Python path
# so tests can import domain, repositories, etc.
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from domain.geo import Coordinates  # noqa: E402
from domain.lead import (  # noqa: E402
    BASE_PRICE,
    LEAD_TTL,
    ChildProfile,
    Lead,
    LeadPricing,
    LeadScoring,
    LeadSource,
    LeadStatus,
    ParentContact,
    Requirements,
    ServiceLocation,
    Severity,
    Urgency,
)
from domain.provider import ProviderProfile, SubscriptionTier  # noqa: E402
from repositories.analytics_repository import InMemoryAnalyticsRepository  # noqa: E402
from repositories.lead_repository import InMemoryLeadRepository  # noqa: E402
from repositories.provider_directory import InMemoryProviderDirectory  # noqa: E402
from repositories.purchase_repository import InMemoryPurchaseRepository  # noqa: E402
from services.marketplace_service import LeadMarketplace  # noqa: E402

NOW = datetime(2026, 3, 2, 15, 0, 0, tzinfo=timezone.utc)

AUSTIN = Coordinates(lat=30.2672, lng=-97.7431)
NORTH_AUSTIN = Coordinates(lat=30.3300, lng=-97.7400)  # ~4.4 miles from AUSTIN
DALLAS = Coordinates(lat=32.7767, lng=-96.7970)

AUTISM_SPECIALTIES = ("Autism Spectrum Disorders", "Augmentative and Alternative Communication")


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


class ScriptedPaymentGateway:
    """
    Payment double.

    approve: result of every charge
    error: raised by every charge when set
    delay: seconds each charge takes
    """

    def __init__(self, approve: bool = True, error: Optional[Exception] = None, delay: float = 0.0) -> None:
        self.approve = approve
        self.error = error
        self.delay = delay
        self.charges: List[Tuple[str, Decimal, str]] = []
        self.refunds: List[Tuple[str, Decimal, str]] = []
        self._lock = threading.Lock()

    def process_payment(self, provider_id: str, amount: Decimal, payment_method: str) -> bool:
        if self.delay:
            time.sleep(self.delay)
        with self._lock:
            self.charges.append((provider_id, amount, payment_method))
        if self.error is not None:
            raise self.error
        return self.approve

    def refund_payment(self, provider_id: str, amount: Decimal, payment_method: str) -> bool:
        with self._lock:
            self.refunds.append((provider_id, amount, payment_method))
        return True


class RecordingNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.notified: List[Tuple[UUID, str]] = []
        self.called = threading.Event()

    def notify_parent_of_provider_contact(self, lead: Lead, provider: ProviderProfile) -> None:
        self.notified.append((lead.lead_id, provider.provider_id))
        self.called.set()
        if self.fail:
            raise RuntimeError("mail server unavailable")


def make_event(**overrides: Any) -> Dict[str, Any]:
    """
    A valid usage event: 35 days of use, engagement 85, 3-year-old, autism,
    downtown Austin. Keyword overrides replace top-level keys.
    """

    event: Dict[str, Any] = {
        "userId": "aac-user-1",
        "childAge": 3,
        "diagnosisFromUsage": "autism",
        "usageDuration": 35,
        "location": {"lat": AUSTIN.lat, "lng": AUSTIN.lng, "zipCode": "78701"},
        "parentEmail": "parent@example.com",
        "appEngagement": 85,
    }
    event.update(overrides)
    return event


def make_lead(
    *,
    price: Decimal = Decimal("75"),
    status: LeadStatus = LeadStatus.ACTIVE,
    created_at: datetime = NOW,
    age: float = 3,
    diagnosis: str = "autism",
    urgency: Urgency = Urgency.IMMEDIATE,
    coordinates: Coordinates = AUSTIN,
    zip_code: str = "78701",
    lead_score: int = 80,
    conversion_probability: float = 0.78,
    purchased_by: Tuple[str, ...] = (),
    lead_id: Optional[UUID] = None,
) -> Lead:
    """A lead built directly, bypassing capture (for prices capture never produces)."""

    return Lead(
        lead_id=lead_id or uuid4(),
        source=LeadSource.AAC_APP,
        source_user_id="aac-user-direct",
        parent=ParentContact(name="Dana Parent", email="dana@example.com", phone="512-555-0100"),
        child=ChildProfile(age=age, diagnosis=diagnosis, severity=Severity.MODERATE, communication_level="Limited verbal"),
        requirements=Requirements(
            urgency=urgency,
            location=ServiceLocation(zip_code=zip_code, coordinates=coordinates, city="Austin"),
            special_requests=("AAC-experienced therapist preferred",),
        ),
        scoring=LeadScoring(
            lead_score=lead_score,
            conversion_probability=conversion_probability,
            urgency_score=90,
        ),
        pricing=LeadPricing(
            base_price=BASE_PRICE,
            quality_multiplier=Decimal("1"),
            urgency_multiplier=Decimal("1"),
            engagement_multiplier=Decimal("1"),
            final_price=price,
        ),
        status=status,
        created_at=created_at,
        expires_at=created_at + LEAD_TTL,
        purchased_by=purchased_by,
    )


def sample_providers() -> List[ProviderProfile]:
    return [
        ProviderProfile(
            provider_id="slp-austin",
            subscription_tier=SubscriptionTier.ENTERPRISE,
            specialties=AUTISM_SPECIALTIES,
            location=AUSTIN,
            experience_years=12,
            rating=4.9,
        ),
        ProviderProfile(
            provider_id="slp-north",
            subscription_tier=SubscriptionTier.PRO,
            specialties=("Autism Spectrum Disorders",),
            location=NORTH_AUSTIN,
            experience_years=4,
            rating=4.5,
        ),
        ProviderProfile(
            provider_id="slp-apraxia",
            subscription_tier=SubscriptionTier.FREE,
            specialties=("Childhood Apraxia of Speech",),
            location=AUSTIN,
            experience_years=8,
            rating=4.8,
        ),
        ProviderProfile(
            provider_id="slp-dallas",
            subscription_tier=SubscriptionTier.PRACTICE_PLUS,
            specialties=AUTISM_SPECIALTIES,
            location=DALLAS,
            experience_years=10,
            rating=5.0,
        ),
    ]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def lead_repository() -> InMemoryLeadRepository:
    return InMemoryLeadRepository()


@pytest.fixture
def purchase_repository() -> InMemoryPurchaseRepository:
    return InMemoryPurchaseRepository()


@pytest.fixture
def analytics_repository() -> InMemoryAnalyticsRepository:
    return InMemoryAnalyticsRepository()


@pytest.fixture
def directory() -> InMemoryProviderDirectory:
    return InMemoryProviderDirectory(sample_providers())


@pytest.fixture
def gateway() -> ScriptedPaymentGateway:
    return ScriptedPaymentGateway()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def marketplace(
    lead_repository,
    purchase_repository,
    analytics_repository,
    directory,
    gateway,
    notifier,
    clock,
):
    market = LeadMarketplace(
        leads=lead_repository,
        purchases=purchase_repository,
        analytics_repository=analytics_repository,
        directory=directory,
        gateway=gateway,
        notifier=notifier,
        clock=clock,
        payment_timeout=2.0,
    )
    yield market
    market.close()
