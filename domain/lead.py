"""
Domain: Lead entity.

A Lead is a scored, priced inquiry from a family, captured from AAC app usage
and sold to at most MAX_PURCHASERS providers.

Rules enforced here:
- 0 <= lead_score <= 100 and 0 <= conversion_probability <= 1.
- base_price <= final_price <= PRICE_CAP.
- purchased_by holds at most MAX_PURCHASERS distinct provider ids.
- Reaching the purchaser cap forces status PURCHASED.
- A lead past expires_at is never available, whatever its stored status.

The entity is frozen. State transitions return new instances so that readers
holding an older snapshot (browsing providers, purchase snapshots) never see
it change underneath them.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple
from uuid import UUID

from .geo import Coordinates
from .time import require_utc_timestamp

MAX_PURCHASERS = 3
LEAD_TTL = timedelta(days=7)

BASE_PRICE = Decimal("35")
PRICE_CAP = Decimal("75")


class LeadStatus(str, Enum):
    NEW = "new"
    ACTIVE = "active"
    PURCHASED = "purchased"
    CONVERTED = "converted"
    EXPIRED = "expired"


class LeadSource(str, Enum):
    AAC_APP = "aac_app"
    WEBSITE = "website"
    REFERRAL = "referral"
    GOOGLE_ADS = "google_ads"


class Severity(str, Enum):
    MILD = "mild"
    MODERATE = "moderate"
    SEVERE = "severe"
    UNKNOWN = "unknown"


class Urgency(str, Enum):
    IMMEDIATE = "immediate"
    WITHIN_WEEK = "within_week"
    WITHIN_MONTH = "within_month"
    EXPLORING = "exploring"


class ServiceType(str, Enum):
    IN_PERSON = "in_person"
    TELEHEALTH = "telehealth"
    HYBRID = "hybrid"


@dataclass(frozen=True, slots=True)
class ParentContact:
    name: str
    email: str
    phone: Optional[str] = None
    preferred_contact: str = "email"  # email, phone, text
    timezone: str = "America/Chicago"
    has_used_aac: bool = True
    aac_usage_duration_days: Optional[float] = None


@dataclass(frozen=True, slots=True)
class ChildProfile:
    age: float
    diagnosis: str
    severity: Severity
    communication_level: str
    goals: Tuple[str, ...] = ()
    current_therapy: bool = False
    previous_aac: bool = True


@dataclass(frozen=True, slots=True)
class ServiceLocation:
    zip_code: str
    coordinates: Coordinates
    city: str = "Unknown"
    state: str = "TX"
    address: str = ""
    max_distance_miles: float = 25.0

    @property
    def label(self) -> str:
        return f"{self.city}, {self.state}"


@dataclass(frozen=True, slots=True)
class Schedule:
    preferred_days: Tuple[str, ...] = ("Monday", "Wednesday", "Friday")
    preferred_times: Tuple[str, ...] = ("afternoon",)
    frequency: str = "weekly"


@dataclass(frozen=True, slots=True)
class Budget:
    has_insurance: bool = True
    max_out_of_pocket: Decimal = Decimal("150")
    insurance_provider: Optional[str] = None

    @property
    def label(self) -> str:
        if self.has_insurance:
            return "Has insurance"
        return f"${self.max_out_of_pocket} max"


@dataclass(frozen=True, slots=True)
class Requirements:
    urgency: Urgency
    location: ServiceLocation
    service_type: ServiceType = ServiceType.HYBRID
    schedule: Schedule = field(default_factory=Schedule)
    budget: Budget = field(default_factory=Budget)
    special_requests: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class LeadScoring:
    lead_score: int
    conversion_probability: float
    urgency_score: int
    budget_score: int = 75
    location_score: int = 80
    quality_indicators: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not 0 <= self.lead_score <= 100:
            raise ValueError(f"lead_score must be within [0, 100], got {self.lead_score}")
        if not math.isfinite(self.conversion_probability) or not 0.0 <= self.conversion_probability <= 1.0:
            raise ValueError(
                f"conversion_probability must be within [0, 1], got {self.conversion_probability}"
            )


@dataclass(frozen=True, slots=True)
class LeadPricing:
    base_price: Decimal
    quality_multiplier: Decimal
    urgency_multiplier: Decimal
    engagement_multiplier: Decimal
    final_price: Decimal

    def __post_init__(self) -> None:
        if not self.base_price <= self.final_price <= PRICE_CAP:
            raise ValueError(
                f"final_price must be within [{self.base_price}, {PRICE_CAP}], got {self.final_price}"
            )


@dataclass(frozen=True, slots=True)
class Engagement:
    last_contact: Optional[datetime] = None
    contact_attempts: int = 0
    response_rate: float = 0.0
    email_opens: int = 0
    link_clicks: int = 0
    app_usage_after_inquiry: bool = True

    def __post_init__(self) -> None:
        if self.last_contact is not None:
            require_utc_timestamp("last_contact", self.last_contact)


@dataclass(frozen=True, slots=True)
class Lead:
    """
    Pure domain entity for a marketplace Lead.

    Notes:
    - matched_providers is filled once, at capture, by the matching step.
    - purchased_by order is purchase order.
    """

    lead_id: UUID
    source: LeadSource
    source_user_id: str
    parent: ParentContact
    child: ChildProfile
    requirements: Requirements
    scoring: LeadScoring
    pricing: LeadPricing
    status: LeadStatus
    created_at: datetime
    expires_at: datetime
    matched_providers: Tuple[str, ...] = ()
    interested_providers: Tuple[str, ...] = ()
    purchased_by: Tuple[str, ...] = ()
    views: int = 0
    engagement: Engagement = field(default_factory=Engagement)

    def __post_init__(self) -> None:
        require_utc_timestamp("created_at", self.created_at)
        require_utc_timestamp("expires_at", self.expires_at)
        if self.expires_at <= self.created_at:
            raise ValueError("expires_at must be after created_at")
        if len(self.purchased_by) > MAX_PURCHASERS:
            raise ValueError(f"purchased_by cannot exceed {MAX_PURCHASERS} providers")
        if len(set(self.purchased_by)) != len(self.purchased_by):
            raise ValueError("a provider may appear in purchased_by at most once")
        if len(self.purchased_by) == MAX_PURCHASERS and self.status in (LeadStatus.NEW, LeadStatus.ACTIVE):
            raise ValueError("a lead at the purchaser cap cannot be open for sale")

    # Queries

    def is_expired(self, as_of: datetime) -> bool:
        require_utc_timestamp("as_of", as_of)
        return as_of >= self.expires_at

    def is_available(self, as_of: datetime) -> bool:
        """Open for sale: ACTIVE and not past expires_at."""

        return self.status == LeadStatus.ACTIVE and not self.is_expired(as_of)

    def has_purchaser(self, provider_id: str) -> bool:
        return provider_id in self.purchased_by

    @property
    def final_price(self) -> Decimal:
        return self.pricing.final_price

    @property
    def remaining_slots(self) -> int:
        return MAX_PURCHASERS - len(self.purchased_by)

    # Transitions

    def activated(self, matched_providers: Tuple[str, ...]) -> "Lead":
        """NEW -> ACTIVE once matching has run."""

        if self.status != LeadStatus.NEW:
            raise ValueError(f"only a new lead can be activated (status: {self.status.value})")
        return replace(self, status=LeadStatus.ACTIVE, matched_providers=tuple(matched_providers))

    def with_purchaser(self, provider_id: str) -> "Lead":
        """
        Append a buyer. Flips status to PURCHASED when the cap is reached.

        Raises ValueError if the lead is not ACTIVE or the provider already bought it.
        """

        if self.status != LeadStatus.ACTIVE:
            raise ValueError(f"lead is not open for sale (status: {self.status.value})")
        if provider_id in self.purchased_by:
            raise ValueError(f"provider {provider_id} already purchased this lead")

        purchased_by = self.purchased_by + (provider_id,)
        status = LeadStatus.PURCHASED if len(purchased_by) >= MAX_PURCHASERS else self.status
        return replace(self, purchased_by=purchased_by, status=status)

    def without_purchaser(self, provider_id: str) -> "Lead":
        """Undo with_purchaser: drop the buyer and reopen a sold-out lead."""

        if provider_id not in self.purchased_by:
            return self
        purchased_by = tuple(p for p in self.purchased_by if p != provider_id)
        status = LeadStatus.ACTIVE if self.status == LeadStatus.PURCHASED else self.status
        return replace(self, purchased_by=purchased_by, status=status)

    def with_interest(self, provider_id: str) -> "Lead":
        if provider_id in self.interested_providers:
            return self
        return replace(self, interested_providers=self.interested_providers + (provider_id,))

    def viewed(self) -> "Lead":
        return replace(self, views=self.views + 1)

    def contacted(self, at: datetime) -> "Lead":
        require_utc_timestamp("at", at)
        engagement = replace(
            self.engagement,
            last_contact=at,
            contact_attempts=self.engagement.contact_attempts + 1,
        )
        return replace(self, engagement=engagement)

    def converted(self) -> "Lead":
        """PURCHASED -> CONVERTED; any other status is left unchanged."""

        if self.status != LeadStatus.PURCHASED:
            return self
        return replace(self, status=LeadStatus.CONVERTED)

    def expired(self) -> "Lead":
        if self.status not in (LeadStatus.NEW, LeadStatus.ACTIVE):
            raise ValueError(f"only an open lead can expire (status: {self.status.value})")
        return replace(self, status=LeadStatus.EXPIRED)


__all__ = [
    "MAX_PURCHASERS",
    "LEAD_TTL",
    "BASE_PRICE",
    "PRICE_CAP",
    "LeadStatus",
    "LeadSource",
    "Severity",
    "Urgency",
    "ServiceType",
    "ParentContact",
    "ChildProfile",
    "ServiceLocation",
    "Schedule",
    "Budget",
    "Requirements",
    "LeadScoring",
    "LeadPricing",
    "Engagement",
    "Lead",
]
