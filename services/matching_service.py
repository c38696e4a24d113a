"""
Matching and ranking service.

Two directions:

(a) Lead -> providers, at capture time. The lead's diagnosis maps to a set of
    directory specialties; the directory returns providers sharing one of them
    whose service area covers the lead. Candidates are ranked by rating
    (highest first) then distance (nearest first) and the top N kept.

(b) Provider -> leads, when a provider browses. Open leads the provider has
    not bought are filtered by the provider's criteria, then scored and ranked
    by 0.6 * match_score + 0.4 * estimated_roi.

Everything here is a pure function over already-loaded entities.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable, List, Mapping, Optional, Tuple
from uuid import UUID

from domain.geo import Coordinates, haversine_miles
from domain.lead import Lead, Urgency
from domain.provider import ProviderProfile
from domain.usage_signal import normalize_diagnosis
from repositories.provider_directory import ProviderDirectory, shares_specialty
from services.pricing_service import round_price

DIAGNOSIS_SPECIALTIES: Mapping[str, Tuple[str, ...]] = {
    "autism": (
        "Autism Spectrum Disorders",
        "Augmentative and Alternative Communication",
        "Social Communication",
    ),
    "apraxia": ("Childhood Apraxia of Speech", "Motor Speech Disorders"),
    "cerebral_palsy": ("Augmentative and Alternative Communication", "Dysarthria"),
    "down_syndrome": ("Intellectual Disabilities", "Augmentative and Alternative Communication"),
    "delayed_speech": ("Language Disorders", "Speech Sound Disorders"),
    "stuttering": ("Fluency Disorders",),
    "voice_disorders": ("Voice Disorders",),
}
DEFAULT_SPECIALTIES: Tuple[str, ...] = ("Speech-Language Pathology",)

# ROI assumptions: value of one therapy session and sessions per converted family.
AVG_SESSION_VALUE = 150
EXPECTED_SESSIONS = 20

DEFAULT_MATCH_LIMIT = 5


def specialties_for_diagnosis(diagnosis: str) -> Tuple[str, ...]:
    return DIAGNOSIS_SPECIALTIES.get(normalize_diagnosis(diagnosis), DEFAULT_SPECIALTIES)


# ============================================================================
# (a) Lead -> providers
# ============================================================================


@dataclass(frozen=True, slots=True)
class ProviderMatch:
    provider_id: str
    rating: float
    distance_miles: float


def match_providers_for_lead(
    lead: Lead,
    directory: ProviderDirectory,
    limit: int = DEFAULT_MATCH_LIMIT,
) -> List[ProviderMatch]:
    """
    Qualified providers for `lead`, best first, at most `limit` of them.

    Ties on rating and distance fall back to provider_id so the order is stable.
    """

    point = lead.requirements.location.coordinates
    specialties = specialties_for_diagnosis(lead.child.diagnosis)

    matches = [
        ProviderMatch(
            provider_id=profile.provider_id,
            rating=profile.rating,
            distance_miles=profile.distance_to(point),
        )
        for profile in directory.find_candidates(specialties, point)
    ]
    matches.sort(key=lambda m: (-m.rating, m.distance_miles, m.provider_id))
    return matches[:limit]


# ============================================================================
# (b) Provider -> leads
# ============================================================================


@dataclass(frozen=True, slots=True)
class LocationFilter:
    center: Coordinates
    radius_miles: float


@dataclass(frozen=True, slots=True)
class ChildAgeRange:
    min_age: float
    max_age: float


@dataclass(frozen=True, slots=True)
class LeadFilters:
    """Browse criteria. Every filter that is set must hold (conjunction)."""

    max_price: Optional[Decimal] = None
    location: Optional[LocationFilter] = None
    child_age: Optional[ChildAgeRange] = None
    diagnoses: Optional[Tuple[str, ...]] = None
    urgencies: Optional[Tuple[Urgency, ...]] = None

    def matches(self, lead: Lead) -> bool:
        if self.max_price is not None and lead.final_price > self.max_price:
            return False

        if self.child_age is not None:
            if not self.child_age.min_age <= lead.child.age <= self.child_age.max_age:
                return False

        if self.diagnoses:
            wanted = {normalize_diagnosis(d) for d in self.diagnoses}
            if normalize_diagnosis(lead.child.diagnosis) not in wanted:
                return False

        if self.urgencies:
            if lead.requirements.urgency not in self.urgencies:
                return False

        if self.location is not None:
            distance = haversine_miles(self.location.center, lead.requirements.location.coordinates)
            if distance > self.location.radius_miles:
                return False

        return True


@dataclass(frozen=True, slots=True)
class LeadPreview:
    """What a provider sees before buying: no contact details."""

    child_age: float
    diagnosis: str
    urgency: str
    location: str
    price: Decimal
    lead_score: int
    special_requests: Tuple[str, ...]

    @staticmethod
    def of(lead: Lead) -> "LeadPreview":
        return LeadPreview(
            child_age=lead.child.age,
            diagnosis=lead.child.diagnosis,
            urgency=lead.requirements.urgency.value,
            location=lead.requirements.location.label,
            price=lead.final_price,
            lead_score=lead.scoring.lead_score,
            special_requests=tuple(lead.requirements.special_requests),
        )


@dataclass(frozen=True, slots=True)
class RankedLead:
    lead_id: UUID
    preview: LeadPreview
    match_score: int
    estimated_roi: float

    @property
    def ranking_score(self) -> float:
        return self.match_score * 0.6 + self.estimated_roi * 0.4


@dataclass(frozen=True, slots=True)
class AvailableLeads:
    leads: List[RankedLead]
    total_available: int
    avg_price: Decimal


def calculate_match_score(provider: ProviderProfile, lead: Lead) -> int:
    """
    Provider/lead compatibility in [0, 100].

    base 50; +30 shared specialty; +20 within 10 miles else +10 within 25;
    +15 for a child under 5 and a provider with more than 5 years of experience.
    """

    score = 50

    if shares_specialty(provider, specialties_for_diagnosis(lead.child.diagnosis)):
        score += 30

    distance = provider.distance_to(lead.requirements.location.coordinates)
    if distance <= 10:
        score += 20
    elif distance <= 25:
        score += 10

    if lead.child.age < 5 and provider.experience_years > 5:
        score += 15

    return min(100, score)


def estimate_roi(lead: Lead) -> float:
    """Expected return on the listed price, in percent."""

    price = float(lead.final_price)
    expected_revenue = AVG_SESSION_VALUE * EXPECTED_SESSIONS * lead.scoring.conversion_probability
    return (expected_revenue - price) / price * 100


def is_browsable(lead: Lead, provider_id: str, as_of: datetime) -> bool:
    """Open for sale, not expired, and not already bought by this provider."""

    return lead.is_available(as_of) and not lead.has_purchaser(provider_id)


def rank_lead(provider: ProviderProfile, lead: Lead) -> RankedLead:
    return RankedLead(
        lead_id=lead.lead_id,
        preview=LeadPreview.of(lead),
        match_score=calculate_match_score(provider, lead),
        estimated_roi=estimate_roi(lead),
    )


def rank_leads_for_provider(
    provider: ProviderProfile,
    leads: Iterable[Lead],
    filters: Optional[LeadFilters],
    as_of: datetime,
) -> AvailableLeads:
    """
    Filter, score and rank leads for a browsing provider.

    avg_price is the mean listed price of the filtered set (0 when empty).
    """

    filters = filters or LeadFilters()
    selected = [
        lead for lead in leads
        if is_browsable(lead, provider.provider_id, as_of) and filters.matches(lead)
    ]

    ranked = [rank_lead(provider, lead) for lead in selected]
    ranked.sort(key=lambda r: r.ranking_score, reverse=True)

    if ranked:
        avg_price = round_price(sum((r.preview.price for r in ranked), Decimal("0")) / len(ranked))
    else:
        avg_price = Decimal("0")

    return AvailableLeads(leads=ranked, total_available=len(ranked), avg_price=avg_price)


__all__ = [
    "DIAGNOSIS_SPECIALTIES",
    "DEFAULT_SPECIALTIES",
    "AVG_SESSION_VALUE",
    "EXPECTED_SESSIONS",
    "specialties_for_diagnosis",
    "ProviderMatch",
    "match_providers_for_lead",
    "LocationFilter",
    "ChildAgeRange",
    "LeadFilters",
    "LeadPreview",
    "RankedLead",
    "AvailableLeads",
    "calculate_match_score",
    "estimate_roi",
    "is_browsable",
    "rank_lead",
    "rank_leads_for_provider",
]
