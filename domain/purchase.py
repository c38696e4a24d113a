"""
Domain: Purchase records.

A Purchase is created once per (provider, lead) sale. It freezes a snapshot of
the contact information and lead details as they were at purchase time; later
changes to the Lead never reach an existing Purchase.

Funnel tracking is monotonic. Each milestone is set at most once and its first
timestamp wins; recording it again is a no-op.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple
from uuid import UUID

from .lead import Lead
from .time import require_utc_timestamp


class Milestone(str, Enum):
    CONTACTED = "contacted"
    RESPONSE = "response"
    APPOINTMENT = "appointment"
    CONVERTED = "converted"


@dataclass(frozen=True, slots=True)
class ContactInfo:
    parent_name: str
    email: str
    phone: Optional[str]
    best_time_to_call: str


@dataclass(frozen=True, slots=True)
class LeadDetails:
    child_age: float
    diagnosis: str
    urgency: str
    location: str
    special_needs: Tuple[str, ...]
    budget: str


@dataclass(frozen=True, slots=True)
class ConversionTracking:
    contacted: bool = False
    contact_date: Optional[datetime] = None
    response_received: bool = False
    response_date: Optional[datetime] = None
    appointment_scheduled: bool = False
    appointment_date: Optional[datetime] = None
    converted: bool = False
    conversion_date: Optional[datetime] = None
    feedback_score: Optional[int] = None

    def __post_init__(self) -> None:
        for name in ("contact_date", "response_date", "appointment_date", "conversion_date"):
            value = getattr(self, name)
            if value is not None:
                require_utc_timestamp(name, value)
        if self.feedback_score is not None and not 1 <= self.feedback_score <= 5:
            raise ValueError(f"feedback_score must be within [1, 5], got {self.feedback_score}")

    def is_reached(self, milestone: Milestone) -> bool:
        flag, _ = _MILESTONE_FIELDS[milestone]
        return bool(getattr(self, flag))

    def reached(self, milestone: Milestone, at: datetime) -> "ConversionTracking":
        """Return tracking with `milestone` set at `at`, or self if already set."""

        require_utc_timestamp("at", at)
        if self.is_reached(milestone):
            return self
        flag, date_field = _MILESTONE_FIELDS[milestone]
        return replace(self, **{flag: True, date_field: at})


_MILESTONE_FIELDS = {
    Milestone.CONTACTED: ("contacted", "contact_date"),
    Milestone.RESPONSE: ("response_received", "response_date"),
    Milestone.APPOINTMENT: ("appointment_scheduled", "appointment_date"),
    Milestone.CONVERTED: ("converted", "conversion_date"),
}


@dataclass(frozen=True, slots=True)
class Purchase:
    """
    Immutable record of a provider buying a lead.

    price is what was charged (after the subscription discount), which may
    differ from the lead's listed final price.
    """

    purchase_id: UUID
    provider_id: str
    lead_id: UUID
    purchased_at: datetime
    price: Decimal
    payment_method: str
    contact_info: ContactInfo
    lead_details: LeadDetails
    tracking: ConversionTracking = field(default_factory=ConversionTracking)

    def __post_init__(self) -> None:
        require_utc_timestamp("purchased_at", self.purchased_at)
        if self.price < 0:
            raise ValueError("price must be >= 0")

    @staticmethod
    def snapshot(
        *,
        purchase_id: UUID,
        provider_id: str,
        lead: Lead,
        purchased_at: datetime,
        price: Decimal,
        payment_method: str,
    ) -> "Purchase":
        """Create a Purchase, copying contact info and details from `lead` as it is now."""

        requirements = lead.requirements
        preferred_times = requirements.schedule.preferred_times
        return Purchase(
            purchase_id=purchase_id,
            provider_id=provider_id,
            lead_id=lead.lead_id,
            purchased_at=purchased_at,
            price=price,
            payment_method=payment_method,
            contact_info=ContactInfo(
                parent_name=lead.parent.name,
                email=lead.parent.email,
                phone=lead.parent.phone,
                best_time_to_call=preferred_times[0] if preferred_times else "anytime",
            ),
            lead_details=LeadDetails(
                child_age=lead.child.age,
                diagnosis=lead.child.diagnosis,
                urgency=requirements.urgency.value,
                location=requirements.location.label,
                special_needs=tuple(requirements.special_requests),
                budget=requirements.budget.label,
            ),
        )

    def with_milestone(self, milestone: Milestone, at: datetime) -> "Purchase":
        tracking = self.tracking.reached(milestone, at)
        if tracking is self.tracking:
            return self
        return replace(self, tracking=tracking)

    def with_feedback(self, score: int) -> "Purchase":
        """Record the provider's 1-5 lead quality rating; the first rating wins."""

        if self.tracking.feedback_score is not None:
            return self
        return replace(self, tracking=replace(self.tracking, feedback_score=score))


__all__ = [
    "Milestone",
    "ContactInfo",
    "LeadDetails",
    "ConversionTracking",
    "Purchase",
]
