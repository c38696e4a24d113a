"""
Lead capture service.

Builds a new, unmatched Lead (status NEW) from a validated usage signal:
scoring, pricing and enrichment (severity, urgency, communication level,
suggested goals, default requirements for AAC app families).

Persistence, matching and analytics are orchestrated by the marketplace; this
module is pure.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from domain.lead import (
    LEAD_TTL,
    ChildProfile,
    Engagement,
    Lead,
    LeadSource,
    LeadStatus,
    ParentContact,
    Requirements,
    ServiceLocation,
)
from domain.time import require_utc_timestamp
from domain.usage_signal import UsageSignal
from services.pricing_service import calculate_lead_pricing
from services.scoring_service import (
    assess_communication_level,
    infer_severity,
    infer_urgency,
    score_signal,
    suggest_goals,
)

DEFAULT_PARENT_NAME = "AAC App Parent"
DEFAULT_SPECIAL_REQUESTS = ("AAC-experienced therapist preferred",)


@dataclass(frozen=True, slots=True)
class CaptureResult:
    """
    lead_id: the new lead
    estimated_value: listed price times number of matched providers
    recommended_price: listed price
    """

    lead_id: UUID
    estimated_value: Decimal
    recommended_price: Decimal
    lead_score: int
    matched_providers: int


def build_lead_from_signal(signal: UsageSignal, *, lead_id: UUID, captured_at: datetime) -> Lead:
    """Score, price and enrich `signal` into a NEW lead expiring LEAD_TTL after capture."""

    require_utc_timestamp("captured_at", captured_at)

    scoring = score_signal(signal)
    pricing = calculate_lead_pricing(scoring.lead_score, signal)

    return Lead(
        lead_id=lead_id,
        source=LeadSource.AAC_APP,
        source_user_id=signal.user_id,
        parent=ParentContact(
            name=signal.parent_name or DEFAULT_PARENT_NAME,
            email=signal.parent_email,
            phone=signal.parent_phone,
            has_used_aac=True,
            aac_usage_duration_days=signal.usage_duration_days,
        ),
        child=ChildProfile(
            age=signal.child_age,
            diagnosis=signal.diagnosis,
            severity=infer_severity(signal.app_engagement),
            communication_level=assess_communication_level(signal.app_engagement),
            goals=suggest_goals(signal),
            current_therapy=False,
            previous_aac=True,
        ),
        requirements=Requirements(
            urgency=infer_urgency(signal.usage_duration_days),
            location=ServiceLocation(
                zip_code=signal.zip_code,
                coordinates=signal.coordinates,
            ),
            special_requests=DEFAULT_SPECIAL_REQUESTS,
        ),
        scoring=scoring,
        pricing=pricing,
        status=LeadStatus.NEW,
        created_at=captured_at,
        expires_at=captured_at + LEAD_TTL,
        engagement=Engagement(last_contact=captured_at),
    )


__all__ = ["CaptureResult", "build_lead_from_signal"]
