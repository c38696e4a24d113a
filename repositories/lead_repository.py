"""
Lead repository (persistence).

This module provides *only* persistence operations for the Lead domain entity.
No business rules (scoring, pricing, matching) belong here, with one
exception: purchaser changes go through store-level atomic operations
(`append_purchaser`, `remove_purchaser`) that keep the purchaser cap and
uniqueness invariants true even if two processes share the same database.

There is no whole-row update. Every later change writes only the columns it
touches, so it cannot overwrite a purchaser appended by another process:
- save_views / save_interest / save_engagement: one column each
  (last writer wins for these across processes)
- set_status: applied only while the stored status is still the expected one

Two implementations share the LeadRepository protocol:
- InMemoryLeadRepository: thread-safe dict, the default backend and test double.
- SupabaseLeadRepository: `marketplace_leads` table plus the
  `append_lead_purchaser` / `remove_lead_purchaser` Postgres functions
  (see sql/marketplace_schema.sql).
"""

from __future__ import annotations

import threading
from dataclasses import replace
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol
from uuid import UUID

from domain.errors import AlreadyPurchasedError, LeadUnavailableError, NotFoundError
from domain.geo import Coordinates
from domain.lead import (
    MAX_PURCHASERS,
    Budget,
    ChildProfile,
    Engagement,
    Lead,
    LeadPricing,
    LeadScoring,
    LeadSource,
    LeadStatus,
    ParentContact,
    Requirements,
    Schedule,
    ServiceLocation,
    ServiceType,
    Severity,
    Urgency,
)
from domain.time import parse_utc_datetime, to_iso_utc

# Supabase table name for Lead records.
# Keep this aligned with sql/marketplace_schema.sql.
_LEADS_TABLE: str = "marketplace_leads"


class LeadRepository(Protocol):
    def insert(self, lead: Lead) -> None: ...

    def get(self, lead_id: UUID) -> Optional[Lead]: ...

    def list_leads(self, statuses: Optional[Iterable[LeadStatus]] = None) -> List[Lead]: ...

    def save_views(self, lead: Lead) -> None: ...

    def save_interest(self, lead: Lead) -> None: ...

    def save_engagement(self, lead: Lead) -> None: ...

    def set_status(self, lead_id: UUID, status: LeadStatus, *, expected: LeadStatus) -> bool: ...

    def append_purchaser(self, lead_id: UUID, provider_id: str) -> Lead: ...

    def remove_purchaser(self, lead_id: UUID, provider_id: str) -> None: ...


def _check_append(lead: Optional[Lead], lead_id: UUID, provider_id: str) -> Lead:
    if lead is None:
        raise NotFoundError("Lead not found")
    if lead.status != LeadStatus.ACTIVE:
        raise LeadUnavailableError("Lead no longer available")
    if lead.has_purchaser(provider_id):
        raise AlreadyPurchasedError("Already purchased this lead")
    return lead.with_purchaser(provider_id)


class InMemoryLeadRepository:
    """
    Dict-backed lead store.

    Stored leads are immutable, so reads hand out the stored instance itself:
    every read is a consistent snapshot without copying.
    """

    def __init__(self) -> None:
        self._leads: Dict[UUID, Lead] = {}
        self._lock = threading.Lock()

    def insert(self, lead: Lead) -> None:
        with self._lock:
            if lead.lead_id in self._leads:
                raise RuntimeError(f"Failed to insert lead: duplicate lead_id {lead.lead_id}")
            self._leads[lead.lead_id] = lead

    def get(self, lead_id: UUID) -> Optional[Lead]:
        with self._lock:
            return self._leads.get(lead_id)

    def list_leads(self, statuses: Optional[Iterable[LeadStatus]] = None) -> List[Lead]:
        with self._lock:
            leads = list(self._leads.values())
        if statuses is None:
            return leads
        wanted = set(statuses)
        return [lead for lead in leads if lead.status in wanted]

    def save_views(self, lead: Lead) -> None:
        self._patch(lead.lead_id, views=lead.views)

    def save_interest(self, lead: Lead) -> None:
        self._patch(lead.lead_id, interested_providers=lead.interested_providers)

    def save_engagement(self, lead: Lead) -> None:
        self._patch(lead.lead_id, engagement=lead.engagement)

    def set_status(self, lead_id: UUID, status: LeadStatus, *, expected: LeadStatus) -> bool:
        with self._lock:
            stored = self._require(lead_id)
            if stored.status != expected:
                return False
            self._leads[lead_id] = replace(stored, status=status)
            return True

    def append_purchaser(self, lead_id: UUID, provider_id: str) -> Lead:
        with self._lock:
            updated = _check_append(self._leads.get(lead_id), lead_id, provider_id)
            self._leads[lead_id] = updated
            return updated

    def remove_purchaser(self, lead_id: UUID, provider_id: str) -> None:
        with self._lock:
            self._leads[lead_id] = self._require(lead_id).without_purchaser(provider_id)

    def _patch(self, lead_id: UUID, **changes: Any) -> None:
        with self._lock:
            self._leads[lead_id] = replace(self._require(lead_id), **changes)

    def _require(self, lead_id: UUID) -> Lead:
        lead = self._leads.get(lead_id)
        if lead is None:
            raise RuntimeError(f"Failed to update lead: unknown lead_id {lead_id}")
        return lead


# ============================================================================
# Supabase row mapping
# ============================================================================


def _lead_to_row(lead: Lead) -> dict[str, Any]:
    """Convert a domain Lead to a Supabase row payload."""

    parent = lead.parent
    child = lead.child
    requirements = lead.requirements
    location = requirements.location
    scoring = lead.scoring
    pricing = lead.pricing

    return {
        # Core identifiers
        "lead_id": str(lead.lead_id),
        "source": lead.source.value,
        "source_user_id": lead.source_user_id,
        "status": lead.status.value,
        "created_at_utc": to_iso_utc(lead.created_at, name="created_at"),
        "expires_at_utc": to_iso_utc(lead.expires_at, name="expires_at"),

        # Parent contact
        "parent_name": parent.name,
        "parent_email": parent.email,
        "parent_phone": parent.phone,
        "preferred_contact": parent.preferred_contact,
        "parent_timezone": parent.timezone,
        "has_used_aac": parent.has_used_aac,
        "aac_usage_duration_days": parent.aac_usage_duration_days,

        # Child
        "child_age": child.age,
        "diagnosis": child.diagnosis,
        "severity": child.severity.value,
        "communication_level": child.communication_level,
        "goals": list(child.goals),
        "current_therapy": child.current_therapy,
        "previous_aac": child.previous_aac,

        # Requirements
        "urgency": requirements.urgency.value,
        "service_type": requirements.service_type.value,
        "zip_code": location.zip_code,
        "latitude": location.coordinates.lat,
        "longitude": location.coordinates.lng,
        "city": location.city,
        "state": location.state,
        "address": location.address,
        "max_distance_miles": location.max_distance_miles,
        "schedule": {
            "preferred_days": list(requirements.schedule.preferred_days),
            "preferred_times": list(requirements.schedule.preferred_times),
            "frequency": requirements.schedule.frequency,
        },
        "budget": {
            "has_insurance": requirements.budget.has_insurance,
            "max_out_of_pocket": str(requirements.budget.max_out_of_pocket),
            "insurance_provider": requirements.budget.insurance_provider,
        },
        "special_requests": list(requirements.special_requests),

        # Scoring
        "lead_score": scoring.lead_score,
        "conversion_probability": scoring.conversion_probability,
        "urgency_score": scoring.urgency_score,
        "budget_score": scoring.budget_score,
        "location_score": scoring.location_score,
        "quality_indicators": list(scoring.quality_indicators),

        # Pricing
        "base_price": str(pricing.base_price),
        "quality_multiplier": str(pricing.quality_multiplier),
        "urgency_multiplier": str(pricing.urgency_multiplier),
        "engagement_multiplier": str(pricing.engagement_multiplier),
        "final_price": str(pricing.final_price),

        # Marketplace state
        "matched_providers": list(lead.matched_providers),
        "interested_providers": list(lead.interested_providers),
        "purchased_by": list(lead.purchased_by),
        "views": lead.views,

        # Engagement
        "engagement": _engagement_to_row(lead.engagement),
    }


def _engagement_to_row(engagement: Engagement) -> dict[str, Any]:
    return {
        "last_contact": to_iso_utc(engagement.last_contact, name="last_contact")
        if engagement.last_contact is not None
        else None,
        "contact_attempts": engagement.contact_attempts,
        "response_rate": engagement.response_rate,
        "email_opens": engagement.email_opens,
        "link_clicks": engagement.link_clicks,
        "app_usage_after_inquiry": engagement.app_usage_after_inquiry,
    }


def _row_to_lead(row: Mapping[str, Any]) -> Lead:
    """Convert a Supabase row into a domain Lead."""

    schedule = row.get("schedule") or {}
    budget = row.get("budget") or {}
    engagement = row.get("engagement") or {}
    last_contact = engagement.get("last_contact")

    return Lead(
        lead_id=UUID(str(row["lead_id"])),
        source=LeadSource(str(row["source"])),
        source_user_id=str(row.get("source_user_id") or ""),
        status=LeadStatus(str(row["status"])),
        created_at=parse_utc_datetime(row["created_at_utc"]),
        expires_at=parse_utc_datetime(row["expires_at_utc"]),
        parent=ParentContact(
            name=str(row["parent_name"]),
            email=str(row["parent_email"]),
            phone=row.get("parent_phone"),
            preferred_contact=str(row.get("preferred_contact") or "email"),
            timezone=str(row.get("parent_timezone") or "America/Chicago"),
            has_used_aac=bool(row.get("has_used_aac", True)),
            aac_usage_duration_days=row.get("aac_usage_duration_days"),
        ),
        child=ChildProfile(
            age=float(row["child_age"]),
            diagnosis=str(row["diagnosis"]),
            severity=Severity(str(row["severity"])),
            communication_level=str(row.get("communication_level") or ""),
            goals=tuple(row.get("goals") or ()),
            current_therapy=bool(row.get("current_therapy", False)),
            previous_aac=bool(row.get("previous_aac", True)),
        ),
        requirements=Requirements(
            urgency=Urgency(str(row["urgency"])),
            service_type=ServiceType(str(row.get("service_type") or ServiceType.HYBRID.value)),
            location=ServiceLocation(
                zip_code=str(row["zip_code"]),
                coordinates=Coordinates(lat=float(row["latitude"]), lng=float(row["longitude"])),
                city=str(row.get("city") or "Unknown"),
                state=str(row.get("state") or "TX"),
                address=str(row.get("address") or ""),
                max_distance_miles=float(row.get("max_distance_miles") or 25),
            ),
            schedule=Schedule(
                preferred_days=tuple(schedule.get("preferred_days") or ()),
                preferred_times=tuple(schedule.get("preferred_times") or ()),
                frequency=str(schedule.get("frequency") or "weekly"),
            ),
            budget=Budget(
                has_insurance=bool(budget.get("has_insurance", True)),
                max_out_of_pocket=Decimal(str(budget.get("max_out_of_pocket", "150"))),
                insurance_provider=budget.get("insurance_provider"),
            ),
            special_requests=tuple(row.get("special_requests") or ()),
        ),
        scoring=LeadScoring(
            lead_score=int(row["lead_score"]),
            conversion_probability=float(row["conversion_probability"]),
            urgency_score=int(row["urgency_score"]),
            budget_score=int(row.get("budget_score", 75)),
            location_score=int(row.get("location_score", 80)),
            quality_indicators=tuple(row.get("quality_indicators") or ()),
        ),
        pricing=LeadPricing(
            base_price=Decimal(str(row["base_price"])),
            quality_multiplier=Decimal(str(row["quality_multiplier"])),
            urgency_multiplier=Decimal(str(row["urgency_multiplier"])),
            engagement_multiplier=Decimal(str(row["engagement_multiplier"])),
            final_price=Decimal(str(row["final_price"])),
        ),
        matched_providers=tuple(row.get("matched_providers") or ()),
        interested_providers=tuple(row.get("interested_providers") or ()),
        purchased_by=tuple(row.get("purchased_by") or ()),
        views=int(row.get("views") or 0),
        engagement=Engagement(
            last_contact=parse_utc_datetime(last_contact) if last_contact else None,
            contact_attempts=int(engagement.get("contact_attempts", 0)),
            response_rate=float(engagement.get("response_rate", 0.0)),
            email_opens=int(engagement.get("email_opens", 0)),
            link_clicks=int(engagement.get("link_clicks", 0)),
            app_usage_after_inquiry=bool(engagement.get("app_usage_after_inquiry", True)),
        ),
    )


# Error codes returned by append_lead_purchaser(); see sql/marketplace_schema.sql.
_APPEND_ERRORS = {
    "LEAD_NOT_FOUND": NotFoundError,
    "LEAD_UNAVAILABLE": LeadUnavailableError,
    "ALREADY_PURCHASED": AlreadyPurchasedError,
}


class SupabaseLeadRepository:
    """Lead persistence on Supabase (PostgREST)."""

    def __init__(self, client: Any = None) -> None:
        if client is None:
            from repositories.client import get_supabase

            client = get_supabase()
        self._client = client

    def insert(self, lead: Lead) -> None:
        """
        Insert a Lead into Supabase.

        Raises:
        - RuntimeError if Supabase returns an error response.
        """

        response = self._client.table(_LEADS_TABLE).insert(_lead_to_row(lead)).execute()
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to insert lead: {error}")

    def get(self, lead_id: UUID) -> Optional[Lead]:
        response = (
            self._client.table(_LEADS_TABLE)
            .select("*")
            .eq("lead_id", str(lead_id))
            .limit(1)
            .execute()
        )
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to fetch lead: {error}")

        rows = getattr(response, "data", None) or []
        if not rows:
            return None
        return _row_to_lead(rows[0])

    def list_leads(self, statuses: Optional[Iterable[LeadStatus]] = None) -> List[Lead]:
        query = self._client.table(_LEADS_TABLE).select("*")
        if statuses is not None:
            query = query.in_("status", [status.value for status in statuses])

        response = query.execute()
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to list leads: {error}")

        rows = getattr(response, "data", None) or []
        return [_row_to_lead(row) for row in rows]

    def save_views(self, lead: Lead) -> None:
        self._update_columns(lead.lead_id, {"views": lead.views})

    def save_interest(self, lead: Lead) -> None:
        self._update_columns(lead.lead_id, {"interested_providers": list(lead.interested_providers)})

    def save_engagement(self, lead: Lead) -> None:
        self._update_columns(lead.lead_id, {"engagement": _engagement_to_row(lead.engagement)})

    def set_status(self, lead_id: UUID, status: LeadStatus, *, expected: LeadStatus) -> bool:
        """Compare-and-set on status. Returns False if the stored status was not `expected`."""

        rows = self._update_columns(lead_id, {"status": status.value}, expected=expected)
        return bool(rows)

    def append_purchaser(self, lead_id: UUID, provider_id: str) -> Lead:
        """
        Append a purchaser via the append_lead_purchaser() Postgres function.

        The function locks the lead row (FOR UPDATE), checks status, duplicate
        buyer and cap, appends, and flips status to purchased at the cap, all
        in one transaction.
        """

        from postgrest.exceptions import APIError

        try:
            response = self._client.rpc(
                "append_lead_purchaser",
                {
                    "p_lead_id": str(lead_id),
                    "p_provider_id": provider_id,
                    "p_max_purchasers": MAX_PURCHASERS,
                },
            ).execute()
            error = getattr(response, "error", None)
            if error:
                raise RuntimeError(f"Failed to append purchaser: {error}")
            result = response.data or {}
        except APIError as e:
            # supabase-py raises APIError for JSON bodies returned by the function,
            # successful ones included.
            result = e.json() if callable(getattr(e, "json", None)) else {}
            if not result:
                raise RuntimeError(f"Failed to append purchaser: {e}") from e

        if not result.get("success"):
            error_cls = _APPEND_ERRORS.get(str(result.get("error")))
            if error_cls is None:
                raise RuntimeError(f"Failed to append purchaser: {result.get('message')}")
            raise error_cls(str(result.get("message") or error_cls.__name__))

        lead = self.get(lead_id)
        if lead is None:
            raise NotFoundError("Lead not found")
        return lead

    def remove_purchaser(self, lead_id: UUID, provider_id: str) -> None:
        """
        Undo append_purchaser via the remove_lead_purchaser() Postgres function,
        which drops the buyer and reopens a sold-out lead under the row lock.
        """

        from postgrest.exceptions import APIError

        try:
            response = self._client.rpc(
                "remove_lead_purchaser",
                {"p_lead_id": str(lead_id), "p_provider_id": provider_id},
            ).execute()
            error = getattr(response, "error", None)
            if error:
                raise RuntimeError(f"Failed to remove purchaser: {error}")
            result = response.data or {}
        except APIError as e:
            result = e.json() if callable(getattr(e, "json", None)) else {}
            if not result:
                raise RuntimeError(f"Failed to remove purchaser: {e}") from e

        if not result.get("success"):
            raise NotFoundError("Lead not found")

    def _update_columns(
        self,
        lead_id: UUID,
        payload: Dict[str, Any],
        *,
        expected: Optional[LeadStatus] = None,
    ) -> List[Dict[str, Any]]:
        query = self._client.table(_LEADS_TABLE).update(payload).eq("lead_id", str(lead_id))
        if expected is not None:
            query = query.eq("status", expected.value)

        response = query.execute()
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to update lead: {error}")
        return getattr(response, "data", None) or []


__all__ = [
    "LeadRepository",
    "InMemoryLeadRepository",
    "SupabaseLeadRepository",
]
