"""
Purchase repository (persistence).

This module provides *only* persistence operations for the Purchase domain
entity. It does not enforce business rules (milestone monotonicity lives on
the entity); it only inserts, replaces and fetches purchase records.
"""

from __future__ import annotations

import threading
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Protocol
from uuid import UUID

from domain.purchase import ContactInfo, ConversionTracking, LeadDetails, Purchase
from domain.time import parse_utc_datetime, to_iso_utc

# Supabase table name for purchase records.
# Keep this aligned with sql/marketplace_schema.sql.
_PURCHASES_TABLE: str = "lead_purchases"


class PurchaseRepository(Protocol):
    def insert(self, purchase: Purchase) -> None: ...

    def get(self, purchase_id: UUID) -> Optional[Purchase]: ...

    def update(self, purchase: Purchase) -> None: ...

    def list_purchases(
        self,
        provider_id: Optional[str] = None,
        lead_id: Optional[UUID] = None,
    ) -> List[Purchase]: ...


class InMemoryPurchaseRepository:
    """Dict-backed purchase store. Insertion order is purchase order."""

    def __init__(self) -> None:
        self._purchases: Dict[UUID, Purchase] = {}
        self._lock = threading.Lock()

    def insert(self, purchase: Purchase) -> None:
        with self._lock:
            if purchase.purchase_id in self._purchases:
                raise RuntimeError(f"Failed to record purchase: duplicate purchase_id {purchase.purchase_id}")
            self._purchases[purchase.purchase_id] = purchase

    def get(self, purchase_id: UUID) -> Optional[Purchase]:
        with self._lock:
            return self._purchases.get(purchase_id)

    def update(self, purchase: Purchase) -> None:
        with self._lock:
            if purchase.purchase_id not in self._purchases:
                raise RuntimeError(f"Failed to update purchase: unknown purchase_id {purchase.purchase_id}")
            self._purchases[purchase.purchase_id] = purchase

    def list_purchases(
        self,
        provider_id: Optional[str] = None,
        lead_id: Optional[UUID] = None,
    ) -> List[Purchase]:
        with self._lock:
            purchases = list(self._purchases.values())
        return [
            p for p in purchases
            if (provider_id is None or p.provider_id == provider_id)
            and (lead_id is None or p.lead_id == lead_id)
        ]


def _optional_iso(value: Any, name: str) -> Optional[str]:
    return to_iso_utc(value, name=name) if value is not None else None


def _optional_datetime(value: Any):
    return parse_utc_datetime(value) if value else None


def _purchase_to_row(purchase: Purchase) -> dict[str, Any]:
    """Convert a Purchase into a Supabase row payload."""

    contact = purchase.contact_info
    details = purchase.lead_details
    tracking = purchase.tracking

    return {
        "purchase_id": str(purchase.purchase_id),
        "provider_id": purchase.provider_id,
        "lead_id": str(purchase.lead_id),
        "purchased_at_utc": to_iso_utc(purchase.purchased_at, name="purchased_at"),
        "purchase_price": str(purchase.price),
        "payment_method": purchase.payment_method,

        # Snapshot taken at purchase time
        "contact_info": {
            "parent_name": contact.parent_name,
            "email": contact.email,
            "phone": contact.phone,
            "best_time_to_call": contact.best_time_to_call,
        },
        "lead_details": {
            "child_age": details.child_age,
            "diagnosis": details.diagnosis,
            "urgency": details.urgency,
            "location": details.location,
            "special_needs": list(details.special_needs),
            "budget": details.budget,
        },

        # Funnel tracking
        "contacted": tracking.contacted,
        "contact_date_utc": _optional_iso(tracking.contact_date, "contact_date"),
        "response_received": tracking.response_received,
        "response_date_utc": _optional_iso(tracking.response_date, "response_date"),
        "appointment_scheduled": tracking.appointment_scheduled,
        "appointment_date_utc": _optional_iso(tracking.appointment_date, "appointment_date"),
        "converted": tracking.converted,
        "conversion_date_utc": _optional_iso(tracking.conversion_date, "conversion_date"),
        "feedback_score": tracking.feedback_score,
    }


def _row_to_purchase(row: Mapping[str, Any]) -> Purchase:
    """Convert a Supabase row into a Purchase."""

    contact = row.get("contact_info") or {}
    details = row.get("lead_details") or {}

    return Purchase(
        purchase_id=UUID(str(row["purchase_id"])),
        provider_id=str(row["provider_id"]),
        lead_id=UUID(str(row["lead_id"])),
        purchased_at=parse_utc_datetime(row["purchased_at_utc"]),
        price=Decimal(str(row["purchase_price"])),
        payment_method=str(row.get("payment_method") or ""),
        contact_info=ContactInfo(
            parent_name=str(contact.get("parent_name", "")),
            email=str(contact.get("email", "")),
            phone=contact.get("phone"),
            best_time_to_call=str(contact.get("best_time_to_call") or "anytime"),
        ),
        lead_details=LeadDetails(
            child_age=float(details.get("child_age", 0)),
            diagnosis=str(details.get("diagnosis", "")),
            urgency=str(details.get("urgency", "")),
            location=str(details.get("location", "")),
            special_needs=tuple(details.get("special_needs") or ()),
            budget=str(details.get("budget", "")),
        ),
        tracking=ConversionTracking(
            contacted=bool(row.get("contacted", False)),
            contact_date=_optional_datetime(row.get("contact_date_utc")),
            response_received=bool(row.get("response_received", False)),
            response_date=_optional_datetime(row.get("response_date_utc")),
            appointment_scheduled=bool(row.get("appointment_scheduled", False)),
            appointment_date=_optional_datetime(row.get("appointment_date_utc")),
            converted=bool(row.get("converted", False)),
            conversion_date=_optional_datetime(row.get("conversion_date_utc")),
            feedback_score=row.get("feedback_score"),
        ),
    )


class SupabasePurchaseRepository:
    """Purchase persistence on Supabase (PostgREST)."""

    def __init__(self, client: Any = None) -> None:
        if client is None:
            from repositories.client import get_supabase

            client = get_supabase()
        self._client = client

    def insert(self, purchase: Purchase) -> None:
        response = self._client.table(_PURCHASES_TABLE).insert(_purchase_to_row(purchase)).execute()
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to record purchase: {error}")

    def get(self, purchase_id: UUID) -> Optional[Purchase]:
        response = (
            self._client.table(_PURCHASES_TABLE)
            .select("*")
            .eq("purchase_id", str(purchase_id))
            .limit(1)
            .execute()
        )
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to get purchase: {error}")

        rows = getattr(response, "data", None) or []
        if not rows:
            return None
        return _row_to_purchase(rows[0])

    def update(self, purchase: Purchase) -> None:
        payload = _purchase_to_row(purchase)
        payload.pop("purchase_id")
        response = (
            self._client.table(_PURCHASES_TABLE)
            .update(payload)
            .eq("purchase_id", str(purchase.purchase_id))
            .execute()
        )
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to update purchase: {error}")

    def list_purchases(
        self,
        provider_id: Optional[str] = None,
        lead_id: Optional[UUID] = None,
    ) -> List[Purchase]:
        query = self._client.table(_PURCHASES_TABLE).select("*")
        if provider_id is not None:
            query = query.eq("provider_id", provider_id)
        if lead_id is not None:
            query = query.eq("lead_id", str(lead_id))

        response = query.order("purchased_at_utc").execute()
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to list purchases: {error}")

        rows = getattr(response, "data", None) or []
        return [_row_to_purchase(row) for row in rows]


__all__ = [
    "PurchaseRepository",
    "InMemoryPurchaseRepository",
    "SupabasePurchaseRepository",
]
