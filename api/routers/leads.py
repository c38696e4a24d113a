"""
Leads API Endpoints.

Endpoints for capturing leads from the AAC app and for providers browsing,
previewing and flagging interest in them.
"""

from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query

from api.dependencies import get_marketplace, http_error
from api.models import (
    AvailableLeadsResponse,
    CaptureResponse,
    ErrorResponse,
    ExpireResponse,
    InterestResponse,
    LeadPreviewResponse,
    ProviderRequest,
    UsageEventRequest,
)
from domain.errors import MarketplaceError
from domain.geo import Coordinates
from domain.lead import Urgency
from services.marketplace_service import LeadMarketplace
from services.matching_service import ChildAgeRange, LeadFilters, LocationFilter

router = APIRouter()


@router.post(
    "/leads",
    response_model=CaptureResponse,
    status_code=201,
    summary="Capture Lead",
    description="Score, price and match a lead from an AAC app usage event.",
    responses={422: {"model": ErrorResponse}},
)
def capture_lead(request: UsageEventRequest, marketplace: LeadMarketplace = Depends(get_marketplace)):
    """
    Capture a lead from an AAC usage event.

    **Pricing:** base $35, scaled by lead quality, urgency and engagement,
    capped at $75.

    **Example response:**
    ```json
    {
      "lead_id": "123e4567-e89b-12d3-a456-426614174000",
      "estimated_value": "225",
      "recommended_price": "75",
      "lead_score": 100,
      "matched_providers": 3
    }
    ```
    """
    try:
        result = marketplace.capture_lead_from_aac(request.model_dump(exclude_none=True))
        return CaptureResponse.model_validate(result, from_attributes=True)
    except MarketplaceError as e:
        raise http_error(e)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to capture lead: {str(e)}"
        )


@router.get(
    "/leads",
    response_model=AvailableLeadsResponse,
    summary="Browse Available Leads",
    description="Ranked open leads for one provider, with optional filters.",
    responses={404: {"model": ErrorResponse}},
)
def get_available_leads(
    provider_id: str = Query(..., description="Browsing provider"),
    max_price: Optional[Decimal] = Query(None, ge=0, description="Only leads priced at or below this"),
    lat: Optional[float] = Query(None, ge=-90, le=90, description="Location filter center latitude"),
    lng: Optional[float] = Query(None, ge=-180, le=180, description="Location filter center longitude"),
    radius_miles: Optional[float] = Query(None, gt=0, description="Location filter radius"),
    min_age: Optional[float] = Query(None, ge=0, description="Youngest child age"),
    max_age: Optional[float] = Query(None, ge=0, description="Oldest child age"),
    diagnosis: Optional[List[str]] = Query(None, description="Diagnoses to include (repeatable)"),
    urgency: Optional[List[Urgency]] = Query(None, description="Urgencies to include (repeatable)"),
    marketplace: LeadMarketplace = Depends(get_marketplace),
):
    """
    Browse leads ranked by 0.6 * match score + 0.4 * estimated ROI.

    **Example usage:**
    - All open leads: `GET /leads?provider_id=demo-slp-austin`
    - Budget: `GET /leads?provider_id=demo-slp-austin&max_price=40`
    - Nearby toddlers: `GET /leads?provider_id=demo-slp-austin&lat=30.27&lng=-97.74&radius_miles=10&max_age=4`
    """
    try:
        location_parts = (lat, lng, radius_miles)
        location = None
        if any(part is not None for part in location_parts):
            if any(part is None for part in location_parts):
                raise HTTPException(
                    status_code=400,
                    detail="Location filter needs lat, lng and radius_miles together"
                )
            location = LocationFilter(center=Coordinates(lat=lat, lng=lng), radius_miles=radius_miles)

        child_age = None
        if min_age is not None or max_age is not None:
            child_age = ChildAgeRange(
                min_age=min_age if min_age is not None else 0,
                max_age=max_age if max_age is not None else float("inf"),
            )

        filters = LeadFilters(
            max_price=max_price,
            location=location,
            child_age=child_age,
            diagnoses=tuple(diagnosis) if diagnosis else None,
            urgencies=tuple(urgency) if urgency else None,
        )

        result = marketplace.get_available_leads(provider_id, filters)
        return AvailableLeadsResponse.model_validate(result, from_attributes=True)

    except HTTPException:
        raise
    except MarketplaceError as e:
        raise http_error(e)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to query leads: {str(e)}"
        )


@router.post(
    "/leads/expire",
    response_model=ExpireResponse,
    summary="Expire Stale Leads",
    description="Mark open leads past their expiry time as expired.",
)
def expire_stale_leads(marketplace: LeadMarketplace = Depends(get_marketplace)):
    try:
        as_of = marketplace.now()
        return ExpireResponse(expired=marketplace.expire_stale_leads(as_of), as_of=as_of)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to expire leads: {str(e)}"
        )


@router.get(
    "/leads/{lead_id}",
    response_model=LeadPreviewResponse,
    summary="Preview Lead",
    description="Lead preview without contact details. Counts as a view.",
    responses={404: {"model": ErrorResponse}},
)
def preview_lead(
    lead_id: UUID,
    provider_id: str = Query(..., description="Viewing provider"),
    marketplace: LeadMarketplace = Depends(get_marketplace),
):
    try:
        preview = marketplace.get_lead_preview(provider_id, lead_id)
        return LeadPreviewResponse.model_validate(preview, from_attributes=True)
    except MarketplaceError as e:
        raise http_error(e)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to load lead: {str(e)}"
        )


@router.post(
    "/leads/{lead_id}/interest",
    response_model=InterestResponse,
    summary="Express Interest",
    responses={404: {"model": ErrorResponse}},
)
def express_interest(
    lead_id: UUID,
    request: ProviderRequest,
    marketplace: LeadMarketplace = Depends(get_marketplace),
):
    try:
        lead = marketplace.express_interest(request.provider_id, lead_id)
        return InterestResponse(lead_id=lead.lead_id, interested_providers=list(lead.interested_providers))
    except MarketplaceError as e:
        raise http_error(e)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to record interest: {str(e)}"
        )
