"""
Purchases API Endpoints.

Endpoints for buying leads and for tracking what happens after the sale.
"""

from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from api.dependencies import get_marketplace, http_error, status_for_kind
from api.models import (
    ErrorResponse,
    FeedbackRequest,
    PurchaseRecordResponse,
    PurchaseRequest,
    PurchaseResponse,
    TrackConversionRequest,
)
from domain.errors import MarketplaceError
from services.marketplace_service import LeadMarketplace

router = APIRouter()


@router.post(
    "/leads/{lead_id}/purchase",
    response_model=PurchaseResponse,
    summary="Purchase Lead",
    description="Buy a lead. At most 3 providers may buy the same lead.",
    responses={
        402: {"model": PurchaseResponse, "description": "Payment declined or timed out"},
        404: {"model": PurchaseResponse, "description": "Unknown lead or provider"},
        409: {"model": PurchaseResponse, "description": "Lead unavailable or already purchased"},
    },
)
def purchase_lead(
    lead_id: UUID,
    request: PurchaseRequest,
    marketplace: LeadMarketplace = Depends(get_marketplace),
):
    """
    Purchase a lead for a provider.

    **Process:**
    1. Lead must exist, be active and not expired
    2. The provider must not already own it
    3. Price is the listed price discounted by subscription tier
    4. Payment is charged before anything changes
    5. The provider receives the parent's contact details

    **Success response:**
    ```json
    {
      "success": true,
      "price": "60",
      "purchase_id": "123e4567-e89b-12d3-a456-426614174003",
      "contact_info": {"parent_name": "AAC App Parent", "email": "parent@example.com",
                       "phone": null, "best_time_to_call": "afternoon"},
      "lead_details": {"child_age": 3, "diagnosis": "autism", "urgency": "immediate",
                       "location": "Unknown, TX", "special_needs": [], "budget": "Has insurance"}
    }
    ```

    **Failure response (409):**
    ```json
    {"success": false, "price": "0", "error": "Lead no longer available", "error_kind": "lead_unavailable"}
    ```
    """
    try:
        result = marketplace.purchase_lead(request.provider_id, lead_id, request.payment_method)
        response = PurchaseResponse.model_validate(result, from_attributes=True)

        if result.success:
            return response

        return JSONResponse(
            status_code=status_for_kind(result.error_kind or ""),
            content=response.model_dump(mode="json"),
        )

    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to execute purchase: {str(e)}"
        )


@router.post(
    "/purchases/{purchase_id}/track",
    response_model=PurchaseRecordResponse,
    summary="Track Conversion",
    description="Record a funnel milestone: contacted, response, appointment or converted.",
    responses={404: {"model": ErrorResponse}},
)
def track_conversion(
    purchase_id: UUID,
    request: TrackConversionRequest,
    marketplace: LeadMarketplace = Depends(get_marketplace),
):
    """
    Record a conversion milestone. Repeating a milestone keeps the first timestamp.
    """
    try:
        purchase = marketplace.track_conversion(purchase_id, request.milestone)
        return PurchaseRecordResponse.model_validate(purchase, from_attributes=True)
    except MarketplaceError as e:
        raise http_error(e)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to track conversion: {str(e)}"
        )


@router.post(
    "/purchases/{purchase_id}/feedback",
    response_model=PurchaseRecordResponse,
    summary="Rate Lead Quality",
    responses={404: {"model": ErrorResponse}},
)
def record_feedback(
    purchase_id: UUID,
    request: FeedbackRequest,
    marketplace: LeadMarketplace = Depends(get_marketplace),
):
    try:
        purchase = marketplace.record_feedback(purchase_id, request.score)
        return PurchaseRecordResponse.model_validate(purchase, from_attributes=True)
    except MarketplaceError as e:
        raise http_error(e)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to record feedback: {str(e)}"
        )


@router.get(
    "/purchases/{purchase_id}",
    response_model=PurchaseRecordResponse,
    summary="Get Purchase",
    responses={404: {"model": ErrorResponse}},
)
def get_purchase(purchase_id: UUID, marketplace: LeadMarketplace = Depends(get_marketplace)):
    try:
        purchase = marketplace.get_purchase(purchase_id)
        return PurchaseRecordResponse.model_validate(purchase, from_attributes=True)
    except MarketplaceError as e:
        raise http_error(e)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to load purchase: {str(e)}"
        )


@router.get(
    "/providers/{provider_id}/purchases",
    response_model=List[PurchaseRecordResponse],
    summary="List Provider Purchases",
)
def list_provider_purchases(provider_id: str, marketplace: LeadMarketplace = Depends(get_marketplace)):
    try:
        return [
            PurchaseRecordResponse.model_validate(p, from_attributes=True)
            for p in marketplace.list_provider_purchases(provider_id)
        ]
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to list purchases: {str(e)}"
        )
