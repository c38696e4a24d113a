"""
Analytics API Endpoints.

Live marketplace counters plus the most recent batch rollups.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from api.dependencies import get_marketplace
from api.models import AnalyticsResponse, RollupsResponse
from services.marketplace_service import LeadMarketplace

router = APIRouter()


@router.get(
    "/analytics",
    response_model=AnalyticsResponse,
    summary="Marketplace Analytics",
    description="Totals, revenue, average price and conversion rate; rollups once refreshed.",
)
def get_marketplace_analytics(marketplace: LeadMarketplace = Depends(get_marketplace)):
    """
    Marketplace overview.

    `rollups` is null until `POST /analytics/refresh` has run at least once.
    """
    try:
        return AnalyticsResponse.model_validate(marketplace.get_marketplace_analytics(), from_attributes=True)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to load analytics: {str(e)}"
        )


@router.post(
    "/analytics/refresh",
    response_model=RollupsResponse,
    summary="Refresh Rollups",
    description="Recompute weekly trends, demographics and the provider leaderboard.",
)
def refresh_rollups(
    weeks: Optional[int] = Query(None, ge=1, le=52, description="Trend window in weeks (default 7)"),
    marketplace: LeadMarketplace = Depends(get_marketplace),
):
    try:
        if weeks is None:
            rollups = marketplace.refresh_rollups()
        else:
            rollups = marketplace.refresh_rollups(weeks=weeks)
        return RollupsResponse.model_validate(rollups, from_attributes=True)
    except Exception as e:
        raise HTTPException(
            status_code=500,
            detail=f"Failed to refresh rollups: {str(e)}"
        )
