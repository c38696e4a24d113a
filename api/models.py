"""
API Request and Response Models.

Pydantic models for validating API requests and serializing responses.
Response models read straight from the domain dataclasses (from_attributes).
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from domain.purchase import Milestone


# ============================================================================
# Capture Models
# ============================================================================

class UsageLocation(BaseModel):
    lat: float
    lng: float
    zipCode: str


class UsageEventRequest(BaseModel):
    """Usage event sent by the AAC app (camelCase, as emitted by the app)."""
    userId: str
    childAge: float
    diagnosisFromUsage: str
    usageDuration: float = Field(..., description="Days of app usage")
    location: UsageLocation
    parentEmail: str
    appEngagement: float = Field(..., description="Engagement score in [0, 100]")
    parentName: Optional[str] = None
    parentPhone: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "userId": "aac-user-1842",
                "childAge": 3,
                "diagnosisFromUsage": "autism",
                "usageDuration": 35,
                "location": {"lat": 30.2672, "lng": -97.7431, "zipCode": "78701"},
                "parentEmail": "parent@example.com",
                "appEngagement": 85
            }
        }


class CaptureResponse(BaseModel):
    lead_id: UUID
    estimated_value: Decimal
    recommended_price: Decimal
    lead_score: int
    matched_providers: int

    class Config:
        from_attributes = True
        json_schema_extra = {
            "example": {
                "lead_id": "123e4567-e89b-12d3-a456-426614174000",
                "estimated_value": "225",
                "recommended_price": "75",
                "lead_score": 100,
                "matched_providers": 3
            }
        }


# ============================================================================
# Browse Models
# ============================================================================

class LeadPreviewResponse(BaseModel):
    """Lead as seen before purchase: no contact details."""
    child_age: float
    diagnosis: str
    urgency: str
    location: str
    price: Decimal
    lead_score: int
    special_requests: List[str]

    class Config:
        from_attributes = True
        json_schema_extra = {
            "example": {
                "child_age": 3,
                "diagnosis": "autism",
                "urgency": "immediate",
                "location": "Unknown, TX",
                "price": "75",
                "lead_score": 100,
                "special_requests": ["AAC-experienced therapist preferred"]
            }
        }


class RankedLeadResponse(BaseModel):
    lead_id: UUID
    preview: LeadPreviewResponse
    match_score: int
    estimated_roi: float
    ranking_score: float

    class Config:
        from_attributes = True


class AvailableLeadsResponse(BaseModel):
    leads: List[RankedLeadResponse]
    total_available: int
    avg_price: Decimal

    class Config:
        from_attributes = True
        json_schema_extra = {
            "example": {
                "leads": [],
                "total_available": 12,
                "avg_price": "58"
            }
        }


class ProviderRequest(BaseModel):
    provider_id: str = Field(..., min_length=1)


class InterestResponse(BaseModel):
    lead_id: UUID
    interested_providers: List[str]

    class Config:
        from_attributes = True


class ExpireResponse(BaseModel):
    expired: int
    as_of: datetime


# ============================================================================
# Purchase Models
# ============================================================================

class PurchaseRequest(BaseModel):
    """Request to buy one lead."""
    provider_id: str = Field(..., min_length=1)
    payment_method: str = Field(..., min_length=1)

    class Config:
        json_schema_extra = {
            "example": {
                "provider_id": "demo-slp-austin",
                "payment_method": "card"
            }
        }


class ContactInfoResponse(BaseModel):
    parent_name: str
    email: str
    phone: Optional[str] = None
    best_time_to_call: str

    class Config:
        from_attributes = True


class LeadDetailsResponse(BaseModel):
    child_age: float
    diagnosis: str
    urgency: str
    location: str
    special_needs: List[str]
    budget: str

    class Config:
        from_attributes = True


class PurchaseResponse(BaseModel):
    """Result of a purchase attempt; failures carry error and error_kind."""
    success: bool
    price: Decimal
    purchase_id: Optional[UUID] = None
    contact_info: Optional[ContactInfoResponse] = None
    lead_details: Optional[LeadDetailsResponse] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None

    class Config:
        from_attributes = True
        json_schema_extra = {
            "example": {
                "success": False,
                "price": "0",
                "error": "Lead no longer available",
                "error_kind": "lead_unavailable"
            }
        }


class TrackConversionRequest(BaseModel):
    milestone: Milestone

    class Config:
        json_schema_extra = {"example": {"milestone": "contacted"}}


class FeedbackRequest(BaseModel):
    score: int = Field(..., ge=1, le=5, description="Lead quality rating, 1 (poor) to 5 (excellent)")


class ConversionTrackingResponse(BaseModel):
    contacted: bool
    contact_date: Optional[datetime] = None
    response_received: bool
    response_date: Optional[datetime] = None
    appointment_scheduled: bool
    appointment_date: Optional[datetime] = None
    converted: bool
    conversion_date: Optional[datetime] = None
    feedback_score: Optional[int] = None

    class Config:
        from_attributes = True


class PurchaseRecordResponse(BaseModel):
    purchase_id: UUID
    provider_id: str
    lead_id: UUID
    purchased_at: datetime
    price: Decimal
    payment_method: str
    contact_info: ContactInfoResponse
    lead_details: LeadDetailsResponse
    tracking: ConversionTrackingResponse

    class Config:
        from_attributes = True


# ============================================================================
# Analytics Models
# ============================================================================

class CountersResponse(BaseModel):
    total_leads: int
    active_leads: int
    sold_leads: int
    total_revenue: Decimal
    avg_lead_price: Decimal
    conversion_rate: float

    class Config:
        from_attributes = True
        json_schema_extra = {
            "example": {
                "total_leads": 120,
                "active_leads": 40,
                "sold_leads": 210,
                "total_revenue": "10440",
                "avg_lead_price": "57.25",
                "conversion_rate": 31.4
            }
        }


class TrendResponse(BaseModel):
    week_starts: List[datetime]
    leads_per_week: List[int]
    sales_per_week: List[int]
    revenue_per_week: List[Decimal]
    conversion_trend: List[float]

    class Config:
        from_attributes = True


class ZipCodeStatsResponse(BaseModel):
    zip_code: str
    leads: int
    avg_price: Decimal

    class Config:
        from_attributes = True


class DemographicsResponse(BaseModel):
    age_distribution: Dict[str, int]
    diagnosis_breakdown: Dict[str, int]
    location_heatmap: List[ZipCodeStatsResponse]
    urgency_distribution: Dict[str, int]

    class Config:
        from_attributes = True


class ProviderMetricsResponse(BaseModel):
    provider_id: str
    leads_purchased: int
    leads_per_month: int
    conversion_rate: float
    avg_roi: float
    avg_feedback: Optional[float] = None
    milestones: Dict[str, int]

    class Config:
        from_attributes = True


class RollupsResponse(BaseModel):
    computed_at: datetime
    trends: TrendResponse
    demographics: DemographicsResponse
    top_purchasers: List[ProviderMetricsResponse]
    satisfaction_scores: Dict[str, float]

    class Config:
        from_attributes = True


class AnalyticsResponse(BaseModel):
    overview: CountersResponse
    rollups: Optional[RollupsResponse] = None

    class Config:
        from_attributes = True


# ============================================================================
# Error Models
# ============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    kind: str
    problems: List[str] = []
    status_code: int

    class Config:
        json_schema_extra = {
            "example": {
                "error": "Lead not found",
                "kind": "not_found",
                "problems": [],
                "status_code": 404
            }
        }
