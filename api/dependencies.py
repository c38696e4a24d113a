"""
Dependency wiring for the API.

The marketplace instance is built once per process from the environment and
handed to routes through FastAPI's Depends(). Tests replace it with
app.dependency_overrides[get_marketplace].
"""

from functools import lru_cache

from fastapi import HTTPException

from domain.errors import MarketplaceError
from services.marketplace_service import LeadMarketplace

STATUS_BY_KIND = {
    "validation_error": 422,
    "not_found": 404,
    "lead_unavailable": 409,
    "already_purchased": 409,
    "payment_error": 402,
}


@lru_cache(maxsize=1)
def get_marketplace() -> LeadMarketplace:
    return LeadMarketplace.from_config()


def status_for_kind(kind: str) -> int:
    return STATUS_BY_KIND.get(kind, 400)


def http_error(error: MarketplaceError) -> HTTPException:
    """Translate a marketplace error into an HTTPException with a structured detail."""

    status_code = status_for_kind(error.kind)
    return HTTPException(
        status_code=status_code,
        detail={
            "error": error.message,
            "kind": error.kind,
            "problems": list(getattr(error, "problems", [])),
            "status_code": status_code,
        },
    )
