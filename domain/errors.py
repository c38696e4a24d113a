"""
Domain: marketplace error taxonomy.

Every error carries a stable ``kind`` string so callers (the API layer, UI
clients) can tell "pick another lead" apart from "retry payment" without
parsing messages.

- ValidationError: bad capture input.
- NotFoundError: unknown lead, purchase or provider.
- LeadUnavailableError: lead is inactive, expired or sold out.
- AlreadyPurchasedError: provider already bought this lead.
- PaymentError: gateway declined or timed out.
"""

from __future__ import annotations

from typing import List, Optional, Sequence


class MarketplaceError(Exception):
    """Base class for all marketplace business errors."""

    kind: str = "marketplace_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ValidationError(MarketplaceError):
    """Raised when a usage signal is missing fields or carries malformed values."""

    kind = "validation_error"

    def __init__(self, problems: Sequence[str]) -> None:
        self.problems: List[str] = list(problems)
        super().__init__("Invalid usage signal: " + "; ".join(self.problems))


class NotFoundError(MarketplaceError):
    kind = "not_found"


class LeadUnavailableError(MarketplaceError):
    kind = "lead_unavailable"


class AlreadyPurchasedError(MarketplaceError):
    kind = "already_purchased"


class PaymentError(MarketplaceError):
    """Raised (or reported) when the payment gateway declines or times out."""

    kind = "payment_error"

    def __init__(self, message: str, *, timed_out: bool = False, cause: Optional[BaseException] = None) -> None:
        self.timed_out = timed_out
        self.cause = cause
        super().__init__(message)


__all__ = [
    "MarketplaceError",
    "ValidationError",
    "NotFoundError",
    "LeadUnavailableError",
    "AlreadyPurchasedError",
    "PaymentError",
]
