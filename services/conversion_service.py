"""
Conversion tracking.

A purchase moves through contacted -> response -> appointment -> converted.
Each milestone is recorded once; repeating it is a no-op and the first
timestamp wins. Side effects per milestone:

- contacted: the lead's engagement gets a contact attempt and last_contact.
- converted: a sold-out lead becomes CONVERTED and the global conversion rate
  is recomputed over every purchase.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional, Union
from uuid import UUID

from domain.analytics import ProviderMetrics
from domain.errors import NotFoundError
from domain.purchase import Milestone, Purchase
from domain.time import utc_now
from repositories.lead_repository import LeadRepository
from repositories.purchase_repository import PurchaseRepository
from services.analytics_service import AnalyticsService, compute_provider_metrics
from services.locks import KeyedLocks

logger = logging.getLogger(__name__)


def parse_milestone(value: Union[str, Milestone]) -> Milestone:
    if isinstance(value, Milestone):
        return value
    try:
        return Milestone(value.strip().lower())
    except ValueError:
        allowed = ", ".join(m.value for m in Milestone)
        raise ValueError(f"Unknown milestone {value!r} (expected one of: {allowed})") from None


class ConversionService:
    def __init__(
        self,
        *,
        leads: LeadRepository,
        purchases: PurchaseRepository,
        analytics: AnalyticsService,
        lead_locks: KeyedLocks,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._leads = leads
        self._purchases = purchases
        self._analytics = analytics
        self._lead_locks = lead_locks
        self._purchase_locks = KeyedLocks()
        self._clock = clock

    def track_conversion(self, purchase_id: UUID, milestone: Union[str, Milestone]) -> Purchase:
        """
        Record `milestone` on the purchase and return the purchase as stored.

        Raises NotFoundError for an unknown purchase and ValueError for an
        unknown milestone name.
        """

        milestone = parse_milestone(milestone)

        with self._purchase_locks.for_key(purchase_id):
            purchase = self._require_purchase(purchase_id)
            at = self._clock()
            updated = purchase.with_milestone(milestone, at)
            if updated is purchase:
                logger.debug(
                    "Milestone already recorded",
                    extra={"purchase_id": str(purchase_id), "milestone": milestone.value},
                )
                return purchase
            self._purchases.update(updated)

        if milestone == Milestone.CONTACTED:
            self._record_contact(purchase.lead_id, at)
        elif milestone == Milestone.CONVERTED:
            self._record_conversion(purchase.lead_id)

        logger.info(
            "Conversion milestone recorded",
            extra={
                "purchase_id": str(purchase_id),
                "provider_id": purchase.provider_id,
                "lead_id": str(purchase.lead_id),
                "milestone": milestone.value,
            },
        )
        self._log_provider_performance(purchase.provider_id)
        return updated

    def record_feedback(self, purchase_id: UUID, score: int) -> Purchase:
        if isinstance(score, bool) or not isinstance(score, int) or not 1 <= score <= 5:
            raise ValueError(f"feedback score must be an integer within [1, 5], got {score!r}")

        with self._purchase_locks.for_key(purchase_id):
            purchase = self._require_purchase(purchase_id)
            updated = purchase.with_feedback(score)
            if updated is not purchase:
                self._purchases.update(updated)

        logger.info(
            "Lead feedback recorded",
            extra={"purchase_id": str(purchase_id), "score": updated.tracking.feedback_score},
        )
        return updated

    def provider_performance(self, provider_id: str) -> Optional[ProviderMetrics]:
        metrics = compute_provider_metrics(self._purchases.list_purchases(provider_id=provider_id), self._clock())
        return metrics[0] if metrics else None

    def _require_purchase(self, purchase_id: UUID) -> Purchase:
        purchase = self._purchases.get(purchase_id)
        if purchase is None:
            raise NotFoundError("Purchase not found")
        return purchase

    def _record_contact(self, lead_id: UUID, at: datetime) -> None:
        with self._lead_locks.for_key(lead_id):
            lead = self._leads.get(lead_id)
            if lead is not None:
                self._leads.save_engagement(lead.contacted(at))

    def _record_conversion(self, lead_id: UUID) -> None:
        with self._lead_locks.for_key(lead_id):
            lead = self._leads.get(lead_id)
            if lead is not None:
                converted = lead.converted()
                if converted is not lead:
                    self._leads.set_status(lead_id, converted.status, expected=lead.status)
            rate = self._analytics.refresh_conversion_rate()

        logger.info("Conversion rate updated", extra={"conversion_rate": rate})

    def _log_provider_performance(self, provider_id: str) -> None:
        metrics = self.provider_performance(provider_id)
        if metrics is None:
            return
        logger.info(
            "Provider performance",
            extra={
                "provider_id": provider_id,
                "leads_purchased": metrics.leads_purchased,
                "conversion_rate": metrics.conversion_rate,
                "milestones": dict(metrics.milestones),
            },
        )


__all__ = ["parse_milestone", "ConversionService"]
