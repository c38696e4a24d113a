"""
Purchase service for executing lead purchases.

Handles:
- Precondition checks (lead exists, open for sale, not already bought)
- Purchase-time pricing by subscription tier
- Payment with a bounded wait, inside the per-lead critical section
- Atomic purchaser append (cap and duplicate checks enforced by the repository)
- Immutable purchase snapshot, sale counters, parent notification

Business failures never raise: they come back as PurchaseResult(success=False)
carrying the error message and its kind.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Optional
from uuid import UUID, uuid4

from domain.errors import (
    AlreadyPurchasedError,
    LeadUnavailableError,
    MarketplaceError,
    NotFoundError,
    PaymentError,
)
from domain.lead import Lead, LeadStatus
from domain.purchase import ContactInfo, LeadDetails, Purchase
from domain.time import utc_now
from repositories.lead_repository import LeadRepository
from repositories.provider_directory import ProviderDirectory
from repositories.purchase_repository import PurchaseRepository
from services.analytics_service import AnalyticsService
from services.locks import KeyedLocks
from services.notification_service import NotificationDispatcher
from services.payment_gateway import PaymentGateway
from services.pricing_service import calculate_purchase_price

logger = logging.getLogger(__name__)

DEFAULT_PAYMENT_TIMEOUT_SECONDS = 10.0


@dataclass(frozen=True, slots=True)
class PurchaseResult:
    """
    Result of a purchase attempt.

    success: True if the provider now owns the lead
    price: amount charged (0 when rejected before pricing)
    error / error_kind: message and MarketplaceError.kind when success=False
    """

    success: bool
    price: Decimal
    purchase_id: Optional[UUID] = None
    contact_info: Optional[ContactInfo] = None
    lead_details: Optional[LeadDetails] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None

    @staticmethod
    def failure(error: MarketplaceError, price: Decimal = Decimal("0")) -> "PurchaseResult":
        return PurchaseResult(success=False, price=price, error=error.message, error_kind=error.kind)


class PurchaseService:
    def __init__(
        self,
        *,
        leads: LeadRepository,
        purchases: PurchaseRepository,
        directory: ProviderDirectory,
        gateway: PaymentGateway,
        analytics: AnalyticsService,
        dispatcher: NotificationDispatcher,
        lead_locks: KeyedLocks,
        clock: Callable[[], datetime] = utc_now,
        payment_timeout: float = DEFAULT_PAYMENT_TIMEOUT_SECONDS,
        payment_executor: Optional[ThreadPoolExecutor] = None,
    ) -> None:
        if payment_timeout <= 0:
            raise ValueError("payment_timeout must be > 0")

        self._leads = leads
        self._purchases = purchases
        self._directory = directory
        self._gateway = gateway
        self._analytics = analytics
        self._dispatcher = dispatcher
        self._lead_locks = lead_locks
        self._clock = clock
        self._payment_timeout = payment_timeout
        self._owns_executor = payment_executor is None
        self._payments = payment_executor or ThreadPoolExecutor(thread_name_prefix="lead-payment")

    def purchase_lead(self, provider_id: str, lead_id: UUID, payment_method: str) -> PurchaseResult:
        """
        Execute a lead purchase for `provider_id`.

        Process (all under the lead's lock):
        1. Lead exists, else NotFoundError
        2. Lead is ACTIVE and not expired, else LeadUnavailableError
        3. Provider has not bought it yet, else AlreadyPurchasedError
        4. Price by the provider's subscription tier
        5. Charge, waiting at most payment_timeout seconds
        6. Append purchaser, store the purchase snapshot, count the sale

        Nothing is mutated unless the charge is approved. A charge that cannot
        be turned into a sale (lost race, late approval) is refunded.

        Example:
            result = service.purchase_lead("prov-1", lead.lead_id, "card")
            if result.success:
                print(result.contact_info.email)
            else:
                print(result.error_kind, result.error)
        """

        with self._lead_locks.for_key(lead_id):
            lead = self._leads.get(lead_id)
            rejection = self._check_preconditions(lead, provider_id)
            if rejection is not None:
                return self._rejected(rejection, provider_id, lead_id)

            provider = self._directory.get_provider(provider_id)
            if provider is None:
                return self._rejected(NotFoundError("Provider not found"), provider_id, lead_id)

            price = calculate_purchase_price(lead, provider.subscription_tier)

            try:
                self._charge(provider_id, price, payment_method)
            except PaymentError as e:
                logger.warning(
                    "Lead payment failed",
                    extra={
                        "provider_id": provider_id,
                        "lead_id": str(lead_id),
                        "price": str(price),
                        "timed_out": e.timed_out,
                    },
                )
                return PurchaseResult.failure(e, price)

            try:
                updated = self._leads.append_purchaser(lead_id, provider_id)
            except (NotFoundError, LeadUnavailableError, AlreadyPurchasedError) as e:
                # Another writer got there first (shared store); give the money back.
                self._refund(provider_id, price, payment_method)
                return self._rejected(e, provider_id, lead_id, price)

            purchase = Purchase.snapshot(
                purchase_id=uuid4(),
                provider_id=provider_id,
                lead=updated,
                purchased_at=self._clock(),
                price=price,
                payment_method=payment_method,
            )
            try:
                self._purchases.insert(purchase)
            except Exception:
                self._leads.remove_purchaser(lead_id, provider_id)
                self._refund(provider_id, price, payment_method)
                raise

            sold_out = updated.status == LeadStatus.PURCHASED
            self._analytics.record_sale(price, sold_out=sold_out)

        logger.info(
            "Lead purchased",
            extra={
                "provider_id": provider_id,
                "lead_id": str(lead_id),
                "purchase_id": str(purchase.purchase_id),
                "price": str(price),
                "purchasers": len(updated.purchased_by),
            },
        )
        if sold_out:
            logger.info("Lead sold out", extra={"lead_id": str(lead_id)})

        self._dispatcher.dispatch(updated, provider)

        return PurchaseResult(
            success=True,
            price=price,
            purchase_id=purchase.purchase_id,
            contact_info=purchase.contact_info,
            lead_details=purchase.lead_details,
        )

    def _check_preconditions(self, lead: Optional[Lead], provider_id: str) -> Optional[MarketplaceError]:
        if lead is None:
            return NotFoundError("Lead not found")
        if not lead.is_available(self._clock()):
            return LeadUnavailableError("Lead no longer available")
        if lead.has_purchaser(provider_id):
            return AlreadyPurchasedError("Already purchased this lead")
        return None

    def _rejected(
        self,
        error: MarketplaceError,
        provider_id: str,
        lead_id: UUID,
        price: Decimal = Decimal("0"),
    ) -> PurchaseResult:
        logger.warning(
            "Lead purchase rejected",
            extra={
                "provider_id": provider_id,
                "lead_id": str(lead_id),
                "error_kind": error.kind,
                "error": error.message,
            },
        )
        return PurchaseResult.failure(error, price)

    def _charge(self, provider_id: str, amount: Decimal, payment_method: str) -> None:
        """Raises PaymentError on decline, gateway error or timeout."""

        future = self._payments.submit(self._gateway.process_payment, provider_id, amount, payment_method)
        try:
            approved = future.result(timeout=self._payment_timeout)
        except FutureTimeoutError:
            future.add_done_callback(
                lambda f: self._refund_late_approval(f, provider_id, amount, payment_method)
            )
            raise PaymentError("Payment timed out", timed_out=True)
        except Exception as e:
            raise PaymentError("Payment failed", cause=e) from e

        if not approved:
            raise PaymentError("Payment failed")

    def _refund_late_approval(self, future: Future, provider_id: str, amount: Decimal, payment_method: str) -> None:
        if future.cancelled() or future.exception() is not None or not future.result():
            return
        logger.warning(
            "Payment approved after timeout; refunding",
            extra={"provider_id": provider_id, "amount": str(amount)},
        )
        self._refund(provider_id, amount, payment_method)

    def _refund(self, provider_id: str, amount: Decimal, payment_method: str) -> None:
        try:
            refunded = self._gateway.refund_payment(provider_id, amount, payment_method)
        except Exception as e:
            logger.error(
                "Refund failed",
                extra={"provider_id": provider_id, "amount": str(amount), "error": str(e)},
            )
            return
        if not refunded:
            logger.error("Refund declined", extra={"provider_id": provider_id, "amount": str(amount)})

    def close(self) -> None:
        if self._owns_executor:
            self._payments.shutdown(wait=False)


__all__ = ["DEFAULT_PAYMENT_TIMEOUT_SECONDS", "PurchaseResult", "PurchaseService"]
