"""
Payment gateway collaborator.

The marketplace depends only on the PaymentGateway protocol:

    process_payment(provider_id, amount, payment_method) -> bool

True means the charge went through. A gateway may also raise; the purchase
transaction treats an exception exactly like a decline. refund_payment reverses
a charge whose sale could not be completed (lost race, late approval after a
timeout).

SimulatedPaymentGateway is the built-in implementation: it records charges in
memory and approves everything except payment methods listed as declined.
No real card processing happens in this project.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, List, Protocol

logger = logging.getLogger(__name__)


class PaymentGateway(Protocol):
    def process_payment(self, provider_id: str, amount: Decimal, payment_method: str) -> bool: ...

    def refund_payment(self, provider_id: str, amount: Decimal, payment_method: str) -> bool: ...


@dataclass(frozen=True, slots=True)
class ChargeRecord:
    provider_id: str
    amount: Decimal
    payment_method: str
    approved: bool
    charged_at: datetime
    refunded: bool = False


class SimulatedPaymentGateway:
    """Approves every charge unless the payment method is in `declined_methods`."""

    def __init__(self, declined_methods: Iterable[str] = ()) -> None:
        self._declined = frozenset(declined_methods)
        self._charges: List[ChargeRecord] = []
        self._lock = threading.Lock()

    @property
    def charges(self) -> List[ChargeRecord]:
        with self._lock:
            return list(self._charges)

    def process_payment(self, provider_id: str, amount: Decimal, payment_method: str) -> bool:
        approved = payment_method not in self._declined
        with self._lock:
            self._charges.append(ChargeRecord(
                provider_id=provider_id,
                amount=amount,
                payment_method=payment_method,
                approved=approved,
                charged_at=datetime.now(timezone.utc),
            ))

        logger.info(
            "Processed simulated lead payment",
            extra={
                "provider_id": provider_id,
                "amount": str(amount),
                "payment_method": payment_method,
                "approved": approved,
            },
        )
        return approved

    def refund_payment(self, provider_id: str, amount: Decimal, payment_method: str) -> bool:
        with self._lock:
            self._charges.append(ChargeRecord(
                provider_id=provider_id,
                amount=-amount,
                payment_method=payment_method,
                approved=True,
                charged_at=datetime.now(timezone.utc),
                refunded=True,
            ))

        logger.info(
            "Refunded simulated lead payment",
            extra={"provider_id": provider_id, "amount": str(amount), "payment_method": payment_method},
        )
        return True


__all__ = ["PaymentGateway", "ChargeRecord", "SimulatedPaymentGateway"]
