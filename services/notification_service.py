"""
Parent notification collaborator.

After a sale the parent is told that a provider will be in touch. Delivery is
fire-and-forget: NotificationDispatcher hands the call to a small thread pool
and returns immediately. A failing notifier is logged and otherwise ignored;
it can never block or undo a purchase.
"""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Optional, Protocol

from domain.lead import Lead
from domain.provider import ProviderProfile

logger = logging.getLogger(__name__)


class ParentNotifier(Protocol):
    def notify_parent_of_provider_contact(self, lead: Lead, provider: ProviderProfile) -> None: ...


class LoggingParentNotifier:
    """Default notifier: records the notification in the application log."""

    def notify_parent_of_provider_contact(self, lead: Lead, provider: ProviderProfile) -> None:
        logger.info(
            "Notifying parent of upcoming provider contact",
            extra={
                "lead_id": str(lead.lead_id),
                "parent_email": lead.parent.email,
                "provider_id": provider.provider_id,
            },
        )


class NotificationDispatcher:
    def __init__(self, notifier: ParentNotifier, max_workers: int = 2) -> None:
        self._notifier = notifier
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="parent-notify")

    def dispatch(self, lead: Lead, provider: ProviderProfile) -> Optional[Future]:
        """Schedule a notification; never raises for notifier failures."""

        try:
            future = self._executor.submit(self._notifier.notify_parent_of_provider_contact, lead, provider)
        except RuntimeError as e:
            # Executor already shut down (application stopping).
            logger.warning(
                "Parent notification not scheduled",
                extra={"lead_id": str(lead.lead_id), "error": str(e)},
            )
            return None
        future.add_done_callback(self._log_failure)
        return future

    @staticmethod
    def _log_failure(future: Future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.warning(
                "Parent notification failed",
                extra={"error": repr(error)},
            )

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


__all__ = ["ParentNotifier", "LoggingParentNotifier", "NotificationDispatcher"]
