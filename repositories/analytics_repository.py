"""
Analytics counter repository (persistence).

Stores the single MarketplaceCounters row. Callers perform read-modify-write
under the marketplace's analytics lock, which makes the marketplace process
the one logical owner of these figures.
"""

from __future__ import annotations

import threading
from decimal import Decimal
from typing import Any, Protocol

from domain.analytics import MarketplaceCounters

_COUNTERS_TABLE: str = "marketplace_counters"
_COUNTERS_ROW_ID: int = 1


class AnalyticsRepository(Protocol):
    def load_counters(self) -> MarketplaceCounters: ...

    def save_counters(self, counters: MarketplaceCounters) -> None: ...


class InMemoryAnalyticsRepository:
    def __init__(self, counters: MarketplaceCounters | None = None) -> None:
        self._counters = counters or MarketplaceCounters()
        self._lock = threading.Lock()

    def load_counters(self) -> MarketplaceCounters:
        with self._lock:
            return self._counters

    def save_counters(self, counters: MarketplaceCounters) -> None:
        with self._lock:
            self._counters = counters


class SupabaseAnalyticsRepository:
    """Counters persisted as a single row in `marketplace_counters`."""

    def __init__(self, client: Any = None) -> None:
        if client is None:
            from repositories.client import get_supabase

            client = get_supabase()
        self._client = client

    def load_counters(self) -> MarketplaceCounters:
        response = (
            self._client.table(_COUNTERS_TABLE)
            .select("*")
            .eq("id", _COUNTERS_ROW_ID)
            .limit(1)
            .execute()
        )
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to load marketplace counters: {error}")

        rows = getattr(response, "data", None) or []
        if not rows:
            return MarketplaceCounters()

        row = rows[0]
        return MarketplaceCounters(
            total_leads=int(row.get("total_leads", 0)),
            active_leads=int(row.get("active_leads", 0)),
            sold_leads=int(row.get("sold_leads", 0)),
            total_revenue=Decimal(str(row.get("total_revenue", "0.00"))),
            listed_value_total=Decimal(str(row.get("listed_value_total", "0"))),
            conversion_rate=float(row.get("conversion_rate", 0.0)),
        )

    def save_counters(self, counters: MarketplaceCounters) -> None:
        payload: dict[str, Any] = {
            "id": _COUNTERS_ROW_ID,
            "total_leads": counters.total_leads,
            "active_leads": counters.active_leads,
            "sold_leads": counters.sold_leads,
            "total_revenue": str(counters.total_revenue),
            "listed_value_total": str(counters.listed_value_total),
            "avg_lead_price": str(counters.avg_lead_price),
            "conversion_rate": counters.conversion_rate,
        }
        response = self._client.table(_COUNTERS_TABLE).upsert(payload).execute()
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to save marketplace counters: {error}")


__all__ = [
    "AnalyticsRepository",
    "InMemoryAnalyticsRepository",
    "SupabaseAnalyticsRepository",
]
