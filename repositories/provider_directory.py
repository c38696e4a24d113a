"""
Provider directory (read-only collaborator).

The therapist directory owns provider profiles; the marketplace only reads
them through the ProviderDirectory protocol:
- get_provider: profile fetch for pricing and match scoring.
- find_candidates: providers accepting leads whose specialties intersect the
  given set and whose service area covers the given point.

Ranking of candidates is the matching service's job, not the directory's.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol

from domain.geo import Coordinates
from domain.provider import ProviderProfile, SubscriptionTier

_PROVIDERS_TABLE: str = "therapist_profiles"


class ProviderDirectory(Protocol):
    def get_provider(self, provider_id: str) -> Optional[ProviderProfile]: ...

    def find_candidates(self, specialties: Iterable[str], location: Coordinates) -> List[ProviderProfile]: ...


def shares_specialty(profile: ProviderProfile, specialties: Iterable[str]) -> bool:
    """Case-insensitive intersection test between a profile and a specialty set."""

    wanted = {s.casefold() for s in specialties}
    return any(s.casefold() in wanted for s in profile.specialties)


class InMemoryProviderDirectory:
    """Directory over a fixed set of profiles (demo data and tests)."""

    def __init__(self, profiles: Iterable[ProviderProfile] = ()) -> None:
        self._profiles: Dict[str, ProviderProfile] = {p.provider_id: p for p in profiles}

    def add(self, profile: ProviderProfile) -> None:
        self._profiles[profile.provider_id] = profile

    def get_provider(self, provider_id: str) -> Optional[ProviderProfile]:
        return self._profiles.get(provider_id)

    def find_candidates(self, specialties: Iterable[str], location: Coordinates) -> List[ProviderProfile]:
        specialties = list(specialties)
        return [
            profile
            for profile in self._profiles.values()
            if profile.accepts_leads
            and shares_specialty(profile, specialties)
            and profile.serves(location)
        ]


def _row_to_profile(row: Mapping[str, Any]) -> ProviderProfile:
    return ProviderProfile(
        provider_id=str(row["provider_id"]),
        subscription_tier=SubscriptionTier.parse(row.get("subscription_tier")),
        specialties=tuple(row.get("specialties") or ()),
        location=Coordinates(lat=float(row["latitude"]), lng=float(row["longitude"])),
        experience_years=float(row.get("experience_years") or 0),
        rating=float(row.get("average_rating") or 0.0),
        service_radius_miles=float(row.get("service_radius_miles") or 25),
        accepts_leads=bool(row.get("accepts_leads", True)),
    )


class SupabaseProviderDirectory:
    """Reads provider profiles from the directory's `therapist_profiles` table."""

    def __init__(self, client: Any = None) -> None:
        if client is None:
            from repositories.client import get_supabase

            client = get_supabase()
        self._client = client

    def get_provider(self, provider_id: str) -> Optional[ProviderProfile]:
        response = (
            self._client.table(_PROVIDERS_TABLE)
            .select("*")
            .eq("provider_id", provider_id)
            .limit(1)
            .execute()
        )
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to fetch provider: {error}")

        rows = getattr(response, "data", None) or []
        if not rows:
            return None
        return _row_to_profile(rows[0])

    def find_candidates(self, specialties: Iterable[str], location: Coordinates) -> List[ProviderProfile]:
        specialties = list(specialties)
        response = (
            self._client.table(_PROVIDERS_TABLE)
            .select("*")
            .eq("accepts_leads", True)
            .ov("specialties", specialties)
            .execute()
        )
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to query provider directory: {error}")

        rows = getattr(response, "data", None) or []
        # Service-area coverage needs haversine, so it is checked here rather than in SQL.
        profiles = [_row_to_profile(row) for row in rows]
        return [p for p in profiles if p.serves(location)]


__all__ = [
    "ProviderDirectory",
    "InMemoryProviderDirectory",
    "SupabaseProviderDirectory",
    "shares_specialty",
]
