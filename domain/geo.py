"""
Domain: geographic helpers.

Distances are great-circle (haversine) distances in statute miles on
decimal-degree coordinates. No geocoding happens here; coordinates arrive
already resolved from the usage signal or the provider directory.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

EARTH_RADIUS_MILES = 3959.0


@dataclass(frozen=True, slots=True)
class Coordinates:
    """A point on the globe in decimal degrees."""

    lat: float
    lng: float

    def __post_init__(self) -> None:
        if not (math.isfinite(self.lat) and math.isfinite(self.lng)):
            raise ValueError("coordinates must be finite numbers")
        if not -90.0 <= self.lat <= 90.0:
            raise ValueError(f"lat must be within [-90, 90], got {self.lat}")
        if not -180.0 <= self.lng <= 180.0:
            raise ValueError(f"lng must be within [-180, 180], got {self.lng}")


def haversine_miles(a: Coordinates, b: Coordinates) -> float:
    """
    Great-circle distance between two points in miles.

    Symmetric in its arguments and exactly 0.0 for identical points.
    """

    d_lat = math.radians(b.lat - a.lat)
    d_lng = math.radians(b.lng - a.lng)
    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(a.lat)) * math.cos(math.radians(b.lat)) * math.sin(d_lng / 2) ** 2
    )
    # min() guards against h drifting just above 1.0 for antipodal points.
    return 2 * EARTH_RADIUS_MILES * math.asin(min(1.0, math.sqrt(h)))
