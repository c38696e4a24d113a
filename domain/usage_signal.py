"""
Domain: AAC app usage signal.

The usage signal is the telemetry event the free AAC app emits for a family.
It is the only input to lead capture. Validation happens here, in full, before
any scoring runs; every problem found is reported at once.

Event shape (keys as emitted by the app):

    {
        "userId": str,
        "childAge": number (years),
        "diagnosisFromUsage": str,
        "usageDuration": number (days),
        "location": {"lat": number, "lng": number, "zipCode": str},
        "parentEmail": str,
        "appEngagement": number in [0, 100],
        "parentName": str (optional),
        "parentPhone": str (optional),
    }
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional

from .errors import ValidationError
from .geo import Coordinates


def normalize_diagnosis(value: str) -> str:
    """Canonical diagnosis key: lower-case, underscores instead of spaces/dashes."""

    return "_".join(value.strip().lower().replace("-", " ").split())


@dataclass(frozen=True, slots=True)
class UsageSignal:
    user_id: str
    child_age: float
    diagnosis: str
    usage_duration_days: float
    coordinates: Coordinates
    zip_code: str
    parent_email: str
    app_engagement: float
    parent_name: Optional[str] = None
    parent_phone: Optional[str] = None

    @staticmethod
    def from_event(data: Mapping[str, Any]) -> "UsageSignal":
        """
        Build a UsageSignal from a raw telemetry event.

        Raises:
            ValidationError: listing every missing or malformed field.
        """

        if not isinstance(data, Mapping):
            raise ValidationError(["usage signal must be an object"])

        problems: List[str] = []

        user_id = _text(data, "userId", problems)
        child_age = _number(data, "childAge", problems, minimum=0)
        diagnosis = _text(data, "diagnosisFromUsage", problems)
        usage_duration = _number(data, "usageDuration", problems, minimum=0)
        app_engagement = _number(data, "appEngagement", problems, minimum=0, maximum=100)

        parent_email = _text(data, "parentEmail", problems)
        if parent_email is not None and not _looks_like_email(parent_email):
            problems.append("parentEmail is not a valid email address")
            parent_email = None

        coordinates: Optional[Coordinates] = None
        zip_code: Optional[str] = None
        location = data.get("location")
        if not isinstance(location, Mapping):
            problems.append("location is required")
        else:
            lat = _number(location, "lat", problems, minimum=-90, maximum=90, prefix="location.")
            lng = _number(location, "lng", problems, minimum=-180, maximum=180, prefix="location.")
            zip_code = _text(location, "zipCode", problems, prefix="location.")
            if lat is not None and lng is not None:
                coordinates = Coordinates(lat=lat, lng=lng)

        parent_name = _optional_text(data, "parentName", problems)
        parent_phone = _optional_text(data, "parentPhone", problems)

        if problems:
            raise ValidationError(problems)

        return UsageSignal(
            user_id=user_id,  # type: ignore[arg-type]
            child_age=child_age,  # type: ignore[arg-type]
            diagnosis=normalize_diagnosis(diagnosis),  # type: ignore[arg-type]
            usage_duration_days=usage_duration,  # type: ignore[arg-type]
            coordinates=coordinates,  # type: ignore[arg-type]
            zip_code=zip_code,  # type: ignore[arg-type]
            parent_email=parent_email,  # type: ignore[arg-type]
            app_engagement=app_engagement,  # type: ignore[arg-type]
            parent_name=parent_name,
            parent_phone=parent_phone,
        )


def _text(data: Mapping[str, Any], key: str, problems: List[str], *, prefix: str = "") -> Optional[str]:
    value = data.get(key)
    if value is None:
        problems.append(f"{prefix}{key} is required")
        return None
    if not isinstance(value, str) or not value.strip():
        problems.append(f"{prefix}{key} must be a non-empty string")
        return None
    return value.strip()


def _optional_text(data: Mapping[str, Any], key: str, problems: List[str]) -> Optional[str]:
    value = data.get(key)
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        problems.append(f"{key} must be a string")
        return None
    return value.strip() or None


def _number(
    data: Mapping[str, Any],
    key: str,
    problems: List[str],
    *,
    minimum: Optional[float] = None,
    maximum: Optional[float] = None,
    prefix: str = "",
) -> Optional[float]:
    value = data.get(key)
    if value is None:
        problems.append(f"{prefix}{key} is required")
        return None
    # bool is an int subclass; a flag is never a valid measurement.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        problems.append(f"{prefix}{key} must be a number")
        return None
    try:
        finite = math.isfinite(value)
    except OverflowError:
        # int too large for a float
        finite = False
    if not finite:
        problems.append(f"{prefix}{key} must be finite")
        return None
    if minimum is not None and value < minimum:
        problems.append(f"{prefix}{key} must be >= {minimum}")
        return None
    if maximum is not None and value > maximum:
        problems.append(f"{prefix}{key} must be <= {maximum}")
        return None
    return value


def _looks_like_email(value: str) -> bool:
    local, at, domain = value.partition("@")
    return bool(local) and bool(at) and "." in domain and not domain.startswith(".")


__all__ = ["UsageSignal", "normalize_diagnosis"]
