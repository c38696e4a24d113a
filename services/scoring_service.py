"""
Lead scoring service.

Turns a validated UsageSignal into lead quality figures. All functions are
pure; thresholds are strict (">") exactly as listed below.

Lead score (base 50, clamped to [0, 100]):
- usage duration:  > 30 days +20 | > 7 days +15 | > 1 day +10
- app engagement:  > 80 +25 | > 60 +20 | > 40 +15
- child age:       < 5 +15 | < 8 +10
- diagnosis:       autism, apraxia or cerebral_palsy +20
"""

from __future__ import annotations

import math
from typing import List, Tuple

from domain.lead import LeadScoring, Severity, Urgency
from domain.usage_signal import UsageSignal, normalize_diagnosis

BASE_SCORE = 50
HIGH_VALUE_DIAGNOSES = frozenset({"autism", "apraxia", "cerebral_palsy"})


def _require_finite(name: str, value: float) -> None:
    if not math.isfinite(value):
        raise ValueError(f"{name} must be a finite number, got {value!r}")


def calculate_lead_score(signal: UsageSignal) -> int:
    """
    Lead score in [0, 100] from usage, engagement, age and diagnosis.

    Raises:
        ValueError: if any numeric input is not finite.
    """

    _require_finite("usage_duration_days", signal.usage_duration_days)
    _require_finite("app_engagement", signal.app_engagement)
    _require_finite("child_age", signal.child_age)

    score = BASE_SCORE

    duration = signal.usage_duration_days
    if duration > 30:
        score += 20
    elif duration > 7:
        score += 15
    elif duration > 1:
        score += 10

    engagement = signal.app_engagement
    if engagement > 80:
        score += 25
    elif engagement > 60:
        score += 20
    elif engagement > 40:
        score += 15

    # Early intervention premium
    if signal.child_age < 5:
        score += 15
    elif signal.child_age < 8:
        score += 10

    if normalize_diagnosis(signal.diagnosis) in HIGH_VALUE_DIAGNOSES:
        score += 20

    return max(0, min(100, score))


def infer_severity(app_engagement: float) -> Severity:
    _require_finite("app_engagement", app_engagement)
    if app_engagement > 80:
        return Severity.SEVERE
    if app_engagement > 60:
        return Severity.MODERATE
    if app_engagement > 40:
        return Severity.MILD
    return Severity.UNKNOWN


def infer_urgency(usage_duration_days: float) -> Urgency:
    _require_finite("usage_duration_days", usage_duration_days)
    if usage_duration_days > 30:
        return Urgency.IMMEDIATE
    if usage_duration_days > 14:
        return Urgency.WITHIN_WEEK
    if usage_duration_days > 7:
        return Urgency.WITHIN_MONTH
    return Urgency.EXPLORING


def calculate_urgency_score(usage_duration_days: float) -> int:
    _require_finite("usage_duration_days", usage_duration_days)
    if usage_duration_days > 30:
        return 90
    if usage_duration_days > 14:
        return 75
    if usage_duration_days > 7:
        return 60
    return 40


def calculate_conversion_probability(lead_score: int, usage_duration_days: float) -> float:
    """
    min(1, lead_score/100 * 0.6 + usage bonus), where the usage bonus is
    0.3 above 14 days, 0.2 above 7 days, otherwise 0.
    """

    _require_finite("usage_duration_days", usage_duration_days)
    probability = lead_score / 100 * 0.6

    # Sustained AAC usage signals a serious need
    if usage_duration_days > 14:
        probability += 0.3
    elif usage_duration_days > 7:
        probability += 0.2

    return min(1.0, probability)


def assess_communication_level(app_engagement: float) -> str:
    if app_engagement > 80:
        return "Non-verbal, high AAC usage"
    if app_engagement > 60:
        return "Limited verbal, regular AAC use"
    if app_engagement > 40:
        return "Some verbal, occasional AAC use"
    return "Communication assessment needed"


def suggest_goals(signal: UsageSignal) -> Tuple[str, ...]:
    goals: List[str] = ["Increase communication frequency"]

    if signal.child_age < 5:
        goals.extend(["Early intervention support", "Family training"])

    if "autism" in normalize_diagnosis(signal.diagnosis):
        goals.extend(["Social communication", "AAC device training"])

    return tuple(goals)


def identify_quality_indicators(signal: UsageSignal) -> Tuple[str, ...]:
    indicators: List[str] = []

    if signal.usage_duration_days > 30:
        indicators.append("Long-term AAC user")
    if signal.app_engagement > 80:
        indicators.append("High engagement")
    if signal.child_age < 5:
        indicators.append("Early intervention age")

    return tuple(indicators)


def score_signal(signal: UsageSignal) -> LeadScoring:
    """Full scoring block for a new lead."""

    lead_score = calculate_lead_score(signal)
    return LeadScoring(
        lead_score=lead_score,
        conversion_probability=calculate_conversion_probability(lead_score, signal.usage_duration_days),
        urgency_score=calculate_urgency_score(signal.usage_duration_days),
        # AAC app families are assumed to have good budget and location fit
        budget_score=75,
        location_score=80,
        quality_indicators=identify_quality_indicators(signal),
    )


__all__ = [
    "HIGH_VALUE_DIAGNOSES",
    "calculate_lead_score",
    "infer_severity",
    "infer_urgency",
    "calculate_urgency_score",
    "calculate_conversion_probability",
    "assess_communication_level",
    "suggest_goals",
    "identify_quality_indicators",
    "score_signal",
]
