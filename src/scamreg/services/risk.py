"""Risk and priority policy.

Pure functions only: report risk at intake, the entity blend, entity status
derivation, and the moderation priority used to order the queue.
"""

from __future__ import annotations

import math
from typing import Iterable, Mapping, Sequence, Tuple

from scamreg.models import Category, EntityStatus, ReportStatus

# Category baseline on the 0-100 scale (submission-time status and recency folded in).
BASE_RISK_BY_CATEGORY: Mapping[Category, int] = {
    Category.INVESTMENT: 50,
    Category.CRYPTO: 50,
    Category.PHISHING: 45,
    Category.ROMANCE: 40,
    Category.TECH_SUPPORT: 35,
    Category.LOTTERY: 30,
    Category.JOB_SCAM: 30,
    Category.EMPLOYMENT: 30,
    Category.RENTAL: 30,
    Category.FAKE_GOODS: 30,
    Category.OTHER: 30,
}
DEFAULT_BASE_RISK = 30

# (minimum amount, bonus) checked from the largest threshold down.
AMOUNT_BONUS_TIERS: Sequence[Tuple[float, int]] = (
    (10000, 25),
    (5000, 20),
    (1000, 15),
    (100, 10),
)
SMALL_AMOUNT_BONUS = 5


def clamp_score(value: float) -> int:
    """Round and clamp ``value`` into the [0, 100] risk range."""

    if math.isnan(value):
        return 0
    return int(max(0, min(100, round(value))))


def base_risk_for_category(category: Category | str) -> int:
    try:
        resolved = Category(category)
    except ValueError:
        return DEFAULT_BASE_RISK
    return BASE_RISK_BY_CATEGORY.get(resolved, DEFAULT_BASE_RISK)


def amount_adjustment(amount_lost: float | None) -> int:
    """Return the bounded bonus for a reported loss (0 when nothing was lost)."""

    if not amount_lost or amount_lost <= 0:
        return 0
    for threshold, bonus in AMOUNT_BONUS_TIERS:
        if amount_lost >= threshold:
            return bonus
    return SMALL_AMOUNT_BONUS


def report_risk_score(category: Category | str, amount_lost: float | None) -> int:
    """Initial risk score for a newly submitted report."""

    return clamp_score(base_risk_for_category(category) + amount_adjustment(amount_lost))


def blend_entity_risk(
    scores: Iterable[int],
    *,
    max_weight: float = 0.6,
    average_weight: float = 0.4,
) -> int:
    """Blend constituent report scores so one severe report dominates.

    ``round(max_weight * max + average_weight * mean)``, clamped; 0 for no reports.
    """

    values = [int(score) for score in scores]
    if not values:
        return 0
    peak = max(values)
    mean = sum(values) / len(values)
    return clamp_score(max_weight * peak + average_weight * mean)


def derive_entity_status(statuses: Iterable[ReportStatus | str]) -> EntityStatus:
    """Entity verdict from its reports: confirmed > disputed > cleared > alleged."""

    resolved = [ReportStatus(status) for status in statuses]
    if any(status is ReportStatus.VERIFIED for status in resolved):
        return EntityStatus.CONFIRMED
    if any(status is ReportStatus.UNDER_REVIEW for status in resolved):
        return EntityStatus.DISPUTED
    if resolved and all(status is ReportStatus.REJECTED for status in resolved):
        return EntityStatus.CLEARED
    return EntityStatus.ALLEGED


def priority_score(
    risk_score: float,
    age_hours: float,
    *,
    age_cap_hours: float = 48.0,
    age_weight: float = 0.5,
) -> float:
    """Queue priority: ``risk + min(age, cap) * weight``; negative ages count as 0."""

    effective_age = min(max(age_hours, 0.0), age_cap_hours)
    return float(risk_score) + effective_age * age_weight


def priority_label(score: float) -> str:
    if score > 80:
        return "high"
    if score > 60:
        return "medium"
    return "low"


def risk_bucket(score: float, *, high_threshold: int = 80, medium_threshold: int = 60) -> str:
    if score >= high_threshold:
        return "high"
    if score >= medium_threshold:
        return "medium"
    return "low"


__all__ = [
    "amount_adjustment",
    "base_risk_for_category",
    "blend_entity_risk",
    "clamp_score",
    "derive_entity_status",
    "priority_label",
    "priority_score",
    "report_risk_score",
    "risk_bucket",
]
