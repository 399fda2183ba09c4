"""Unit tests for the pure risk and priority functions."""

from __future__ import annotations

import pytest

from scamreg.models import Category, EntityStatus
from scamreg.services.risk import (
    amount_adjustment,
    base_risk_for_category,
    blend_entity_risk,
    clamp_score,
    derive_entity_status,
    priority_label,
    priority_score,
    report_risk_score,
    risk_bucket,
)


def test_report_risk_combines_category_and_amount():
    assert report_risk_score(Category.INVESTMENT, 25000) == 75
    assert report_risk_score("phishing", 0) == 45
    assert report_risk_score(Category.ROMANCE, 50) == 45
    assert report_risk_score(Category.OTHER, None) == 30


@pytest.mark.parametrize(
    "amount, bonus",
    [(None, 0), (0, 0), (-5, 0), (1, 5), (99.99, 5), (100, 10), (1000, 15), (5000, 20), (10000, 25), (10**9, 25)],
)
def test_amount_adjustment_tiers(amount, bonus):
    assert amount_adjustment(amount) == bonus


def test_unknown_category_uses_default_base():
    assert base_risk_for_category("not-a-category") == 30


@pytest.mark.parametrize("category", list(Category))
@pytest.mark.parametrize("amount", [None, 0, 10, 500, 2000, 7000, 1_000_000])
def test_report_risk_stays_in_range(category, amount):
    assert 0 <= report_risk_score(category, amount) <= 100


def test_clamp_score_bounds():
    assert clamp_score(-10) == 0
    assert clamp_score(140) == 100
    assert clamp_score(float("nan")) == 0


def test_blend_weights_max_and_average():
    assert blend_entity_risk([]) == 0
    assert blend_entity_risk([50]) == 50
    # 0.6 * 80 + 0.4 * 60 = 72
    assert blend_entity_risk([80, 40]) == 72
    assert blend_entity_risk([80, 40], max_weight=1.0, average_weight=0.0) == 80


def test_entity_status_precedence():
    assert derive_entity_status(["pending", "verified", "rejected"]) is EntityStatus.CONFIRMED
    assert derive_entity_status(["pending", "under_review"]) is EntityStatus.DISPUTED
    assert derive_entity_status(["rejected", "rejected"]) is EntityStatus.CLEARED
    assert derive_entity_status(["pending", "rejected"]) is EntityStatus.ALLEGED
    assert derive_entity_status([]) is EntityStatus.ALLEGED


def test_priority_ages_up_to_the_cap():
    assert priority_score(60, 0) == 60
    assert priority_score(60, 10) == 65
    assert priority_score(60, 48) == 84
    assert priority_score(60, 500) == 84
    assert priority_score(60, -3) == 60
    assert priority_score(60, 10, age_cap_hours=4, age_weight=1.0) == 64


def test_labels_and_buckets():
    assert priority_label(81) == "high"
    assert priority_label(80) == "medium"
    assert priority_label(60) == "low"
    assert risk_bucket(80) == "high"
    assert risk_bucket(60) == "medium"
    assert risk_bucket(59) == "low"
