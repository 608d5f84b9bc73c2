"""Pricing table: one entry drives both the charge and the entitlement."""
import pytest

from voxpost.core.errors import ValidationError
from voxpost.features.plans.pricing import (
    PLAN_PRICING,
    PLAN_TYPES,
    UNLIMITED,
    free_tier_minutes,
    get_plan,
    is_unlimited,
)


def test_pricing_table_matches_published_plans():
    assert {k: (p.amount, p.minutes) for k, p in PLAN_PRICING.items()} == {
        "lite": (19900, 60),
        "pro": (99900, 600),
        "max": (199900, UNLIMITED),
    }


def test_amount_major_is_rupees():
    assert get_plan("lite").amount_major == 199.0
    assert get_plan("max").amount_major == 1999.0


def test_every_purchasable_plan_is_a_known_plan_type():
    assert set(PLAN_PRICING) < set(PLAN_TYPES)
    assert "free" not in PLAN_PRICING


def test_unknown_plan_lists_allowed_plans():
    with pytest.raises(ValidationError) as exc:
        get_plan("platinum")
    assert exc.value.code == "VALIDATION_ERROR"
    assert exc.value.details["allowed"] == ["lite", "max", "pro"]


def test_unlimited_is_explicit_variant():
    assert is_unlimited(get_plan("max").minutes)
    assert not is_unlimited(9999)
    assert free_tier_minutes() == 30
