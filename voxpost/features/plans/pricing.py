"""
voxpost/features/plans/pricing.py

Static plan pricing table.

The same entry drives the amount charged at checkout and the minutes
granted at activation. Amounts are in paisa (minor units of INR).
"""

from dataclasses import dataclass
from typing import Dict, Literal, Union

from voxpost.core.config import settings
from voxpost.core.errors import ValidationError

UNLIMITED = "unlimited"

# A minute balance is either a finite count or the explicit unlimited variant.
Minutes = Union[int, Literal["unlimited"]]

FREE_PLAN = "free"
PLAN_TYPES = ("free", "lite", "pro", "max")


@dataclass(frozen=True)
class PlanPrice:
    plan_type: str
    amount: int
    minutes: Minutes
    display_name: str

    @property
    def amount_major(self) -> float:
        """Amount in rupees, as the gateway expects it."""
        return self.amount / 100


PLAN_PRICING: Dict[str, PlanPrice] = {
    "lite": PlanPrice("lite", 19900, 60, "Lite Plan"),
    "pro": PlanPrice("pro", 99900, 600, "Pro Plan"),
    "max": PlanPrice("max", 199900, UNLIMITED, "Max Plan"),
}


def free_tier_minutes() -> int:
    return settings.FREE_TIER_MINUTES


def get_plan(plan_type: str) -> PlanPrice:
    """Resolve a purchasable plan or raise ValidationError."""
    plan = PLAN_PRICING.get(plan_type)
    if plan is None:
        raise ValidationError(
            f"Invalid plan type: {plan_type}",
            details={"allowed": sorted(PLAN_PRICING)},
        )
    return plan


def is_unlimited(minutes: Minutes) -> bool:
    return minutes == UNLIMITED
