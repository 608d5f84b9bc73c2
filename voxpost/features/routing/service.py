"""
Cross-domain router.

Decides which of the two web properties a user belongs on. Pure function
of the user snapshot, the origin and the clock; no I/O.

Precedence: expired plan, then premium access, then free user.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from urllib.parse import urlparse

from voxpost.core.config import settings
from voxpost.core.database import as_utc, utc_now
from voxpost.features.plans.pricing import FREE_PLAN
from voxpost.models.user import User

ORIGIN_FREE = "free"
ORIGIN_PREMIUM = "premium"
ORIGIN_UNKNOWN = "unknown"

REASON_EXPIRED = "expired"
REASON_PREMIUM_ACCESS = "premium_access"
REASON_FREE_USER = "free_user"


@dataclass(frozen=True)
class RouteDecision:
    redirect_to: Optional[str] = None
    reason: Optional[str] = None

    @property
    def should_redirect(self) -> bool:
        return self.redirect_to is not None

    def public_dict(self) -> dict:
        return {
            "shouldRedirect": self.should_redirect,
            "redirectUrl": self.redirect_to,
            "reason": self.reason,
        }


def _host_of(value: str) -> str:
    value = (value or "").strip().lower()
    if "//" in value:
        value = urlparse(value).netloc
    return value.split(":", 1)[0]


def classify_origin(host: Optional[str], free_origin: str, premium_origin: str) -> str:
    """Map a Host header (or full origin) onto free, premium or unknown."""
    if not host:
        return ORIGIN_UNKNOWN
    current = _host_of(host)
    if current == _host_of(premium_origin):
        return ORIGIN_PREMIUM
    if current == _host_of(free_origin):
        return ORIGIN_FREE
    return ORIGIN_UNKNOWN


def route(
    user: User,
    current_origin: str,
    now: Optional[datetime] = None,
    *,
    free_origin: Optional[str] = None,
    premium_origin: Optional[str] = None,
) -> RouteDecision:
    """
    Where the user should be sent from current_origin.

    An expired plan wins even when the sweep has not run yet, so a stale
    premium flag never leaks premium access.
    """
    ts = now or utc_now()
    free_base = (free_origin or settings.FREE_ORIGIN).rstrip("/")
    premium_base = (premium_origin or settings.PREMIUM_ORIGIN).rstrip("/")

    expires_at = as_utc(user.plan_expires_at)
    if expires_at is not None and expires_at <= ts:
        if current_origin == ORIGIN_FREE:
            return RouteDecision()
        return RouteDecision(redirect_to=f"{free_base}/premium", reason=REASON_EXPIRED)

    if user.is_premium and user.plan_type != FREE_PLAN:
        if current_origin == ORIGIN_FREE:
            return RouteDecision(redirect_to=f"{premium_base}/dashboard", reason=REASON_PREMIUM_ACCESS)
        return RouteDecision()

    if current_origin == ORIGIN_PREMIUM:
        return RouteDecision(redirect_to=f"{free_base}/dashboard", reason=REASON_FREE_USER)
    return RouteDecision()
