"""
User account API routes.

- GET    /api/user/plan-status: Authoritative plan state
- GET    /api/user/usage: Minute ledger history
- GET    /api/user/payments: Payment orders
- DELETE /api/user/data: Delete account and recordings
"""
from fastapi import APIRouter, Depends, Response

from voxpost.core.auth import clear_session_cookie, require_user
from voxpost.core.database import utc_now
from voxpost.features.expiry.service import days_until
from voxpost.features.payments.orders import list_user_orders
from voxpost.features.plans.ledger import get_plan_status
from voxpost.features.usage.service import get_usage_history
from voxpost.features.users.service import delete_user
from voxpost.models.user import User


router = APIRouter(prefix="/api/user", tags=["user"])


@router.get("/plan-status")
def plan_status(user: User = Depends(require_user)):
    status = get_plan_status(user.id)
    payload = status.public_dict()
    payload["daysLeft"] = days_until(status.expires_at, utc_now())
    return payload


@router.get("/usage")
def usage(limit: int = 50, user: User = Depends(require_user)):
    return {"usage": [record.public_dict() for record in get_usage_history(user.id, limit=limit)]}


@router.get("/payments")
def payments(user: User = Depends(require_user)):
    return {"payments": [order.public_dict() for order in list_user_orders(user.id)]}


@router.delete("/data")
def delete_account(response: Response, user: User = Depends(require_user)):
    delete_user(user.id)
    clear_session_cookie(response)
    return {"success": True}
