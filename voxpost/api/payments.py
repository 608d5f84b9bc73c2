"""
Payment API routes.

- POST /api/payment/create-order: Start checkout for a plan
- POST /api/payment/verify: Manual verification of an order
- POST /api/payment/webhook: Gateway webhook (signature checked)
- GET/POST /payment/return: Hosted checkout landing, 303 redirect
"""
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field
from starlette.concurrency import run_in_threadpool

from voxpost.api.deps import current_origin, get_gateway, public_base_url
from voxpost.core.auth import require_user
from voxpost.features.payments.gateway import PaymentGateway
from voxpost.features.payments.service import handle_return, process_webhook, start_checkout, verify_order
from voxpost.features.plans.pricing import get_plan
from voxpost.features.routing.service import route
from voxpost.models.user import User


router = APIRouter(tags=["payments"])


class CreateOrderRequest(BaseModel):
    plan_type: str = Field(alias="planType")


class VerifyRequest(BaseModel):
    order_id: str = Field(alias="orderId")
    transaction_id: Optional[str] = Field(default=None, alias="transactionId")


@router.post("/api/payment/create-order")
def create_order(
    body: CreateOrderRequest,
    request: Request,
    user: User = Depends(require_user),
    gateway: Optional[PaymentGateway] = Depends(get_gateway),
):
    base = public_base_url(request)
    session = start_checkout(
        gateway,
        user,
        body.plan_type,
        return_url=f"{base}/payment/return",
        notify_url=f"{base}/api/payment/webhook",
    )
    return {
        "orderId": session.order_id,
        "paymentSessionId": session.payment_session_id,
        "amount": get_plan(body.plan_type).amount_major,
        "planName": session.plan_name,
    }


@router.post("/api/payment/verify")
def verify(
    body: VerifyRequest,
    request: Request,
    user: User = Depends(require_user),
    gateway: Optional[PaymentGateway] = Depends(get_gateway),
):
    result = verify_order(gateway, body.order_id, user_id=user.id)
    current_user = result.user or user
    return {
        "success": result.succeeded,
        "outcome": result.outcome,
        "planType": result.order.plan_type,
        "order": result.order.public_dict(),
        "user": current_user.public_dict(),
        "routing": route(current_user, current_origin(request)).public_dict(),
    }


@router.post("/api/payment/webhook")
async def webhook(request: Request, gateway: Optional[PaymentGateway] = Depends(get_gateway)):
    # Raw body is required for signature verification
    body = await request.body()
    outcome = await run_in_threadpool(process_webhook, gateway, request.headers, body)
    return {"received": True, "outcome": outcome.outcome, "orderId": outcome.order_id}


@router.api_route("/payment/return", methods=["GET", "POST"])
async def payment_return(request: Request, gateway: Optional[PaymentGateway] = Depends(get_gateway)):
    params = dict(request.query_params)
    if request.method == "POST":
        form = await request.form()
        params.update({key: value for key, value in form.items() if isinstance(value, str)})
    landing = await run_in_threadpool(handle_return, gateway, params)
    return RedirectResponse(landing, status_code=303)
