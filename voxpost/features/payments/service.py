"""
Payment flows orchestrator.

Coordinates the order tracker, the gateway adapter and plan activation:
- Checkout (local order first, then the gateway order)
- Verification (manual and return-URL, with settle polling)
- Webhook processing (authenticated, audited, idempotent)

All three verification paths end in activate(), which grants the plan at
most once per order.
"""
import hashlib
import json
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Mapping, Optional
from urllib.parse import urlencode
from sqlalchemy import insert, update

from voxpost.core.database import get_db_session, payment_events, utc_now
from voxpost.core.errors import (
    GatewayError,
    OrderNotFoundError,
    PaymentsDisabledError,
    SignatureInvalidError,
    ValidationError,
)
from voxpost.core.logging import log_event
from voxpost.features.payments.activation import activate
from voxpost.features.payments.gateway import PaymentGateway, RemoteOrderSpec, payment_succeeded
from voxpost.features.payments.orders import create_order, get_order, new_order_id, update_status
from voxpost.features.plans.pricing import FREE_PLAN, get_plan
from voxpost.features.users.service import get_user
from voxpost.models.payment import ORDER_CANCELLED, ORDER_FAILED, PaymentOrder
from voxpost.models.user import User


DEFAULT_CUSTOMER_PHONE = "9999999999"
RETURN_SETTLE_ATTEMPTS = 3
RETURN_SETTLE_DELAY_SECONDS = 2.0

OUTCOME_ACTIVATED = "activated"
OUTCOME_ALREADY_PROCESSED = "already_processed"
OUTCOME_FAILED = "failed"
OUTCOME_PENDING = "pending"

WEBHOOK_SUCCESS = "PAYMENT_SUCCESS_WEBHOOK"
WEBHOOK_FAILED = "PAYMENT_FAILED_WEBHOOK"
WEBHOOK_USER_DROPPED = "PAYMENT_USER_DROPPED_WEBHOOK"
HANDLED_WEBHOOK_TYPES = (WEBHOOK_SUCCESS, WEBHOOK_FAILED, WEBHOOK_USER_DROPPED)

SIGNATURE_HEADER = "x-webhook-signature"
TIMESTAMP_HEADER = "x-webhook-timestamp"


@dataclass
class CheckoutSession:
    order_id: str
    payment_session_id: str
    amount: int  # paisa
    plan_name: str


@dataclass
class VerificationResult:
    outcome: str
    order: PaymentOrder
    user: Optional[User] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome in (OUTCOME_ACTIVATED, OUTCOME_ALREADY_PROCESSED)


@dataclass
class WebhookOutcome:
    event_type: Optional[str]
    order_id: Optional[str]
    outcome: str
    signature_valid: bool


def _require_gateway(gateway: Optional[PaymentGateway]) -> PaymentGateway:
    if gateway is None:
        raise PaymentsDisabledError("Payments are currently unavailable. Please contact support.")
    return gateway


def start_checkout(
    gateway: Optional[PaymentGateway],
    user: User,
    plan_type: str,
    return_url: str,
    notify_url: str,
    now: Optional[datetime] = None,
) -> CheckoutSession:
    """
    Open a payment for a plan upgrade.

    The order is stored locally before the gateway is called so every
    later callback can be matched to it.

    Raises:
        PaymentsDisabledError: No gateway configured
        ValidationError: Free or unknown plan
        GatewayError: Gateway refused the order (the local order is marked failed)
    """
    gateway = _require_gateway(gateway)
    if plan_type == FREE_PLAN:
        raise ValidationError("The free plan cannot be purchased")
    plan = get_plan(plan_type)

    order_id = new_order_id(user.id, now)
    create_order(user.id, plan.plan_type, plan.amount, order_id)

    spec = RemoteOrderSpec(
        order_id=order_id,
        amount=plan.amount,
        customer_id=f"customer_{user.id}",
        customer_email=user.email,
        customer_phone=user.phone or DEFAULT_CUSTOMER_PHONE,
        return_url=return_url,
        notify_url=notify_url,
        note=f"voxpost {plan.display_name} subscription",
    )
    try:
        remote = gateway.create_remote_order(spec)
    except GatewayError:
        update_status(order_id, ORDER_FAILED)
        raise

    log_event(
        "info",
        "payment.checkout_started",
        user_id=user.id,
        order_id=order_id,
        extra={"plan_type": plan.plan_type},
    )
    return CheckoutSession(
        order_id=order_id,
        payment_session_id=remote.payment_session_id,
        amount=plan.amount,
        plan_name=plan.display_name,
    )


def verify_order(
    gateway: Optional[PaymentGateway],
    order_id: str,
    *,
    user_id: Optional[int] = None,
    settle_attempts: int = 1,
    settle_delay: float = RETURN_SETTLE_DELAY_SECONDS,
    sleep: Optional[Callable[[float], None]] = None,
    now: Optional[datetime] = None,
) -> VerificationResult:
    """
    Reconcile a local order with the gateway's view of its payments.

    Args:
        gateway: Configured gateway
        order_id: Local order id
        user_id: When given, orders owned by other users are reported as missing
        settle_attempts: How many times to poll while the payment is pending
        settle_delay: Seconds between polls
        sleep: Delay function between polls (time.sleep by default)
        now: Activation time

    Returns:
        VerificationResult with outcome activated, already_processed,
        failed or pending

    Raises:
        OrderNotFoundError: Unknown order
        GatewayError: Gateway unavailable after retries
    """
    order = get_order(order_id)
    if order is None or (user_id is not None and order.user_id != user_id):
        raise OrderNotFoundError(order_id)

    if order.is_paid:
        return VerificationResult(OUTCOME_ALREADY_PROCESSED, order, get_user(order.user_id))

    gateway = _require_gateway(gateway)

    attempts = []
    for poll in range(1, settle_attempts + 1):
        attempts = gateway.fetch_payment_status(order_id)
        if payment_succeeded(attempts):
            result = activate(order_id, now=now)
            outcome = OUTCOME_ALREADY_PROCESSED if result.already_processed else OUTCOME_ACTIVATED
            return VerificationResult(outcome, result.order, result.user)
        if attempts and all(a.failed or a.dropped for a in attempts):
            break
        if poll < settle_attempts:
            log_event("info", "payment.verification_pending", order_id=order_id,
                      extra={"poll": poll, "attempts_seen": len(attempts)})
            (sleep or time.sleep)(settle_delay)

    if attempts and all(a.failed or a.dropped for a in attempts):
        status = ORDER_CANCELLED if all(a.dropped for a in attempts) else ORDER_FAILED
        order = update_status(order_id, status)
        log_event("info", "payment.verification_failed", user_id=order.user_id, order_id=order_id,
                  extra={"status": order.status})
        outcome = OUTCOME_ALREADY_PROCESSED if order.is_paid else OUTCOME_FAILED
        return VerificationResult(outcome, order, get_user(order.user_id))

    return VerificationResult(OUTCOME_PENDING, order, get_user(order.user_id))


def _dashboard_error(code: str, order_id: Optional[str] = None) -> str:
    params = {"error": code}
    if order_id:
        params["orderId"] = order_id
    return f"/dashboard?{urlencode(params)}"


def handle_return(
    gateway: Optional[PaymentGateway],
    params: Mapping[str, str],
    *,
    sleep: Optional[Callable[[float], None]] = None,
) -> str:
    """
    Resolve the browser's landing page after the hosted checkout.

    Params come from the query string and form body merged together. Any
    status the browser reports is ignored; only the gateway is trusted.
    """
    order_id = params.get("order_id") or params.get("cf_order_id")
    if not order_id:
        log_event("warning", "payment.return_missing_order_id")
        return _dashboard_error("missing_order_id")

    try:
        result = verify_order(
            gateway,
            order_id,
            settle_attempts=RETURN_SETTLE_ATTEMPTS,
            sleep=sleep,
        )
    except OrderNotFoundError:
        log_event("error", "payment.return_order_not_found", order_id=order_id,
                  error_code=OrderNotFoundError.code)
        return _dashboard_error("payment_record_not_found")
    except (GatewayError, PaymentsDisabledError) as exc:
        log_event("error", "payment.return_verification_unavailable", order_id=order_id,
                  error_code=exc.code)
        return _dashboard_error("verification_unavailable", order_id)

    if result.succeeded:
        query = urlencode({"orderId": order_id, "plan": result.order.plan_type, "status": "success"})
        return f"/payment/success?{query}"
    if result.outcome == OUTCOME_PENDING:
        return _dashboard_error("payment_pending", order_id)
    return _dashboard_error("payment_failed", order_id)


def _record_event(
    payload_hash: str,
    signature_valid: bool,
    *,
    event_type: Optional[str] = None,
    order_id: Optional[str] = None,
    outcome: Optional[str] = None,
    error: Optional[str] = None,
) -> int:
    now = utc_now()
    finished = outcome is not None
    with get_db_session() as session:
        result = session.execute(
            insert(payment_events).values(
                event_type=event_type,
                order_id=order_id,
                payload_hash=payload_hash,
                signature_valid=signature_valid,
                processed=False,
                outcome=outcome,
                error=error,
                received_at=now,
                processed_at=now if finished else None,
            )
        )
        return result.inserted_primary_key[0]


def _finish_event(event_id: int, *, outcome: str, processed: bool, error: Optional[str] = None) -> None:
    with get_db_session() as session:
        session.execute(
            update(payment_events)
            .where(payment_events.c.id == event_id)
            .values(outcome=outcome, processed=processed, error=error, processed_at=utc_now())
        )


def _dispatch_webhook(event_type: str, order_id: str) -> str:
    if event_type == WEBHOOK_SUCCESS:
        result = activate(order_id)
        return OUTCOME_ALREADY_PROCESSED if result.already_processed else OUTCOME_ACTIVATED
    if event_type == WEBHOOK_FAILED:
        order = update_status(order_id, ORDER_FAILED)
        return OUTCOME_ALREADY_PROCESSED if order.is_paid else ORDER_FAILED
    if event_type == WEBHOOK_USER_DROPPED:
        order = update_status(order_id, ORDER_CANCELLED)
        return OUTCOME_ALREADY_PROCESSED if order.is_paid else ORDER_CANCELLED
    return "ignored"


def process_webhook(
    gateway: Optional[PaymentGateway],
    headers: Mapping[str, str],
    raw_body: bytes,
) -> WebhookOutcome:
    """
    Authenticate, audit and apply one gateway webhook delivery.

    Unknown orders are acknowledged (outcome order_not_found) because a
    retry cannot fix them. Storage failures propagate so the gateway
    retries the delivery.

    Raises:
        PaymentsDisabledError: No gateway configured
        SignatureInvalidError: Bad signature where signatures are enforced
        ValidationError: Body is not JSON or lacks an order id
    """
    gateway = _require_gateway(gateway)
    payload_hash = hashlib.sha256(raw_body).hexdigest()

    try:
        signature_valid = gateway.authenticate_webhook(
            headers.get(SIGNATURE_HEADER), raw_body, headers.get(TIMESTAMP_HEADER)
        )
    except SignatureInvalidError:
        _record_event(payload_hash, False, outcome="signature_invalid")
        raise

    try:
        payload = json.loads(raw_body)
    except ValueError:
        _record_event(payload_hash, signature_valid, outcome="invalid_payload")
        raise ValidationError("Webhook body is not valid JSON")
    if not isinstance(payload, dict):
        _record_event(payload_hash, signature_valid, outcome="invalid_payload")
        raise ValidationError("Webhook body must be a JSON object")

    event_type = payload.get("type")
    data = payload.get("data") or {}
    order = data.get("order") if isinstance(data, dict) else None
    order_id = order.get("order_id") if isinstance(order, dict) else None

    if event_type in HANDLED_WEBHOOK_TYPES and not order_id:
        _record_event(payload_hash, signature_valid, event_type=event_type, outcome="invalid_payload")
        raise ValidationError("Webhook payload is missing data.order.order_id")

    event_id = _record_event(payload_hash, signature_valid, event_type=event_type, order_id=order_id)
    log_event("info", "webhook.received", order_id=order_id, event_type=event_type,
              extra={"signature_valid": signature_valid})

    try:
        outcome = _dispatch_webhook(event_type, order_id)
    except OrderNotFoundError:
        log_event("error", "webhook.order_not_found", order_id=order_id, event_type=event_type,
                  error_code=OrderNotFoundError.code)
        outcome = "order_not_found"
    except Exception as exc:
        log_event("error", "webhook.processing_failed", order_id=order_id, event_type=event_type,
                  extra={"error": exc})
        _finish_event(event_id, outcome="error", processed=False, error=str(exc))
        raise

    _finish_event(event_id, outcome=outcome, processed=True)
    log_event("info", "webhook.processed", order_id=order_id, event_type=event_type,
              extra={"outcome": outcome})
    return WebhookOutcome(
        event_type=event_type,
        order_id=order_id,
        outcome=outcome,
        signature_valid=signature_valid,
    )
