"""Checkout, verification, return-URL and webhook flows."""
import json

import pytest
from sqlalchemy import select

from mocks import FakeGateway, gateway_down
from voxpost.core.database import get_db_session, payment_events
from voxpost.core.errors import (
    GatewayError,
    OrderNotFoundError,
    PaymentsDisabledError,
    SignatureInvalidError,
    ValidationError,
)
from voxpost.features.payments.gateway import PaymentAttempt
from voxpost.features.payments.orders import create_order, get_order
from voxpost.features.payments.service import (
    handle_return,
    process_webhook,
    start_checkout,
    verify_order,
)
from voxpost.features.plans.ledger import get_plan_status
from voxpost.features.usage.service import get_usage_history


def _webhook_body(event_type, order_id):
    return json.dumps({"type": event_type, "data": {"order": {"order_id": order_id}}}).encode()


def _events():
    with get_db_session() as session:
        return session.execute(select(payment_events).order_by(payment_events.c.id)).all()


@pytest.fixture
def gateway():
    return FakeGateway()


def test_checkout_records_order_before_gateway(make_user, gateway):
    user = make_user()
    session = start_checkout(gateway, user, "pro", "https://x/payment/return", "https://x/api/payment/webhook")

    assert session.amount == 99900
    assert session.plan_name == "Pro Plan"
    assert session.payment_session_id == f"session_{session.order_id}"
    assert session.order_id.endswith(f"_{user.id}")
    assert get_order(session.order_id).status == "created"
    assert gateway.created[0].amount == 99900


def test_checkout_gateway_failure_marks_order_failed(make_user, gateway):
    user = make_user()
    gateway.create_error = GatewayError("rejected")
    with pytest.raises(GatewayError):
        start_checkout(gateway, user, "lite", "r", "n")
    from voxpost.features.payments.orders import list_user_orders
    assert [o.status for o in list_user_orders(user.id)] == ["failed"]


def test_checkout_rejects_free_and_unknown_plans(make_user, gateway):
    user = make_user()
    with pytest.raises(ValidationError):
        start_checkout(gateway, user, "free", "r", "n")
    with pytest.raises(ValidationError):
        start_checkout(gateway, user, "diamond", "r", "n")
    assert gateway.created == []


def test_checkout_without_gateway_is_disabled(make_user):
    with pytest.raises(PaymentsDisabledError):
        start_checkout(None, make_user(), "lite", "r", "n")


def test_verify_activates_on_success(make_user, gateway):
    user = make_user()
    create_order(user.id, "lite", 19900, "order_1_1")
    gateway.succeed("order_1_1")

    result = verify_order(gateway, "order_1_1", user_id=user.id)

    assert result.outcome == "activated"
    assert result.user.minutes_remaining == 60


def test_verify_paid_order_skips_gateway(make_user, gateway):
    user = make_user()
    create_order(user.id, "lite", 19900, "order_1_1")
    gateway.succeed("order_1_1")
    verify_order(gateway, "order_1_1")

    result = verify_order(gateway, "order_1_1")

    assert result.outcome == "already_processed"
    assert gateway.fetch_calls == ["order_1_1"]


def test_verify_foreign_order_reported_missing(make_user, gateway):
    owner, other = make_user(), make_user()
    create_order(owner.id, "lite", 19900, "order_1_1")
    with pytest.raises(OrderNotFoundError):
        verify_order(gateway, "order_1_1", user_id=other.id)


def test_verify_terminal_failure_marks_order(make_user, gateway):
    user = make_user()
    create_order(user.id, "lite", 19900, "order_1_1")
    gateway.script("order_1_1", [PaymentAttempt(payment_status="FAILED")])

    result = verify_order(gateway, "order_1_1")

    assert result.outcome == "failed"
    assert get_order("order_1_1").status == "failed"
    assert get_plan_status(user.id).plan_type == "free"


def test_verify_user_dropped_cancels(make_user, gateway):
    user = make_user()
    create_order(user.id, "lite", 19900, "order_1_1")
    gateway.script("order_1_1", [PaymentAttempt(payment_status="USER_DROPPED")])
    verify_order(gateway, "order_1_1")
    assert get_order("order_1_1").status == "cancelled"


def test_verify_settles_pending_payment(make_user, gateway):
    user = make_user()
    create_order(user.id, "pro", 99900, "order_1_1")
    gateway.script(
        "order_1_1",
        [],
        [PaymentAttempt(payment_status="PENDING")],
        [PaymentAttempt(payment_status="SUCCESS")],
    )
    sleeps = []

    result = verify_order(gateway, "order_1_1", settle_attempts=3, sleep=sleeps.append)

    assert result.outcome == "activated"
    assert sleeps == [2.0, 2.0]


def test_return_ignores_browser_reported_status(make_user, gateway):
    user = make_user()
    create_order(user.id, "lite", 19900, "order_1_1")
    gateway.script("order_1_1", [PaymentAttempt(payment_status="PENDING")])

    landing = handle_return(gateway, {"order_id": "order_1_1", "order_status": "PAID"}, sleep=lambda s: None)

    assert landing == "/dashboard?error=payment_pending&orderId=order_1_1"
    assert get_plan_status(user.id).plan_type == "free"


def test_return_success_landing(make_user, gateway):
    user = make_user()
    create_order(user.id, "pro", 99900, "order_1_1")
    gateway.succeed("order_1_1")

    landing = handle_return(gateway, {"cf_order_id": "order_1_1"})

    assert landing == "/payment/success?orderId=order_1_1&plan=pro&status=success"


@pytest.mark.parametrize(
    "params,expected",
    [
        ({}, "/dashboard?error=missing_order_id"),
        ({"order_id": "order_404"}, "/dashboard?error=payment_record_not_found"),
    ],
)
def test_return_error_landings(params, expected, gateway):
    assert handle_return(gateway, params) == expected


def test_return_gateway_unavailable(make_user, gateway):
    user = make_user()
    create_order(user.id, "lite", 19900, "order_1_1")
    gateway.fetch_error = gateway_down()
    landing = handle_return(gateway, {"order_id": "order_1_1"})
    assert landing == "/dashboard?error=verification_unavailable&orderId=order_1_1"


def test_webhook_delivered_twice_grants_once(make_user, gateway):
    user = make_user()
    create_order(user.id, "lite", 19900, "order_1_42")
    body = _webhook_body("PAYMENT_SUCCESS_WEBHOOK", "order_1_42")

    first = process_webhook(gateway, gateway.sign(body), body)
    second = process_webhook(gateway, gateway.sign(body), body)

    assert (first.outcome, second.outcome) == ("activated", "already_processed")
    status = get_plan_status(user.id)
    assert status.minutes_remaining == 60
    assert status.expires_at is not None
    assert len(get_usage_history(user.id)) == 1
    assert [e.outcome for e in _events()] == ["activated", "already_processed"]


def test_return_before_webhook(make_user, gateway):
    user = make_user()
    create_order(user.id, "pro", 99900, "order_1_1")
    gateway.succeed("order_1_1")

    assert handle_return(gateway, {"order_id": "order_1_1"}).startswith("/payment/success")
    expires = get_plan_status(user.id).expires_at

    body = _webhook_body("PAYMENT_SUCCESS_WEBHOOK", "order_1_1")
    outcome = process_webhook(gateway, gateway.sign(body), body)

    assert outcome.outcome == "already_processed"
    assert get_plan_status(user.id).expires_at == expires


def test_failed_webhook_never_downgrades_paid_order(make_user, gateway):
    user = make_user()
    create_order(user.id, "lite", 19900, "order_1_1")
    success = _webhook_body("PAYMENT_SUCCESS_WEBHOOK", "order_1_1")
    process_webhook(gateway, gateway.sign(success), success)

    failed = _webhook_body("PAYMENT_FAILED_WEBHOOK", "order_1_1")
    outcome = process_webhook(gateway, gateway.sign(failed), failed)

    assert outcome.outcome == "already_processed"
    assert get_order("order_1_1").status == "paid"


def test_dropped_webhook_cancels_order(make_user, gateway):
    user = make_user()
    create_order(user.id, "lite", 19900, "order_1_1")
    body = _webhook_body("PAYMENT_USER_DROPPED_WEBHOOK", "order_1_1")
    assert process_webhook(gateway, gateway.sign(body), body).outcome == "cancelled"
    assert get_order("order_1_1").status == "cancelled"


def test_webhook_for_unknown_order_acknowledged(gateway):
    body = _webhook_body("PAYMENT_SUCCESS_WEBHOOK", "order_unknown")
    outcome = process_webhook(gateway, gateway.sign(body), body)
    assert outcome.outcome == "order_not_found"
    assert _events()[0].processed is True


def test_unhandled_webhook_type_ignored(gateway):
    body = json.dumps({"type": "REFUND_STATUS_WEBHOOK", "data": {}}).encode()
    assert process_webhook(gateway, gateway.sign(body), body).outcome == "ignored"


def test_webhook_bad_signature_rejected_and_audited(make_user, gateway):
    user = make_user()
    create_order(user.id, "lite", 19900, "order_1_1")
    body = _webhook_body("PAYMENT_SUCCESS_WEBHOOK", "order_1_1")

    with pytest.raises(SignatureInvalidError):
        process_webhook(gateway, {"x-webhook-signature": "forged", "x-webhook-timestamp": "1"}, body)

    assert get_order("order_1_1").status == "created"
    event = _events()[0]
    assert (event.signature_valid, event.outcome) == (False, "signature_invalid")


def test_sandbox_webhook_with_bad_signature_still_processed(make_user):
    gateway = FakeGateway(sandbox=True)
    user = make_user()
    create_order(user.id, "lite", 19900, "order_1_1")
    body = _webhook_body("PAYMENT_SUCCESS_WEBHOOK", "order_1_1")

    outcome = process_webhook(gateway, {}, body)

    assert outcome.outcome == "activated"
    assert outcome.signature_valid is False


@pytest.mark.parametrize("body", [b"not json", b'{"type": "PAYMENT_SUCCESS_WEBHOOK", "data": {}}'])
def test_malformed_webhook_rejected(body, gateway):
    with pytest.raises(ValidationError):
        process_webhook(gateway, gateway.sign(body), body)
