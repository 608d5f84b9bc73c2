"""
Payment gateway adapter (Cashfree PG REST API).

Defines the PaymentGateway protocol used by the payment flows and two
implementations selected once at startup:

- CashfreeGateway: production endpoint, strict webhook signatures
- SandboxCashfreeGateway: sandbox endpoint, relaxed signatures and a
  synthetic success when the sandbox reports no payment attempts

All gateway-specific HTTP lives here; business logic only sees
RemoteOrder and PaymentAttempt values.
"""
import base64
import hashlib
import hmac
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional, Protocol

import httpx

from voxpost.core.config import Settings
from voxpost.core.database import utc_now
from voxpost.core.errors import GatewayError, SignatureInvalidError
from voxpost.core.logging import log_event


PRODUCTION_BASE_URL = "https://api.cashfree.com/pg"
SANDBOX_BASE_URL = "https://sandbox.cashfree.com/pg"

MAX_FETCH_ATTEMPTS = 3
RETRY_BASE_SECONDS = 2
REQUEST_TIMEOUT_SECONDS = 10.0
ORDER_EXPIRY = timedelta(hours=24)
PAYMENT_METHODS = "cc,dc,nb,upi,paylater,emi"

SUCCESS_PAYMENT_STATUSES = {"SUCCESS", "PAID"}
FAILED_PAYMENT_STATUSES = {"FAILED", "CANCELLED", "VOID"}
DROPPED_PAYMENT_STATUSES = {"USER_DROPPED"}


@dataclass(frozen=True)
class RemoteOrderSpec:
    """Order as sent to the gateway. amount is in paisa."""
    order_id: str
    amount: int
    customer_id: str
    customer_email: str
    customer_phone: str
    return_url: str
    notify_url: str
    note: str = ""


@dataclass(frozen=True)
class RemoteOrder:
    order_id: str
    payment_session_id: str


@dataclass(frozen=True)
class PaymentAttempt:
    """One payment attempt reported by the gateway for an order."""
    payment_status: Optional[str]
    order_status: Optional[str] = None
    cf_payment_id: Optional[str] = None
    payment_amount: Optional[float] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False)

    @property
    def succeeded(self) -> bool:
        return (
            (self.payment_status or "").upper() in SUCCESS_PAYMENT_STATUSES
            or (self.order_status or "").upper() == "PAID"
        )

    @property
    def dropped(self) -> bool:
        return (self.payment_status or "").upper() in DROPPED_PAYMENT_STATUSES

    @property
    def failed(self) -> bool:
        return (self.payment_status or "").upper() in FAILED_PAYMENT_STATUSES

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "PaymentAttempt":
        cf_payment_id = payload.get("cf_payment_id")
        return cls(
            payment_status=payload.get("payment_status"),
            order_status=payload.get("order_status"),
            cf_payment_id=str(cf_payment_id) if cf_payment_id is not None else None,
            payment_amount=payload.get("payment_amount"),
            raw=payload,
        )


def payment_succeeded(attempts: List[PaymentAttempt]) -> bool:
    return any(attempt.succeeded for attempt in attempts)


class PaymentGateway(Protocol):
    """
    Protocol for payment gateways.

    Implementations must handle:
    - Remote order creation (never retried)
    - Payment status lookup (retried on transient failures)
    - Webhook signature verification
    """

    sandbox: bool

    def create_remote_order(self, spec: RemoteOrderSpec) -> RemoteOrder:
        """
        Create the order at the gateway.

        Raises:
            GatewayError: Non-2xx response or transport failure
        """
        ...

    def fetch_payment_status(self, order_id: str) -> List[PaymentAttempt]:
        """
        List payment attempts for an order.

        Raises:
            GatewayError: After retries are exhausted
        """
        ...

    def verify_webhook_signature(self, signature: Optional[str], raw_body: bytes, timestamp: Optional[str]) -> bool:
        ...

    def authenticate_webhook(self, signature: Optional[str], raw_body: bytes, timestamp: Optional[str]) -> bool:
        """
        Apply the environment's signature policy.

        Returns:
            Whether the signature was valid

        Raises:
            SignatureInvalidError: Invalid signature where it is enforced
        """
        ...


def _compute_backoff(attempt: int) -> float:
    """Exponential backoff in seconds: 2, 4, 8..."""
    return float(RETRY_BASE_SECONDS * 2 ** (attempt - 1))


def compute_signature(secret_key: str, raw_body: bytes, timestamp: str) -> str:
    """base64(HMAC-SHA256(secret, timestamp + raw body))."""
    digest = hmac.new(secret_key.encode(), timestamp.encode() + raw_body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


class CashfreeGateway:
    """Cashfree implementation of the PaymentGateway protocol."""

    base_url = PRODUCTION_BASE_URL
    sandbox = False

    def __init__(
        self,
        app_id: str,
        secret_key: str,
        api_version: str = "2023-08-01",
        *,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
        max_attempts: int = MAX_FETCH_ATTEMPTS,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ):
        if not app_id or not secret_key:
            raise GatewayError("Cashfree credentials not configured")
        self.app_id = app_id
        self.secret_key = secret_key
        self.max_attempts = max_attempts
        self._sleep = sleep
        self._client = httpx.Client(
            base_url=self.base_url,
            headers={
                "x-client-id": app_id,
                "x-client-secret": secret_key,
                "x-api-version": api_version,
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def create_remote_order(self, spec: RemoteOrderSpec) -> RemoteOrder:
        body = {
            "order_id": spec.order_id,
            "order_amount": spec.amount / 100,
            "order_currency": "INR",
            "customer_details": {
                "customer_id": spec.customer_id,
                "customer_email": spec.customer_email,
                "customer_phone": spec.customer_phone,
            },
            "order_meta": {
                "return_url": spec.return_url,
                "notify_url": spec.notify_url,
                "payment_methods": PAYMENT_METHODS,
            },
            "order_expiry_time": (utc_now() + ORDER_EXPIRY).isoformat(),
            "order_note": spec.note,
        }
        try:
            response = self._client.post("/orders", json=body)
        except httpx.HTTPError as exc:
            log_event("error", "gateway.create_order_failed", order_id=spec.order_id,
                      error_code=GatewayError.code, extra={"error": exc})
            raise GatewayError(f"Payment gateway unreachable: {exc}")

        if not response.is_success:
            log_event("error", "gateway.create_order_failed", order_id=spec.order_id,
                      error_code=GatewayError.code,
                      extra={"status": response.status_code, "body": response.text})
            raise GatewayError(f"Payment gateway rejected order ({response.status_code})")

        data = response.json()
        session_id = data.get("payment_session_id")
        if not session_id:
            raise GatewayError("Payment gateway response missing payment_session_id")
        return RemoteOrder(order_id=data.get("order_id") or spec.order_id, payment_session_id=session_id)

    def _get_with_retry(self, path: str, order_id: str) -> httpx.Response:
        last_error = "no attempts made"
        for attempt in range(1, self.max_attempts + 1):
            try:
                response = self._client.get(path)
            except httpx.TransportError as exc:
                last_error = f"transport error: {exc}"
            else:
                if response.status_code < 500:
                    return response
                last_error = f"HTTP {response.status_code}"

            if attempt < self.max_attempts:
                delay = _compute_backoff(attempt)
                log_event("warning", "gateway.retry", order_id=order_id,
                          extra={"attempt": attempt, "delay_seconds": delay, "error": last_error})
                self._sleep(delay)

        log_event("error", "gateway.fetch_failed", order_id=order_id,
                  error_code=GatewayError.code, extra={"attempts": self.max_attempts, "error": last_error})
        raise GatewayError(f"Payment status unavailable after {self.max_attempts} attempts: {last_error}")

    def fetch_payment_status(self, order_id: str) -> List[PaymentAttempt]:
        response = self._get_with_retry(f"/orders/{order_id}/payments", order_id)
        if not response.is_success:
            raise GatewayError(f"Payment status lookup failed ({response.status_code})")
        payload = response.json()
        if not isinstance(payload, list):
            raise GatewayError("Unexpected payment status payload")
        return [PaymentAttempt.from_payload(item) for item in payload if isinstance(item, dict)]

    def verify_webhook_signature(self, signature: Optional[str], raw_body: bytes, timestamp: Optional[str]) -> bool:
        if not signature or not timestamp:
            return False
        expected = compute_signature(self.secret_key, raw_body, timestamp)
        return hmac.compare_digest(expected, signature)

    def authenticate_webhook(self, signature: Optional[str], raw_body: bytes, timestamp: Optional[str]) -> bool:
        if self.verify_webhook_signature(signature, raw_body, timestamp):
            return True
        log_event("warning", "webhook.signature_invalid", error_code=SignatureInvalidError.code,
                  extra={"has_signature": bool(signature), "has_timestamp": bool(timestamp)})
        raise SignatureInvalidError("Invalid webhook signature")


class SandboxCashfreeGateway(CashfreeGateway):
    """Sandbox variant; never use with production credentials."""

    base_url = SANDBOX_BASE_URL
    sandbox = True

    def fetch_payment_status(self, order_id: str) -> List[PaymentAttempt]:
        attempts = super().fetch_payment_status(order_id)
        if attempts:
            return attempts
        # The sandbox frequently reports no attempts for test payments
        log_event("warning", "gateway.sandbox_simulated_success", order_id=order_id)
        return [PaymentAttempt(payment_status="SUCCESS", cf_payment_id="sandbox_simulated")]

    def authenticate_webhook(self, signature: Optional[str], raw_body: bytes, timestamp: Optional[str]) -> bool:
        if self.verify_webhook_signature(signature, raw_body, timestamp):
            return True
        log_event("warning", "webhook.signature_unverified_sandbox",
                  extra={"has_signature": bool(signature), "has_timestamp": bool(timestamp)})
        return False


def build_gateway(settings: Settings, **kwargs) -> Optional[PaymentGateway]:
    """Gateway for the configured environment, or None when payments are disabled."""
    if not settings.CASHFREE_APP_ID or not settings.CASHFREE_SECRET_KEY:
        log_event("warning", "gateway.disabled", extra={"reason": "missing Cashfree credentials"})
        return None
    gateway_cls = SandboxCashfreeGateway if settings.cashfree_sandbox else CashfreeGateway
    return gateway_cls(
        settings.CASHFREE_APP_ID,
        settings.CASHFREE_SECRET_KEY,
        settings.CASHFREE_API_VERSION,
        **kwargs,
    )
