"""
voxpost/models/payment.py

Payment order snapshot.

An order is one payment attempt against the gateway. Its order_id is the
idempotency key for every verification path.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict

from voxpost.core.database import as_utc

ORDER_CREATED = "created"
ORDER_PAID = "paid"
ORDER_FAILED = "failed"
ORDER_CANCELLED = "cancelled"

ORDER_STATUSES = (ORDER_CREATED, ORDER_PAID, ORDER_FAILED, ORDER_CANCELLED)


class PaymentOrder(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    order_id: str
    user_id: int
    plan_type: str
    amount: int
    status: str = ORDER_CREATED
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @property
    def is_paid(self) -> bool:
        return self.status == ORDER_PAID

    @classmethod
    def from_row(cls, row) -> "PaymentOrder":
        return cls(
            id=row.id,
            order_id=row.order_id,
            user_id=row.user_id,
            plan_type=row.plan_type,
            amount=row.amount,
            status=row.status,
            paid_at=as_utc(row.paid_at),
            created_at=as_utc(row.created_at),
        )

    def public_dict(self) -> dict:
        return {
            "orderId": self.order_id,
            "planType": self.plan_type,
            "amount": self.amount,
            "status": self.status,
            "paidAt": self.paid_at.isoformat() if self.paid_at else None,
        }
