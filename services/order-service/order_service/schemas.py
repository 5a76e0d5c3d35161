from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field

from .repository import PaymentRecord
from .service import OrderView


class HealthResponse(BaseModel):
    status: Literal["ok"]


class CreateOrderRequest(BaseModel):
    total_amount: float = Field(..., gt=0, description="Order total in USD")
    method: Literal["COD", "VNPAY"]
    address: Optional[str] = None


class CancelOrderRequest(BaseModel):
    reason: Optional[str] = None


class PaymentSummary(BaseModel):
    id: int
    order_id: int
    method: str
    status: str
    amount: float
    paid_at: Optional[str] = None
    created_at: str

    @classmethod
    def from_record(cls, record: PaymentRecord) -> "PaymentSummary":
        return cls(
            id=record.id,
            order_id=record.order_id,
            method=record.method,
            status=record.status,
            amount=record.amount,
            paid_at=record.paid_at,
            created_at=record.created_at,
        )


class OrderSummary(BaseModel):
    id: int
    user_id: str
    status: str
    total_amount: float
    address: Optional[str]
    cancel_reason: Optional[str]
    created_at: str
    payment: Optional[PaymentSummary]

    @classmethod
    def from_view(cls, view: OrderView) -> "OrderSummary":
        order = view.order
        return cls(
            id=order.id,
            user_id=order.user_id,
            status=order.status,
            total_amount=order.total_amount,
            address=order.address,
            cancel_reason=order.cancel_reason,
            created_at=order.created_at,
            payment=PaymentSummary.from_record(view.payment) if view.payment else None,
        )


class GatewayPaymentUrl(BaseModel):
    payment_id: int
    order_id: int
    payment_url: str
