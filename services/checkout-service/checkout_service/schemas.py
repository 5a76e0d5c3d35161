from __future__ import annotations

from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    REFUNDING = "REFUNDING"
    REFUNDED = "REFUNDED"


class PaymentMethod(str, Enum):
    COD = "COD"
    VNPAY = "VNPAY"


class PaymentSnapshot(BaseModel):
    """Payment record as reported by the order service."""

    id: int
    order_id: int
    method: PaymentMethod
    status: PaymentStatus
    amount: float
    paid_at: Optional[str] = None
    created_at: Optional[str] = None


class OrderSnapshot(BaseModel):
    id: int
    user_id: str
    status: str
    total_amount: float
    payment: Optional[PaymentSnapshot] = None


class GatewayRedirect(BaseModel):
    payment_id: int
    order_id: int
    payment_url: str


class HealthResponse(BaseModel):
    status: Literal["ok"]


class TransactionDetails(BaseModel):
    amount: Optional[float]
    bank_code: Optional[str]
    bank_transaction_no: Optional[str]
    transaction_no: Optional[str]
    order_info: Optional[str]
    paid_at: Optional[str]


class ReturnOutcomeResponse(BaseModel):
    status: Literal["success", "failure", "confirmed"]
    order_id: Optional[int] = None
    message: str
    next_path: str
    transaction: Optional[TransactionDetails] = None

