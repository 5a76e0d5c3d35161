from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

from .repository import PaymentRecord

VNPAY_TIMEZONE = timezone(timedelta(hours=7))
VNPAY_DATE_FORMAT = "%Y%m%d%H%M%S"


@dataclass(frozen=True)
class GatewaySettings:
    pay_url: str
    tmn_code: str
    return_url: str
    vnd_per_usd: float
    expires_after: timedelta = timedelta(minutes=15)

    @classmethod
    def from_env(cls) -> "GatewaySettings":
        rate = float(os.environ.get("VND_PER_USD", "26355"))
        if rate <= 0:
            raise RuntimeError("VND_PER_USD must be positive")
        return cls(
            pay_url=os.environ.get(
                "VNPAY_PAY_URL", "https://sandbox.vnpayment.vn/paymentv2/vpcpay.html"
            ),
            tmn_code=os.environ.get("VNPAY_TMN_CODE", "BOOKSTORE"),
            return_url=os.environ.get("VNPAY_RETURN_URL", "http://localhost:8084/order-confirmed"),
            vnd_per_usd=rate,
        )

    def to_settlement_amount(self, total_amount: float) -> float:
        return round(total_amount * self.vnd_per_usd)


def build_payment_url(
    settings: GatewaySettings,
    payment: PaymentRecord,
    *,
    client_ip: str = "127.0.0.1",
    now: datetime | None = None,
) -> str:
    """Build the redirect URL that sends the customer to the VNPay checkout.

    ``vnp_TxnRef`` carries the internal payment id so the return leg can be
    matched without guessing. Parameters are emitted in sorted order, the way
    the gateway expects them.
    """
    created = (now or datetime.now(timezone.utc)).astimezone(VNPAY_TIMEZONE)
    params = {
        "vnp_Version": "2.1.0",
        "vnp_Command": "pay",
        "vnp_TmnCode": settings.tmn_code,
        "vnp_Amount": str(int(round(payment.amount * 100))),
        "vnp_CurrCode": "VND",
        "vnp_TxnRef": str(payment.id),
        "vnp_OrderInfo": f"Thanh toan don hang:{payment.order_id}",
        "vnp_OrderType": "other",
        "vnp_Locale": "vn",
        "vnp_IpAddr": client_ip,
        "vnp_ReturnUrl": settings.return_url,
        "vnp_CreateDate": created.strftime(VNPAY_DATE_FORMAT),
        "vnp_ExpireDate": (created + settings.expires_after).strftime(VNPAY_DATE_FORMAT),
    }
    query = urlencode(sorted(params.items()))
    return f"{settings.pay_url}?{query}"
