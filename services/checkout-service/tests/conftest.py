from __future__ import annotations

from typing import Callable, Optional

import pytest

from checkout_service.errors import (
    BackendUnavailable,
    OrderNotFound,
    PaymentNotFound,
    PaymentStateConflict,
)
from checkout_service.schemas import GatewayRedirect, OrderSnapshot, PaymentSnapshot


class FakeOrderService:
    """In-memory stand-in for the order service with the same contract as the HTTP client."""

    def __init__(self) -> None:
        self.orders: dict[int, dict] = {}
        self.payments: dict[int, dict] = {}
        self.calls: list[tuple] = []
        self.unavailable: set[str] = set()
        # Hook to simulate another tab settling the payment between our read and write.
        self.before_write: Optional[Callable[[int], None]] = None
        # When set, replaying a transition answers 409 instead of the settled record.
        self.strict_replays = False

    def add_order(
        self,
        order_id: int,
        total_amount: float,
        *,
        user_id: str = "user-1",
        method: str = "VNPAY",
        payment_status: str = "PENDING",
        rate: float = 25000,
    ) -> int:
        payment_id = 100 + order_id
        self.orders[order_id] = {
            "id": order_id,
            "user_id": user_id,
            "status": "PENDING_PAYMENT",
            "total_amount": total_amount,
            "payment_id": payment_id,
        }
        self.payments[payment_id] = {
            "id": payment_id,
            "order_id": order_id,
            "method": method,
            "status": payment_status,
            "amount": total_amount * rate,
        }
        return payment_id

    def status_of(self, payment_id: int) -> str:
        return self.payments[payment_id]["status"]

    def order_status_of(self, order_id: int) -> str:
        return self.orders[order_id]["status"]

    @property
    def writes(self) -> list[tuple]:
        return [call for call in self.calls if call[0] in {"mark_success", "mark_failed"}]

    def _check(self, operation: str) -> None:
        if operation in self.unavailable:
            raise BackendUnavailable(f"{operation} unavailable")

    def _snapshot(self, payment_id: int) -> PaymentSnapshot:
        return PaymentSnapshot.model_validate(self.payments[payment_id])

    async def list_my_orders(self, user_id: str) -> list[OrderSnapshot]:
        self.calls.append(("list_my_orders", user_id))
        self._check("list_my_orders")
        return [
            OrderSnapshot(
                id=order["id"],
                user_id=order["user_id"],
                status=order["status"],
                total_amount=order["total_amount"],
                payment=self._snapshot(order["payment_id"]),
            )
            for order in self.orders.values()
            if order["user_id"] == user_id
        ]

    async def get_order(self, order_id: int) -> OrderSnapshot:
        self.calls.append(("get_order", order_id))
        self._check("get_order")
        if order_id not in self.orders:
            raise OrderNotFound(f"order {order_id}")
        order = self.orders[order_id]
        return OrderSnapshot(
            id=order["id"],
            user_id=order["user_id"],
            status=order["status"],
            total_amount=order["total_amount"],
            payment=self._snapshot(order["payment_id"]),
        )

    async def get_payment(self, payment_id: int) -> PaymentSnapshot:
        self.calls.append(("get_payment", payment_id))
        self._check("get_payment")
        if payment_id not in self.payments:
            raise PaymentNotFound(f"payment {payment_id}")
        return self._snapshot(payment_id)

    async def mark_payment_success(self, payment_id: int) -> PaymentSnapshot:
        return self._transition("mark_success", payment_id, "SUCCESS")

    async def mark_payment_failed(self, payment_id: int) -> PaymentSnapshot:
        return self._transition("mark_failed", payment_id, "FAILED")

    async def create_gateway_payment(self, order_id: int, user_id: str) -> GatewayRedirect:
        self.calls.append(("create_gateway_payment", order_id))
        self._check("create_gateway_payment")
        order = self.orders.get(order_id)
        if order is None or order["user_id"] != user_id:
            raise OrderNotFound(f"order {order_id}")
        payment_id = order["payment_id"]
        if self.status_of(payment_id) == "SUCCESS":
            raise PaymentStateConflict(f"order {order_id} already paid")
        return GatewayRedirect(
            payment_id=payment_id,
            order_id=order_id,
            payment_url=f"https://gateway.test/pay?vnp_TxnRef={payment_id}",
        )

    def _transition(self, operation: str, payment_id: int, target: str) -> PaymentSnapshot:
        self.calls.append((operation, payment_id))
        self._check(operation)
        if self.before_write is not None:
            hook, self.before_write = self.before_write, None
            hook(payment_id)
        if payment_id not in self.payments:
            raise PaymentNotFound(f"payment {payment_id}")
        payment = self.payments[payment_id]
        if payment["status"] == "PENDING":
            payment["status"] = target
            if target == "SUCCESS":
                self.orders[payment["order_id"]]["status"] = "PENDING"
        elif payment["status"] != target or self.strict_replays:
            raise PaymentStateConflict(f"payment {payment_id} is {payment['status']}")
        return self._snapshot(payment_id)


@pytest.fixture()
def order_service() -> FakeOrderService:
    return FakeOrderService()


def gateway_params(**overrides) -> dict:
    params = {
        "vnp_Amount": "25000000",
        "vnp_BankCode": "NCB",
        "vnp_BankTranNo": "VNP14226112",
        "vnp_OrderInfo": "Thanh toan don hang:1",
        "vnp_PayDate": "20251124213344",
        "vnp_ResponseCode": "00",
        "vnp_TransactionNo": "14226112",
        "vnp_TxnRef": "101",
    }
    params.update(overrides)
    return {key: value for key, value in params.items() if value is not None}


@pytest.fixture()
def make_params():
    return gateway_params
