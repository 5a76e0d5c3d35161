from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .gateway import GatewaySettings, build_payment_url
from .repository import OrderRecord, OrderRepository, PaymentRecord

logger = logging.getLogger(__name__)

# Order states
PENDING_PAYMENT = "PENDING_PAYMENT"
PENDING = "PENDING"
CANCELLED = "CANCELLED"

# Payment states
PAYMENT_PENDING = "PENDING"
PAYMENT_SUCCESS = "SUCCESS"
PAYMENT_FAILED = "FAILED"
PAYMENT_REFUNDING = "REFUNDING"

COD = "COD"
VNPAY = "VNPAY"


class OrderNotFound(Exception):
    """Raised when an order does not exist or belongs to somebody else."""


class PaymentNotFound(Exception):
    """Raised when a payment id is unknown."""


class PaymentStateConflict(Exception):
    """Raised when a payment already sits in a terminal state that contradicts the request."""


class OrderNotPayable(Exception):
    """Raised when a gateway payment is requested for an order that cannot take one."""


@dataclass(frozen=True)
class OrderView:
    order: OrderRecord
    payment: Optional[PaymentRecord]


@dataclass(frozen=True)
class GatewayPayment:
    payment: PaymentRecord
    payment_url: str


class OrderPaymentService:
    def __init__(self, repository: OrderRepository, gateway: GatewaySettings):
        self._repo = repository
        self._gateway = gateway

    def place_order(
        self,
        user_id: str,
        total_amount: float,
        method: str,
        address: str | None = None,
    ) -> OrderView:
        # COD orders are settled on delivery and go straight to staff approval.
        order_status = PENDING if method == COD else PENDING_PAYMENT
        payment_status = PAYMENT_SUCCESS if method == COD else PAYMENT_PENDING
        order = self._repo.create_order(user_id, total_amount, order_status, address)
        payment = self._repo.create_payment(
            order.id,
            method,
            payment_status,
            self._gateway.to_settlement_amount(total_amount),
        )
        self._repo.link_payment(order.id, payment.id)
        logger.info(
            "Order placed id=%s user=%s method=%s payment=%s status=%s",
            order.id,
            user_id,
            method,
            payment.id,
            payment.status,
        )
        return self.get_order(order.id)

    def get_order(self, order_id: int, user_id: str | None = None) -> OrderView:
        order = self._repo.get_order(order_id)
        if order is None or (user_id is not None and order.user_id != user_id):
            raise OrderNotFound(f"Order {order_id} not found.")
        payment = self._repo.get_payment(order.payment_id) if order.payment_id else None
        return OrderView(order=order, payment=payment)

    def list_orders_for_user(self, user_id: str, limit: int = 50) -> list[OrderView]:
        views = []
        for order in self._repo.list_orders_for_user(user_id, limit=limit):
            payment = self._repo.get_payment(order.payment_id) if order.payment_id else None
            views.append(OrderView(order=order, payment=payment))
        return views

    def get_payment(self, payment_id: int) -> PaymentRecord:
        record = self._repo.get_payment(payment_id)
        if record is None:
            raise PaymentNotFound(f"Payment {payment_id} not found.")
        return record

    def mark_success(self, payment_id: int) -> PaymentRecord:
        """Settle a payment. Safe to call repeatedly for the same id."""
        record = self.get_payment(payment_id)
        applied = self._repo.transition_payment(
            payment_id, expected=PAYMENT_PENDING, status=PAYMENT_SUCCESS
        )
        current = self.get_payment(payment_id)
        if current.status != PAYMENT_SUCCESS:
            raise PaymentStateConflict(
                f"Payment {payment_id} is {current.status}, cannot mark it as SUCCESS."
            )
        order = self._repo.get_order(record.order_id)
        if order is not None and order.status == CANCELLED:
            self._queue_refund(payment_id)
            raise PaymentStateConflict(
                f"Order {record.order_id} was cancelled, payment {payment_id} is queued for refund."
            )
        # Runs on replays too so a crash between the two writes heals itself.
        self._repo.transition_order(record.order_id, expected=PENDING_PAYMENT, status=PENDING)
        if applied:
            logger.info("Payment settled id=%s order=%s", payment_id, record.order_id)
        else:
            logger.info("Payment id=%s was already settled", payment_id)
        return current

    def mark_failed(self, payment_id: int) -> PaymentRecord:
        self.get_payment(payment_id)
        applied = self._repo.transition_payment(
            payment_id, expected=PAYMENT_PENDING, status=PAYMENT_FAILED
        )
        current = self.get_payment(payment_id)
        if current.status != PAYMENT_FAILED:
            raise PaymentStateConflict(
                f"Payment {payment_id} is {current.status}, cannot mark it as FAILED."
            )
        if applied:
            logger.info("Payment failed id=%s order=%s", payment_id, current.order_id)
        return current

    def start_gateway_payment(
        self, order_id: int, user_id: str, client_ip: str = "127.0.0.1"
    ) -> GatewayPayment:
        """Return a gateway URL for the order, opening a fresh payment after a failure."""
        view = self.get_order(order_id, user_id=user_id)
        if view.order.status != PENDING_PAYMENT:
            raise OrderNotPayable(f"Order {order_id} is {view.order.status}.")

        payment = view.payment
        if payment is None or payment.method != VNPAY:
            raise OrderNotPayable(f"Order {order_id} is not paid through the gateway.")
        if payment.status == PAYMENT_SUCCESS:
            raise PaymentStateConflict(f"Order {order_id} is already paid.")
        if payment.status != PAYMENT_PENDING:
            payment = self._repo.create_payment(
                order_id,
                VNPAY,
                PAYMENT_PENDING,
                self._gateway.to_settlement_amount(view.order.total_amount),
            )
            self._repo.link_payment(order_id, payment.id)
            logger.info("Opened retry payment id=%s for order=%s", payment.id, order_id)

        url = build_payment_url(self._gateway, payment, client_ip=client_ip)
        return GatewayPayment(payment=payment, payment_url=url)

    def cancel_order(self, order_id: int, user_id: str, reason: str | None = None) -> OrderView:
        view = self.get_order(order_id, user_id=user_id)
        if view.order.status not in {PENDING_PAYMENT, PENDING}:
            raise OrderNotPayable(f"Order {order_id} is {view.order.status} and cannot be cancelled.")
        self._repo.cancel_order(order_id, reason)
        logger.info("Order cancelled id=%s reason=%s", order_id, reason)
        payment = view.payment
        if payment is not None and payment.method == VNPAY:
            self._release_payment(payment.id)
        return self.get_order(order_id)

    def _release_payment(self, payment_id: int) -> None:
        # An unpaid gateway payment is closed; one that already went through goes to refund.
        if self._repo.transition_payment(
            payment_id, expected=PAYMENT_PENDING, status=PAYMENT_FAILED
        ):
            logger.info("Payment id=%s closed by cancellation", payment_id)
            return
        self._queue_refund(payment_id)

    def _queue_refund(self, payment_id: int) -> None:
        if self._repo.transition_payment(
            payment_id, expected=PAYMENT_SUCCESS, status=PAYMENT_REFUNDING
        ):
            logger.warning("Payment id=%s belongs to a cancelled order, queued for refund", payment_id)
