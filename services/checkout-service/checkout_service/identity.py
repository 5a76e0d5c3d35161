"""Map a gateway return to the internal payment it settles.

Strategies are tried in order and the first hit wins:

1. the reference echoed by the gateway (``vnp_TxnRef``),
2. the pending-payment marker the checkout left in a cookie before redirecting,
3. an amount heuristic over the caller's own pending gateway orders.

When the caller is known, a reference or marker pointing at somebody else's
order is ignored rather than trusted.

The heuristic exists because some deployments lose the reference somewhere
between checkout and return. It refuses to guess: unless exactly one order
fits, nothing is resolved and nothing gets mutated downstream.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .callback import CallbackPayload
from .errors import AmbiguousMatch, NoIdentifiableField, OrderNotFound, PaymentNotFound
from .order_client import OrderServiceClient
from .schemas import PaymentMethod, PaymentSnapshot, PaymentStatus

logger = logging.getLogger(__name__)

# Order status while the gateway payment is still open.
AWAITING_PAYMENT = "PENDING_PAYMENT"


class ResolutionStrategy(str, Enum):
    EXPLICIT_REFERENCE = "explicit_reference"
    PENDING_MARKER = "pending_marker"
    AMOUNT_HEURISTIC = "amount_heuristic"


@dataclass(frozen=True)
class Resolution:
    payment: PaymentSnapshot
    strategy: ResolutionStrategy

    @property
    def payment_id(self) -> int:
        return self.payment.id


class IdentityResolver:
    def __init__(self, client: OrderServiceClient, min_rate: float, max_rate: float):
        self._client = client
        self._min_rate = min_rate
        self._max_rate = max_rate

    async def resolve(
        self,
        payload: CallbackPayload,
        pending_marker: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Resolution:
        payment = await self._lookup(payload.reference_id, "reference", user_id)
        if payment is not None:
            return Resolution(payment, ResolutionStrategy.EXPLICIT_REFERENCE)

        payment = await self._lookup(pending_marker, "pending marker", user_id)
        if payment is not None:
            return Resolution(payment, ResolutionStrategy.PENDING_MARKER)

        if payload.amount is None or not user_id:
            raise NoIdentifiableField(
                "Callback has no usable reference, no pending marker and no amount/caller to match on"
            )
        payment = await self._match_by_amount(payload.amount, user_id)
        return Resolution(payment, ResolutionStrategy.AMOUNT_HEURISTIC)

    async def _lookup(
        self, raw_id: Optional[str], source: str, user_id: Optional[str]
    ) -> Optional[PaymentSnapshot]:
        payment_id = parse_payment_id(raw_id)
        if payment_id is None:
            if raw_id:
                logger.info("Ignoring %s %r: not a payment id", source, raw_id)
            return None
        try:
            payment = await self._client.get_payment(payment_id)
        except PaymentNotFound:
            logger.info("Ignoring %s %s: unknown payment", source, payment_id)
            return None
        if payment.method != PaymentMethod.VNPAY:
            logger.info("Ignoring %s %s: payment method is %s", source, payment_id, payment.method.value)
            return None
        if user_id and not await self._belongs_to(payment, user_id):
            logger.warning("Ignoring %s %s: payment belongs to another customer", source, payment_id)
            return None
        return payment

    async def _belongs_to(self, payment: PaymentSnapshot, user_id: str) -> bool:
        try:
            order = await self._client.get_order(payment.order_id)
        except OrderNotFound:
            return False
        return order.user_id == user_id

    async def _match_by_amount(self, amount: float, user_id: str) -> PaymentSnapshot:
        logger.warning(
            "Falling back to amount heuristic amount=%.2f user=%s; the gateway reference did not survive the round trip",
            amount,
            user_id,
        )
        candidates = []
        for order in await self._client.list_my_orders(user_id):
            if order.status != AWAITING_PAYMENT:
                continue
            payment = order.payment
            if payment is None or payment.status != PaymentStatus.PENDING:
                continue
            if payment.method != PaymentMethod.VNPAY or order.total_amount <= 0:
                continue
            implied_rate = amount / order.total_amount
            logger.debug("Order %s total=%.2f implied_rate=%.2f", order.id, order.total_amount, implied_rate)
            if self._min_rate <= implied_rate <= self._max_rate:
                candidates.append(payment)

        if len(candidates) != 1:
            logger.warning("Amount heuristic found %d candidates for user=%s", len(candidates), user_id)
            raise AmbiguousMatch(len(candidates))

        logger.warning(
            "Amount heuristic matched payment=%s order=%s", candidates[0].id, candidates[0].order_id
        )
        return candidates[0]


def parse_payment_id(raw: Optional[str]) -> Optional[int]:
    if raw is None:
        return None
    raw = raw.strip()
    if not (raw.isascii() and raw.isdigit()):
        return None
    value = int(raw)
    return value if value > 0 else None
