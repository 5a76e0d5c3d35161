from __future__ import annotations

import asyncio
import logging
import weakref
from dataclasses import dataclass
from enum import Enum

from .errors import PaymentStateConflict, TerminalStateConflict
from .order_client import OrderServiceClient
from .schemas import PaymentSnapshot, PaymentStatus

logger = logging.getLogger(__name__)


class Transition(str, Enum):
    APPLIED = "applied"
    ALREADY_RECONCILED = "already_reconciled"


@dataclass(frozen=True)
class ReconciliationResult:
    payment: PaymentSnapshot
    transition: Transition

    @property
    def order_id(self) -> int:
        return self.payment.order_id

    @property
    def succeeded(self) -> bool:
        return self.payment.status == PaymentStatus.SUCCESS


class ReconciliationEngine:
    """Applies a gateway outcome to a payment: PENDING -> SUCCESS | FAILED.

    Both targets are terminal. Replaying an outcome that already landed is not an
    error; it is reported as ``ALREADY_RECONCILED``. An outcome that contradicts
    the terminal state already on record raises :class:`TerminalStateConflict`
    and never overwrites it.
    """

    def __init__(self, client: OrderServiceClient):
        self._client = client
        self._locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = weakref.WeakValueDictionary()

    async def apply(self, payment_id: int, succeeded: bool) -> ReconciliationResult:
        async with self._lock_for(payment_id):
            current = await self._client.get_payment(payment_id)
            if succeeded:
                return await self._settle(current)
            return await self._fail(current)

    async def _settle(self, current: PaymentSnapshot) -> ReconciliationResult:
        if current.status == PaymentStatus.SUCCESS:
            logger.info("Payment %s already SUCCESS, nothing to write", current.id)
            return ReconciliationResult(current, Transition.ALREADY_RECONCILED)
        if current.status != PaymentStatus.PENDING:
            raise TerminalStateConflict(current.id, current.status.value, PaymentStatus.SUCCESS.value)

        try:
            updated = await self._client.mark_payment_success(current.id)
            transition = Transition.APPLIED
        except PaymentStateConflict:
            # Somebody else moved the record first; the system of record decides.
            updated = await self._client.get_payment(current.id)
            transition = Transition.ALREADY_RECONCILED

        if updated.status != PaymentStatus.SUCCESS:
            logger.error(
                "Payment %s ended %s after a success outcome", current.id, updated.status.value
            )
            raise TerminalStateConflict(current.id, updated.status.value, PaymentStatus.SUCCESS.value)

        logger.info(
            "Payment %s SUCCESS order=%s transition=%s", updated.id, updated.order_id, transition.value
        )
        return ReconciliationResult(updated, transition)

    async def _fail(self, current: PaymentSnapshot) -> ReconciliationResult:
        if current.status == PaymentStatus.FAILED:
            return ReconciliationResult(current, Transition.ALREADY_RECONCILED)
        if current.status != PaymentStatus.PENDING:
            logger.error(
                "Failure outcome for payment %s which is already %s", current.id, current.status.value
            )
            raise TerminalStateConflict(current.id, current.status.value, PaymentStatus.FAILED.value)

        try:
            updated = await self._client.mark_payment_failed(current.id)
            transition = Transition.APPLIED
        except PaymentStateConflict:
            updated = await self._client.get_payment(current.id)
            transition = Transition.ALREADY_RECONCILED

        if updated.status != PaymentStatus.FAILED:
            raise TerminalStateConflict(current.id, updated.status.value, PaymentStatus.FAILED.value)

        logger.info("Payment %s FAILED order=%s", updated.id, updated.order_id)
        return ReconciliationResult(updated, transition)

    def _lock_for(self, payment_id: int) -> asyncio.Lock:
        lock = self._locks.get(payment_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[payment_id] = lock
        return lock
