from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional

from .callback import CallbackPayload, parse_callback
from .engine import ReconciliationEngine
from .errors import (
    FailureReason,
    NotAGatewayCallback,
    ReconciliationError,
    TerminalStateConflict,
)
from .guard import IdempotencyGuard, ReconciliationAttempt
from .identity import IdentityResolver

logger = logging.getLogger(__name__)


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    CONFIRMED = "confirmed"


@dataclass(frozen=True)
class ReturnOutcome:
    status: OutcomeStatus
    order_id: Optional[int] = None
    reason: Optional[FailureReason] = None
    payload: Optional[CallbackPayload] = None
    # True once the payment reached a terminal state; the pending marker must go.
    terminal: bool = False

    @property
    def succeeded(self) -> bool:
        return self.status != OutcomeStatus.FAILURE


class PaymentReturnFlow:
    """Gateway return handling: parse, resolve, apply, all behind the guard.

    Every :class:`ReconciliationError` is caught here and collapsed into a
    success/failure outcome. The reason is logged and kept on the outcome for
    callers that want it; it is not meant for end users.
    """

    def __init__(
        self,
        resolver: IdentityResolver,
        engine: ReconciliationEngine,
        guard: IdempotencyGuard,
        success_code: str = "00",
    ):
        self._resolver = resolver
        self._engine = engine
        self._guard = guard
        self._success_code = success_code

    async def handle(
        self,
        params: Mapping[str, str],
        *,
        attempt: ReconciliationAttempt,
        pending_marker: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Optional[ReturnOutcome]:
        """Reconcile one gateway return.

        Returns None when the guard suppressed the run (duplicate trigger on the
        same attempt, or the attempt was closed before the result arrived).
        """
        try:
            payload = parse_callback(params, self._success_code)
        except NotAGatewayCallback as exc:
            logger.info("No gateway callback on return (%s), treating as confirmed order", exc)
            return ReturnOutcome(OutcomeStatus.CONFIRMED)

        return await self._guard.run(
            attempt,
            payload.fingerprint(user_id, pending_marker),
            lambda: self._reconcile(payload, pending_marker, user_id),
        )

    async def _reconcile(
        self,
        payload: CallbackPayload,
        pending_marker: Optional[str],
        user_id: Optional[str],
    ) -> ReturnOutcome:
        logger.info(
            "Gateway return code=%s ref=%s amount=%s txn=%s",
            payload.response_code,
            payload.reference_id,
            payload.amount,
            payload.transaction_no,
        )
        try:
            resolution = await self._resolver.resolve(payload, pending_marker, user_id)
        except ReconciliationError as exc:
            logger.warning("Could not resolve payment for gateway return: %s", exc)
            return self._failure(payload, exc.reason)

        logger.info(
            "Resolved payment=%s order=%s via %s",
            resolution.payment_id,
            resolution.payment.order_id,
            resolution.strategy.value,
        )
        try:
            result = await self._engine.apply(resolution.payment_id, payload.succeeded)
        except TerminalStateConflict as exc:
            logger.error("Refusing to reconcile: %s", exc)
            return ReturnOutcome(
                OutcomeStatus.FAILURE,
                order_id=resolution.payment.order_id,
                reason=exc.reason,
                payload=payload,
                terminal=True,
            )
        except ReconciliationError as exc:
            logger.warning("Reconciliation of payment %s aborted: %s", resolution.payment_id, exc)
            return self._failure(payload, exc.reason, order_id=resolution.payment.order_id)

        if result.succeeded:
            return ReturnOutcome(
                OutcomeStatus.SUCCESS,
                order_id=result.order_id,
                payload=payload,
                terminal=True,
            )
        return ReturnOutcome(
            OutcomeStatus.FAILURE,
            order_id=result.order_id,
            reason=FailureReason.GATEWAY_REPORTED_FAILURE,
            payload=payload,
            terminal=True,
        )

    @staticmethod
    def _failure(
        payload: CallbackPayload,
        reason: FailureReason,
        order_id: Optional[int] = None,
    ) -> ReturnOutcome:
        # A declined payment stays declined even when we could not find it.
        if not payload.succeeded:
            reason = FailureReason.GATEWAY_REPORTED_FAILURE
        return ReturnOutcome(OutcomeStatus.FAILURE, order_id=order_id, reason=reason, payload=payload)
