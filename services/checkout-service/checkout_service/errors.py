from __future__ import annotations

from enum import Enum


class FailureReason(str, Enum):
    AMBIGUOUS_CALLBACK = "ambiguous_callback"
    BACKEND_UNAVAILABLE = "backend_unavailable"
    GATEWAY_REPORTED_FAILURE = "gateway_reported_failure"
    TERMINAL_STATE_CONFLICT = "terminal_state_conflict"


class NotAGatewayCallback(Exception):
    """Raised when the query string does not carry a gateway return."""


class ReconciliationError(Exception):
    """Base class for everything that stops a reconciliation attempt."""

    reason = FailureReason.BACKEND_UNAVAILABLE


class AmbiguousCallback(ReconciliationError):
    """The callback could not be tied to exactly one payment."""

    reason = FailureReason.AMBIGUOUS_CALLBACK


class NoIdentifiableField(AmbiguousCallback):
    """Neither a reference, a pending marker nor a usable amount was available."""


class AmbiguousMatch(AmbiguousCallback):
    """The amount heuristic found zero or several candidate orders."""

    def __init__(self, candidates: int):
        super().__init__(f"Amount heuristic matched {candidates} candidate orders, expected exactly one.")
        self.candidates = candidates


class BackendUnavailable(ReconciliationError):
    """The order service could not be reached or answered with garbage."""


class PaymentNotFound(ReconciliationError):
    """The order service does not know the payment id."""


class OrderNotFound(ReconciliationError):
    """The order service does not know the order id."""


class PaymentStateConflict(ReconciliationError):
    """The order service refused a transition because the record is in another terminal state."""

    reason = FailureReason.TERMINAL_STATE_CONFLICT


class TerminalStateConflict(ReconciliationError):
    """The payment settled in a state that contradicts the gateway outcome."""

    reason = FailureReason.TERMINAL_STATE_CONFLICT

    def __init__(self, payment_id: int, status: str, requested: str):
        super().__init__(f"Payment {payment_id} is {status}, refusing to mark it {requested}.")
        self.payment_id = payment_id
        self.status = status
