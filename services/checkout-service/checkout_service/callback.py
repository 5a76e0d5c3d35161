"""Parsing of the VNPay return redirect.

The gateway echoes its outcome back as query parameters on the return URL.
Everything in there is untrusted and opaque; this module only lifts the
fields reconciliation needs into a typed payload and decides whether the
request is a gateway return at all.
"""
from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import datetime
from typing import Mapping, Optional

from .errors import NotAGatewayCallback

GATEWAY_PARAM_PREFIX = "vnp_"
PAY_DATE_FORMAT = "%Y%m%d%H%M%S"


@dataclass(frozen=True)
class CallbackPayload:
    response_code: str
    succeeded: bool
    reference_id: Optional[str] = None
    amount: Optional[float] = None
    bank_code: Optional[str] = None
    bank_transaction_id: Optional[str] = None
    transaction_no: Optional[str] = None
    transaction_timestamp: Optional[datetime] = None
    order_info: Optional[str] = None
    raw: Mapping[str, str] = field(default_factory=dict, repr=False)

    def fingerprint(self, *scope: Optional[str]) -> str:
        """Stable digest of the gateway parameters, used to spot repeated returns.

        Extra ``scope`` values (caller, pending marker) are mixed in so the same
        return replayed by different callers gets different digests.
        """
        items = sorted((key, value) for key, value in self.raw.items() if key.startswith(GATEWAY_PARAM_PREFIX))
        digest = hashlib.sha256()
        for key, value in items:
            digest.update(f"{key}={value}\n".encode("utf-8"))
        for part in scope:
            digest.update(f"@{part or ''}\n".encode("utf-8"))
        return digest.hexdigest()

    @property
    def pay_date(self) -> Optional[str]:
        if self.transaction_timestamp is None:
            return None
        return self.transaction_timestamp.strftime("%Y-%m-%d %H:%M:%S")


def parse_callback(params: Mapping[str, str], success_code: str = "00") -> CallbackPayload:
    """Build a payload from the return query, or raise :class:`NotAGatewayCallback`.

    A gateway return needs a response code plus at least one identifying field
    (amount, reference, transaction number or bank transaction). A plain
    navigation, such as the confirmation page of a cash-on-delivery order,
    carries none of them.
    """
    response_code = _field(params, "vnp_ResponseCode")
    reference_id = _field(params, "vnp_TxnRef")
    raw_amount = _field(params, "vnp_Amount")
    transaction_no = _field(params, "vnp_TransactionNo")
    bank_transaction_id = _field(params, "vnp_BankTranNo")

    if response_code is None:
        raise NotAGatewayCallback("vnp_ResponseCode missing")
    if not any((reference_id, raw_amount, transaction_no, bank_transaction_id)):
        raise NotAGatewayCallback("no identifying gateway field present")

    return CallbackPayload(
        response_code=response_code,
        succeeded=response_code == success_code,
        reference_id=reference_id,
        amount=parse_amount(raw_amount),
        bank_code=_field(params, "vnp_BankCode"),
        bank_transaction_id=bank_transaction_id,
        transaction_no=transaction_no,
        transaction_timestamp=parse_pay_date(_field(params, "vnp_PayDate")),
        order_info=_field(params, "vnp_OrderInfo"),
        raw=dict(params),
    )


def parse_amount(value: Optional[str]) -> Optional[float]:
    # VNPay sends the amount multiplied by 100.
    if value is None:
        return None
    try:
        minor_units = int(value)
    except ValueError:
        return None
    if minor_units <= 0:
        return None
    return minor_units / 100


def parse_pay_date(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    try:
        return datetime.strptime(value, PAY_DATE_FORMAT)
    except ValueError:
        return None


def _field(params: Mapping[str, str], name: str) -> Optional[str]:
    value = params.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None
