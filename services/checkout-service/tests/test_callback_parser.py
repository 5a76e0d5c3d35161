from __future__ import annotations

from datetime import datetime

import pytest

from checkout_service.callback import parse_amount, parse_callback
from checkout_service.errors import NotAGatewayCallback


def test_parses_full_return(make_params):
    payload = parse_callback(make_params())

    assert payload.response_code == "00"
    assert payload.succeeded is True
    assert payload.reference_id == "101"
    assert payload.amount == 250000
    assert payload.bank_code == "NCB"
    assert payload.bank_transaction_id == "VNP14226112"
    assert payload.transaction_no == "14226112"
    assert payload.transaction_timestamp == datetime(2025, 11, 24, 21, 33, 44)
    assert payload.pay_date == "2025-11-24 21:33:44"
    assert payload.order_info == "Thanh toan don hang:1"
    assert payload.raw["vnp_TxnRef"] == "101"


def test_failure_code_is_not_success(make_params):
    payload = parse_callback(make_params(vnp_ResponseCode="24"))
    assert payload.succeeded is False


def test_custom_success_code(make_params):
    assert parse_callback(make_params(vnp_ResponseCode="OK"), success_code="OK").succeeded


@pytest.mark.parametrize(
    "params",
    [
        {},
        {"orderId": "12"},
        {"vnp_ResponseCode": "00"},
        {"vnp_Amount": "25000000", "vnp_TxnRef": "101"},
        {"vnp_ResponseCode": "  ", "vnp_TxnRef": "101"},
    ],
)
def test_plain_navigation_is_not_a_callback(params):
    with pytest.raises(NotAGatewayCallback):
        parse_callback(params)


def test_single_identifying_field_is_enough():
    payload = parse_callback({"vnp_ResponseCode": "00", "vnp_TransactionNo": "14226112"})
    assert payload.reference_id is None
    assert payload.amount is None
    assert payload.transaction_no == "14226112"


def test_blank_values_are_absent(make_params):
    payload = parse_callback(make_params(vnp_TxnRef="", vnp_BankCode=" "))
    assert payload.reference_id is None
    assert payload.bank_code is None


def test_malformed_amount_and_date(make_params):
    payload = parse_callback(make_params(vnp_Amount="12,5", vnp_PayDate="yesterday"))
    assert payload.amount is None
    assert payload.transaction_timestamp is None
    assert payload.pay_date is None


@pytest.mark.parametrize("raw,expected", [("100", 1.0), ("2635500", 26355.0), ("0", None), ("-100", None), (None, None)])
def test_parse_amount(raw, expected):
    assert parse_amount(raw) == expected


def test_fingerprint_ignores_order_and_foreign_params(make_params):
    params = make_params()
    reordered = dict(reversed(list(params.items())))
    reordered["utm_source"] = "mail"

    assert parse_callback(params).fingerprint() == parse_callback(reordered).fingerprint()
    assert parse_callback(params).fingerprint() != parse_callback(make_params(vnp_TxnRef="102")).fingerprint()


def test_fingerprint_scope_separates_callers(make_params):
    payload = parse_callback(make_params())

    assert payload.fingerprint("user-1", None) == payload.fingerprint("user-1", None)
    assert payload.fingerprint("user-1", None) != payload.fingerprint("user-2", None)
    assert payload.fingerprint("user-1", "101") != payload.fingerprint("user-1", None)
    assert payload.fingerprint(None) != payload.fingerprint()
