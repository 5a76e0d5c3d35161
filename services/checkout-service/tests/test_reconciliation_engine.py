from __future__ import annotations

import asyncio

import pytest

from checkout_service.engine import ReconciliationEngine, Transition
from checkout_service.errors import BackendUnavailable, PaymentNotFound, TerminalStateConflict


@pytest.fixture()
def engine(order_service):
    return ReconciliationEngine(order_service)


def test_success_moves_pending_to_success(engine, order_service):
    payment_id = order_service.add_order(1, 10.0)

    result = asyncio.run(engine.apply(payment_id, True))

    assert result.transition == Transition.APPLIED
    assert result.succeeded
    assert result.order_id == 1
    assert order_service.status_of(payment_id) == "SUCCESS"
    assert order_service.order_status_of(1) == "PENDING"


def test_success_replay_writes_nothing(engine, order_service):
    payment_id = order_service.add_order(1, 10.0)

    asyncio.run(engine.apply(payment_id, True))
    result = asyncio.run(engine.apply(payment_id, True))

    assert result.transition == Transition.ALREADY_RECONCILED
    assert result.succeeded
    assert order_service.writes == [("mark_success", payment_id)]


def test_failure_moves_pending_to_failed(engine, order_service):
    payment_id = order_service.add_order(1, 10.0)

    result = asyncio.run(engine.apply(payment_id, False))

    assert result.transition == Transition.APPLIED
    assert not result.succeeded
    assert order_service.status_of(payment_id) == "FAILED"
    assert order_service.order_status_of(1) == "PENDING_PAYMENT"


def test_failure_never_overwrites_success(engine, order_service):
    payment_id = order_service.add_order(1, 10.0, payment_status="SUCCESS")

    with pytest.raises(TerminalStateConflict):
        asyncio.run(engine.apply(payment_id, False))

    assert order_service.status_of(payment_id) == "SUCCESS"
    assert order_service.writes == []


def test_success_never_overwrites_failure(engine, order_service):
    payment_id = order_service.add_order(1, 10.0, payment_status="FAILED")

    with pytest.raises(TerminalStateConflict) as excinfo:
        asyncio.run(engine.apply(payment_id, True))

    assert excinfo.value.status == "FAILED"
    assert order_service.status_of(payment_id) == "FAILED"
    assert order_service.writes == []


def test_lost_race_is_read_back(engine, order_service):
    payment_id = order_service.add_order(1, 10.0)
    order_service.strict_replays = True

    def other_tab(pid):
        order_service.payments[pid]["status"] = "SUCCESS"

    order_service.before_write = other_tab

    result = asyncio.run(engine.apply(payment_id, True))

    assert result.transition == Transition.ALREADY_RECONCILED
    assert result.succeeded
    assert order_service.calls[-1] == ("get_payment", payment_id)


def test_lost_race_to_contradicting_outcome(engine, order_service):
    payment_id = order_service.add_order(1, 10.0)

    def other_tab(pid):
        order_service.payments[pid]["status"] = "FAILED"

    order_service.before_write = other_tab

    with pytest.raises(TerminalStateConflict):
        asyncio.run(engine.apply(payment_id, True))
    assert order_service.status_of(payment_id) == "FAILED"


def test_unknown_payment(engine):
    with pytest.raises(PaymentNotFound):
        asyncio.run(engine.apply(999, True))


def test_backend_outage_leaves_payment_pending(engine, order_service):
    payment_id = order_service.add_order(1, 10.0)
    order_service.unavailable.add("mark_success")

    with pytest.raises(BackendUnavailable):
        asyncio.run(engine.apply(payment_id, True))
    assert order_service.status_of(payment_id) == "PENDING"


def test_concurrent_applies_write_once(engine, order_service):
    payment_id = order_service.add_order(1, 10.0)

    async def both():
        return await asyncio.gather(engine.apply(payment_id, True), engine.apply(payment_id, True))

    first, second = asyncio.run(both())

    assert {first.transition, second.transition} == {Transition.APPLIED, Transition.ALREADY_RECONCILED}
    assert order_service.writes == [("mark_success", payment_id)]
