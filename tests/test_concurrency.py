from dataclasses import replace
from datetime import datetime, timezone

import pytest

from domain.order.entity import DeliveryStatus, OrderStatus
from domain.order.exceptions import ConcurrentUpdateException
from domain.order.state_machine import TransitionEvent
from shared.codes.order_codes import OrderCode

from tests.conftest import make_order


def _pending(store):
    return store.add(make_order(
        status=OrderStatus.PENDING_COMMIT,
        delivery_status=None,
        courier_booking_id=None,
        tracking_number=None,
        pickup_scheduled_at=None,
        committed_at=None,
    ))


@pytest.mark.asyncio
async def test_conflict_is_retried_without_second_refund(services, store, gateway, courier):
    store.add(make_order())
    store.conflicts_to_inject = 1

    result = await services.cancellations.buyer_cancel("ord_1", "buyer_1")

    assert result.success is True
    assert len(gateway.refund_calls) == 1
    assert courier.cancel_calls == [("courier-guy", "bk_1")]
    assert store.update_calls == 1
    assert len(store.successful_refunds("ord_1")) == 1
    assert store.get("ord_1").status == OrderStatus.CANCELLED


@pytest.mark.asyncio
async def test_replan_after_concurrent_commit(services, store, gateway, courier):
    _pending(store)

    def seller_commits(s):
        s.orders["ord_1"] = replace(
            s.orders["ord_1"],
            status=OrderStatus.COMMITTED,
            delivery_status=DeliveryStatus.PICKUP_SCHEDULED,
            courier_booking_id="bk_9",
            committed_at=datetime(2026, 3, 2, 9, 59, tzinfo=timezone.utc),
        )

    store.conflicts_to_inject = 1
    store.on_conflict = seller_commits

    result = await services.cancellations.buyer_cancel("ord_1", "buyer_1")

    assert result.success is True
    # second plan sees the commit and cancels the new booking, refund is reused
    assert courier.cancel_calls == [("courier-guy", "bk_9")]
    assert len(gateway.refund_calls) == 1
    order = store.get("ord_1")
    assert order.status == OrderStatus.CANCELLED
    assert order.delivery_status == DeliveryStatus.CANCELLED


@pytest.mark.asyncio
async def test_replan_sees_concurrent_cancel_as_noop(state_machine, store, gateway):
    store.add(make_order(delivery_status=DeliveryStatus.PICKUP_FAILED))

    def cancelled_elsewhere(s):
        s.orders["ord_1"] = replace(
            s.orders["ord_1"],
            status=OrderStatus.CANCELLED_BY_SELLER_AFTER_MISSED_PICKUP,
            delivery_status=DeliveryStatus.CANCELLED,
        )

    store.conflicts_to_inject = 1
    store.on_conflict = cancelled_elsewhere

    outcome = await state_machine.transition(
        "ord_1", event=TransitionEvent.MISSED_PICKUP_EXPIRED
    )

    assert outcome.changed is False
    assert len(gateway.refund_calls) == 1
    assert store.update_calls == 0


@pytest.mark.asyncio
async def test_conflicts_exhaust_retries(services, store, gateway, config):
    store.add(make_order())
    store.conflicts_to_inject = config.conflict_retries + 1

    with pytest.raises(ConcurrentUpdateException):
        await services.state_machine.transition("ord_1", event=TransitionEvent.BUYER_CANCEL, actor_id="buyer_1")

    assert store.update_calls == 0
    assert len(gateway.refund_calls) == 1
    assert store.get("ord_1").status == OrderStatus.COMMITTED


@pytest.mark.asyncio
async def test_exhausted_retries_surface_as_failed_cancel(services, store, config):
    store.add(make_order())
    store.conflicts_to_inject = config.conflict_retries + 1

    result = await services.cancellations.buyer_cancel("ord_1", "buyer_1")

    assert result.success is False
    assert result.error_code == OrderCode.CONCURRENT_UPDATE
