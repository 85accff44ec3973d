from datetime import datetime, timedelta, timezone

import pytest

from application.dtos.integrations import CourierRebook, GatewayVerification
from domain.order.entity import DeliveryStatus, OrderStatus
from domain.order.exceptions import IllegalTransitionException
from shared.codes.order_codes import OrderCode

from tests.conftest import NOW, make_order


def _failed(store, order_id="ord_1", **overrides):
    data = dict(
        delivery_status=DeliveryStatus.PICKUP_FAILED,
        pickup_failed_at=NOW - timedelta(hours=2),
        pickup_failure_reason="Seller not available",
    )
    data.update(overrides)
    return store.add(make_order(order_id, **data))


@pytest.mark.asyncio
async def test_collection_failed_moves_to_pickup_failed(services, store, gateway, courier, notifier):
    store.add(make_order())

    result = await services.missed_pickups.handle_missed_pickup("ord_1", "Nobody answered the door")

    assert result.success is True
    assert result.delivery_status == "pickup_failed"
    order = store.get("ord_1")
    assert order.status == OrderStatus.COMMITTED
    assert order.delivery_status == DeliveryStatus.PICKUP_FAILED
    assert order.pickup_failed_at == NOW
    assert order.pickup_failure_reason == "Nobody answered the door"
    assert order.delivery_info.pickup_failures == 1
    assert gateway.refund_calls == []
    assert courier.cancel_calls == []
    assert "Courier Pickup Missed" in notifier.titles_for("seller_1")
    assert "Pickup Delayed" in notifier.titles_for("buyer_1")
    assert [e["subject"] for e in notifier.emails] == ["Action Required: Courier Pickup Missed"]


@pytest.mark.asyncio
async def test_missed_pickup_repeat_is_noop(services, store, notifier):
    store.add(make_order())

    await services.missed_pickups.handle_missed_pickup("ord_1")
    again = await services.missed_pickups.handle_missed_pickup("ord_1")

    assert again.already_processed is True
    assert store.get("ord_1").delivery_info.pickup_failures == 1
    assert len(notifier.titles_for("seller_1")) == 1


@pytest.mark.asyncio
async def test_missed_pickup_without_scheduled_pickup_raises(services, store):
    store.add(make_order(delivery_status=DeliveryStatus.IN_TRANSIT))

    with pytest.raises(IllegalTransitionException):
        await services.missed_pickups.handle_missed_pickup("ord_1")


@pytest.mark.asyncio
async def test_reschedule_quote(services, store, config):
    _failed(store)

    quote = await services.missed_pickups.get_reschedule_quote("ord_1", "seller_1")

    assert quote.reschedule_fee == 5000
    assert quote.currency == "ZAR"
    assert quote.courier_service == "courier-guy"
    assert quote.available_times == [
        datetime(2026, 3, 3, 9, 0, tzinfo=timezone.utc),
        datetime(2026, 3, 4, 9, 0, tzinfo=timezone.utc),
        datetime(2026, 3, 5, 9, 0, tzinfo=timezone.utc),
    ]
    assert quote.quote_id == f"quote_ord_1_{int(NOW.timestamp())}"


@pytest.mark.asyncio
async def test_reschedule_quote_requires_missed_pickup(services, store):
    store.add(make_order())

    with pytest.raises(IllegalTransitionException):
        await services.missed_pickups.get_reschedule_quote("ord_1", "seller_1")


@pytest.mark.asyncio
async def test_reschedule_pickup(services, store, gateway, courier, notifier):
    _failed(store)
    new_time = datetime(2026, 3, 3, 9, 0, tzinfo=timezone.utc)

    result = await services.missed_pickups.reschedule_pickup("ord_1", new_time, "fee_ref_1", "seller_1")

    assert result.success is True
    assert result.reschedule_fee == 5000
    assert gateway.verify_calls == ["fee_ref_1"]
    assert courier.rebook_calls == [("courier-guy", "bk_1", new_time)]
    order = store.get("ord_1")
    assert order.delivery_status == DeliveryStatus.RESCHEDULED_BY_SELLER
    assert order.status == OrderStatus.COMMITTED
    assert order.pickup_scheduled_at == new_time
    assert order.courier_booking_id == "bk_2"
    assert order.tracking_number == "TRK_2"
    assert order.rescheduled_at == NOW
    assert "Delivery Rescheduled" in notifier.titles_for("buyer_1")


@pytest.mark.asyncio
async def test_reschedule_rebook_failure_leaves_order_unchanged(services, store, courier):
    _failed(store)
    courier.rebook_result = CourierRebook(success=False, error="No slots available")

    result = await services.missed_pickups.reschedule_pickup(
        "ord_1", NOW + timedelta(days=1), "fee_ref_1", "seller_1"
    )

    assert result.success is False
    assert result.error_code == OrderCode.REBOOK_FAILED
    assert result.error == "No slots available"
    order = store.get("ord_1")
    assert order.delivery_status == DeliveryStatus.PICKUP_FAILED
    assert order.rescheduled_at is None


@pytest.mark.asyncio
async def test_reschedule_unpaid_fee_is_rejected(services, store, gateway, courier):
    _failed(store)
    gateway.verification = GatewayVerification(verified=False, status="abandoned")

    result = await services.missed_pickups.reschedule_pickup(
        "ord_1", NOW + timedelta(days=1), "fee_ref_1", "seller_1"
    )

    assert result.success is False
    assert result.error_code == OrderCode.PAYMENT_NOT_VERIFIED
    assert courier.rebook_calls == []


@pytest.mark.asyncio
async def test_reschedule_underpaid_fee_is_rejected(services, store, gateway, courier):
    _failed(store)
    gateway.verification = GatewayVerification(verified=True, status="success", amount=2000)

    result = await services.missed_pickups.reschedule_pickup(
        "ord_1", NOW + timedelta(days=1), "fee_ref_1", "seller_1"
    )

    assert result.success is False
    assert result.error_code == OrderCode.PAYMENT_NOT_VERIFIED
    assert courier.rebook_calls == []


@pytest.mark.asyncio
async def test_reschedule_in_the_past_is_rejected(services, store, gateway):
    _failed(store)

    result = await services.missed_pickups.reschedule_pickup(
        "ord_1", NOW - timedelta(hours=1), "fee_ref_1", "seller_1"
    )

    assert result.success is False
    assert gateway.verify_calls == []


@pytest.mark.asyncio
async def test_cancel_after_missed_pickup_refunds(services, store, gateway, courier, notifier):
    _failed(store)

    result = await services.missed_pickups.cancel_after_missed_pickup("ord_1", "seller_1")

    assert result.success is True
    assert result.refund_amount == 25000
    order = store.get("ord_1")
    assert order.status == OrderStatus.CANCELLED_BY_SELLER_AFTER_MISSED_PICKUP
    assert order.delivery_status == DeliveryStatus.CANCELLED
    assert order.cancellation_reason == "Seller cancelled after missing pickup"
    assert courier.cancel_calls == [("courier-guy", "bk_1")]
    assert "Order Cancelled by Seller" in notifier.titles_for("buyer_1")


@pytest.mark.asyncio
async def test_repeated_missed_pickups_warn_seller(services, store, notifier):
    _failed(store, "ord_old", pickup_failed_at=NOW - timedelta(days=10))
    _failed(store)

    result = await services.missed_pickups.cancel_after_missed_pickup("ord_1", "seller_1")

    assert result.success is True
    assert "Pickup Reliability Warning" in notifier.titles_for("seller_1")


@pytest.mark.asyncio
async def test_single_missed_pickup_does_not_warn(services, store, notifier):
    _failed(store, "ord_old", pickup_failed_at=NOW - timedelta(days=45))
    _failed(store)

    await services.missed_pickups.cancel_after_missed_pickup("ord_1", "seller_1")

    assert "Pickup Reliability Warning" not in notifier.titles_for("seller_1")


@pytest.mark.asyncio
async def test_auto_cancel_stale_missed_pickups(services, store, gateway):
    _failed(store, "ord_stale", pickup_failed_at=NOW - timedelta(hours=30))
    _failed(store, "ord_fresh", pickup_failed_at=NOW - timedelta(hours=3))

    report = await services.missed_pickups.auto_cancel_missed_pickups()

    assert report.found == 1
    assert report.processed == 1
    assert report.errors == []
    assert store.get("ord_stale").status == OrderStatus.CANCELLED_BY_SELLER_AFTER_MISSED_PICKUP
    assert store.get("ord_stale").cancellation_reason == "Pickup was not rescheduled in time"
    assert store.get("ord_fresh").status == OrderStatus.COMMITTED


@pytest.mark.asyncio
async def test_auto_cancel_isolates_refund_failures(services, store, gateway):
    _failed(store, "ord_a", pickup_failed_at=NOW - timedelta(hours=30), payment_reference=None)
    _failed(store, "ord_b", pickup_failed_at=NOW - timedelta(hours=26))

    report = await services.missed_pickups.auto_cancel_missed_pickups()

    assert report.found == 2
    assert report.processed == 1
    assert [e["order_id"] for e in report.errors] == ["ord_a"]
    assert store.get("ord_a").status == OrderStatus.COMMITTED
    assert store.get("ord_b").status == OrderStatus.CANCELLED_BY_SELLER_AFTER_MISSED_PICKUP


@pytest.mark.asyncio
async def test_reschedule_fee_pays_for_one_reschedule(services, store, gateway, courier):
    _failed(store)
    first = await services.missed_pickups.reschedule_pickup(
        "ord_1", NOW + timedelta(days=1), "fee_ref_1", "seller_1"
    )
    assert first.success is True
    assert store.get("ord_1").delivery_info.reschedule_payments == ("fee_ref_1",)

    await services.missed_pickups.handle_missed_pickup("ord_1", "Seller not home again")
    second = await services.missed_pickups.reschedule_pickup(
        "ord_1", NOW + timedelta(days=2), "fee_ref_1", "seller_1"
    )

    assert second.success is False
    assert second.error_code == OrderCode.PAYMENT_NOT_VERIFIED
    assert gateway.verify_calls == ["fee_ref_1"]
    assert len(courier.rebook_calls) == 1
    assert store.get("ord_1").delivery_status == DeliveryStatus.PICKUP_FAILED


@pytest.mark.asyncio
async def test_order_payment_cannot_pay_reschedule_fee(services, store, gateway):
    _failed(store)

    result = await services.missed_pickups.reschedule_pickup(
        "ord_1", NOW + timedelta(days=1), "pay_ref_1", "seller_1"
    )

    assert result.success is False
    assert result.error_code == OrderCode.PAYMENT_NOT_VERIFIED
    assert gateway.verify_calls == []


@pytest.mark.asyncio
async def test_reschedule_with_quote(services, store, courier):
    _failed(store)
    quote = await services.missed_pickups.get_reschedule_quote("ord_1", "seller_1")

    result = await services.missed_pickups.reschedule_pickup(
        "ord_1", quote.available_times[0], "fee_ref_1", "seller_1", quote_id=quote.quote_id
    )

    assert result.success is True


@pytest.mark.asyncio
@pytest.mark.parametrize("quote_id", [
    "quote_ord_2_1772445600",
    f"quote_ord_1_{int((NOW - timedelta(days=3)).timestamp())}",
    "not-a-quote",
])
async def test_reschedule_rejects_foreign_or_outdated_quote(services, store, gateway, quote_id):
    _failed(store)

    result = await services.missed_pickups.reschedule_pickup(
        "ord_1", NOW + timedelta(days=1), "fee_ref_1", "seller_1", quote_id=quote_id
    )

    assert result.success is False
    assert gateway.verify_calls == []
