from datetime import datetime, timedelta, timezone

import pytest

from application.dtos.integrations import CourierEvent, CourierRebook, CourierTracking
from domain.order.entity import DeliveryInfo, DeliveryStatus, OrderStatus
from infrastructure.external.exceptions import CourierProviderError, PayoutProviderError

from tests.conftest import NOW, make_order


@pytest.mark.asyncio
async def test_delivered_creates_payout_recipient_once(services, store, courier, payouts, notifier):
    store.add(make_order(delivery_status=DeliveryStatus.OUT_FOR_DELIVERY))
    courier.tracking["TRK_1"] = "DELIVERED"

    report = await services.tracking.run()

    assert report.total_orders_checked == 1
    assert report.updated_orders == 1
    [entry] = report.results
    assert entry.result == "updated"
    assert entry.old_status == "out_for_delivery"
    assert entry.new_status == "delivered"
    assert entry.recipient_creation["success"] is True
    assert payouts.calls == ["seller_1"]
    order = store.get("ord_1")
    assert order.status == OrderStatus.DELIVERED
    assert order.delivery_status == DeliveryStatus.DELIVERED
    assert order.delivered_at is not None
    assert "Order Delivered Successfully!" in notifier.titles_for("buyer_1")
    assert "Order Completed Successfully!" in notifier.titles_for("seller_1")

    # delivered orders are no longer polled
    second = await services.tracking.run()
    assert second.total_orders_checked == 0
    assert payouts.calls == ["seller_1"]


@pytest.mark.asyncio
async def test_recipient_failure_is_reported_not_raised(services, store, courier, payouts):
    store.add(make_order(delivery_status=DeliveryStatus.IN_TRANSIT))
    courier.tracking["TRK_1"] = "DELIVERED"
    payouts.error = PayoutProviderError("recipient service down", provider="recipient-service")

    report = await services.tracking.run()

    [entry] = report.results
    assert entry.result == "updated"
    assert entry.recipient_creation == {"success": False, "error": "recipient service down"}
    assert store.get("ord_1").status == OrderStatus.DELIVERED
    assert payouts.calls == ["seller_1"]


@pytest.mark.asyncio
async def test_collected_stores_tracking_snapshot(services, store, courier):
    store.add(make_order())
    courier.tracking["TRK_1"] = CourierTracking(
        tracking_number="TRK_1",
        status="COLLECTED",
        status_description="Parcel collected from seller",
        events=[
            CourierEvent(status="COLLECTED", description="Collected",
                         timestamp=datetime(2026, 3, 2, 8, 30, tzinfo=timezone.utc), location="Cape Town"),
        ],
    )

    report = await services.tracking.run()

    assert report.results[0].result == "updated"
    order = store.get("ord_1")
    assert order.delivery_status == DeliveryStatus.COLLECTED
    assert order.status == OrderStatus.COMMITTED
    snapshot = order.delivery_info.tracking
    assert snapshot.courier_status == "COLLECTED"
    assert snapshot.status_description == "Parcel collected from seller"
    assert [e.location for e in snapshot.events] == ["Cape Town"]


@pytest.mark.asyncio
async def test_batch_isolation(services, store, courier):
    store.add(make_order("ord_a", tracking_number="TRK_A"))
    store.add(make_order("ord_b", tracking_number="TRK_B", delivery_status=DeliveryStatus.IN_TRANSIT))
    store.add(make_order("ord_c", tracking_number="TRK_C", delivery_status=DeliveryStatus.IN_TRANSIT))
    courier.tracking["TRK_A"] = CourierProviderError("courier API down", provider="courier-guy")
    courier.tracking["TRK_B"] = "IN_TRANSIT"
    courier.tracking["TRK_C"] = "OUT_FOR_DELIVERY"

    report = await services.tracking.run()

    results = {r.order_id: r for r in report.results}
    assert results["ord_a"].result == "api_error"
    assert "courier API down" in results["ord_a"].error
    assert results["ord_b"].result == "no_change"
    assert results["ord_c"].result == "updated"
    assert report.total_orders_checked == 3
    assert report.updated_orders == 1
    assert store.get("ord_c").delivery_status == DeliveryStatus.OUT_FOR_DELIVERY


@pytest.mark.asyncio
async def test_unknown_courier_status_is_no_change(services, store, courier):
    store.add(make_order())
    courier.tracking["TRK_1"] = "AWAITING_CUSTOMS"

    report = await services.tracking.run()

    assert report.results[0].result == "no_change"
    assert store.get("ord_1").delivery_status == DeliveryStatus.PICKUP_SCHEDULED


@pytest.mark.asyncio
async def test_status_regression_is_ignored(services, store, courier):
    store.add(make_order(delivery_status=DeliveryStatus.OUT_FOR_DELIVERY))
    courier.tracking["TRK_1"] = "COLLECTED"

    report = await services.tracking.run()

    assert report.results[0].result == "no_change"
    assert store.get("ord_1").delivery_status == DeliveryStatus.OUT_FOR_DELIVERY


@pytest.mark.asyncio
async def test_collection_failed_runs_missed_pickup_path(services, store, courier, notifier):
    store.add(make_order())
    courier.tracking["TRK_1"] = "COLLECTION_FAILED"

    report = await services.tracking.run()

    assert report.results[0].result == "updated"
    order = store.get("ord_1")
    assert order.delivery_status == DeliveryStatus.PICKUP_FAILED
    assert order.status == OrderStatus.COMMITTED
    assert order.delivery_info.pickup_failures == 1
    assert "Courier Pickup Missed" in notifier.titles_for("seller_1")


@pytest.mark.asyncio
async def test_illegal_update_is_update_error(services, store, courier):
    store.add(make_order(delivery_status=DeliveryStatus.IN_TRANSIT))
    courier.tracking["TRK_1"] = "COLLECTION_FAILED"

    report = await services.tracking.run()

    assert report.results[0].result == "update_error"
    assert store.get("ord_1").delivery_status == DeliveryStatus.IN_TRANSIT


@pytest.mark.asyncio
async def test_cancelled_orders_are_not_polled(services, store, courier):
    store.add(make_order(status=OrderStatus.CANCELLED, delivery_status=DeliveryStatus.CANCELLED))

    report = await services.tracking.run()

    assert report.total_orders_checked == 0
    assert courier.fetch_calls == []


@pytest.mark.asyncio
async def test_stale_collection_failure_after_reschedule_is_ignored(services, store, courier, notifier):
    store.add(make_order())
    courier.tracking["TRK_1"] = "COLLECTION_FAILED"
    await services.tracking.run()

    courier.rebook_result = CourierRebook(success=True, booking_id="bk_1", tracking_number=None)
    rescheduled = await services.missed_pickups.reschedule_pickup(
        "ord_1", NOW + timedelta(days=1), "fee_ref_1", "seller_1"
    )
    assert rescheduled.success is True

    report = await services.tracking.run()

    assert report.results[0].result == "no_change"
    order = store.get("ord_1")
    assert order.delivery_status == DeliveryStatus.RESCHEDULED_BY_SELLER
    assert order.delivery_info.pickup_failures == 1
    assert notifier.titles_for("seller_1").count("Courier Pickup Missed") == 1


def _rescheduled(store):
    return store.add(make_order(
        delivery_status=DeliveryStatus.RESCHEDULED_BY_SELLER,
        pickup_failed_at=NOW - timedelta(days=3),
        rescheduled_at=NOW - timedelta(days=2),
        pickup_scheduled_at=NOW - timedelta(days=1),
        delivery_info=DeliveryInfo(pickup_failures=1),
    ))


def _collection_failed(at):
    return CourierTracking(
        tracking_number="TRK_1",
        status="COLLECTION_FAILED",
        status_description="Seller not available",
        events=[CourierEvent(status="COLLECTION_FAILED", description="Collection failed", timestamp=at)],
    )


@pytest.mark.asyncio
async def test_new_collection_failure_after_reschedule_is_recorded(services, store, courier):
    _rescheduled(store)
    courier.tracking["TRK_1"] = _collection_failed(NOW - timedelta(hours=20))

    report = await services.tracking.run()

    assert report.results[0].result == "updated"
    order = store.get("ord_1")
    assert order.delivery_status == DeliveryStatus.PICKUP_FAILED
    assert order.delivery_info.pickup_failures == 2
    assert order.pickup_failed_at == NOW


@pytest.mark.asyncio
async def test_collection_failure_older_than_reschedule_is_ignored(services, store, courier):
    _rescheduled(store)
    courier.tracking["TRK_1"] = _collection_failed(NOW - timedelta(days=3))

    report = await services.tracking.run()

    assert report.results[0].result == "no_change"
    assert store.get("ord_1").delivery_status == DeliveryStatus.RESCHEDULED_BY_SELLER


@pytest.mark.asyncio
async def test_repeated_delivery_failure_notifies_each_time(services, store, courier, notifier):
    store.add(make_order(delivery_status=DeliveryStatus.OUT_FOR_DELIVERY))
    for status in ("DELIVERY_FAILED", "OUT_FOR_DELIVERY", "DELIVERY_FAILED"):
        courier.tracking["TRK_1"] = status
        report = await services.tracking.run()
        assert report.results[0].result == "updated"

    failed = [n for n in notifier.in_app if n["title"] == "Delivery Attempt Failed"]
    assert len(failed) == 2
    assert failed[0]["dedupe_key"] != failed[1]["dedupe_key"]
    emails = [e for e in notifier.emails if e["subject"] == "Delivery Attempt Failed"]
    assert len(emails) == 2
    assert emails[0]["idempotency_key"] != emails[1]["idempotency_key"]
