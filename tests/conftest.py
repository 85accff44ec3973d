"""Pytest bootstrap configuration.

Environment variables are set before any application module is imported so
settings pick up the test values. In-memory stand-ins for the unit of work
and the external collaborators live here and are shared by the service tests.
"""
import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///:memory:")

from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional

import pytest

from application.dtos.integrations import (
    CourierRebook,
    CourierTracking,
    GatewayRefund,
    GatewayVerification,
    RecipientResult,
)
from application.services.notification_dispatcher import NotificationDispatcher
from application.services.order_state_machine import OrderStateMachine
from core.config import OrderLifecycleSettings
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order.entity import (
    CANCEL_CLASS_STATUSES,
    TERMINAL_DELIVERY_STATUSES,
    DeliveryStatus,
    Order,
    OrderStatus,
    RefundStatus,
)
from domain.order.repository import OrderActivityRepository, OrderRepository, RefundRepository
from infrastructure.order_services import assemble_order_services


NOW = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)

_CLOSED = set(CANCEL_CLASS_STATUSES) | {OrderStatus.COMPLETED, OrderStatus.DELIVERED}


class InMemoryOrderRepository(OrderRepository):
    def __init__(self, store: "InMemoryStore"):
        self.store = store

    async def get_by_id(self, order_id):
        order = self.store.orders.get(order_id)
        return replace(order) if order else None

    async def add(self, order):
        self.store.orders[order.id] = replace(order)
        return replace(order)

    async def update_if_state(self, order_id, changes, expected_status, expected_delivery_status):
        if self.store.conflicts_to_inject:
            self.store.conflicts_to_inject -= 1
            if self.store.on_conflict is not None:
                self.store.on_conflict(self.store)
            return None
        current = self.store.orders.get(order_id)
        if current is None or current.status != expected_status or current.delivery_status != expected_delivery_status:
            return None
        updated = current.with_changes(changes)
        self.store.orders[order_id] = updated
        self.store.update_calls += 1
        return replace(updated)

    async def list_open_deliveries(self, limit=500):
        return [
            replace(o) for o in self.store.orders.values()
            if o.tracking_number
            and o.status not in _CLOSED
            and o.delivery_status not in TERMINAL_DELIVERY_STATUSES
        ][:limit]

    async def count_missed_pickups(self, seller_id, since):
        return sum(
            1 for o in self.store.orders.values()
            if o.seller_id == seller_id and o.pickup_failed_at is not None and o.pickup_failed_at >= since
        )

    async def list_stale_pending_commits(self, before, limit=200):
        return [
            replace(o) for o in self.store.orders.values()
            if o.status == OrderStatus.PENDING_COMMIT and o.created_at is not None and o.created_at < before
        ][:limit]

    async def list_stale_missed_pickups(self, before, limit=200):
        return [
            replace(o) for o in self.store.orders.values()
            if o.delivery_status == DeliveryStatus.PICKUP_FAILED
            and o.status not in _CLOSED
            and o.pickup_failed_at is not None
            and o.pickup_failed_at < before
        ][:limit]


class InMemoryRefundRepository(RefundRepository):
    def __init__(self, store: "InMemoryStore"):
        self.store = store

    async def add(self, refund):
        refund.id = len(self.store.refunds) + 1
        self.store.refunds.append(replace(refund))
        return refund

    async def update(self, refund):
        for index, row in enumerate(self.store.refunds):
            if row.id == refund.id:
                if refund.status == RefundStatus.SUCCESS and any(
                    r.order_id == refund.order_id and r.is_successful and r.id != refund.id
                    for r in self.store.refunds
                ):
                    raise ValueError("duplicate successful refund")
                self.store.refunds[index] = replace(refund)
                return refund
        raise ValueError(f"Refund with id {refund.id} not found")

    async def get_successful_for_order(self, order_id):
        for row in self.store.refunds:
            if row.order_id == order_id and row.is_successful:
                return replace(row)
        return None

    async def list_for_order(self, order_id):
        return [replace(r) for r in self.store.refunds if r.order_id == order_id]


class InMemoryActivityRepository(OrderActivityRepository):
    def __init__(self, store: "InMemoryStore"):
        self.store = store

    async def add(self, activity):
        activity.id = len(self.store.activities) + 1
        self.store.activities.append(activity)
        return activity

    async def list_for_order(self, order_id):
        return [a for a in self.store.activities if a.order_id == order_id]


class InMemoryStore:
    def __init__(self):
        self.orders: dict[str, Order] = {}
        self.refunds = []
        self.activities = []
        self.update_calls = 0
        self.conflicts_to_inject = 0
        self.on_conflict = None

    def add(self, order: Order) -> Order:
        self.orders[order.id] = order
        return order

    def get(self, order_id: str) -> Order:
        return self.orders[order_id]

    def successful_refunds(self, order_id: str):
        return [r for r in self.refunds if r.order_id == order_id and r.is_successful]


class InMemoryUnitOfWork(AbstractUnitOfWork):
    def __init__(self, store: InMemoryStore, *, readonly: bool = False):
        super().__init__(readonly=readonly)
        self.order_repository = InMemoryOrderRepository(store)
        self.refund_repository = InMemoryRefundRepository(store)
        self.activity_repository = InMemoryActivityRepository(store)

    async def commit(self):
        self._committed = True

    async def rollback(self):
        self._committed = False


class StubGateway:
    provider = "stub"

    def __init__(self):
        self.refund_calls = []
        self.verify_calls = []
        self.refund_error: Optional[Exception] = None
        self.refund_result = GatewayRefund(success=True, refund_reference="rf_1", status="processed")
        self.verification = GatewayVerification(verified=True, status="success", amount=5000, currency="ZAR")

    async def refund(self, payment_reference, amount, reason=None):
        self.refund_calls.append((payment_reference, amount, reason))
        if self.refund_error is not None:
            raise self.refund_error
        return self.refund_result

    async def verify(self, payment_reference):
        self.verify_calls.append(payment_reference)
        return self.verification

    async def aclose(self):
        return None


class StubCourier:
    def __init__(self):
        self.cancel_calls = []
        self.rebook_calls = []
        self.fetch_calls = []
        self.cancel_result = True
        self.cancel_error: Optional[Exception] = None
        self.rebook_result = CourierRebook(success=True, booking_id="bk_2", tracking_number="TRK_2")
        self.tracking: dict = {}

    async def cancel_booking(self, service, booking_id):
        self.cancel_calls.append((service, booking_id))
        if self.cancel_error is not None:
            raise self.cancel_error
        return self.cancel_result

    async def fetch_status(self, tracking_number):
        self.fetch_calls.append(tracking_number)
        value = self.tracking[tracking_number]
        if isinstance(value, Exception):
            raise value
        if isinstance(value, str):
            return CourierTracking(tracking_number=tracking_number, status=value, status_description=value.lower())
        return value

    async def rebook(self, service, booking_id, new_time):
        self.rebook_calls.append((service, booking_id, new_time))
        return self.rebook_result

    async def aclose(self):
        return None


class StubNotifier:
    def __init__(self):
        self.in_app = []
        self.emails = []
        self.fail_in_app = False
        self.fail_email = False

    async def notify(self, user_id, title, message, kind, *, order_id=None, dedupe_key=None):
        if self.fail_in_app:
            raise RuntimeError("notifications table unavailable")
        self.in_app.append({"user_id": user_id, "title": title, "kind": kind, "order_id": order_id,
                            "dedupe_key": dedupe_key})

    async def email(self, address, subject, html_body, text_body, *, idempotency_key=None):
        if self.fail_email:
            raise RuntimeError("email service down")
        self.emails.append({"to": address, "subject": subject, "idempotency_key": idempotency_key})

    def titles_for(self, user_id):
        return [n["title"] for n in self.in_app if n["user_id"] == user_id]


class StubPayouts:
    def __init__(self):
        self.calls = []
        self.error: Optional[Exception] = None

    async def create_recipient(self, seller_id):
        self.calls.append(seller_id)
        if self.error is not None:
            raise self.error
        return RecipientResult(success=True, recipient_code="RCP_1")

    async def aclose(self):
        return None


def make_order(order_id: str = "ord_1", **overrides) -> Order:
    data = dict(
        id=order_id,
        status=OrderStatus.COMMITTED,
        delivery_status=DeliveryStatus.PICKUP_SCHEDULED,
        buyer_id="buyer_1",
        seller_id="seller_1",
        total_amount=25000,
        payment_reference="pay_ref_1",
        courier_service="courier-guy",
        courier_booking_id="bk_1",
        tracking_number="TRK_1",
        pickup_scheduled_at=datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc),
        committed_at=datetime(2026, 2, 28, 12, 0, tzinfo=timezone.utc),
        buyer_email="buyer@example.com",
        buyer_name="Thandi",
        seller_email="seller@example.com",
        seller_name="Sipho",
        book_title="Calculus: Early Transcendentals",
        created_at=datetime(2026, 2, 28, 8, 0, tzinfo=timezone.utc),
    )
    data.update(overrides)
    return Order(**data)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def uow_factory(store):
    def _factory(*, readonly: bool = False):
        return InMemoryUnitOfWork(store, readonly=readonly)
    return _factory


@pytest.fixture
def gateway():
    return StubGateway()


@pytest.fixture
def courier():
    return StubCourier()


@pytest.fixture
def notifier():
    return StubNotifier()


@pytest.fixture
def payouts():
    return StubPayouts()


@pytest.fixture
def config():
    return OrderLifecycleSettings(tracking_inter_call_delay=0)


@pytest.fixture
def services(uow_factory, gateway, courier, payouts, notifier, config):
    return assemble_order_services(
        payment_gateway=gateway,
        courier=courier,
        payouts=payouts,
        dispatcher=NotificationDispatcher(notifier),
        unit_of_work_factory=uow_factory,
        config=config,
        clock=lambda: NOW,
    )


@pytest.fixture
def state_machine(services) -> OrderStateMachine:
    return services.state_machine
