from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from application.services.order_state_machine import OrderStateMachine
from domain.order.entity import DeliveryStatus, OrderStatus, RefundStatus
from domain.order.state_machine import TransitionEvent
from infrastructure.models import Base
from infrastructure.unit_of_work import SQLAlchemyUnitOfWork

from tests.conftest import NOW, StubCourier, StubGateway, make_order


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(bind=engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def sql_uow_factory(session_factory):
    def _factory(*, readonly: bool = False):
        return SQLAlchemyUnitOfWork(session_factory, readonly=readonly)
    return _factory


async def _seed(sql_uow_factory, *orders):
    async with sql_uow_factory() as uow:
        for order in orders:
            await uow.order_repository.add(order)


@pytest.mark.asyncio
async def test_add_and_get_round_trip(sql_uow_factory):
    await _seed(sql_uow_factory, make_order())

    async with sql_uow_factory(readonly=True) as uow:
        order = await uow.order_repository.get_by_id("ord_1")

    assert order.status == OrderStatus.COMMITTED
    assert order.delivery_status == DeliveryStatus.PICKUP_SCHEDULED
    assert order.total_amount == 25000
    assert order.pickup_scheduled_at == datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
    assert order.delivery_info.pickup_failures == 0


@pytest.mark.asyncio
async def test_update_if_state_is_conditional(sql_uow_factory):
    await _seed(sql_uow_factory, make_order())

    async with sql_uow_factory() as uow:
        stale = await uow.order_repository.update_if_state(
            "ord_1",
            {"status": OrderStatus.CANCELLED, "delivery_status": DeliveryStatus.CANCELLED},
            expected_status=OrderStatus.PENDING_COMMIT,
            expected_delivery_status=None,
        )
    assert stale is None

    async with sql_uow_factory() as uow:
        updated = await uow.order_repository.update_if_state(
            "ord_1",
            {"delivery_status": DeliveryStatus.COLLECTED},
            expected_status=OrderStatus.COMMITTED,
            expected_delivery_status=DeliveryStatus.PICKUP_SCHEDULED,
        )
    assert updated.delivery_status == DeliveryStatus.COLLECTED


@pytest.mark.asyncio
async def test_open_deliveries_and_missed_pickup_queries(sql_uow_factory):
    await _seed(
        sql_uow_factory,
        make_order("ord_open"),
        make_order("ord_done", status=OrderStatus.DELIVERED, delivery_status=DeliveryStatus.DELIVERED),
        make_order("ord_untracked", tracking_number=None),
        make_order("ord_missed", delivery_status=DeliveryStatus.PICKUP_FAILED,
                   pickup_failed_at=NOW - timedelta(days=3)),
        make_order("ord_missed_old", delivery_status=DeliveryStatus.PICKUP_FAILED,
                   pickup_failed_at=NOW - timedelta(days=40)),
    )

    async with sql_uow_factory(readonly=True) as uow:
        open_ids = {o.id for o in await uow.order_repository.list_open_deliveries()}
        recent = await uow.order_repository.count_missed_pickups("seller_1", NOW - timedelta(days=30))
        stale = await uow.order_repository.list_stale_missed_pickups(NOW - timedelta(days=1))

    assert open_ids == {"ord_open", "ord_missed", "ord_missed_old"}
    assert recent == 1
    assert [o.id for o in stale] == ["ord_missed_old", "ord_missed"]


@pytest.mark.asyncio
async def test_state_machine_against_database(sql_uow_factory):
    await _seed(sql_uow_factory, make_order())
    gateway = StubGateway()
    machine = OrderStateMachine(sql_uow_factory, gateway, StubCourier(), clock=lambda: NOW)

    outcome = await machine.transition("ord_1", event=TransitionEvent.BUYER_CANCEL, actor_id="buyer_1")
    again = await machine.transition("ord_1", event=TransitionEvent.BUYER_CANCEL, actor_id="buyer_1")

    assert outcome.changed is True
    assert again.changed is False
    assert len(gateway.refund_calls) == 1
    async with sql_uow_factory(readonly=True) as uow:
        order = await uow.order_repository.get_by_id("ord_1")
        refunds = await uow.refund_repository.list_for_order("ord_1")
        activity = await uow.activity_repository.list_for_order("ord_1")
    assert order.status == OrderStatus.CANCELLED
    assert order.delivery_info.courier_cancellation.success is True
    assert [r.status for r in refunds] == [RefundStatus.SUCCESS]
    assert [a.action for a in activity] == ["buyer_cancel"]
