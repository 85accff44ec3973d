"""
Composition of the order lifecycle services with their real adapters.

Used by the API dependencies and the Celery tasks. HTTP clients are closed
when the context exits.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, Callable, Optional

from application.ports.courier import CourierClient
from application.ports.payment_gateway import PaymentGateway
from application.ports.payout import PayoutProvisioner
from application.services.cancellation_service import CancellationService
from application.services.expiry_service import ExpiryService
from application.services.missed_pickup_service import MissedPickupService
from application.services.notification_dispatcher import NotificationDispatcher
from application.services.order_state_machine import OrderStateMachine
from application.services.tracking_reconciliation_service import TrackingReconciliationService
from core.config import OrderLifecycleSettings, settings
from infrastructure.adapters.notifier import OrderNotifier
from infrastructure.external.courier import CourierGuyClient
from infrastructure.external.payments import get_payment_gateway
from infrastructure.external.payouts import RecipientClient
from infrastructure.unit_of_work import uow_factory


@dataclass
class OrderServices:
    state_machine: OrderStateMachine
    cancellations: CancellationService
    missed_pickups: MissedPickupService
    tracking: TrackingReconciliationService
    expiry: ExpiryService


def assemble_order_services(
    *,
    payment_gateway: PaymentGateway,
    courier: CourierClient,
    payouts: PayoutProvisioner,
    dispatcher: NotificationDispatcher,
    unit_of_work_factory=uow_factory,
    config: Optional[OrderLifecycleSettings] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> OrderServices:
    config = config or settings.orders
    clock_kwargs = {"clock": clock} if clock is not None else {}
    state_machine = OrderStateMachine(
        unit_of_work_factory,
        payment_gateway,
        courier,
        **clock_kwargs,
        conflict_retries=config.conflict_retries,
        missed_pickup_window_hours=config.missed_pickup_window_hours,
    )
    cancellations = CancellationService(state_machine, dispatcher)
    missed_pickups = MissedPickupService(
        state_machine, dispatcher, unit_of_work_factory, payment_gateway, courier, config=config,
    )
    tracking = TrackingReconciliationService(
        state_machine,
        dispatcher,
        unit_of_work_factory,
        courier,
        payouts,
        inter_call_delay=config.tracking_inter_call_delay,
    )
    expiry = ExpiryService(unit_of_work_factory, cancellations, missed_pickups, config=config)
    return OrderServices(
        state_machine=state_machine,
        cancellations=cancellations,
        missed_pickups=missed_pickups,
        tracking=tracking,
        expiry=expiry,
    )


@asynccontextmanager
async def build_order_services() -> AsyncIterator[OrderServices]:
    payment_gateway = get_payment_gateway()
    courier = CourierGuyClient()
    payouts = RecipientClient()
    try:
        yield assemble_order_services(
            payment_gateway=payment_gateway,
            courier=courier,
            payouts=payouts,
            dispatcher=NotificationDispatcher(OrderNotifier()),
        )
    finally:
        await payment_gateway.aclose()
        await courier.aclose()
        await payouts.aclose()
