"""
Periodic tracking reconciliation.

Polls the courier for every open delivery, maps the courier vocabulary onto
delivery_status and drives the same state machine the user-facing workflows use.
One order's failure never stops the batch.
"""
from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional

from application.dtos.integrations import CourierTracking
from application.dtos.orders import ReconciliationReport, TrackingUpdateResult
from application.ports.courier import CourierClient
from application.ports.payout import PayoutProvisioner
from application.services.notification_dispatcher import NotificationDispatcher
from application.services.order_state_machine import OrderStateMachine, UnitOfWorkFactory
from core.config import settings
from core.logging_config import get_logger
from domain.common.exceptions import BusinessException
from domain.order.entity import DeliveryStatus, Order, TrackingEvent, TrackingSnapshot
from domain.order.exceptions import ReconciliationError
from domain.order.state_machine import TransitionEvent, can_move_delivery
from shared.codes.order_codes import map_courier_status


logger = get_logger(__name__)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class TrackingReconciliationService:
    def __init__(
        self,
        state_machine: OrderStateMachine,
        dispatcher: NotificationDispatcher,
        uow_factory: UnitOfWorkFactory,
        courier: CourierClient,
        payouts: PayoutProvisioner,
        *,
        inter_call_delay: Optional[float] = None,
    ) -> None:
        self.state_machine = state_machine
        self.dispatcher = dispatcher
        self._uow_factory = uow_factory
        self._courier = courier
        self._payouts = payouts
        self.inter_call_delay = (
            settings.orders.tracking_inter_call_delay if inter_call_delay is None else inter_call_delay
        )

    async def run(self) -> ReconciliationReport:
        report = ReconciliationReport(started_at=self.state_machine.now())
        async with self._uow_factory(readonly=True) as uow:
            orders = await uow.order_repository.list_open_deliveries()
        logger.info("tracking_reconciliation_started", open_orders=len(orders))

        for index, order in enumerate(orders):
            if index and self.inter_call_delay > 0:
                # courier rate limit
                await asyncio.sleep(self.inter_call_delay)
            report.results.append(await self.reconcile_order(order))

        report.total_orders_checked = len(orders)
        report.updated_orders = report.count("updated")
        report.finished_at = self.state_machine.now()
        logger.info(
            "tracking_reconciliation_completed",
            total_orders_checked=report.total_orders_checked,
            updated_orders=report.updated_orders,
            api_errors=report.count("api_error"),
            update_errors=report.count("update_error"),
            processing_errors=report.count("processing_error"),
        )
        return report

    async def reconcile_order(self, order: Order) -> TrackingUpdateResult:
        """Reconcile one order; every failure is folded into the returned entry."""
        old = order.delivery_status.value if order.delivery_status else None
        try:
            tracking = await self._fetch(order)
            mapped = map_courier_status(tracking.status)
            if mapped is None or mapped == old:
                return TrackingUpdateResult(
                    order_id=order.id, tracking_number=order.tracking_number, result="no_change",
                    old_status=old, new_status=old, courier_status=tracking.status,
                )
            target = DeliveryStatus(mapped)
            if target == DeliveryStatus.PICKUP_FAILED and self._is_stale_pickup_failure(order, tracking):
                logger.info("tracking_stale_pickup_failure_ignored", order_id=order.id,
                            rescheduled_at=str(order.rescheduled_at))
                return TrackingUpdateResult(
                    order_id=order.id, tracking_number=order.tracking_number, result="no_change",
                    old_status=old, new_status=old, courier_status=tracking.status,
                )
            if target != DeliveryStatus.PICKUP_FAILED and not can_move_delivery(order.delivery_status, target):
                logger.info("tracking_status_regression_ignored", order_id=order.id, current=old, courier=mapped)
                return TrackingUpdateResult(
                    order_id=order.id, tracking_number=order.tracking_number, result="no_change",
                    old_status=old, new_status=old, courier_status=tracking.status,
                )

            outcome = await self._apply(order, target, tracking)
            result = TrackingUpdateResult(
                order_id=order.id,
                tracking_number=order.tracking_number,
                result="updated" if outcome.changed else "no_change",
                old_status=old,
                new_status=outcome.order.delivery_status.value if outcome.order.delivery_status else None,
                courier_status=tracking.status,
            )
            if not outcome.changed:
                return result

            dispatch = await self.dispatcher.dispatch(outcome.intents)
            result.notifications_sent = dispatch.delivered
            if target == DeliveryStatus.DELIVERED:
                result.recipient_creation = await self._create_recipient(outcome.order)
            return result
        except ReconciliationError as exc:
            logger.warning("tracking_order_failed", order_id=order.id, result=exc.result, error=exc.message)
            return TrackingUpdateResult(
                order_id=order.id, tracking_number=order.tracking_number, result=exc.result,
                old_status=old, error=exc.message,
            )
        except Exception as exc:
            logger.error("tracking_order_processing_error", order_id=order.id, error=str(exc), exc_info=True)
            return TrackingUpdateResult(
                order_id=order.id, tracking_number=order.tracking_number, result="processing_error",
                old_status=old, error=str(exc),
            )

    def _is_stale_pickup_failure(self, order: Order, tracking: CourierTracking) -> bool:
        """
        A collection failure reported after a reschedule may still describe the
        previous attempt. It counts only when a courier event is newer than the
        reschedule, or, without timestamped events, once the new pickup time passed.
        """
        if order.delivery_status != DeliveryStatus.RESCHEDULED_BY_SELLER or order.rescheduled_at is None:
            return False
        stamps = [e.timestamp for e in tracking.events if e.timestamp is not None]
        if stamps:
            return max(_as_utc(s) for s in stamps) <= order.rescheduled_at
        return order.pickup_scheduled_at is None or self.state_machine.now() < order.pickup_scheduled_at

    async def _fetch(self, order: Order) -> CourierTracking:
        try:
            return await self._courier.fetch_status(order.tracking_number)
        except Exception as exc:
            raise ReconciliationError(order.id, "api_error", f"Courier status fetch failed: {exc}") from exc

    async def _apply(self, order: Order, target: DeliveryStatus, tracking: CourierTracking):
        now = self.state_machine.now()
        snapshot = (order.delivery_info.tracking or TrackingSnapshot()).merged_with(
            tracking.status,
            tracking.status_description,
            now,
            [
                TrackingEvent(status=e.status, description=e.description, timestamp=e.timestamp, location=e.location)
                for e in tracking.events
            ],
        )
        changes = {"delivery_info": replace(order.delivery_info, tracking=snapshot)}
        try:
            if target == DeliveryStatus.PICKUP_FAILED:
                # same path as a manually reported missed pickup
                return await self.state_machine.transition(
                    order.id,
                    event=TransitionEvent.MISSED_PICKUP,
                    reason=tracking.status_description,
                    changes=changes,
                )
            return await self.state_machine.transition(
                order.id,
                event=TransitionEvent.TRACKING_UPDATE,
                target_delivery_status=target,
                changes=changes,
            )
        except BusinessException as exc:
            raise ReconciliationError(order.id, "update_error", exc.message) from exc

    async def _create_recipient(self, order: Order) -> dict:
        try:
            recipient = await self._payouts.create_recipient(order.seller_id)
        except Exception as exc:
            logger.error("payout_recipient_failed", order_id=order.id, seller_id=order.seller_id, error=str(exc))
            return {"success": False, "error": str(exc)}
        if not recipient.success:
            logger.warning("payout_recipient_rejected", order_id=order.id, seller_id=order.seller_id,
                           error=recipient.error)
        return recipient.model_dump()
