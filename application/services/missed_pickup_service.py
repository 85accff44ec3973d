"""
Missed-pickup workflow.

A failed courier collection puts the order into pickup_failed. From there the
seller either pays to reschedule or cancels (full refund to the buyer). Orders
left in pickup_failed past the action window are cancelled by the sweep.
"""
from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta
from typing import Optional

from application.dtos.orders import (
    CancellationResult,
    MissedPickupResult,
    RescheduleQuote,
    RescheduleResult,
    SweepReport,
)
from application.ports.courier import CourierClient
from application.ports.payment_gateway import PaymentGateway
from application.services.cancellation_service import failure_result, success_result
from application.services.notification_dispatcher import NotificationDispatcher
from application.services.order_state_machine import OrderStateMachine, UnitOfWorkFactory
from core.config import OrderLifecycleSettings, settings
from core.logging_config import get_logger
from domain.common.exceptions import BusinessException, DomainValidationException
from domain.order import notifications as copy
from domain.order.entity import Order
from domain.order.exceptions import CompensationFailedException
from domain.order.state_machine import TransitionEvent, check_actor, check_guards


logger = get_logger(__name__)


class MissedPickupService:
    def __init__(
        self,
        state_machine: OrderStateMachine,
        dispatcher: NotificationDispatcher,
        uow_factory: UnitOfWorkFactory,
        payment_gateway: PaymentGateway,
        courier: CourierClient,
        *,
        config: Optional[OrderLifecycleSettings] = None,
    ) -> None:
        self.state_machine = state_machine
        self.dispatcher = dispatcher
        self._uow_factory = uow_factory
        self._gateway = payment_gateway
        self._courier = courier
        self.config = config or settings.orders

    def _now(self) -> datetime:
        return self.state_machine.now()

    async def handle_missed_pickup(self, order_id: str, courier_feedback: Optional[str] = None) -> MissedPickupResult:
        """Record a failed collection and tell both parties. No refund, no courier cancel."""
        outcome = await self.state_machine.transition(
            order_id, event=TransitionEvent.MISSED_PICKUP, reason=courier_feedback
        )
        if outcome.changed:
            await self.dispatcher.dispatch(outcome.intents)
        logger.info("missed_pickup_recorded", order_id=order_id, changed=outcome.changed)
        return MissedPickupResult(
            success=True,
            message="Missed pickup recorded" if outcome.changed else "Missed pickup was already recorded",
            delivery_status=outcome.order.delivery_status.value if outcome.order.delivery_status else None,
            already_processed=not outcome.changed,
        )

    async def _load_for_seller_action(self, order_id: str, seller_id: Optional[str], event: TransitionEvent) -> Order:
        order = await self.state_machine.load(order_id)
        check_actor(order, event, seller_id)
        check_guards(order, event)
        return order

    async def get_reschedule_quote(self, order_id: str, seller_id: Optional[str] = None) -> RescheduleQuote:
        """Fee and candidate pickup times; nothing is persisted."""
        order = await self._load_for_seller_action(order_id, seller_id, TransitionEvent.RESCHEDULE_PICKUP)
        now = self._now()
        base = now.replace(minute=0, second=0, microsecond=0)
        times = [
            (base + timedelta(days=days)).replace(hour=self.config.reschedule_slot_hour)
            for days in sorted(self.config.reschedule_slot_days)
        ]
        return RescheduleQuote(
            order_id=order.id,
            courier_service=order.courier_service,
            reschedule_fee=self.config.reschedule_fee,
            currency=order.currency,
            available_times=times,
            quote_id=f"quote_{order.id}_{int(now.timestamp())}",
        )

    async def reschedule_pickup(
        self,
        order_id: str,
        new_pickup_time: datetime,
        payment_reference: str,
        seller_id: Optional[str] = None,
        quote_id: Optional[str] = None,
    ) -> RescheduleResult:
        """
        Verify the reschedule fee, rebook the courier, then store the new pickup.

        Payment verification and rebook failures abort with no state change.
        A fee payment pays for one reschedule only; the reference is kept in
        delivery_info and rejected on reuse.
        """
        try:
            order = await self._load_for_seller_action(order_id, seller_id, TransitionEvent.RESCHEDULE_PICKUP)
            if new_pickup_time <= self._now():
                raise DomainValidationException("New pickup time must be in the future", field="new_pickup_time")
            if quote_id is not None:
                self._check_quote(order, quote_id)
            self._check_unspent(order, payment_reference)
            await self._verify_fee(order, payment_reference)
            rebook = await self._rebook(order, new_pickup_time)
            outcome = await self.state_machine.transition(
                order_id,
                event=TransitionEvent.RESCHEDULE_PICKUP,
                actor_id=seller_id,
                changes={
                    "pickup_scheduled_at": rebook.pickup_at or new_pickup_time,
                    "courier_booking_id": rebook.booking_id or order.courier_booking_id,
                    "tracking_number": rebook.tracking_number or order.tracking_number,
                    "delivery_info": replace(
                        order.delivery_info,
                        reschedule_payments=(*order.delivery_info.reschedule_payments, payment_reference),
                    ),
                },
            )
        except BusinessException as exc:
            logger.warning("reschedule_pickup_failed", order_id=order_id, error_type=exc.error_type, error=exc.message)
            failure = failure_result(exc)
            return RescheduleResult(
                success=False,
                message=failure.message,
                error=failure.error,
                error_code=failure.error_code,
            )

        await self.dispatcher.dispatch(outcome.intents)
        return RescheduleResult(
            success=True,
            message="Pickup rescheduled",
            new_pickup_time=outcome.order.pickup_scheduled_at,
            courier_booking_id=outcome.order.courier_booking_id,
            reschedule_fee=self.config.reschedule_fee,
        )

    def _check_quote(self, order: Order, quote_id: str) -> None:
        """A quote is valid for the current missed pickup of the order it was issued for."""
        prefix = f"quote_{order.id}_"
        issued = quote_id[len(prefix):] if quote_id.startswith(prefix) else ""
        if not issued.isdigit():
            raise DomainValidationException("Quote does not belong to this order", field="quote_id")
        if order.pickup_failed_at is not None and int(issued) < int(order.pickup_failed_at.timestamp()):
            raise DomainValidationException("Quote was issued for an earlier pickup attempt", field="quote_id")

    def _check_unspent(self, order: Order, payment_reference: str) -> None:
        if payment_reference == order.payment_reference or payment_reference in order.delivery_info.reschedule_payments:
            raise CompensationFailedException(
                "payment_verification",
                "This payment has already been used",
                order_id=order.id,
                cause=payment_reference,
            )

    async def _verify_fee(self, order: Order, payment_reference: str) -> None:
        try:
            verification = await self._gateway.verify(payment_reference)
        except Exception as exc:
            raise CompensationFailedException(
                "payment_verification", "Could not verify the reschedule payment", order_id=order.id, cause=str(exc)
            ) from exc
        if not verification.verified:
            raise CompensationFailedException(
                "payment_verification", "Reschedule fee has not been paid", order_id=order.id,
                cause=verification.status,
            )
        if verification.amount is not None and verification.amount < self.config.reschedule_fee:
            raise CompensationFailedException(
                "payment_verification",
                "Reschedule payment is less than the fee",
                order_id=order.id,
                cause=f"paid {verification.amount}, fee {self.config.reschedule_fee}",
            )

    async def _rebook(self, order: Order, new_time: datetime):
        if not order.courier_reference:
            raise CompensationFailedException("rebook", "Order has no courier booking to rebook", order_id=order.id)
        try:
            rebook = await self._courier.rebook(order.courier_service, order.courier_reference, new_time)
        except Exception as exc:
            raise CompensationFailedException(
                "rebook", "Failed to reschedule the courier pickup", order_id=order.id, cause=str(exc)
            ) from exc
        if not rebook.success:
            raise CompensationFailedException(
                "rebook", "Failed to reschedule the courier pickup", order_id=order.id, cause=rebook.error
            )
        logger.info("courier_rebooked", order_id=order.id, booking_id=rebook.booking_id, pickup_at=str(new_time))
        return rebook

    async def cancel_after_missed_pickup(
        self, order_id: str, seller_id: Optional[str] = None, reason: Optional[str] = None
    ) -> CancellationResult:
        try:
            outcome = await self.state_machine.transition(
                order_id,
                event=TransitionEvent.SELLER_CANCEL_AFTER_MISSED_PICKUP,
                actor_id=seller_id,
                reason=reason,
            )
        except BusinessException as exc:
            logger.warning("cancel_after_missed_pickup_failed", order_id=order_id, error=exc.message)
            return failure_result(exc)

        if outcome.changed:
            await self.dispatcher.dispatch(outcome.intents)
            try:
                await self.check_seller_reliability(outcome.order)
            except Exception as exc:
                logger.error("seller_reliability_check_failed", seller_id=outcome.order.seller_id, error=str(exc))
        return success_result(outcome, "Order cancelled. The buyer has been refunded.")

    async def check_seller_reliability(self, order: Order) -> int:
        """Advisory only: warn the seller after repeated missed pickups."""
        now = self._now()
        since = now - timedelta(days=self.config.reliability_window_days)
        async with self._uow_factory(readonly=True) as uow:
            missed = await uow.order_repository.count_missed_pickups(order.seller_id, since)
        if missed >= self.config.reliability_threshold:
            logger.warning("seller_reliability_warning", seller_id=order.seller_id, missed_pickups=missed)
            await self.dispatcher.dispatch([
                copy.reliability_warning(order, missed, self.config.reliability_window_days, now)
            ])
        return missed

    async def auto_cancel_missed_pickups(self) -> SweepReport:
        """Cancel (with refund) orders left in pickup_failed past the action window."""
        report = SweepReport(type="missed_pickup_expired")
        cutoff = self._now() - timedelta(hours=self.config.missed_pickup_window_hours)
        async with self._uow_factory(readonly=True) as uow:
            orders = await uow.order_repository.list_stale_missed_pickups(cutoff)
        report.found = len(orders)

        for order in orders:
            try:
                outcome = await self.state_machine.transition(order.id, event=TransitionEvent.MISSED_PICKUP_EXPIRED)
            except Exception as exc:
                logger.error("missed_pickup_auto_cancel_failed", order_id=order.id, error=str(exc))
                report.errors.append({"order_id": order.id, "error": str(exc)})
                continue
            if outcome.changed:
                await self.dispatcher.dispatch(outcome.intents)
                report.processed += 1

        logger.info("missed_pickup_sweep_completed", found=report.found, processed=report.processed,
                    errors=len(report.errors))
        return report
