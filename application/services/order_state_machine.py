"""
Order state machine executor.

Runs the compensations a transition plan asks for, in a fixed order:
courier cancel -> refund -> conditional persist. Notification intents are
returned to the caller and executed separately by the dispatcher.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable, Optional

from application.ports.courier import CourierClient
from application.ports.payment_gateway import PaymentGateway
from core.config import settings
from core.logging_config import get_logger
from domain.common.unit_of_work import AbstractUnitOfWork
from domain.order import notifications as copy
from domain.order.entity import (
    CourierCancellation,
    DeliveryStatus,
    Order,
    OrderActivity,
    Refund,
)
from domain.order.exceptions import (
    CompensationFailedException,
    ConcurrentUpdateException,
    OrderNotFoundException,
)
from domain.order.notifications import NotificationIntent
from domain.order.state_machine import (
    TransitionEvent,
    TransitionPlan,
    TransitionRequest,
    plan_transition,
)


logger = get_logger(__name__)

UnitOfWorkFactory = Callable[..., AbstractUnitOfWork]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class TransitionOutcome:
    order: Order
    changed: bool
    previous: Optional[Order] = None
    refund: Optional[Refund] = None
    courier_cancellation: Optional[CourierCancellation] = None
    intents: list[NotificationIntent] = field(default_factory=list)


class OrderStateMachine:
    """Applies order transitions with compensations and optimistic concurrency."""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        payment_gateway: PaymentGateway,
        courier: CourierClient,
        *,
        clock: Callable[[], datetime] = _utcnow,
        conflict_retries: Optional[int] = None,
        missed_pickup_window_hours: Optional[int] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self._gateway = payment_gateway
        self._courier = courier
        self._clock = clock
        self._conflict_retries = (
            settings.orders.conflict_retries if conflict_retries is None else conflict_retries
        )
        self._missed_pickup_window_hours = (
            missed_pickup_window_hours
            if missed_pickup_window_hours is not None
            else settings.orders.missed_pickup_window_hours
        )

    def now(self) -> datetime:
        return self._clock()

    async def load(self, order_id: str) -> Order:
        async with self._uow_factory(readonly=True) as uow:
            order = await uow.order_repository.get_by_id(order_id)
        if order is None:
            raise OrderNotFoundException(order_id)
        return order

    async def transition(
        self,
        order_id: str,
        *,
        event: TransitionEvent,
        target_status=None,
        target_delivery_status=None,
        reason: Optional[str] = None,
        actor_id: Optional[str] = None,
        changes: Optional[dict] = None,
    ) -> TransitionOutcome:
        """
        Move an order through one transition.

        Raises:
            OrderNotFoundException: unknown order
            IllegalTransitionException / OrderAccessDeniedException: rejected by policy
            CompensationFailedException: refund failed, nothing persisted
            ConcurrentUpdateException: lost the race more often than allowed
        """
        request = TransitionRequest(
            order_id=order_id,
            event=event,
            target_status=target_status,
            target_delivery_status=target_delivery_status,
            reason=reason,
            actor_id=actor_id,
            changes=dict(changes or {}),
        )
        refund: Optional[Refund] = None
        cancellation: Optional[CourierCancellation] = None
        attempt = 0

        while True:
            async with self._uow_factory(readonly=True) as uow:
                order = await uow.order_repository.get_by_id(order_id)
                existing_refund = await uow.refund_repository.get_successful_for_order(order_id)
            if order is None:
                raise OrderNotFoundException(order_id)

            now = self._clock()
            plan = plan_transition(order, request, now)
            if plan.noop:
                logger.info(
                    "order_transition_noop", order_id=order_id, transition_event=event.value, status=order.status.value
                )
                return TransitionOutcome(order=order, changed=False, refund=refund or existing_refund)

            if plan.cancel_courier and cancellation is None:
                cancellation = await self._cancel_courier(order, now)
            if cancellation is not None and plan.cancel_courier:
                info = plan.changes.get("delivery_info", order.delivery_info)
                plan.changes["delivery_info"] = replace(info, courier_cancellation=cancellation)

            if plan.refund_amount and existing_refund is None and refund is None:
                refund = await self._issue_refund(order, plan.refund_amount, plan.reason)

            async with self._uow_factory() as uow:
                updated = await uow.order_repository.update_if_state(
                    order.id,
                    plan.changes,
                    expected_status=order.status,
                    expected_delivery_status=order.delivery_status,
                )
                activity = None
                if updated is not None:
                    activity = await uow.activity_repository.add(self._activity(order, updated, plan, actor_id, refund))

            if updated is not None:
                logger.info(
                    "order_transition_committed",
                    order_id=order_id,
                    transition_event=event.value,
                    from_status=order.status.value,
                    to_status=updated.status.value,
                    from_delivery=order.delivery_status.value if order.delivery_status else None,
                    to_delivery=updated.delivery_status.value if updated.delivery_status else None,
                    attempt=attempt,
                )
                applied_refund = refund or existing_refund
                return TransitionOutcome(
                    order=updated,
                    changed=True,
                    previous=order,
                    refund=applied_refund,
                    courier_cancellation=cancellation,
                    intents=self.intents_for(event, updated, applied_refund, change_id=activity.id),
                )

            attempt += 1
            logger.warning(
                "order_transition_conflict", order_id=order_id, transition_event=event.value, attempt=attempt
            )
            if attempt > self._conflict_retries:
                raise ConcurrentUpdateException(order_id, attempt)

    def intents_for(
        self,
        event: TransitionEvent,
        order: Order,
        refund: Optional[Refund],
        *,
        change_id: Optional[int] = None,
    ) -> list[NotificationIntent]:
        refund_amount = refund.amount if refund and refund.is_successful else None
        if event == TransitionEvent.SELLER_COMMIT:
            return copy.seller_committed(order)
        if event == TransitionEvent.BUYER_CANCEL:
            return copy.buyer_cancelled(order, refund_amount)
        if event == TransitionEvent.SELLER_DECLINE:
            return copy.seller_declined(order, refund_amount)
        if event == TransitionEvent.COMMIT_EXPIRED:
            return copy.seller_declined(order, refund_amount, expired=True)
        if event == TransitionEvent.MISSED_PICKUP:
            return copy.pickup_missed(order, self._missed_pickup_window_hours)
        if event == TransitionEvent.RESCHEDULE_PICKUP:
            return copy.pickup_rescheduled(order)
        if event in (TransitionEvent.SELLER_CANCEL_AFTER_MISSED_PICKUP, TransitionEvent.MISSED_PICKUP_EXPIRED):
            return copy.cancelled_after_missed_pickup(order, refund_amount)
        if event == TransitionEvent.TRACKING_UPDATE and order.delivery_status is not None:
            return copy.delivery_progress(order, order.delivery_status, change_id)
        return []

    async def _cancel_courier(self, order: Order, now: datetime) -> CourierCancellation:
        """Courier cancel is best-effort: failures are recorded, never raised."""
        booking = order.courier_reference
        try:
            ok = await self._courier.cancel_booking(order.courier_service, booking)
        except Exception as exc:
            logger.warning(
                "courier_cancel_failed",
                order_id=order.id,
                booking_id=booking,
                error=str(exc),
            )
            return CourierCancellation(attempted_at=now, success=False, error=str(exc))
        if not ok:
            logger.warning("courier_cancel_rejected", order_id=order.id, booking_id=booking)
            return CourierCancellation(attempted_at=now, success=False, error="Courier did not cancel the booking")
        logger.info("courier_cancel_succeeded", order_id=order.id, booking_id=booking)
        return CourierCancellation(attempted_at=now, success=True)

    async def _issue_refund(self, order: Order, amount: int, reason: Optional[str]) -> Refund:
        if not order.payment_reference:
            raise CompensationFailedException(
                "refund",
                "Order has no payment reference to refund",
                order_id=order.id,
            )

        refund = Refund(
            order_id=order.id,
            payment_reference=order.payment_reference,
            amount=amount,
            order_total=order.total_amount,
            reason=reason,
            created_at=self._clock(),
        )
        async with self._uow_factory() as uow:
            refund = await uow.refund_repository.add(refund)

        logger.info("refund_request", order_id=order.id, amount=amount, payment_reference=order.payment_reference)
        try:
            result = await self._gateway.refund(order.payment_reference, amount, reason)
            error = None if result.success else (result.error or "Refund was not accepted by the gateway")
        except Exception as exc:
            result = None
            error = str(exc) or exc.__class__.__name__

        if error is not None:
            refund.mark_failed(error, at=self._clock())
            async with self._uow_factory() as uow:
                await uow.refund_repository.update(refund)
            logger.error("refund_failed", order_id=order.id, amount=amount, error=error)
            raise CompensationFailedException(
                "refund",
                "Failed to process refund",
                order_id=order.id,
                cause=error,
            )

        refund.mark_success(result.refund_reference, at=self._clock())
        async with self._uow_factory() as uow:
            refund = await uow.refund_repository.update(refund)
        logger.info("refund_succeeded", order_id=order.id, amount=amount, refund_reference=refund.gateway_reference)
        return refund

    def _activity(
        self,
        before: Order,
        after: Order,
        plan: TransitionPlan,
        actor_id: Optional[str],
        refund: Optional[Refund],
    ) -> OrderActivity:
        details = {
            "from_status": before.status.value,
            "to_status": after.status.value,
            "from_delivery_status": before.delivery_status.value if before.delivery_status else None,
            "to_delivery_status": after.delivery_status.value if after.delivery_status else None,
            "reason": plan.reason,
        }
        if refund is not None:
            details["refund_id"] = refund.id
            details["refund_amount"] = refund.amount
        if plan.cancel_courier:
            details["courier_cancelled"] = bool(
                after.delivery_info.courier_cancellation and after.delivery_info.courier_cancellation.success
            )
        if plan.target_delivery_status == DeliveryStatus.DELIVERED:
            details["delivered_at"] = after.delivered_at.isoformat() if after.delivered_at else None
        return OrderActivity(
            order_id=after.id,
            action=plan.event.value,
            actor_id=actor_id,
            details=details,
            created_at=self._clock(),
        )
