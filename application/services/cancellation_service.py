"""
Cancellation and decline use-cases.

Buyer cancel, seller decline and seller commit. Every entry point is idempotent
at order-id level: repeating a call on an order already in the requested terminal
state reports success without a second refund.
"""
from __future__ import annotations

from typing import Optional

from application.dtos.orders import CancellationResult, CommitResult
from application.services.notification_dispatcher import NotificationDispatcher
from application.services.order_state_machine import OrderStateMachine, TransitionOutcome
from core.logging_config import get_logger
from domain.common.exceptions import BusinessException
from domain.order.exceptions import CompensationFailedException
from domain.order.state_machine import TransitionEvent


logger = get_logger(__name__)


def failure_result(exc: BusinessException) -> CancellationResult:
    if isinstance(exc, CompensationFailedException) and exc.step == "refund":
        message = "We could not process the refund, so the order was not cancelled. Please try again or contact support."
    else:
        message = exc.message
    return CancellationResult(
        success=False,
        message=message,
        error=(exc.details or {}).get("cause") or exc.message,
        error_code=int(exc.code),
    )


def success_result(outcome: TransitionOutcome, message: str) -> CancellationResult:
    refund = outcome.refund
    return CancellationResult(
        success=True,
        message=message if outcome.changed else "Order was already processed",
        refund_amount=refund.amount if refund is not None and refund.is_successful else None,
        order_status=outcome.order.status.value,
        already_processed=not outcome.changed,
    )


class CancellationService:
    def __init__(self, state_machine: OrderStateMachine, dispatcher: NotificationDispatcher) -> None:
        self.state_machine = state_machine
        self.dispatcher = dispatcher

    async def _run(
        self,
        order_id: str,
        event: TransitionEvent,
        *,
        actor_id: Optional[str],
        reason: Optional[str],
        message: str,
    ) -> CancellationResult:
        logger.info(
            "order_cancellation_request", order_id=order_id, transition_event=event.value, actor_id=actor_id
        )
        try:
            outcome = await self.state_machine.transition(
                order_id, event=event, reason=reason, actor_id=actor_id
            )
        except BusinessException as exc:
            logger.warning(
                "order_cancellation_failed",
                order_id=order_id,
                transition_event=event.value,
                error_type=exc.error_type,
                error=exc.message,
            )
            return failure_result(exc)

        if outcome.changed:
            await self.dispatcher.dispatch(outcome.intents)
        return success_result(outcome, message)

    async def buyer_cancel(self, order_id: str, buyer_id: Optional[str], reason: Optional[str] = None) -> CancellationResult:
        """Cancel on the buyer's behalf.

        Before commitment this is a refund only; afterwards the courier booking
        (if any) is cancelled first. Rejected once the courier has the parcel.
        """
        return await self._run(
            order_id,
            TransitionEvent.BUYER_CANCEL,
            actor_id=buyer_id,
            reason=reason,
            message="Order cancelled successfully. Your refund will be processed within 3-5 business days.",
        )

    async def seller_decline(self, order_id: str, seller_id: Optional[str], reason: Optional[str] = None) -> CancellationResult:
        return await self._run(
            order_id,
            TransitionEvent.SELLER_DECLINE,
            actor_id=seller_id,
            reason=reason,
            message="Order declined. The buyer has been refunded.",
        )

    async def expire_commit(self, order_id: str) -> CancellationResult:
        """System decline of an order the seller never committed to."""
        return await self._run(
            order_id,
            TransitionEvent.COMMIT_EXPIRED,
            actor_id=None,
            reason=None,
            message="Order expired and the buyer was refunded.",
        )

    async def commit(self, order_id: str, seller_id: Optional[str]) -> CommitResult:
        outcome = await self.state_machine.transition(
            order_id, event=TransitionEvent.SELLER_COMMIT, actor_id=seller_id
        )
        if outcome.changed:
            await self.dispatcher.dispatch(outcome.intents)
        return CommitResult(
            success=True,
            message="Order committed" if outcome.changed else "Order was already committed",
            order_status=outcome.order.status.value,
            already_processed=not outcome.changed,
        )
