"""
Order transition policy.

Pure functions only: given the current order and a requested transition, decide
whether it is legal and what must happen (courier cancel, refund, field changes).
Side effects are executed by application.services.order_state_machine.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Optional

from .entity import (
    CANCEL_CLASS_STATUSES,
    TERMINAL_DELIVERY_STATUSES,
    DeliveryStatus,
    Order,
    OrderStatus,
)
from .exceptions import IllegalTransitionException, OrderAccessDeniedException


class TransitionEvent(str, Enum):
    SELLER_COMMIT = "seller_commit"
    BUYER_CANCEL = "buyer_cancel"
    SELLER_DECLINE = "seller_decline"
    COMMIT_EXPIRED = "commit_expired"
    MISSED_PICKUP = "missed_pickup"
    RESCHEDULE_PICKUP = "reschedule_pickup"
    SELLER_CANCEL_AFTER_MISSED_PICKUP = "seller_cancel_after_missed_pickup"
    MISSED_PICKUP_EXPIRED = "missed_pickup_expired"
    TRACKING_UPDATE = "tracking_update"


# Events that end in a cancel-class status, with the status they produce.
CANCEL_EVENTS: dict[TransitionEvent, OrderStatus] = {
    TransitionEvent.BUYER_CANCEL: OrderStatus.CANCELLED,
    TransitionEvent.SELLER_DECLINE: OrderStatus.DECLINED_BY_SELLER,
    TransitionEvent.COMMIT_EXPIRED: OrderStatus.DECLINED_BY_SELLER,
    TransitionEvent.SELLER_CANCEL_AFTER_MISSED_PICKUP: OrderStatus.CANCELLED_BY_SELLER_AFTER_MISSED_PICKUP,
    TransitionEvent.MISSED_PICKUP_EXPIRED: OrderStatus.CANCELLED_BY_SELLER_AFTER_MISSED_PICKUP,
}

DEFAULT_REASONS: dict[TransitionEvent, str] = {
    TransitionEvent.BUYER_CANCEL: "Cancelled by buyer",
    TransitionEvent.SELLER_DECLINE: "Seller declined the commit",
    TransitionEvent.COMMIT_EXPIRED: "Seller did not commit within the commit window",
    TransitionEvent.MISSED_PICKUP: "Seller was not available for pickup",
    TransitionEvent.SELLER_CANCEL_AFTER_MISSED_PICKUP: "Seller cancelled after missing pickup",
    TransitionEvent.MISSED_PICKUP_EXPIRED: "Pickup was not rescheduled in time",
}

ALLOWED_STATUS_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING_COMMIT: frozenset({
        OrderStatus.COMMITTED,
        OrderStatus.DECLINED_BY_SELLER,
        OrderStatus.CANCELLED,
    }),
    OrderStatus.COMMITTED: frozenset({
        OrderStatus.DISPATCHED,
        OrderStatus.PENDING_DELIVERY,
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
        OrderStatus.CANCELLED_BY_SELLER_AFTER_MISSED_PICKUP,
    }),
    OrderStatus.DISPATCHED: frozenset({
        OrderStatus.PENDING_DELIVERY,
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED_BY_SELLER_AFTER_MISSED_PICKUP,
    }),
    OrderStatus.PENDING_DELIVERY: frozenset({
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
        OrderStatus.CANCELLED_BY_SELLER_AFTER_MISSED_PICKUP,
    }),
    OrderStatus.DELIVERED: frozenset({OrderStatus.COMPLETED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.DECLINED_BY_SELLER: frozenset(),
    OrderStatus.CANCELLED_BY_SELLER_AFTER_MISSED_PICKUP: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

# Position along the forward delivery progression; lateral states share a rank.
_DELIVERY_RANK: dict[DeliveryStatus, int] = {
    DeliveryStatus.CREATED: 0,
    DeliveryStatus.PENDING: 1,
    DeliveryStatus.PICKUP_SCHEDULED: 2,
    DeliveryStatus.PICKUP_FAILED: 2,
    DeliveryStatus.RESCHEDULED_BY_SELLER: 2,
    DeliveryStatus.COLLECTED: 3,
    DeliveryStatus.PICKED_UP: 3,
    DeliveryStatus.IN_TRANSIT: 4,
    DeliveryStatus.OUT_FOR_DELIVERY: 5,
    DeliveryStatus.DELIVERY_FAILED: 5,
    DeliveryStatus.DELIVERED: 6,
    DeliveryStatus.RETURNED: 6,
}

SCHEDULED_PICKUP_STATUSES = frozenset({
    DeliveryStatus.PICKUP_SCHEDULED,
    DeliveryStatus.RESCHEDULED_BY_SELLER,
})

IN_FLIGHT_STATUSES = frozenset({
    DeliveryStatus.COLLECTED,
    DeliveryStatus.PICKED_UP,
    DeliveryStatus.IN_TRANSIT,
    DeliveryStatus.OUT_FOR_DELIVERY,
})

# Once the parcel left the seller the buyer can no longer cancel.
BUYER_CANCEL_BLOCKED_DELIVERY = IN_FLIGHT_STATUSES | {DeliveryStatus.DELIVERED}
BUYER_CANCEL_BLOCKED_STATUS = frozenset({
    OrderStatus.CANCELLED,
    OrderStatus.COMPLETED,
    OrderStatus.DELIVERED,
    OrderStatus.DISPATCHED,
}) | CANCEL_CLASS_STATUSES

_PRE_BOOKING_DELIVERY = frozenset({None, DeliveryStatus.CREATED, DeliveryStatus.PENDING})


def is_jointly_valid(status: OrderStatus, delivery_status: Optional[DeliveryStatus]) -> bool:
    """Joint validity rule for (status, delivery_status)."""
    if status in CANCEL_CLASS_STATUSES:
        return delivery_status == DeliveryStatus.CANCELLED
    if status == OrderStatus.PENDING_COMMIT:
        return delivery_status in _PRE_BOOKING_DELIVERY
    if status in (OrderStatus.DELIVERED, OrderStatus.COMPLETED):
        return delivery_status in (None, DeliveryStatus.DELIVERED)
    return delivery_status not in (DeliveryStatus.CANCELLED, DeliveryStatus.DELIVERED)


def can_move_delivery(current: Optional[DeliveryStatus], target: DeliveryStatus) -> bool:
    """Whether the delivery axis may move from `current` to `target`."""
    if current == target:
        return True
    if current in (DeliveryStatus.DELIVERED, DeliveryStatus.CANCELLED):
        return False
    if target == DeliveryStatus.CANCELLED:
        return True
    if current is None:
        return target in (DeliveryStatus.CREATED, DeliveryStatus.PENDING, DeliveryStatus.PICKUP_SCHEDULED)
    if target == DeliveryStatus.PICKUP_FAILED:
        return current in SCHEDULED_PICKUP_STATUSES
    if target == DeliveryStatus.RESCHEDULED_BY_SELLER:
        return current == DeliveryStatus.PICKUP_FAILED
    if target == DeliveryStatus.DELIVERY_FAILED:
        return current in IN_FLIGHT_STATUSES
    if target == DeliveryStatus.RETURNED:
        return current in IN_FLIGHT_STATUSES or current == DeliveryStatus.DELIVERY_FAILED
    if current == DeliveryStatus.RETURNED:
        return False
    if current == DeliveryStatus.DELIVERY_FAILED:
        # redelivery attempts
        return target in (DeliveryStatus.IN_TRANSIT, DeliveryStatus.OUT_FOR_DELIVERY, DeliveryStatus.DELIVERED)
    return _DELIVERY_RANK[target] > _DELIVERY_RANK[current]


def can_move_status(current: OrderStatus, target: OrderStatus) -> bool:
    return current == target or target in ALLOWED_STATUS_TRANSITIONS[current]


@dataclass
class TransitionRequest:
    order_id: str
    event: TransitionEvent
    target_status: Optional[OrderStatus] = None
    target_delivery_status: Optional[DeliveryStatus] = None
    reason: Optional[str] = None
    actor_id: Optional[str] = None
    # extra field changes computed by the workflow (pickup times, booking ids, tracking)
    changes: dict = field(default_factory=dict)


@dataclass
class TransitionPlan:
    """What the executor must do for one transition attempt."""
    event: TransitionEvent
    noop: bool = False
    target_status: Optional[OrderStatus] = None
    target_delivery_status: Optional[DeliveryStatus] = None
    cancel_courier: bool = False
    refund_amount: Optional[int] = None
    reason: Optional[str] = None
    changes: dict = field(default_factory=dict)


def _reject(order: Order, event: TransitionEvent, message: str) -> IllegalTransitionException:
    return IllegalTransitionException(
        message,
        order_id=order.id,
        status=order.status.value,
        delivery_status=order.delivery_status.value if order.delivery_status else None,
        event=event.value,
    )


def check_actor(order: Order, event: TransitionEvent, actor_id: Optional[str]) -> None:
    """Ownership guard; system events (actor_id None) bypass it."""
    if actor_id is None:
        return
    if event == TransitionEvent.BUYER_CANCEL and actor_id != order.buyer_id:
        raise OrderAccessDeniedException(order.id, actor_id, "buyer")
    if event in (
        TransitionEvent.SELLER_COMMIT,
        TransitionEvent.SELLER_DECLINE,
        TransitionEvent.RESCHEDULE_PICKUP,
        TransitionEvent.SELLER_CANCEL_AFTER_MISSED_PICKUP,
    ) and actor_id != order.seller_id:
        raise OrderAccessDeniedException(order.id, actor_id, "seller")


def check_guards(order: Order, event: TransitionEvent) -> None:
    """Event-specific preconditions; raise IllegalTransitionException when violated."""
    status, delivery = order.status, order.delivery_status

    if event == TransitionEvent.BUYER_CANCEL:
        if status in BUYER_CANCEL_BLOCKED_STATUS:
            raise _reject(order, event, f"Order cannot be cancelled while {status.value}")
        if delivery in BUYER_CANCEL_BLOCKED_DELIVERY:
            raise _reject(order, event, "Order has already been collected by the courier")
    elif event in (TransitionEvent.SELLER_COMMIT, TransitionEvent.SELLER_DECLINE, TransitionEvent.COMMIT_EXPIRED):
        if status != OrderStatus.PENDING_COMMIT:
            raise _reject(order, event, "Order is no longer awaiting the seller's commitment")
    elif event == TransitionEvent.MISSED_PICKUP:
        if delivery not in SCHEDULED_PICKUP_STATUSES or order.is_cancel_class:
            raise _reject(order, event, "Order has no scheduled pickup")
    elif event in (
        TransitionEvent.RESCHEDULE_PICKUP,
        TransitionEvent.SELLER_CANCEL_AFTER_MISSED_PICKUP,
        TransitionEvent.MISSED_PICKUP_EXPIRED,
    ):
        if delivery != DeliveryStatus.PICKUP_FAILED or order.is_cancel_class:
            raise _reject(order, event, "Order is not awaiting action after a missed pickup")
    elif event == TransitionEvent.TRACKING_UPDATE:
        if order.is_cancel_class:
            raise _reject(order, event, "Order is cancelled")


def _resolve_targets(
    order: Order, request: TransitionRequest
) -> tuple[OrderStatus, Optional[DeliveryStatus]]:
    event = request.event
    if event in CANCEL_EVENTS:
        return CANCEL_EVENTS[event], DeliveryStatus.CANCELLED
    if event == TransitionEvent.SELLER_COMMIT:
        return OrderStatus.COMMITTED, order.delivery_status
    if event == TransitionEvent.MISSED_PICKUP:
        return order.status, DeliveryStatus.PICKUP_FAILED
    if event == TransitionEvent.RESCHEDULE_PICKUP:
        return order.status, DeliveryStatus.RESCHEDULED_BY_SELLER

    target_status = request.target_status or order.status
    target_delivery = request.target_delivery_status or order.delivery_status
    if target_delivery == DeliveryStatus.DELIVERED and target_status not in (
        OrderStatus.DELIVERED, OrderStatus.COMPLETED
    ):
        target_status = OrderStatus.DELIVERED
    return target_status, target_delivery


def _is_repeat(order: Order, event: TransitionEvent, target_status: OrderStatus,
               target_delivery: Optional[DeliveryStatus]) -> bool:
    if event in CANCEL_EVENTS:
        return order.status == target_status
    if event == TransitionEvent.SELLER_COMMIT:
        return order.status == OrderStatus.COMMITTED
    if event == TransitionEvent.MISSED_PICKUP:
        return order.delivery_status == DeliveryStatus.PICKUP_FAILED and not order.is_cancel_class
    if event == TransitionEvent.TRACKING_UPDATE:
        return order.status == target_status and order.delivery_status == target_delivery
    return False


def plan_transition(order: Order, request: TransitionRequest, now: datetime) -> TransitionPlan:
    """
    Decide the transition for the freshly read `order`.

    Repeating a transition into a state the order already holds yields a
    no-op plan; everything else is validated against the guards, the two
    transition tables and the joint validity rule before any side effect.
    """
    event = request.event
    target_status, target_delivery = _resolve_targets(order, request)

    check_actor(order, event, request.actor_id)
    if _is_repeat(order, event, target_status, target_delivery):
        return TransitionPlan(event=event, noop=True, target_status=order.status,
                              target_delivery_status=order.delivery_status)

    check_guards(order, event)

    if not can_move_status(order.status, target_status):
        raise _reject(order, event, f"Illegal status change {order.status.value} -> {target_status.value}")
    if target_delivery != order.delivery_status and (
        target_delivery is None or not can_move_delivery(order.delivery_status, target_delivery)
    ):
        raise _reject(
            order, event,
            f"Illegal delivery change {order.delivery_status.value if order.delivery_status else None} "
            f"-> {target_delivery.value if target_delivery else None}",
        )
    if not is_jointly_valid(target_status, target_delivery):
        raise _reject(
            order, event,
            f"Invalid combination {target_status.value}/{target_delivery.value if target_delivery else None}",
        )

    reason = request.reason or DEFAULT_REASONS.get(event)
    changes: dict = dict(request.changes)
    changes["status"] = target_status
    changes["delivery_status"] = target_delivery

    plan = TransitionPlan(
        event=event,
        target_status=target_status,
        target_delivery_status=target_delivery,
        reason=reason,
        changes=changes,
    )

    if target_status in CANCEL_CLASS_STATUSES:
        # A pre-commit order has no courier booking to undo.
        plan.cancel_courier = order.is_committed and order.courier_reference is not None
        plan.refund_amount = order.total_amount
        if target_status == OrderStatus.DECLINED_BY_SELLER:
            changes.update(declined_at=now, decline_reason=reason)
        else:
            changes.update(cancelled_at=now, cancellation_reason=reason)
    elif event == TransitionEvent.SELLER_COMMIT:
        changes["committed_at"] = now
    elif event == TransitionEvent.MISSED_PICKUP:
        changes.update(pickup_failed_at=now, pickup_failure_reason=reason)
        info = changes.get("delivery_info", order.delivery_info)
        changes["delivery_info"] = replace(info, pickup_failures=order.delivery_info.pickup_failures + 1)
    elif event == TransitionEvent.RESCHEDULE_PICKUP:
        changes["rescheduled_at"] = now

    if target_status == OrderStatus.DELIVERED and order.status != OrderStatus.DELIVERED:
        changes.setdefault("delivered_at", now)

    return plan
