"""
Order domain entities - the order aggregate and its refund ledger.
"""
from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from domain.common.exceptions import DomainValidationException


class OrderStatus(str, Enum):
    """Commercial status of an order"""
    PENDING_COMMIT = "pending_commit"      # paid, waiting for the seller
    COMMITTED = "committed"                # seller accepted
    DISPATCHED = "dispatched"              # seller handed over / marked sent
    PENDING_DELIVERY = "pending_delivery"  # courier booked, awaiting delivery
    DELIVERED = "delivered"
    COMPLETED = "completed"
    DECLINED_BY_SELLER = "declined_by_seller"
    CANCELLED_BY_SELLER_AFTER_MISSED_PICKUP = "cancelled_by_seller_after_missed_pickup"
    CANCELLED = "cancelled"


class DeliveryStatus(str, Enum):
    """Courier-facing sub-state of an order"""
    CREATED = "created"
    PENDING = "pending"
    PICKUP_SCHEDULED = "pickup_scheduled"
    COLLECTED = "collected"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    PICKUP_FAILED = "pickup_failed"
    RESCHEDULED_BY_SELLER = "rescheduled_by_seller"
    DELIVERY_FAILED = "delivery_failed"
    RETURNED = "returned"
    CANCELLED = "cancelled"


class RefundStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


CANCEL_CLASS_STATUSES = frozenset({
    OrderStatus.CANCELLED,
    OrderStatus.DECLINED_BY_SELLER,
    OrderStatus.CANCELLED_BY_SELLER_AFTER_MISSED_PICKUP,
})

TERMINAL_STATUSES = CANCEL_CLASS_STATUSES | {OrderStatus.COMPLETED}

TERMINAL_DELIVERY_STATUSES = frozenset({
    DeliveryStatus.DELIVERED,
    DeliveryStatus.CANCELLED,
    DeliveryStatus.RETURNED,
})


def _ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Normalize a timestamp to UTC"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _parse_dt(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return _ensure_utc(value)
    try:
        return _ensure_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except ValueError:
        return None


def _iso(dt: Optional[datetime]) -> Optional[str]:
    return dt.isoformat() if dt else None


@dataclass(frozen=True)
class TrackingEvent:
    status: str
    description: Optional[str] = None
    timestamp: Optional[datetime] = None
    location: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "description": self.description,
            "timestamp": _iso(self.timestamp),
            "location": self.location,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TrackingEvent":
        return cls(
            status=str(data.get("status") or ""),
            description=data.get("description"),
            timestamp=_parse_dt(data.get("timestamp")),
            location=data.get("location"),
        )


@dataclass(frozen=True)
class TrackingSnapshot:
    """Last known courier view of a shipment; events are append-only."""
    courier_status: Optional[str] = None
    status_description: Optional[str] = None
    last_checked: Optional[datetime] = None
    events: tuple[TrackingEvent, ...] = ()

    def merged_with(
        self,
        courier_status: str,
        status_description: Optional[str],
        checked_at: datetime,
        events: list[TrackingEvent],
    ) -> "TrackingSnapshot":
        """Return a new snapshot with unseen events appended in order."""
        seen = {(e.status, e.timestamp, e.description) for e in self.events}
        appended = [e for e in events if (e.status, e.timestamp, e.description) not in seen]
        return TrackingSnapshot(
            courier_status=courier_status,
            status_description=status_description,
            last_checked=checked_at,
            events=self.events + tuple(appended),
        )

    def to_dict(self) -> dict:
        return {
            "courier_status": self.courier_status,
            "status_description": self.status_description,
            "last_checked": _iso(self.last_checked),
            "events": [e.to_dict() for e in self.events],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TrackingSnapshot":
        return cls(
            courier_status=data.get("courier_status"),
            status_description=data.get("status_description"),
            last_checked=_parse_dt(data.get("last_checked")),
            events=tuple(TrackingEvent.from_dict(e) for e in data.get("events") or []),
        )


@dataclass(frozen=True)
class CourierCancellation:
    attempted_at: datetime
    success: bool
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {"attempted_at": _iso(self.attempted_at), "success": self.success, "error": self.error}

    @classmethod
    def from_dict(cls, data: dict) -> "CourierCancellation":
        return cls(
            attempted_at=_parse_dt(data.get("attempted_at")) or datetime.now(timezone.utc),
            success=bool(data.get("success")),
            error=data.get("error"),
        )


@dataclass(frozen=True)
class DeliveryInfo:
    """
    Typed view of the order's delivery_info JSON column.

    The core reads and writes only the typed fields; anything else the
    checkout flow stored (addresses, parcel dimensions, ...) rides along in `extra`.
    """
    tracking: Optional[TrackingSnapshot] = None
    courier_cancellation: Optional[CourierCancellation] = None
    pickup_failures: int = 0
    # payment references already spent on reschedule fees
    reschedule_payments: tuple[str, ...] = ()
    extra: dict = field(default_factory=dict)

    _KNOWN_KEYS = ("tracking", "tracking_data", "courier_cancellation", "pickup_failures", "reschedule_payments")

    def to_dict(self) -> dict:
        data = dict(self.extra)
        if self.tracking is not None:
            data["tracking"] = self.tracking.to_dict()
        if self.courier_cancellation is not None:
            data["courier_cancellation"] = self.courier_cancellation.to_dict()
        if self.pickup_failures:
            data["pickup_failures"] = self.pickup_failures
        if self.reschedule_payments:
            data["reschedule_payments"] = list(self.reschedule_payments)
        return data

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "DeliveryInfo":
        data = dict(data or {})
        # legacy rows store the snapshot under "tracking_data"
        tracking = data.get("tracking") or data.get("tracking_data")
        cancellation = data.get("courier_cancellation")
        return cls(
            tracking=TrackingSnapshot.from_dict(tracking) if isinstance(tracking, dict) else None,
            courier_cancellation=(
                CourierCancellation.from_dict(cancellation) if isinstance(cancellation, dict) else None
            ),
            pickup_failures=int(data.get("pickup_failures") or 0),
            reschedule_payments=tuple(data.get("reschedule_payments") or ()),
            extra={k: v for k, v in data.items() if k not in cls._KNOWN_KEYS},
        )


@dataclass
class Order:
    """
    Order aggregate

    Business rules:
    1. (status, delivery_status) must always be a jointly valid pair
    2. cancel-class orders carry a terminal delivery_status and a reason
    3. orders are never deleted; mutations go through the state machine only
    4. total_amount is stored in minor units and is positive
    """

    id: str
    status: OrderStatus
    buyer_id: str
    seller_id: str
    total_amount: int
    delivery_status: Optional[DeliveryStatus] = None
    book_id: Optional[str] = None
    currency: str = "ZAR"
    payment_reference: Optional[str] = None

    courier_service: Optional[str] = None
    courier_booking_id: Optional[str] = None
    tracking_number: Optional[str] = None
    pickup_scheduled_at: Optional[datetime] = None
    pickup_failed_at: Optional[datetime] = None
    pickup_failure_reason: Optional[str] = None
    rescheduled_at: Optional[datetime] = None

    committed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    declined_at: Optional[datetime] = None
    decline_reason: Optional[str] = None
    delivered_at: Optional[datetime] = None

    delivery_info: DeliveryInfo = field(default_factory=DeliveryInfo)

    # contact snapshot, used for notification copy only
    buyer_email: Optional[str] = None
    buyer_name: Optional[str] = None
    seller_email: Optional[str] = None
    seller_name: Optional[str] = None
    book_title: Optional[str] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.status = OrderStatus(self.status)
        if self.delivery_status is not None:
            self.delivery_status = DeliveryStatus(self.delivery_status)
        if self.delivery_info is None:
            self.delivery_info = DeliveryInfo()
        elif isinstance(self.delivery_info, dict):
            self.delivery_info = DeliveryInfo.from_dict(self.delivery_info)
        if self.total_amount is None or self.total_amount <= 0:
            raise DomainValidationException(
                f"Order amount must be positive: {self.total_amount}",
                field="total_amount",
            )
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, datetime):
                setattr(self, f.name, _ensure_utc(value))

    @property
    def is_cancel_class(self) -> bool:
        return self.status in CANCEL_CLASS_STATUSES

    @property
    def is_committed(self) -> bool:
        return self.status != OrderStatus.PENDING_COMMIT and not self.is_cancel_class

    @property
    def courier_reference(self) -> Optional[str]:
        """Identifier the courier knows the booking by."""
        return self.courier_booking_id or self.tracking_number

    def with_changes(self, changes: dict) -> "Order":
        """Return a copy with `changes` applied (unknown keys are rejected)."""
        unknown = set(changes) - {f.name for f in fields(self)}
        if unknown:
            raise DomainValidationException(
                f"Unknown order fields: {sorted(unknown)}",
                details={"fields": sorted(unknown)},
            )
        return replace(self, **changes)


@dataclass
class Refund:
    """
    Refund ledger row

    Business rules:
    1. amount is positive and never exceeds the order total
    2. at most one successful refund per order (enforced by the store)
    3. a successful refund is immutable
    """

    order_id: str
    payment_reference: str
    amount: int
    order_total: int
    reason: Optional[str] = None
    id: Optional[int] = None
    status: RefundStatus = RefundStatus.PENDING
    gateway_reference: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def __post_init__(self):
        self.status = RefundStatus(self.status)
        if self.amount <= 0:
            raise DomainValidationException(
                f"Refund amount must be positive: {self.amount}", field="amount"
            )
        if self.amount > self.order_total:
            raise DomainValidationException(
                f"Refund amount {self.amount} exceeds order total {self.order_total}",
                field="amount",
                details={"amount": self.amount, "order_total": self.order_total},
            )

    @property
    def is_successful(self) -> bool:
        return self.status == RefundStatus.SUCCESS

    def _ensure_mutable(self) -> None:
        if self.status == RefundStatus.SUCCESS:
            raise DomainValidationException(
                "Successful refunds are immutable", field="status"
            )

    def mark_success(self, gateway_reference: Optional[str], at: Optional[datetime] = None) -> None:
        self._ensure_mutable()
        now = at or datetime.now(timezone.utc)
        self.status = RefundStatus.SUCCESS
        self.gateway_reference = gateway_reference
        self.failure_reason = None
        self.completed_at = now
        self.updated_at = now

    def mark_failed(self, reason: str, at: Optional[datetime] = None) -> None:
        self._ensure_mutable()
        self.status = RefundStatus.FAILED
        self.failure_reason = reason
        self.updated_at = at or datetime.now(timezone.utc)


@dataclass
class OrderActivity:
    """Append-only audit entry for a committed transition."""
    order_id: str
    action: str
    actor_id: Optional[str] = None
    details: dict = field(default_factory=dict)
    id: Optional[int] = None
    created_at: Optional[datetime] = None
