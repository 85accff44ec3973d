"""
Order lifecycle codes and courier status mapping.
"""
from __future__ import annotations

from enum import IntEnum


class OrderCode(IntEnum):
    # Order errors (7xxxx)
    ORDER_NOT_FOUND = 70001
    ILLEGAL_TRANSITION = 70002
    ORDER_ACCESS_DENIED = 70003
    CONCURRENT_UPDATE = 70004

    # Compensation errors (71xxx)
    COMPENSATION_FAILED = 71000
    REFUND_FAILED = 71001
    REBOOK_FAILED = 71002
    PAYMENT_NOT_VERIFIED = 71003

    # Provider errors (72xxx)
    PAYMENT_PROVIDER_ERROR = 72001
    COURIER_PROVIDER_ERROR = 72002
    NOTIFICATION_FAILED = 72003
    PAYOUT_PROVIDER_ERROR = 72004
    RECONCILIATION_ERROR = 72005


# Courier vocabulary -> internal delivery_status. Anything absent means "no change".
COURIER_STATUS_TO_DELIVERY = {
    "COLLECTED": "collected",
    "IN_TRANSIT": "in_transit",
    "OUT_FOR_DELIVERY": "out_for_delivery",
    "DELIVERED": "delivered",
    "DELIVERED_TO_RECIPIENT": "delivered",
    "COLLECTION_FAILED": "pickup_failed",
    "DELIVERY_FAILED": "delivery_failed",
    "RETURNED_TO_SENDER": "returned",
}


def map_courier_status(courier_status: str | None) -> str | None:
    """Translate a raw courier status string; unknown or empty values map to None."""
    if not courier_status:
        return None
    return COURIER_STATUS_TO_DELIVERY.get(courier_status.strip().upper())
