"""
Notification intents produced by committed order transitions.

The state machine never sends anything itself: it returns these intents and the
notification dispatcher executes them best-effort after the transition is stored.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from html import escape
from typing import Optional

from .entity import DeliveryStatus, Order


class NotificationKind:
    ORDER_UPDATE = "order_update"
    ORDER_CANCELLED = "order_cancelled"
    ACTION_REQUIRED = "action_required"
    DELIVERY_UPDATE = "delivery_update"
    WARNING = "warning"


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    html: str
    text: str


@dataclass(frozen=True)
class NotificationIntent:
    user_id: str
    order_id: Optional[str]
    title: str
    message: str
    kind: str
    dedupe_key: str
    email: Optional[EmailMessage] = None


def format_amount(amount_minor: int, currency: str = "ZAR") -> str:
    """5000 -> 'R50.00' for rand, '50.00 USD' otherwise."""
    value = f"{amount_minor / 100:.2f}"
    return f"R{value}" if currency.upper() == "ZAR" else f"{value} {currency.upper()}"


def render_email_html(title: str, greeting: str, paragraphs: list[str]) -> str:
    body = "".join(f"<p>{escape(p)}</p>" for p in paragraphs)
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        f"<title>{escape(title)}</title></head>"
        "<body style=\"font-family:Arial,sans-serif;background:#f3fef7;padding:20px;color:#1f4e3d\">"
        "<div style=\"max-width:500px;margin:auto;background:#fff;padding:30px;border-radius:10px\">"
        f"<h1 style=\"color:#3ab26f\">{escape(title)}</h1>"
        f"<p>{escape(greeting)}</p>{body}"
        "<p style=\"font-size:12px;color:#6b7280\">This is an automated message. Please do not reply.</p>"
        "</div></body></html>"
    )


def _email(address: Optional[str], subject: str, name: Optional[str], paragraphs: list[str]) -> Optional[EmailMessage]:
    if not address:
        return None
    greeting = f"Hi {name or 'there'},"
    text = "\n\n".join([greeting, *paragraphs])
    return EmailMessage(to=address, subject=subject, html=render_email_html(subject, greeting, paragraphs), text=text)


def _book(order: Order) -> str:
    return f'"{order.book_title}"' if order.book_title else "your book"


def _intent(order: Order, user_id: str, key: str, title: str, message: str, kind: str,
            email: Optional[EmailMessage] = None) -> NotificationIntent:
    return NotificationIntent(
        user_id=user_id,
        order_id=order.id,
        title=title,
        message=message,
        kind=kind,
        dedupe_key=f"{order.id}:{key}:{user_id}",
        email=email,
    )


def _refund_line(order: Order, refund_amount: Optional[int]) -> str:
    if not refund_amount:
        return "Any payment made will be returned to you."
    return (
        f"A full refund of {format_amount(refund_amount, order.currency)} has been issued "
        "and will appear within 3-5 business days."
    )


def seller_committed(order: Order) -> list[NotificationIntent]:
    msg = f"The seller has committed to your order for {_book(order)}. A courier pickup will be arranged shortly."
    return [
        _intent(order, order.buyer_id, "committed", "Order Confirmed", msg, NotificationKind.ORDER_UPDATE,
                _email(order.buyer_email, "Order Confirmed", order.buyer_name, [msg])),
    ]


def buyer_cancelled(order: Order, refund_amount: Optional[int]) -> list[NotificationIntent]:
    buyer_msg = f"Your order for {_book(order)} has been cancelled. {_refund_line(order, refund_amount)}"
    seller_msg = f"The buyer cancelled the order for {_book(order)}. No further action is needed."
    return [
        _intent(order, order.buyer_id, "cancelled", "Order Cancelled", buyer_msg, NotificationKind.ORDER_CANCELLED,
                _email(order.buyer_email, "Order Cancelled", order.buyer_name, [buyer_msg])),
        _intent(order, order.seller_id, "cancelled", "Order Cancelled", seller_msg, NotificationKind.ORDER_CANCELLED,
                _email(order.seller_email, "Order Cancelled", order.seller_name, [seller_msg])),
    ]


def seller_declined(order: Order, refund_amount: Optional[int], *, expired: bool = False) -> list[NotificationIntent]:
    reason = order.decline_reason or "No reason given"
    if expired:
        buyer_msg = (f"The seller did not confirm your order for {_book(order)} in time. "
                     f"{_refund_line(order, refund_amount)}")
        seller_title = "Order Expired"
        seller_msg = f"The order for {_book(order)} expired because it was not committed in time."
    else:
        buyer_msg = (f"The seller declined your order for {_book(order)}. Reason: {reason}. "
                     f"{_refund_line(order, refund_amount)}")
        seller_title = "Order Declined"
        seller_msg = f"You declined the order for {_book(order)}. The buyer has been refunded."
    return [
        _intent(order, order.buyer_id, "declined", "Seller Declined Order", buyer_msg, NotificationKind.ORDER_CANCELLED,
                _email(order.buyer_email, "Order Declined", order.buyer_name, [buyer_msg])),
        _intent(order, order.seller_id, "declined", seller_title, seller_msg, NotificationKind.ORDER_UPDATE),
    ]


def pickup_missed(order: Order, action_window_hours: int) -> list[NotificationIntent]:
    attempt = order.pickup_failed_at.isoformat() if order.pickup_failed_at else "unknown"
    seller_msg = (
        f"The courier could not collect {_book(order)}. Reason: {order.pickup_failure_reason}. "
        f"Please reschedule the pickup or cancel the order within {action_window_hours} hours."
    )
    buyer_msg = (
        f"The courier pickup for {_book(order)} was missed. The seller has been asked to reschedule; "
        "we'll keep you updated."
    )
    return [
        _intent(order, order.seller_id, f"pickup_failed:{attempt}", "Courier Pickup Missed", seller_msg,
                NotificationKind.ACTION_REQUIRED,
                _email(order.seller_email, "Action Required: Courier Pickup Missed", order.seller_name, [seller_msg])),
        _intent(order, order.buyer_id, f"pickup_failed:{attempt}", "Pickup Delayed", buyer_msg,
                NotificationKind.DELIVERY_UPDATE),
    ]


def pickup_rescheduled(order: Order) -> list[NotificationIntent]:
    when = order.pickup_scheduled_at.strftime("%Y-%m-%d %H:%M UTC") if order.pickup_scheduled_at else "soon"
    stamp = order.rescheduled_at.isoformat() if order.rescheduled_at else when
    buyer_msg = f"The pickup for {_book(order)} has been rescheduled to {when}."
    seller_msg = f"Your new courier pickup for {_book(order)} is booked for {when}. Please have the book ready."
    return [
        _intent(order, order.buyer_id, f"rescheduled:{stamp}", "Delivery Rescheduled", buyer_msg,
                NotificationKind.DELIVERY_UPDATE,
                _email(order.buyer_email, "Delivery Rescheduled", order.buyer_name, [buyer_msg])),
        _intent(order, order.seller_id, f"rescheduled:{stamp}", "Pickup Rescheduled", seller_msg,
                NotificationKind.ORDER_UPDATE),
    ]


def cancelled_after_missed_pickup(order: Order, refund_amount: Optional[int]) -> list[NotificationIntent]:
    buyer_msg = (f"The seller cancelled your order for {_book(order)} after a missed pickup. "
                 f"{_refund_line(order, refund_amount)}")
    seller_msg = f"The order for {_book(order)} was cancelled after the missed pickup. The buyer has been refunded."
    return [
        _intent(order, order.buyer_id, "cancelled_after_missed_pickup", "Order Cancelled by Seller", buyer_msg,
                NotificationKind.ORDER_CANCELLED,
                _email(order.buyer_email, "Order Cancelled by Seller", order.buyer_name, [buyer_msg])),
        _intent(order, order.seller_id, "cancelled_after_missed_pickup", "Order Cancelled", seller_msg,
                NotificationKind.ORDER_CANCELLED),
    ]


def reliability_warning(order: Order, missed_count: int, window_days: int, now: datetime) -> NotificationIntent:
    msg = (
        f"You have missed {missed_count} courier pickups in the last {window_days} days. "
        "Repeated missed pickups may affect your seller account."
    )
    return NotificationIntent(
        user_id=order.seller_id,
        order_id=order.id,
        title="Pickup Reliability Warning",
        message=msg,
        kind=NotificationKind.WARNING,
        dedupe_key=f"reliability:{order.seller_id}:{now.date().isoformat()}",
    )


def delivery_progress(
    order: Order, delivery_status: DeliveryStatus, change_id: Optional[int] = None
) -> list[NotificationIntent]:
    """
    Notification set for a tracking-driven delivery change.

    `change_id` identifies the committed change (its activity row), so a status
    reached again after a redelivery gets fresh dedupe keys.
    """
    key = f"delivery:{delivery_status.value}"
    if change_id is not None:
        key = f"{key}:{change_id}"
    book = _book(order)
    if delivery_status in (DeliveryStatus.COLLECTED, DeliveryStatus.PICKED_UP, DeliveryStatus.IN_TRANSIT):
        buyer_msg = f"Great news! {book} has been collected and is on its way to you."
        seller_msg = f"The courier collected {book}. Thank you for shipping promptly."
        return [
            _intent(order, order.buyer_id, key, "Your Order is on the Way!", buyer_msg,
                    NotificationKind.DELIVERY_UPDATE,
                    _email(order.buyer_email, "Your Order is on the Way!", order.buyer_name, [buyer_msg])),
            _intent(order, order.seller_id, key, "Package Collected Successfully", seller_msg,
                    NotificationKind.DELIVERY_UPDATE,
                    _email(order.seller_email, "Package Collected Successfully", order.seller_name, [seller_msg])),
        ]
    if delivery_status == DeliveryStatus.OUT_FOR_DELIVERY:
        msg = f"{book} is out for delivery and should arrive today."
        return [
            _intent(order, order.buyer_id, key, "Out for Delivery", msg, NotificationKind.DELIVERY_UPDATE,
                    _email(order.buyer_email, "Your Order is Out for Delivery", order.buyer_name, [msg])),
        ]
    if delivery_status == DeliveryStatus.DELIVERED:
        buyer_msg = f"{book} has been delivered. Enjoy your studies!"
        seller_msg = (f"{book} was delivered to the buyer. Your payout of "
                      f"{format_amount(order.total_amount, order.currency)} is being processed.")
        return [
            _intent(order, order.buyer_id, key, "Order Delivered Successfully!", buyer_msg,
                    NotificationKind.DELIVERY_UPDATE,
                    _email(order.buyer_email, "Order Delivered Successfully!", order.buyer_name, [buyer_msg])),
            _intent(order, order.seller_id, key, "Order Completed Successfully!", seller_msg,
                    NotificationKind.ORDER_UPDATE,
                    _email(order.seller_email, "Order Completed Successfully!", order.seller_name, [seller_msg])),
        ]
    if delivery_status == DeliveryStatus.DELIVERY_FAILED:
        msg = f"The courier could not deliver {book}. They will contact you to arrange another attempt."
        return [
            _intent(order, order.buyer_id, key, "Delivery Attempt Failed", msg, NotificationKind.DELIVERY_UPDATE,
                    _email(order.buyer_email, "Delivery Attempt Failed", order.buyer_name, [msg])),
        ]
    if delivery_status == DeliveryStatus.RETURNED:
        msg = f"{book} is being returned to the seller by the courier."
        return [
            _intent(order, order.buyer_id, key, "Parcel Returned to Sender", msg, NotificationKind.DELIVERY_UPDATE),
            _intent(order, order.seller_id, key, "Parcel Returned to Sender", msg, NotificationKind.DELIVERY_UPDATE),
        ]
    return []
