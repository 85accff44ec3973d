"""
Order lifecycle database models - SQLAlchemy ORM.
These are persistence details; business rules live in domain.order.
"""
from sqlalchemy import (
    Column, Integer, BigInteger, String, DateTime, Text, JSON, Boolean,
    Index, ForeignKey, text
)
from datetime import datetime, timezone

from .base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderModel(Base):
    __tablename__ = "orders"

    id = Column(String(64), primary_key=True)
    buyer_id = Column(String(64), nullable=False, index=True, comment="Buyer user id")
    seller_id = Column(String(64), nullable=False, index=True, comment="Seller user id")
    book_id = Column(String(64), nullable=True, comment="Listed book id")

    status = Column(String(50), nullable=False, default="pending_commit", index=True, comment="Order status")
    delivery_status = Column(String(50), nullable=True, index=True, comment="Courier-facing delivery status")

    # Minor units (cents)
    total_amount = Column(BigInteger, nullable=False, comment="Order total in minor units")
    currency = Column(String(3), nullable=False, default="ZAR", comment="ISO-4217 currency")
    payment_reference = Column(String(200), nullable=True, index=True, comment="Gateway transaction reference")

    courier_service = Column(String(100), nullable=True)
    courier_booking_id = Column(String(200), nullable=True)
    tracking_number = Column(String(200), nullable=True, index=True)
    pickup_scheduled_at = Column(DateTime(timezone=True), nullable=True)
    pickup_failed_at = Column(DateTime(timezone=True), nullable=True, index=True)
    pickup_failure_reason = Column(Text, nullable=True)
    rescheduled_at = Column(DateTime(timezone=True), nullable=True)

    committed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    declined_at = Column(DateTime(timezone=True), nullable=True)
    decline_reason = Column(Text, nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)

    delivery_info = Column(JSON, nullable=True, comment="Tracking snapshot, courier cancellation and passthrough data")

    buyer_email = Column(String(255), nullable=True)
    buyer_name = Column(String(255), nullable=True)
    seller_email = Column(String(255), nullable=True)
    seller_name = Column(String(255), nullable=True)
    book_title = Column(String(500), nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_orders_seller_pickup_failed", "seller_id", "pickup_failed_at"),
        Index("ix_orders_status_delivery", "status", "delivery_status"),
    )

    def __repr__(self):
        return f"<Order(id={self.id}, status={self.status}, delivery_status={self.delivery_status})>"


class RefundModel(Base):
    __tablename__ = "refund_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(64), ForeignKey("orders.id"), nullable=False, index=True)
    payment_reference = Column(String(200), nullable=False, index=True)
    amount = Column(BigInteger, nullable=False, comment="Refund amount in minor units")
    reason = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="pending", comment="pending/success/failed")
    gateway_reference = Column(String(200), nullable=True, comment="Gateway refund id")
    failure_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        # at most one successful refund per order
        Index(
            "uq_refund_transactions_order_success",
            "order_id",
            unique=True,
            postgresql_where=text("status = 'success'"),
            sqlite_where=text("status = 'success'"),
        ),
    )


class NotificationModel(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    order_id = Column(String(64), nullable=True, index=True)
    kind = Column(String(50), nullable=False, default="order_update")
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    dedupe_key = Column(String(255), nullable=False, unique=True)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)


class OrderActivityModel(Base):
    __tablename__ = "order_activity_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String(64), ForeignKey("orders.id"), nullable=False, index=True)
    action = Column(String(100), nullable=False)
    actor_id = Column(String(64), nullable=True)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
