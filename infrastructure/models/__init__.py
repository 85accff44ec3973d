"""Infrastructure models package exports."""
from .base import Base, metadata
from .order import OrderModel, RefundModel, NotificationModel, OrderActivityModel

__all__ = [
    "Base",
    "metadata",
    "OrderModel",
    "RefundModel",
    "NotificationModel",
    "OrderActivityModel",
]
