"""Celery beat schedule configuration.

Intervals come from the order lifecycle settings so operators tune them
through ORDERS__* environment variables.
"""
from __future__ import annotations

from core.config import settings

CELERY_BEAT_SCHEDULE = {
    "orders-reconcile-tracking": {
        "task": "orders.reconcile_tracking",
        "schedule": settings.orders.tracking_poll_interval_seconds,
    },
    "orders-expire-pending-commits": {
        "task": "orders.expire_pending_commits",
        "schedule": settings.orders.expiry_sweep_interval_seconds,
    },
    "orders-auto-cancel-missed-pickups": {
        "task": "orders.auto_cancel_missed_pickups",
        "schedule": settings.orders.expiry_sweep_interval_seconds,
    },
}
