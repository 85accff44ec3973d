"""Small dispatching helpers to decouple Celery from callers."""
from __future__ import annotations

from typing import Optional

from ..config.celery import celery_app


class TaskDispatcher:
    """Internal facade used by infrastructure adapters and the API to schedule tasks."""

    def enqueue_order_email(
        self,
        to: str,
        subject: str,
        html_body: str,
        text_body: str,
        *,
        idempotency_key: Optional[str] = None,
    ) -> None:
        """Fire-and-forget email delivery; the worker retries transient failures."""
        celery_app.send_task(
            "orders.send_order_email",
            kwargs={
                "to": to,
                "subject": subject,
                "html_body": html_body,
                "text_body": text_body,
                "idempotency_key": idempotency_key,
            },
        )

    def trigger_tracking_reconciliation(self) -> str:
        """Queue an out-of-schedule reconciliation run and return its task id."""
        result = celery_app.send_task("orders.reconcile_tracking")
        return result.id
