"""Notification delivery tasks"""
from __future__ import annotations

from typing import Optional

import httpx
from celery import shared_task

from ..utils.base_task import BaseTask
from core.logging_config import get_logger
from core.settings import integration_settings

logger = get_logger(__name__)

RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}


class EmailDeliveryError(Exception):
    """Transient email service failure; the task is retried."""


@shared_task(
    name="orders.send_order_email",
    bind=True,
    base=BaseTask,
    autoretry_for=(EmailDeliveryError, httpx.TransportError),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_jitter=True,
    retry_kwargs={"max_retries": integration_settings.notifications.email_max_retries},
)
def send_order_email(
    self,
    to: str,
    subject: str,
    html_body: str,
    text_body: str,
    idempotency_key: Optional[str] = None,
) -> bool:
    """Hand one order email to the email service.

    The Idempotency-Key header lets the service drop redeliveries of the
    same message after a worker retry.
    """
    cfg = integration_settings.notifications
    if not cfg.email_service_url:
        logger.warning("email_service_not_configured", to=to, subject=subject)
        return False

    headers = {"Content-Type": "application/json"}
    if cfg.email_api_key:
        headers["Authorization"] = f"Bearer {cfg.email_api_key}"
    if idempotency_key:
        headers["Idempotency-Key"] = idempotency_key

    timeouts = integration_settings.timeouts
    timeout = httpx.Timeout(timeouts.total, connect=timeouts.connect, read=timeouts.read, write=timeouts.write)
    with httpx.Client(timeout=timeout) as client:
        response = client.post(
            cfg.email_service_url,
            json={
                "from": cfg.sender,
                "to": to,
                "subject": subject,
                "html": html_body,
                "text": text_body,
            },
            headers=headers,
        )

    if response.status_code in RETRYABLE_STATUS_CODES:
        raise EmailDeliveryError(f"Email service returned {response.status_code}")
    if response.is_error:
        # permanent rejection; retrying would not help
        logger.error("email_rejected", to=to, subject=subject, status_code=response.status_code)
        return False

    logger.info("email_sent", to=to, subject=subject, attempt=self.request.retries + 1)
    return True
