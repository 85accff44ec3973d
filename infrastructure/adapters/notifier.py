"""Infrastructure adapter that implements the application Notifier port.

In-app notifications are rows in the notifications table, written once per
dedupe key. Emails are handed to the Celery worker, which owns retries.
"""
from __future__ import annotations

import hashlib
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from application.ports.notifier import Notifier
from core.logging_config import get_logger
from domain.order.exceptions import NotificationFailure
from infrastructure.database import AsyncSessionLocal
from infrastructure.repositories.notification_repository import SQLAlchemyNotificationRepository
from infrastructure.tasks.utils.dispatcher import TaskDispatcher


logger = get_logger(__name__)


def _fallback_dedupe_key(user_id: str, title: str, message: str) -> str:
    return hashlib.sha256(f"{user_id}|{title}|{message}".encode("utf-8")).hexdigest()


class OrderNotifier(Notifier):
    def __init__(
        self,
        session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
        tasks: Optional[TaskDispatcher] = None,
    ):
        self._session_factory = session_factory
        self._tasks = tasks or TaskDispatcher()

    async def notify(
        self,
        user_id: str,
        title: str,
        message: str,
        kind: str,
        *,
        order_id: Optional[str] = None,
        dedupe_key: Optional[str] = None,
    ) -> None:
        key = dedupe_key or _fallback_dedupe_key(user_id, title, message)
        try:
            async with self._session_factory() as session:
                async with session.begin():
                    written = await SQLAlchemyNotificationRepository(session).add_once(
                        user_id=user_id,
                        title=title,
                        message=message,
                        kind=kind,
                        dedupe_key=key,
                        order_id=order_id,
                    )
        except Exception as exc:
            raise NotificationFailure("in_app", f"In-app notification failed: {exc}", user_id=user_id) from exc
        if written:
            logger.info("notification_created", user_id=user_id, order_id=order_id, kind=kind)

    async def email(
        self,
        address: str,
        subject: str,
        html_body: str,
        text_body: str,
        *,
        idempotency_key: Optional[str] = None,
    ) -> None:
        try:
            self._tasks.enqueue_order_email(
                address,
                subject,
                html_body,
                text_body,
                idempotency_key=idempotency_key,
            )
        except Exception as exc:
            raise NotificationFailure("email", f"Email enqueue failed: {exc}") from exc
        logger.info("email_enqueued", to=address, subject=subject)
