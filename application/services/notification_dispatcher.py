"""
Best-effort execution of notification intents.

In-app and email deliveries are attempted independently; a failure of one never
prevents the other, and no failure ever propagates to the caller.
"""
from __future__ import annotations

import hashlib
from typing import Iterable

from application.dtos.orders import DispatchReport
from application.ports.notifier import Notifier
from core.logging_config import get_logger
from domain.order.notifications import NotificationIntent


logger = get_logger(__name__)


def email_idempotency_key(intent: NotificationIntent) -> str:
    base = f"email|{intent.dedupe_key}|{intent.email.to if intent.email else ''}"
    return hashlib.sha256(base.encode("utf-8")).hexdigest()


class NotificationDispatcher:
    def __init__(self, notifier: Notifier) -> None:
        self.notifier = notifier

    async def dispatch(self, intents: Iterable[NotificationIntent]) -> DispatchReport:
        report = DispatchReport()
        for intent in intents:
            await self._deliver_in_app(intent, report)
            if intent.email is not None:
                await self._deliver_email(intent, report)
        if report.failed:
            logger.warning(
                "notification_dispatch_partial",
                attempted=report.attempted,
                delivered=report.delivered,
                failed=report.failed,
            )
        return report

    async def _deliver_in_app(self, intent: NotificationIntent, report: DispatchReport) -> None:
        report.attempted += 1
        try:
            await self.notifier.notify(
                intent.user_id,
                intent.title,
                intent.message,
                intent.kind,
                order_id=intent.order_id,
                dedupe_key=intent.dedupe_key,
            )
        except Exception as exc:
            report.failed += 1
            logger.warning(
                "notification_in_app_failed",
                user_id=intent.user_id,
                order_id=intent.order_id,
                title=intent.title,
                error=str(exc),
            )
            return
        report.delivered += 1

    async def _deliver_email(self, intent: NotificationIntent, report: DispatchReport) -> None:
        report.attempted += 1
        email = intent.email
        try:
            await self.notifier.email(
                email.to,
                email.subject,
                email.html,
                email.text,
                idempotency_key=email_idempotency_key(intent),
            )
        except Exception as exc:
            report.failed += 1
            logger.warning(
                "notification_email_failed",
                user_id=intent.user_id,
                order_id=intent.order_id,
                subject=email.subject,
                error=str(exc),
            )
            return
        report.delivered += 1
