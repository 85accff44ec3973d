"""
Notifier port: in-app notifications and email.

Adapters raise NotificationFailure; callers treat delivery as best-effort.
"""
from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable


@runtime_checkable
class Notifier(Protocol):

    async def notify(
        self,
        user_id: str,
        title: str,
        message: str,
        kind: str,
        *,
        order_id: Optional[str] = None,
        dedupe_key: Optional[str] = None,
    ) -> None: ...

    async def email(
        self,
        address: str,
        subject: str,
        html_body: str,
        text_body: str,
        *,
        idempotency_key: Optional[str] = None,
    ) -> None: ...
