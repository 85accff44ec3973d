"""
In-app notification rows.
"""
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from infrastructure.models.order import NotificationModel
from core.logging_config import get_logger


logger = get_logger(__name__)


class SQLAlchemyNotificationRepository:
    """Insert-once storage keyed by dedupe_key."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add_once(
        self,
        *,
        user_id: str,
        title: str,
        message: str,
        kind: str,
        dedupe_key: str,
        order_id: Optional[str] = None,
    ) -> bool:
        """Insert the notification unless one with the same dedupe_key exists.

        Returns True when a row was written.
        """
        existing = await self.session.execute(
            select(NotificationModel.id).where(NotificationModel.dedupe_key == dedupe_key)
        )
        if existing.scalar_one_or_none() is not None:
            logger.info("notification_duplicate_skipped", dedupe_key=dedupe_key)
            return False
        try:
            async with self.session.begin_nested():
                self.session.add(
                    NotificationModel(
                        user_id=user_id,
                        order_id=order_id,
                        kind=kind,
                        title=title,
                        message=message,
                        dedupe_key=dedupe_key,
                    )
                )
        except IntegrityError:
            # concurrent writer inserted the same key
            logger.info("notification_duplicate_skipped", dedupe_key=dedupe_key)
            return False
        return True
