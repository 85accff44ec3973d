"""Order lifecycle background jobs"""
from __future__ import annotations

import asyncio

from celery import shared_task

from ..utils.base_task import BaseTask
from core.logging_config import get_logger
from infrastructure.order_services import build_order_services

logger = get_logger(__name__)


async def _reconcile_tracking() -> dict:
    async with build_order_services() as services:
        report = await services.tracking.run()
    return report.model_dump(mode="json")


async def _expire_pending_commits() -> dict:
    async with build_order_services() as services:
        report = await services.expiry.expire_pending_commits()
    return report.model_dump(mode="json")


async def _auto_cancel_missed_pickups() -> dict:
    async with build_order_services() as services:
        report = await services.missed_pickups.auto_cancel_missed_pickups()
    return report.model_dump(mode="json")


@shared_task(name="orders.reconcile_tracking", bind=True, base=BaseTask, max_retries=0)
def reconcile_tracking(self) -> dict:
    """Poll the courier for every open delivery and apply status changes."""
    report = asyncio.run(_reconcile_tracking())
    logger.info(
        "reconcile_tracking_task_completed",
        total_orders_checked=report["total_orders_checked"],
        updated_orders=report["updated_orders"],
    )
    return report


@shared_task(name="orders.expire_pending_commits", bind=True, base=BaseTask, max_retries=0)
def expire_pending_commits(self) -> dict:
    report = asyncio.run(_expire_pending_commits())
    logger.info("expire_pending_commits_task_completed", found=report["found"], processed=report["processed"])
    return report


@shared_task(name="orders.auto_cancel_missed_pickups", bind=True, base=BaseTask, max_retries=0)
def auto_cancel_missed_pickups(self) -> dict:
    report = asyncio.run(_auto_cancel_missed_pickups())
    logger.info("auto_cancel_missed_pickups_task_completed", found=report["found"], processed=report["processed"])
    return report
