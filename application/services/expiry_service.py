"""
Time-based sweeps over stale orders.
"""
from __future__ import annotations

from datetime import timedelta
from typing import Optional

from application.dtos.orders import SweepReport
from application.services.cancellation_service import CancellationService
from application.services.missed_pickup_service import MissedPickupService
from application.services.order_state_machine import UnitOfWorkFactory
from core.config import OrderLifecycleSettings, settings
from core.logging_config import get_logger


logger = get_logger(__name__)


class ExpiryService:
    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        cancellations: CancellationService,
        missed_pickups: MissedPickupService,
        *,
        config: Optional[OrderLifecycleSettings] = None,
    ) -> None:
        self._uow_factory = uow_factory
        self.cancellations = cancellations
        self.missed_pickups = missed_pickups
        self.config = config or settings.orders

    async def expire_pending_commits(self) -> SweepReport:
        """Decline (with refund) orders the seller did not commit to within the commit window."""
        report = SweepReport(type="commit_expired")
        cutoff = self.cancellations.state_machine.now() - timedelta(hours=self.config.commit_window_hours)
        async with self._uow_factory(readonly=True) as uow:
            orders = await uow.order_repository.list_stale_pending_commits(cutoff)
        report.found = len(orders)

        for order in orders:
            try:
                result = await self.cancellations.expire_commit(order.id)
            except Exception as exc:
                logger.error("commit_expiry_failed", order_id=order.id, error=str(exc))
                report.errors.append({"order_id": order.id, "error": str(exc)})
                continue
            if result.success and not result.already_processed:
                report.processed += 1
            elif not result.success:
                report.errors.append({"order_id": order.id, "error": result.error or result.message})

        logger.info("commit_expiry_sweep_completed", found=report.found, processed=report.processed,
                    errors=len(report.errors))
        return report

    async def run_all(self) -> list[SweepReport]:
        return [
            await self.expire_pending_commits(),
            await self.missed_pickups.auto_cancel_missed_pickups(),
        ]
