"""
Tracking reconciliation trigger.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends

from api.dependencies import get_current_actor
from core.logging_config import get_logger
from core.response import success_response
from infrastructure.tasks import TaskDispatcher


router = APIRouter(prefix="/tracking", tags=["Tracking"])
logger = get_logger(__name__)


@router.post("/reconcile")
async def trigger_reconciliation(actor_id: str = Depends(get_current_actor)):
    """Queue an immediate reconciliation run; beat keeps the regular schedule."""
    task_id = TaskDispatcher().trigger_tracking_reconciliation()
    logger.info("tracking_reconciliation_triggered", task_id=task_id, actor_id=actor_id)
    return success_response(data={"task_id": task_id}, message="Reconciliation queued")
