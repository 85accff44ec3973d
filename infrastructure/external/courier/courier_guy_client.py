"""
Courier Guy style REST adapter.

Only tracking reads are retried; cancel and rebook are single attempts.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

import httpx

from application.dtos.integrations import CourierEvent, CourierRebook, CourierTracking
from core.logging_config import get_logger
from core.settings import IntegrationSettings, integration_settings
from infrastructure.external.api_clients import APIError, BaseAPIClient, NotFoundError, build_timeout
from infrastructure.external.exceptions import CourierProviderError


logger = get_logger(__name__)


def _parse_dt(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


class CourierGuyClient(BaseAPIClient):
    provider = "courier-guy"

    def __init__(
        self,
        *,
        config: Optional[IntegrationSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        cfg = config or integration_settings
        super().__init__(
            base_url=cfg.courier.base_url,
            timeout=build_timeout(cfg.timeouts),
            max_retries=cfg.retry.max,
            retry_delay=cfg.retry.base_backoff,
            auth_token=cfg.courier.api_key,
            transport=transport,
        )
        self.default_service = cfg.courier.default_service

    async def fetch_status(self, tracking_number: str) -> CourierTracking:
        try:
            response = await self.get(f"/track/{tracking_number}", retry=True)
        except APIError as exc:
            raise CourierProviderError(
                f"Tracking lookup failed: {exc.message}",
                provider=self.provider,
                status_code=exc.status_code,
                retryable=True,
            ) from exc

        body = response.json() or {}
        events = [
            CourierEvent(
                status=str(e.get("status") or ""),
                description=e.get("description") or e.get("message"),
                timestamp=_parse_dt(e.get("timestamp") or e.get("date")),
                location=e.get("location"),
            )
            for e in body.get("events") or []
            if isinstance(e, dict)
        ]
        return CourierTracking(
            tracking_number=tracking_number,
            status=str(body.get("status") or ""),
            status_description=body.get("status_description"),
            events=events,
        )

    async def cancel_booking(self, service: Optional[str], booking_id: str) -> bool:
        """Returns False when the courier does not know the booking."""
        payload = {"booking_id": booking_id, "service": service or self.default_service}
        try:
            response = await self.post("/shipments/cancel", json_data=payload, retry=False)
        except NotFoundError:
            logger.info("courier_booking_not_found", booking_id=booking_id)
            return False
        except APIError as exc:
            raise CourierProviderError(
                f"Courier cancellation failed: {exc.message}",
                provider=self.provider,
                status_code=exc.status_code,
            ) from exc
        body = response.json() if response.data is not None else {}
        return bool(body.get("success", True)) if isinstance(body, dict) else True

    async def rebook(self, service: Optional[str], booking_id: str, new_time: datetime) -> CourierRebook:
        payload = {
            "service": service or self.default_service,
            "collection_date": new_time.isoformat(),
        }
        try:
            response = await self.post(f"/shipments/{booking_id}/reschedule", json_data=payload, retry=False)
        except APIError as exc:
            logger.warning("courier_rebook_failed", booking_id=booking_id, error=exc.message)
            return CourierRebook(success=False, error=exc.message)

        body = response.json() or {}
        if body.get("success") is False:
            return CourierRebook(success=False, error=body.get("message") or "Reschedule rejected")
        return CourierRebook(
            success=True,
            booking_id=body.get("booking_id") or body.get("id") or booking_id,
            tracking_number=body.get("tracking_number"),
            pickup_at=_parse_dt(body.get("collection_date")) or new_time,
        )
