"""
Payout recipient provisioning.

Calls the recipient service that registers the seller's bank details with
the payment provider. Not retried: the service is not idempotent for new sellers.
"""
from __future__ import annotations

from typing import Optional

import httpx

from application.dtos.integrations import RecipientResult
from core.logging_config import get_logger
from core.settings import IntegrationSettings, integration_settings
from infrastructure.external.api_clients import APIError, BaseAPIClient, build_timeout
from infrastructure.external.exceptions import PayoutProviderError


logger = get_logger(__name__)


class RecipientClient(BaseAPIClient):
    provider = "recipient-service"

    def __init__(
        self,
        *,
        config: Optional[IntegrationSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        cfg = config or integration_settings
        self._configured = bool(cfg.payouts.recipient_service_url)
        super().__init__(
            base_url=cfg.payouts.recipient_service_url or "http://localhost",
            timeout=build_timeout(cfg.timeouts),
            max_retries=0,
            auth_token=cfg.payouts.api_key,
            transport=transport,
        )

    async def create_recipient(self, seller_id: str) -> RecipientResult:
        if not self._configured:
            raise PayoutProviderError("PAYOUTS__RECIPIENT_SERVICE_URL is not configured", provider=self.provider)
        logger.info("payout_recipient_request", seller_id=seller_id)
        try:
            response = await self.post("/", json_data={"sellerId": seller_id}, retry=False)
        except APIError as exc:
            raise PayoutProviderError(
                f"Recipient creation failed: {exc.message}",
                provider=self.provider,
                status_code=exc.status_code,
            ) from exc
        body = response.json() or {}
        return RecipientResult(
            success=bool(body.get("success", True)),
            recipient_code=body.get("recipient_code"),
            already_exists=bool(body.get("already_exists", False)),
            error=body.get("error"),
        )
