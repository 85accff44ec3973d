"""
Paystack adapter for refunds and transaction verification.

Refunds are never retried here: a timed-out refund may still have been
accepted, and the caller records it as failed for manual follow-up.
"""
from __future__ import annotations

from typing import Optional

import httpx

from application.dtos.integrations import GatewayRefund, GatewayVerification
from core.logging_config import get_logger
from core.settings import IntegrationSettings, integration_settings
from infrastructure.external.api_clients import APIError, BaseAPIClient, build_timeout
from infrastructure.external.exceptions import PaymentProviderError


logger = get_logger(__name__)


class PaystackClient(BaseAPIClient):
    provider = "paystack"

    def __init__(
        self,
        *,
        config: Optional[IntegrationSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        cfg = config or integration_settings
        super().__init__(
            base_url=cfg.paystack.base_url,
            timeout=build_timeout(cfg.timeouts),
            max_retries=cfg.retry.max,
            retry_delay=cfg.retry.base_backoff,
            auth_token=cfg.paystack.secret_key,
            transport=transport,
        )

    async def refund(self, payment_reference: str, amount: int, reason: Optional[str] = None) -> GatewayRefund:
        payload = {"transaction": payment_reference, "amount": amount}
        if reason:
            payload["merchant_note"] = reason
        logger.info("paystack_refund_request", provider=self.provider, reference=payment_reference, amount=amount)
        try:
            response = await self.post("/refund", json_data=payload, retry=False)
        except APIError as exc:
            raise PaymentProviderError(
                f"Paystack refund failed: {exc.message}",
                provider=self.provider,
                status_code=exc.status_code,
            ) from exc

        body = response.json() or {}
        data = body.get("data") or {}
        if not body.get("status"):
            logger.warning("paystack_refund_rejected", reference=payment_reference, message=body.get("message"))
            return GatewayRefund(success=False, error=body.get("message") or "Refund rejected", raw=body)
        refund_id = data.get("id")
        return GatewayRefund(
            success=True,
            refund_reference=str(refund_id) if refund_id is not None else None,
            status=data.get("status"),
            raw=body,
        )

    async def verify(self, payment_reference: str) -> GatewayVerification:
        try:
            response = await self.get(f"/transaction/verify/{payment_reference}", retry=True)
        except APIError as exc:
            raise PaymentProviderError(
                f"Paystack verification failed: {exc.message}",
                provider=self.provider,
                status_code=exc.status_code,
            ) from exc

        body = response.json() or {}
        data = body.get("data") or {}
        status = data.get("status")
        return GatewayVerification(
            verified=bool(body.get("status")) and status == "success",
            status=status,
            amount=data.get("amount"),
            currency=data.get("currency"),
            reference=data.get("reference") or payment_reference,
        )
