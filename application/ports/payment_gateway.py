"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
"""
from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from application.dtos.integrations import GatewayRefund, GatewayVerification


@runtime_checkable
class PaymentGateway(Protocol):
    """Refund and verification against the payment provider.

    `refund` is a financial mutation: adapters must not retry it.
    `verify` is an idempotent read and may be retried once.
    """

    provider: str

    async def refund(self, payment_reference: str, amount: int, reason: Optional[str] = None) -> GatewayRefund: ...

    async def verify(self, payment_reference: str) -> GatewayVerification: ...

    async def aclose(self) -> None: ...
