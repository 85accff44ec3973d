"""
Payout provisioner port.
"""
from __future__ import annotations

from typing import Protocol, runtime_checkable

from application.dtos.integrations import RecipientResult


@runtime_checkable
class PayoutProvisioner(Protocol):
    """Registers a seller as a payout recipient with the payment provider."""

    async def create_recipient(self, seller_id: str) -> RecipientResult: ...
