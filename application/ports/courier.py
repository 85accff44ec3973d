"""
Courier port.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol, runtime_checkable

from application.dtos.integrations import CourierRebook, CourierTracking


@runtime_checkable
class CourierClient(Protocol):
    """Courier booking operations. Only `fetch_status` may be retried."""

    async def cancel_booking(self, service: Optional[str], booking_id: str) -> bool: ...

    async def fetch_status(self, tracking_number: str) -> CourierTracking: ...

    async def rebook(self, service: Optional[str], booking_id: str, new_time: datetime) -> CourierRebook: ...

    async def aclose(self) -> None: ...
