"""
API dependencies - caller identity and order services.
"""
from typing import AsyncIterator

from fastapi import Header, HTTPException, status

from infrastructure.order_services import OrderServices, build_order_services


async def get_current_actor(
    x_actor_id: str | None = Header(default=None, alias="X-Actor-Id"),
) -> str:
    """Opaque id of the calling buyer or seller, set by the upstream gateway."""
    actor_id = (x_actor_id or "").strip()
    if not actor_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-Actor-Id header",
        )
    return actor_id


async def get_order_services() -> AsyncIterator[OrderServices]:
    async with build_order_services() as services:
        yield services
