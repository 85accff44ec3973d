"""
Order lifecycle routes.

Thin layer over the workflow services: identity comes from X-Actor-Id and the
services decide what the actor may do. Workflow results that report failure
are rendered with the same envelope and status mapping as raised errors.
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import JSONResponse

from api.dependencies import get_current_actor, get_order_services
from application.dtos.orders import (
    CancelOrderRequest,
    DeclineOrderRequest,
    MissedPickupRequest,
    RescheduleRequest,
)
from core.exceptions import business_code_to_http_status, resolve_request_id
from core.response import error_response, success_response
from infrastructure.order_services import OrderServices
from shared.codes import BusinessCode


router = APIRouter(prefix="/orders", tags=["Orders"])


def _render(request: Request, result, *, error_type: str = "OrderWorkflowError"):
    if result.success:
        return success_response(data=result.model_dump(mode="json"), message=result.message)
    code = result.error_code or BusinessCode.BUSINESS_ERROR
    response = error_response(
        code=code,
        message=result.message,
        error_type=error_type,
        details={"error": result.error} if result.error else None,
        request_id=resolve_request_id(request),
    )
    return JSONResponse(
        status_code=business_code_to_http_status(code),
        content=response.model_dump(mode="json"),
    )


@router.post("/{order_id}/commit")
async def commit_order(
    order_id: str,
    actor_id: str = Depends(get_current_actor),
    services: OrderServices = Depends(get_order_services),
):
    """Seller commits to fulfil the order."""
    result = await services.cancellations.commit(order_id, actor_id)
    return success_response(data=result.model_dump(mode="json"), message=result.message)


@router.post("/{order_id}/cancel")
async def cancel_order(
    order_id: str,
    request: Request,
    payload: Optional[CancelOrderRequest] = Body(default=None),
    actor_id: str = Depends(get_current_actor),
    services: OrderServices = Depends(get_order_services),
):
    reason = payload.reason if payload else None
    result = await services.cancellations.buyer_cancel(order_id, actor_id, reason)
    return _render(request, result)


@router.post("/{order_id}/decline")
async def decline_order(
    order_id: str,
    request: Request,
    payload: Optional[DeclineOrderRequest] = Body(default=None),
    actor_id: str = Depends(get_current_actor),
    services: OrderServices = Depends(get_order_services),
):
    reason = payload.reason if payload else None
    result = await services.cancellations.seller_decline(order_id, actor_id, reason)
    return _render(request, result)


@router.post("/{order_id}/missed-pickup")
async def report_missed_pickup(
    order_id: str,
    payload: Optional[MissedPickupRequest] = Body(default=None),
    actor_id: str = Depends(get_current_actor),
    services: OrderServices = Depends(get_order_services),
):
    """Courier or admin report of a failed collection."""
    feedback = payload.courier_feedback if payload else None
    result = await services.missed_pickups.handle_missed_pickup(order_id, feedback)
    return success_response(data=result.model_dump(mode="json"), message=result.message)


@router.get("/{order_id}/reschedule-quote")
async def get_reschedule_quote(
    order_id: str,
    actor_id: str = Depends(get_current_actor),
    services: OrderServices = Depends(get_order_services),
):
    quote = await services.missed_pickups.get_reschedule_quote(order_id, actor_id)
    return success_response(data=quote.model_dump(mode="json"))


@router.post("/{order_id}/reschedule")
async def reschedule_pickup(
    order_id: str,
    payload: RescheduleRequest,
    request: Request,
    actor_id: str = Depends(get_current_actor),
    services: OrderServices = Depends(get_order_services),
):
    result = await services.missed_pickups.reschedule_pickup(
        order_id,
        payload.new_pickup_time,
        payload.payment_reference,
        actor_id,
        quote_id=payload.quote_id,
    )
    return _render(request, result)


@router.post("/{order_id}/cancel-after-missed-pickup")
async def cancel_after_missed_pickup(
    order_id: str,
    request: Request,
    payload: Optional[DeclineOrderRequest] = Body(default=None),
    actor_id: str = Depends(get_current_actor),
    services: OrderServices = Depends(get_order_services),
):
    reason = payload.reason if payload else None
    result = await services.missed_pickups.cancel_after_missed_pickup(order_id, actor_id, reason)
    return _render(request, result)
