"""
Order lifecycle exceptions.
"""
from __future__ import annotations

from typing import Optional

from domain.common.exceptions import BusinessException
from shared.codes.order_codes import OrderCode


class OrderNotFoundException(BusinessException):
    def __init__(self, order_id: str):
        super().__init__(
            code=OrderCode.ORDER_NOT_FOUND,
            message="Order not found",
            error_type="OrderNotFound",
            details={"order_id": order_id},
        )


class OrderAccessDeniedException(BusinessException):
    def __init__(self, order_id: str, actor_id: Optional[str], role: str):
        super().__init__(
            code=OrderCode.ORDER_ACCESS_DENIED,
            message=f"Only the order's {role} may perform this action",
            error_type="OrderAccessDenied",
            details={"order_id": order_id, "actor_id": actor_id, "required_role": role},
        )


class IllegalTransitionException(BusinessException):
    """Rejected by policy before any side effect ran."""

    def __init__(
        self,
        message: str,
        *,
        order_id: Optional[str] = None,
        status: Optional[str] = None,
        delivery_status: Optional[str] = None,
        event: Optional[str] = None,
    ):
        super().__init__(
            code=OrderCode.ILLEGAL_TRANSITION,
            message=message,
            error_type="ValidationError",
            details={
                "order_id": order_id,
                "status": status,
                "delivery_status": delivery_status,
                "event": event,
            },
        )


class CompensationFailedException(BusinessException):
    """A compensating side effect failed; nothing was persisted."""

    _CODES = {
        "refund": OrderCode.REFUND_FAILED,
        "rebook": OrderCode.REBOOK_FAILED,
        "payment_verification": OrderCode.PAYMENT_NOT_VERIFIED,
    }

    def __init__(self, step: str, message: str, *, order_id: Optional[str] = None, cause: Optional[str] = None):
        self.step = step
        super().__init__(
            code=self._CODES.get(step, OrderCode.COMPENSATION_FAILED),
            message=message,
            error_type="CompensationFailed",
            details={"step": step, "order_id": order_id, "cause": cause},
        )


class ConcurrentUpdateException(BusinessException):
    def __init__(self, order_id: str, attempts: int):
        super().__init__(
            code=OrderCode.CONCURRENT_UPDATE,
            message="Order was modified concurrently, please retry",
            error_type="ConcurrentUpdate",
            details={"order_id": order_id, "attempts": attempts},
        )


class NotificationFailure(BusinessException):
    """Raised by notifier adapters; the dispatcher logs it and moves on."""

    def __init__(self, channel: str, message: str, *, user_id: Optional[str] = None):
        self.channel = channel
        super().__init__(
            code=OrderCode.NOTIFICATION_FAILED,
            message=message,
            error_type="NotificationFailure",
            details={"channel": channel, "user_id": user_id},
        )


class ReconciliationError(BusinessException):
    """Per-order failure inside the tracking reconciliation batch."""

    def __init__(self, order_id: str, result: str, message: str):
        self.order_id = order_id
        self.result = result
        super().__init__(
            code=OrderCode.RECONCILIATION_ERROR,
            message=message,
            error_type="ReconciliationError",
            details={"order_id": order_id, "result": result},
        )
