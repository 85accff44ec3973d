"""
Provider failures mapped to unified BusinessException variants.
"""
from __future__ import annotations

from typing import Optional
from domain.common.exceptions import BusinessException
from shared.codes.order_codes import OrderCode


class ProviderError(BusinessException):
    code_value: int = OrderCode.PAYMENT_PROVIDER_ERROR
    error_type_name: str = "ProviderError"

    def __init__(
        self,
        message: str,
        *,
        provider: str,
        status_code: Optional[int] = None,
        retryable: bool = False,
        details: Optional[dict] = None,
    ):
        self.provider = provider
        self.status_code = status_code
        self.retryable = retryable
        full_details = {"provider": provider, "status_code": status_code, "retryable": retryable}
        if details:
            full_details.update(details)
        super().__init__(
            code=self.code_value,
            message=message,
            error_type=self.error_type_name,
            details=full_details,
        )


class PaymentProviderError(ProviderError):
    code_value = OrderCode.PAYMENT_PROVIDER_ERROR
    error_type_name = "PaymentProviderError"


class CourierProviderError(ProviderError):
    code_value = OrderCode.COURIER_PROVIDER_ERROR
    error_type_name = "CourierProviderError"


class PayoutProviderError(ProviderError):
    code_value = OrderCode.PAYOUT_PROVIDER_ERROR
    error_type_name = "PayoutProviderError"
