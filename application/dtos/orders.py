"""
Order lifecycle DTOs (Pydantic v2) used at application and API boundaries.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal, Optional
from pydantic import BaseModel, Field, field_validator


class CancellationResult(BaseModel):
    success: bool
    message: str
    refund_amount: Optional[int] = None
    error: Optional[str] = None
    error_code: Optional[int] = None
    order_status: Optional[str] = None
    already_processed: bool = False


class CancelOrderRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class DeclineOrderRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class MissedPickupRequest(BaseModel):
    courier_feedback: Optional[str] = Field(default=None, max_length=500)


class RescheduleRequest(BaseModel):
    new_pickup_time: datetime
    payment_reference: str = Field(min_length=1)
    quote_id: Optional[str] = None

    @field_validator("new_pickup_time")
    @classmethod
    def _to_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)


class RescheduleQuote(BaseModel):
    order_id: str
    courier_service: Optional[str] = None
    reschedule_fee: int
    currency: str
    available_times: list[datetime]
    quote_id: str


class RescheduleResult(BaseModel):
    success: bool
    message: str
    new_pickup_time: Optional[datetime] = None
    courier_booking_id: Optional[str] = None
    reschedule_fee: Optional[int] = None
    error: Optional[str] = None
    error_code: Optional[int] = None


class MissedPickupResult(BaseModel):
    success: bool
    message: str
    delivery_status: Optional[str] = None
    already_processed: bool = False


class CommitResult(BaseModel):
    success: bool
    message: str
    order_status: Optional[str] = None
    already_processed: bool = False


TrackingResultKind = Literal["updated", "no_change", "api_error", "update_error", "processing_error"]


class TrackingUpdateResult(BaseModel):
    order_id: str
    tracking_number: Optional[str] = None
    result: TrackingResultKind
    old_status: Optional[str] = None
    new_status: Optional[str] = None
    courier_status: Optional[str] = None
    error: Optional[str] = None
    notifications_sent: int = 0
    recipient_creation: Optional[dict] = None


class ReconciliationReport(BaseModel):
    started_at: datetime
    finished_at: Optional[datetime] = None
    total_orders_checked: int = 0
    updated_orders: int = 0
    results: list[TrackingUpdateResult] = Field(default_factory=list)

    def count(self, kind: str) -> int:
        return sum(1 for r in self.results if r.result == kind)


class SweepReport(BaseModel):
    type: str
    found: int = 0
    processed: int = 0
    errors: list[dict] = Field(default_factory=list)


class DispatchReport(BaseModel):
    attempted: int = 0
    delivered: int = 0
    failed: int = 0
