"""
Results returned by the external collaborator ports (Pydantic v2).
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, Field


class GatewayRefund(BaseModel):
    success: bool
    refund_reference: Optional[str] = None
    status: Optional[str] = None
    error: Optional[str] = None
    raw: dict[str, Any] = Field(default_factory=dict)


class GatewayVerification(BaseModel):
    verified: bool
    status: Optional[str] = None
    amount: Optional[int] = None
    currency: Optional[str] = None
    reference: Optional[str] = None


class CourierEvent(BaseModel):
    status: str
    description: Optional[str] = None
    timestamp: Optional[datetime] = None
    location: Optional[str] = None


class CourierTracking(BaseModel):
    tracking_number: str
    status: str
    status_description: Optional[str] = None
    events: list[CourierEvent] = Field(default_factory=list)


class CourierRebook(BaseModel):
    success: bool
    booking_id: Optional[str] = None
    tracking_number: Optional[str] = None
    pickup_at: Optional[datetime] = None
    error: Optional[str] = None


class RecipientResult(BaseModel):
    success: bool
    recipient_code: Optional[str] = None
    already_exists: bool = False
    error: Optional[str] = None
