"""
Integration settings for the external collaborators (payment gateway, courier,
notifications, payouts) using pydantic-settings v2 with nested env keys.

Kept apart from core.config.Settings so adapters can be configured independently.
"""
from __future__ import annotations

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field


class HttpTimeouts(BaseModel):
    connect: float = 1.0
    read: float = 5.0
    write: float = 5.0
    total: float = 10.0


class ReadRetry(BaseModel):
    # Applies to idempotent reads only (tracking fetch, payment verify, quotes)
    max: int = 1
    base_backoff: float = 0.2


class PaystackSettings(BaseModel):
    secret_key: Optional[str] = None
    base_url: str = "https://api.paystack.co"


class CourierSettings(BaseModel):
    api_key: Optional[str] = None
    base_url: str = "https://api.courierguy.co.za/v1"
    default_service: str = "courier-guy"


class NotificationSettings(BaseModel):
    email_service_url: Optional[str] = None
    email_api_key: Optional[str] = None
    sender: str = "orders@textbook-marketplace.example"
    email_max_retries: int = 5


class PayoutSettings(BaseModel):
    recipient_service_url: Optional[str] = None
    api_key: Optional[str] = None


class IntegrationSettings(BaseSettings):
    timeouts: HttpTimeouts = Field(default_factory=HttpTimeouts)
    retry: ReadRetry = Field(default_factory=ReadRetry)

    paystack: PaystackSettings = Field(default_factory=PaystackSettings)
    courier: CourierSettings = Field(default_factory=CourierSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    payouts: PayoutSettings = Field(default_factory=PayoutSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )


integration_settings = IntegrationSettings()
