"""
REST API clients for the external collaborators.
"""
import httpx

from core.settings import HttpTimeouts
from .base import BaseAPIClient, APIResponse, APIError, RetryableAPIError, NotFoundError


def build_timeout(cfg: HttpTimeouts) -> httpx.Timeout:
    """Per-phase timeouts; `total` caps the pool wait as well."""
    return httpx.Timeout(
        timeout=cfg.total,
        connect=cfg.connect,
        read=cfg.read,
        write=cfg.write,
    )


__all__ = [
    "BaseAPIClient",
    "APIResponse",
    "APIError",
    "RetryableAPIError",
    "NotFoundError",
    "build_timeout",
]
