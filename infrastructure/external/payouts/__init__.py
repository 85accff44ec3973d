"""Payout provisioning adapters."""
from .recipient_client import RecipientClient

__all__ = ["RecipientClient"]
